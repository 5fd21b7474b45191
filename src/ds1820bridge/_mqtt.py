"""MQTT transport port and adapters.

Provides MqttTransport (Protocol) and three implementations:

- MqttClient — real paho-mqtt client
- MockMqttClient — test double that records calls and simulates the broker
- NullMqttClient — dry-run adapter that logs instead of publishing

Design decisions:

- Broker notifications are not delivered through callbacks into the
  application.  The adapter queues them as :class:`ConnectionEvent` /
  :class:`InboundMessage` values and hands them out from ``poll()``,
  which the main loop calls once per pass.  The connection manager is
  therefore the only place that reacts to link changes.
- ``poll()`` also drives the client's network I/O, so the transport
  runs on the main loop's thread and adds no thread of its own.
- paho-mqtt is imported lazily inside MqttClient so Mock/Null work
  without it installed.
- Reconnect timing is *not* the adapter's job: a failed or dropped
  connection is reported once and the adapter waits for the next
  ``connect()`` call.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from ds1820bridge._errors import TransportError
from ds1820bridge._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class LinkStatus(StrEnum):
    """Kinds of connection notifications from the transport."""

    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class ConnectionEvent:
    """The broker link changed state."""

    status: LinkStatus
    reason: str = ""


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A message arrived on a subscribed topic."""

    topic: str
    payload: str
    retain: bool = False


MqttEvent = ConnectionEvent | InboundMessage

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttTransport(Protocol):
    """Port contract for the MQTT broker connection."""

    @property
    def is_connected(self) -> bool: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> None: ...

    def clear_retained(self, topic: str) -> None: ...

    def subscribe(self, topic: str) -> None: ...

    def poll(self, timeout: float = 0.0) -> list[MqttEvent]: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Dry-run adapter: always connected, logs every operation.

    ``connect()`` succeeds immediately so the full publish path runs
    without a broker.
    """

    _connected: bool = field(default=False, init=False, repr=False)
    _events: list[MqttEvent] = field(default_factory=list, init=False, repr=False)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Pretend to connect."""
        self._connected = True
        self._events.append(ConnectionEvent(LinkStatus.CONNECTED, "dry-run"))

    def disconnect(self) -> None:
        self._connected = False

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        """Log a publish instead of sending it."""
        logger.info("dry-run publish %s = %s (retain=%s)", topic, payload, retain)

    def clear_retained(self, topic: str) -> None:
        logger.info("dry-run clear retained %s", topic)

    def subscribe(self, topic: str) -> None:
        logger.info("dry-run subscribe %s", topic)

    def poll(self, timeout: float = 0.0) -> list[MqttEvent]:  # noqa: ARG002
        events, self._events = self._events, []
        return events


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    ``connect()`` only records the attempt; tests decide the outcome
    with :meth:`accept_connection`, :meth:`refuse_connection` and
    :meth:`drop_connection`.  The resulting events are returned by the
    next ``poll()``, just like the real client.
    """

    published: list[tuple[str, str, bool]] = field(default_factory=list)
    cleared: list[str] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    connect_calls: int = 0
    disconnect_calls: int = 0
    fail_connect: bool = False
    fail_publish: bool = False
    _connected: bool = field(default=False, init=False, repr=False)
    _events: list[MqttEvent] = field(default_factory=list, init=False, repr=False)

    # -- MqttTransport methods ---------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Record a connect attempt."""
        self.connect_calls += 1
        if self.fail_connect:
            msg = "connection refused"
            raise TransportError(msg)

    def disconnect(self) -> None:
        """Record a disconnect."""
        self.disconnect_calls += 1
        self._connected = False

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        """Record a publish call."""
        self._check_publish()
        self.published.append((topic, payload, retain))

    def clear_retained(self, topic: str) -> None:
        """Record a retained-message clear."""
        self._check_publish()
        self.cleared.append(topic)

    def subscribe(self, topic: str) -> None:
        """Record a subscribe call."""
        self.subscriptions.append(topic)

    def poll(self, timeout: float = 0.0) -> list[MqttEvent]:  # noqa: ARG002
        """Return and forget the queued events."""
        events, self._events = self._events, []
        return events

    # -- Test helpers -------------------------------------------------------

    def accept_connection(self) -> None:
        """Simulate the broker accepting the pending connect."""
        self._connected = True
        self._events.append(ConnectionEvent(LinkStatus.CONNECTED))

    def refuse_connection(self, reason: str = "refused") -> None:
        """Simulate the pending connect failing."""
        self._connected = False
        self._events.append(ConnectionEvent(LinkStatus.CONNECT_FAILED, reason))

    def drop_connection(self, reason: str = "connection lost") -> None:
        """Simulate the broker link going down."""
        self._connected = False
        self._events.append(ConnectionEvent(LinkStatus.DISCONNECTED, reason))

    def deliver(self, topic: str, payload: str, *, retain: bool = False) -> None:
        """Simulate an inbound message."""
        self._events.append(InboundMessage(topic, payload, retain))

    @property
    def publish_count(self) -> int:
        """Number of recorded publishes."""
        return len(self.published)

    def get_messages_for(self, topic: str) -> list[tuple[str, bool]]:
        """Return ``(payload, retain)`` tuples for *topic*."""
        return [(payload, retain) for t, payload, retain in self.published if t == topic]

    def reset(self) -> None:
        """Clear all recorded data."""
        self.published.clear()
        self.cleared.clear()
        self.subscriptions.clear()
        self._events.clear()
        self.connect_calls = 0
        self.disconnect_calls = 0

    def _check_publish(self) -> None:
        if not self._connected:
            msg = "MockMqttClient is not connected"
            raise TransportError(msg)
        if self.fail_publish:
            msg = "publish failed"
            raise TransportError(msg)


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *paho-mqtt*.

    The paho client is created on the first ``connect()``.  Its
    network loop is never started in a thread; ``poll()`` runs one
    iteration of it.  Connection callbacks fire inside ``poll()`` and
    only queue events.
    """

    settings: MqttSettings

    _client: Any = field(default=None, init=False, repr=False)
    _mqtt: Any = field(default=None, init=False, repr=False)
    _connected: bool = field(default=False, init=False, repr=False)
    _closing: bool = field(default=False, init=False, repr=False)
    _events: queue.SimpleQueue[MqttEvent] = field(
        default_factory=queue.SimpleQueue,
        init=False,
        repr=False,
    )

    # -- MqttTransport methods ---------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Whether the broker acknowledged the current connection."""
        return self._connected

    def connect(self) -> None:
        """Open the TCP connection and send CONNECT.

        The outcome arrives later as a :class:`ConnectionEvent` from
        ``poll()``.

        Raises:
            TransportError: If the socket cannot be opened.
        """
        client = self._ensure_client()
        self._closing = False
        logger.debug(
            "Connecting to MQTT broker %s:%d",
            self.settings.host,
            self.settings.port,
        )
        try:
            client.connect(
                self.settings.host,
                self.settings.port,
                keepalive=self.settings.keepalive,
            )
        except (OSError, ValueError) as exc:
            msg = f"connect to {self.settings.host}:{self.settings.port} failed: {exc}"
            raise TransportError(msg) from exc

    def disconnect(self) -> None:
        """Flush queued packets and close the connection.  Idempotent."""
        self._connected = False
        self._closing = True
        if self._client is None:
            return
        try:
            while self._client.want_write():
                if self._client.loop_write() != self._mqtt.MQTT_ERR_SUCCESS:
                    break
            self._client.disconnect()
        except OSError:
            logger.debug("Error while disconnecting", exc_info=True)

    def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        """Publish *payload* to *topic*.

        Raises:
            TransportError: If the client is not connected or paho
                rejects the message.
        """
        self._send(topic, payload, retain=retain)
        logger.debug("Published %s = %s (retain=%s)", topic, payload, retain)

    def clear_retained(self, topic: str) -> None:
        """Remove the broker's retained message for *topic*."""
        self._send(topic, None, retain=True)
        logger.debug("Cleared retained message on %s", topic)

    def subscribe(self, topic: str) -> None:
        """Subscribe to *topic* on the current connection."""
        if self._client is None or not self._connected:
            msg = "MqttClient is not connected"
            raise TransportError(msg)
        result, _mid = self._client.subscribe(topic, qos=self.settings.qos)
        if result != self._mqtt.MQTT_ERR_SUCCESS:
            msg = f"subscribe to {topic} failed: {self._mqtt.error_string(result)}"
            raise TransportError(msg)

    def poll(self, timeout: float = 0.0) -> list[MqttEvent]:
        """Run one network-loop iteration and return queued events."""
        if self._client is not None:
            try:
                self._client.loop(timeout=timeout)
            except OSError:
                logger.debug("MQTT network loop error", exc_info=True)
        events: list[MqttEvent] = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    # -- Internal -----------------------------------------------------------

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            import paho.mqtt.client as mqtt  # noqa: PLC0415
            from paho.mqtt.enums import CallbackAPIVersion  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "paho-mqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.settings.client_id,
        )
        if self.settings.username is not None:
            password: str | None = None
            if self.settings.password is not None:
                password = self.settings.password.get_secret_value()
            client.username_pw_set(self.settings.username, password)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        self._mqtt = mqtt
        self._client = client
        return client

    def _send(self, topic: str, payload: str | None, *, retain: bool) -> None:
        if self._client is None or not self._connected:
            msg = "MqttClient is not connected"
            raise TransportError(msg)
        info = self._client.publish(
            topic,
            payload,
            qos=self.settings.qos,
            retain=retain,
        )
        if info.rc != self._mqtt.MQTT_ERR_SUCCESS:
            msg = f"publish to {topic} failed: {self._mqtt.error_string(info.rc)}"
            raise TransportError(msg)

    # paho callbacks (run inside poll())

    def _on_connect(
        self,
        client: Any,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        flags: Any,  # noqa: ARG002
        reason_code: Any,
        properties: Any = None,  # noqa: ARG002
    ) -> None:
        if reason_code.is_failure:
            self._connected = False
            self._events.put(ConnectionEvent(LinkStatus.CONNECT_FAILED, str(reason_code)))
        else:
            self._connected = True
            self._events.put(ConnectionEvent(LinkStatus.CONNECTED))

    def _on_disconnect(
        self,
        client: Any,  # noqa: ARG002
        userdata: Any,  # noqa: ARG002
        flags: Any,  # noqa: ARG002
        reason_code: Any,
        properties: Any = None,  # noqa: ARG002
    ) -> None:
        if self._closing:
            return
        was_connected, self._connected = self._connected, False
        status = LinkStatus.DISCONNECTED if was_connected else LinkStatus.CONNECT_FAILED
        self._events.put(ConnectionEvent(status, str(reason_code)))

    def _on_message(self, client: Any, userdata: Any, message: Any) -> None:  # noqa: ARG002
        payload = message.payload
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8", errors="replace")
        self._events.put(InboundMessage(str(message.topic), str(payload), bool(message.retain)))
