"""MQTT connection state machine.

States and transitions::

    DISCONNECTED --connect()------------> CONNECTING
    CONNECTING   --CONNECTED event------> CONNECTED     (timer cleared, re-subscribe)
    CONNECTING   --failure / timeout----> DISCONNECTED  (timer armed)
    CONNECTED    --DISCONNECTED event---> DISCONNECTED  (timer armed)

The reconnect timer is armed exactly when the state is DISCONNECTED
and the process is not shutting down.  It starts armed for "now", so
the first main-loop pass makes the initial connect.  Retries continue
forever at a fixed interval; an unattended bridge should keep trying
until the broker comes back.

At most one connect attempt is in flight: :meth:`ConnectionManager.connect`
is a no-op unless the state is DISCONNECTED.

Once the shutdown event is set no transition fires and no timer is
re-armed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from enum import StrEnum

from ds1820bridge._clock import ClockPort
from ds1820bridge._errors import TransportError
from ds1820bridge._mqtt import ConnectionEvent, LinkStatus, MqttTransport

logger = logging.getLogger(__name__)


class ConnectionState(StrEnum):
    """MQTT link status as seen by the bridge."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager:
    """Owns the broker link state and the reconnect timer.

    Only the main loop calls into the manager, so it needs no lock.

    Args:
        transport: The MQTT transport.
        clock: Time source for attempt durations and the timer.
        shutdown: Process-wide shutdown flag.
        reconnect_interval: Seconds between a failure and the next attempt.
        connect_timeout: Seconds to wait for the broker's acknowledgement.
        subscriptions: Topics to (re-)subscribe after every connect.
        broker: Broker name for log messages.
    """

    def __init__(
        self,
        transport: MqttTransport,
        clock: ClockPort,
        shutdown: threading.Event,
        *,
        reconnect_interval: float = 10.0,
        connect_timeout: float = 30.0,
        subscriptions: Sequence[str] = (),
        broker: str = "",
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._shutdown = shutdown
        self._reconnect_interval = reconnect_interval
        self._connect_timeout = connect_timeout
        self._subscriptions = tuple(subscriptions)
        self._broker = broker
        self._state = ConnectionState.DISCONNECTED
        self._attempt_started: float | None = None
        self._reconnect_at: float | None = None
        if not shutdown.is_set():
            self._reconnect_at = clock.now()

    # -- Read-only properties -----------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_at(self) -> float | None:
        """When the next connect attempt is due, or ``None`` if not armed."""
        return self._reconnect_at

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    # -- Transitions --------------------------------------------------------

    def connect(self) -> None:
        """Start a connect attempt if none is in flight."""
        if self.shutting_down:
            return
        if self._state is not ConnectionState.DISCONNECTED:
            logger.debug("connect() ignored in state %s", self._state)
            return
        self._state = ConnectionState.CONNECTING
        self._attempt_started = self._clock.now()
        self._reconnect_at = None
        logger.debug("Attempting to connect to MQTT broker %s", self._broker)
        try:
            self._transport.connect()
        except TransportError as exc:
            self.on_connect_failure(str(exc))

    def on_connect_success(self) -> None:
        """The broker acknowledged the connection."""
        if self.shutting_down or self._state is not ConnectionState.CONNECTING:
            return
        self._state = ConnectionState.CONNECTED
        self._attempt_started = None
        self._reconnect_at = None
        logger.info("Connected to MQTT broker [%s]", self._broker)
        for topic in self._subscriptions:
            try:
                self._transport.subscribe(topic)
            except TransportError as exc:
                logger.warning("Subscribe to %s failed: %s", topic, exc)

    def on_connect_failure(self, reason: str = "") -> None:
        """The pending connect attempt failed or timed out."""
        if self.shutting_down or self._state is not ConnectionState.CONNECTING:
            return
        now = self._clock.now()
        started = self._attempt_started if self._attempt_started is not None else now
        logger.info(
            "MQTT connection attempt failed after %.0fs: %s",
            now - started,
            reason or "unknown reason",
        )
        self._attempt_started = None
        self._transport.disconnect()
        self._state = ConnectionState.DISCONNECTED
        self._arm(now)

    def on_link_drop(self, reason: str = "") -> None:
        """An established connection was lost."""
        if self.shutting_down or self._state is not ConnectionState.CONNECTED:
            return
        logger.warning(
            "Disconnected from MQTT broker [%s]: %s",
            self._broker,
            reason or "unknown reason",
        )
        self._state = ConnectionState.DISCONNECTED
        self._arm(self._clock.now())

    def handle_event(self, event: ConnectionEvent) -> None:
        """Apply a transport notification."""
        if event.status is LinkStatus.CONNECTED:
            self.on_connect_success()
        elif self._state is ConnectionState.CONNECTING:
            self.on_connect_failure(event.reason)
        else:
            self.on_link_drop(event.reason)

    def tick(self, now: float) -> None:
        """Fire the reconnect timer or time out a stale attempt."""
        if self.shutting_down:
            return
        if (
            self._state is ConnectionState.CONNECTING
            and self._attempt_started is not None
            and now - self._attempt_started >= self._connect_timeout
        ):
            self.on_connect_failure("timeout")
        if (
            self._state is ConnectionState.DISCONNECTED
            and self._reconnect_at is not None
            and now >= self._reconnect_at
        ):
            self.connect()

    def shutdown(self) -> None:
        """Disarm the timer and close the link for good."""
        self._reconnect_at = None
        if self._state is not ConnectionState.DISCONNECTED:
            self._transport.disconnect()
            self._state = ConnectionState.DISCONNECTED
        logger.debug("Connection manager shut down")

    # -- Internal -----------------------------------------------------------

    def _arm(self, now: float) -> None:
        if self.shutting_down:
            self._reconnect_at = None
            return
        self._reconnect_at = now + self._reconnect_interval
        logger.info(
            "MQTT reconnect scheduled in %.0f seconds",
            self._reconnect_interval,
        )
