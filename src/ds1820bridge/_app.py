"""Composition root for the bridge.

:class:`Bridge` builds the runtime context from settings, starts the
device reader thread, runs the main loop on the calling thread and
tears everything down in a fixed order:

1. exit publish pass (noread values / cleared retained messages),
2. connection shutdown,
3. join the device reader,
4. close the sample source.

Typical usage::

    settings = BridgeSettings.from_file("ds1820bridge.toml")
    Bridge(settings, version=__version__).run()

Every collaborator can be injected for tests: pass a
:class:`~ds1820bridge._mqtt.MockMqttClient`, a scripted sample source,
a :class:`~ds1820bridge.testing.FakeClock` and a
:class:`threading.Event` to control shutdown.  OS signal handlers are
only installed when no shutdown event is injected.
"""

from __future__ import annotations

import logging
import signal
import threading
import uuid
from collections.abc import Callable
from types import FrameType
from typing import TypeAlias

from ds1820bridge._clock import ClockPort, SystemClock
from ds1820bridge._context import BridgeContext
from ds1820bridge._errors import BridgeError
from ds1820bridge._loop import MainLoop
from ds1820bridge._mqtt import MqttClient, MqttTransport, NullMqttClient
from ds1820bridge._reader import DeviceReader
from ds1820bridge._settings import BridgeSettings
from ds1820bridge._source import SampleSource, SerialSampleSource

logger = logging.getLogger(__name__)

SERVICE_NAME = "ds1820bridge"

_SIGNALS = (signal.SIGTERM, signal.SIGINT)

_SignalHandler: TypeAlias = Callable[[int, FrameType | None], object] | int | None


class Bridge:
    """Serial-to-MQTT temperature bridge.

    Args:
        settings: Validated configuration.
        version: Version string for the start-up banner.
        mqtt: Override the MQTT transport.  When ``None`` a paho
            :class:`~ds1820bridge._mqtt.MqttClient` is created, or a
            :class:`~ds1820bridge._mqtt.NullMqttClient` in dry-run mode.
        source: Override the sample source.  When ``None`` a
            :class:`~ds1820bridge._source.SerialSampleSource` is created.
        clock: Override the clock.
        shutdown: Override the shutdown event and skip signal handlers.
        dry_run: Log publishes instead of talking to a broker.
    """

    def __init__(
        self,
        settings: BridgeSettings,
        *,
        version: str = "0.0.0",
        mqtt: MqttTransport | None = None,
        source: SampleSource | None = None,
        clock: ClockPort | None = None,
        shutdown: threading.Event | None = None,
        dry_run: bool = False,
    ) -> None:
        self._settings = settings
        self._version = version
        self._mqtt = mqtt
        self._source = source
        self._clock = clock if clock is not None else SystemClock()
        self._shutdown = shutdown
        self._dry_run = dry_run
        self.context: BridgeContext | None = None
        self.loop: MainLoop | None = None
        self.reader: DeviceReader | None = None

    def run(self) -> None:
        """Run until SIGINT/SIGTERM or until the shutdown event is set.

        Raises:
            BridgeError: If the device reader stopped on an unexpected
                error.
        """
        logger.info(
            "%s v%s starting%s",
            SERVICE_NAME,
            self._version,
            " (dry run)" if self._dry_run else "",
        )
        shutdown, previous = self._install_signal_handlers()
        try:
            ctx = self._build_context(shutdown)
            reader = DeviceReader(ctx.source, ctx.registry, shutdown)
            loop = MainLoop(ctx)
            self.context, self.reader, self.loop = ctx, reader, loop

            reader.start()
            try:
                loop.run()
            finally:
                shutdown.set()
                self._teardown(ctx, loop, reader)
        finally:
            self._restore_signal_handlers(previous)

        if reader.failure is not None:
            msg = f"Device reader failed: {reader.failure}"
            raise BridgeError(msg) from reader.failure
        logger.info("Shutdown complete")

    # --- run helpers -------------------------------------------------------

    def _build_context(self, shutdown: threading.Event) -> BridgeContext:
        settings = self._settings
        return BridgeContext.build(
            settings,
            mqtt=self._create_mqtt(),
            source=self._source
            or SerialSampleSource(settings.serial, cancel=shutdown, clock=self._clock),
            clock=self._clock,
            shutdown=shutdown,
        )

    def _create_mqtt(self) -> MqttTransport:
        """Create the MQTT transport, or return the injected one.

        When no ``client_id`` is configured, one is generated from the
        service name and a short random suffix, e.g.
        ``"ds1820bridge-a1b2c3d4"``.
        """
        if self._mqtt is not None:
            return self._mqtt
        if self._dry_run:
            return NullMqttClient()
        mqtt_settings = self._settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{SERVICE_NAME}-{uuid.uuid4().hex[:8]}"},
            )
        return MqttClient(settings=mqtt_settings)

    def _teardown(
        self,
        ctx: BridgeContext,
        loop: MainLoop,
        reader: DeviceReader,
    ) -> None:
        logger.info("Shutting down")
        try:
            loop.publish_exit(
                clear=ctx.settings.mqtt.clear_on_exit,
                noread=ctx.settings.mqtt.noread_on_exit,
            )
        finally:
            ctx.connection.shutdown()
            if reader.is_alive():
                reader.join()
            ctx.source.close()

    def _install_signal_handlers(
        self,
    ) -> tuple[threading.Event, dict[int, _SignalHandler]]:
        """Install SIGTERM/SIGINT handlers.  Returns the shutdown event."""
        if self._shutdown is not None:
            return self._shutdown, {}
        event = threading.Event()

        def _handler(signum: int, _frame: FrameType | None) -> None:
            logger.info("Received %s, shutting down", signal.Signals(signum).name)
            event.set()

        previous: dict[int, _SignalHandler] = {}
        for sig in _SIGNALS:
            previous[sig] = signal.signal(sig, _handler)
        return event, previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, _SignalHandler]) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, signal.SIG_DFL if handler is None else handler)
