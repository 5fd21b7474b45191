"""Runtime context shared by the bridge's two threads.

:class:`BridgeContext` bundles everything built at start-up.  It
replaces module-level globals: the composition root builds one
context and hands it to the main loop and the device reader.

Ownership:

===============  ============================================
Field            Touched by
===============  ============================================
``settings``     read-only after construction
``registry``     reader writes samples, main loop reads;
                 guarded by the registry's own lock
``scheduler``    main loop only
``mqtt``         main loop only
``connection``   main loop only
``source``       reader only; closed by the owner after join
``clock``        both (stateless)
``shutdown``     set by signal handlers or the reader,
                 read by both
===============  ============================================
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ds1820bridge._clock import ClockPort, SystemClock
from ds1820bridge._connection import ConnectionManager
from ds1820bridge._mqtt import MqttTransport
from ds1820bridge._scheduler import UpdateCycleScheduler
from ds1820bridge._settings import BridgeSettings
from ds1820bridge._source import SampleSource
from ds1820bridge._tags import TagRegistry


@dataclass
class BridgeContext:
    """The bridge's runtime state."""

    settings: BridgeSettings
    registry: TagRegistry
    scheduler: UpdateCycleScheduler
    mqtt: MqttTransport
    connection: ConnectionManager
    source: SampleSource
    clock: ClockPort = field(default_factory=SystemClock)
    shutdown: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def build(
        cls,
        settings: BridgeSettings,
        *,
        mqtt: MqttTransport,
        source: SampleSource,
        clock: ClockPort,
        shutdown: threading.Event,
    ) -> BridgeContext:
        """Build registry, scheduler and connection manager from settings.

        The scheduler's first due times and the initial reconnect timer
        are both taken from ``clock.now()``.
        """
        registry = TagRegistry.from_settings(
            settings.tags,
            clock,
            retain_default=settings.mqtt.retain_default,
        )
        now = clock.now()
        scheduler = UpdateCycleScheduler.from_settings(
            settings.updatecycles,
            registry,
            start=now,
        )
        connection = ConnectionManager(
            mqtt,
            clock,
            shutdown,
            reconnect_interval=settings.mqtt.reconnect_interval,
            connect_timeout=settings.mqtt.connect_timeout,
            subscriptions=registry.subscribe_topics,
            broker=f"{settings.mqtt.host}:{settings.mqtt.port}",
        )
        return cls(
            settings=settings,
            registry=registry,
            scheduler=scheduler,
            mqtt=mqtt,
            connection=connection,
            source=source,
            clock=clock,
            shutdown=shutdown,
        )

    @property
    def shutdown_requested(self) -> bool:
        return self.shutdown.is_set()
