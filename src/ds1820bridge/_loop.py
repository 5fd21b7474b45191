"""The bridge's main loop.

One pass of :meth:`MainLoop.run_once`:

1. Drain MQTT events.  Link changes go to the
   :class:`~ds1820bridge._connection.ConnectionManager`, inbound
   messages update subscribe-mode tags.
2. For every due update cycle, run the publish policy for each of its
   tags.
3. Let the connection manager fire its reconnect timer.

:meth:`MainLoop.run` repeats passes until the shutdown event is set,
sleeping out the rest of each interval on the event so that a signal
ends the wait at once.
"""

from __future__ import annotations

import logging

from ds1820bridge._context import BridgeContext
from ds1820bridge._errors import TransportError
from ds1820bridge._mqtt import ConnectionEvent, InboundMessage
from ds1820bridge._policy import PublishPolicy

logger = logging.getLogger(__name__)


class MainLoop:
    """Drives polling, publishing and reconnects on the main thread.

    Args:
        context: Runtime state built at start-up.
        policy: Publish policy.  Built from *context* when omitted.
    """

    def __init__(
        self,
        context: BridgeContext,
        *,
        policy: PublishPolicy | None = None,
    ) -> None:
        self._ctx = context
        self._policy = policy or PublishPolicy(
            context.registry,
            context.connection,
            context.mqtt,
            context.clock,
            debug=context.settings.mqtt.debug,
        )
        self._interval = context.settings.main_loop_seconds
        self.passes = 0
        self.processing_min: float | None = None
        self.processing_max: float | None = None

    @property
    def policy(self) -> PublishPolicy:
        return self._policy

    def run(self) -> None:
        """Run passes until shutdown is requested."""
        ctx = self._ctx
        logger.info(
            "Main loop started (interval %.0f ms, %d tags, %d cycles)",
            self._interval * 1000,
            sum(1 for _ in ctx.registry),
            len(ctx.scheduler),
        )
        while not ctx.shutdown.is_set():
            started = ctx.clock.now()
            processed = self.run_once(started)
            elapsed = ctx.clock.now() - started
            self._record(elapsed, processed=processed)
            ctx.shutdown.wait(max(0.0, self._interval - elapsed))
        logger.info(
            "Main loop stopped after %d passes (processing min %s, max %s)",
            self.passes,
            _millis(self.processing_min),
            _millis(self.processing_max),
        )

    def run_once(self, now: float | None = None) -> bool:
        """Run a single pass at *now*.

        Returns:
            ``True`` if at least one update cycle was due.
        """
        ctx = self._ctx
        when = ctx.clock.now() if now is None else now

        for event in ctx.mqtt.poll():
            match event:
                case ConnectionEvent():
                    ctx.connection.handle_event(event)
                case InboundMessage(topic=topic, payload=payload, retain=retain):
                    ctx.registry.set_from_payload(topic, payload, retained=retain)

        due = ctx.scheduler.due_cycles(when)
        for cycle in due:
            for channel in cycle.channels:
                tag = ctx.registry.get(channel)
                if tag is not None:
                    self._policy.process(tag, when)

        ctx.connection.tick(when)
        self.passes += 1
        return bool(due)

    def publish_exit(self, *, clear: bool, noread: bool) -> int:
        """Final pass before disconnecting.

        With *noread*, every published tag gets its noread substitute.
        With *clear*, every published tag's retained message is then
        removed.  Nothing is sent when the link is down.

        Returns:
            Number of messages sent.
        """
        if not (clear or noread):
            return 0
        if not self._ctx.connection.is_connected:
            logger.info("Not connected, skipping exit publish")
            return 0

        sent = 0
        for tag in self._ctx.registry:
            if not tag.publishes:
                continue
            try:
                if noread:
                    self._ctx.mqtt.publish(
                        tag.topic,
                        tag.format_value(tag.noread_value),
                        retain=tag.retain,
                    )
                    sent += 1
                if clear:
                    self._ctx.mqtt.clear_retained(tag.topic)
                    sent += 1
            except TransportError as exc:
                logger.warning("Exit publish to %s failed: %s", tag.topic, exc)
        logger.info("Exit publish sent %d messages", sent)
        return sent

    def _record(self, elapsed: float, *, processed: bool) -> None:
        """Track min/max over passes that processed a cycle; warn on overrun."""
        if processed:
            self._track(elapsed)
        if elapsed > self._interval:
            logger.warning(
                "Main loop pass took %.0f ms, longer than the %.0f ms interval",
                elapsed * 1000,
                self._interval * 1000,
            )

    def _track(self, elapsed: float) -> None:
        if self.processing_min is None or elapsed < self.processing_min:
            self.processing_min = elapsed
        if self.processing_max is None or elapsed > self.processing_max:
            self.processing_max = elapsed


def _millis(seconds: float | None) -> str:
    if seconds is None:
        return "n/a"
    return f"{seconds * 1000:.1f} ms"
