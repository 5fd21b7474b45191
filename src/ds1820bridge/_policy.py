"""Publish policy — what, if anything, to send for a tag.

:meth:`PublishPolicy.decide` turns a tag's current state into one of
four decisions:

=============================  ==========================================
Decision                       When
=============================  ==========================================
:class:`Skip`                  not connected, no topic, subscribe tag,
                               or expired with ``noread_action=ignore``
:class:`Publish`               value is fresh
:class:`PublishNoreadSubstitute`  expired, ``publish-substitute``
:class:`ClearRetained`         expired, ``publish-null``
=============================  ==========================================

"Not connected" is an ordinary :class:`Skip`, not an error.  The main
loop evaluates the policy once per tag per due cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ds1820bridge._clock import ClockPort
from ds1820bridge._connection import ConnectionManager
from ds1820bridge._errors import TransportError
from ds1820bridge._mqtt import MqttTransport
from ds1820bridge._settings import NoreadAction
from ds1820bridge._tags import Tag, TagRegistry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Publish:
    """Publish the tag's scaled value."""

    value: float
    retain: bool


@dataclass(frozen=True, slots=True)
class PublishNoreadSubstitute:
    """Publish the tag's noread substitute."""

    value: float
    retain: bool


@dataclass(frozen=True, slots=True)
class ClearRetained:
    """Remove the broker's retained message for the tag's topic."""


@dataclass(frozen=True, slots=True)
class Skip:
    """Send nothing."""

    reason: str = ""


Decision = Publish | PublishNoreadSubstitute | ClearRetained | Skip

# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class PublishPolicy:
    """Decides and performs the publish for one tag.

    Args:
        registry: Source of tag readings.
        connection: Provides the connected/not-connected state.
        transport: Destination for publishes.
        clock: Time source for expiry checks.
        debug: Log every publish at INFO level.
    """

    def __init__(
        self,
        registry: TagRegistry,
        connection: ConnectionManager,
        transport: MqttTransport,
        clock: ClockPort,
        *,
        debug: bool = False,
    ) -> None:
        self._registry = registry
        self._connection = connection
        self._transport = transport
        self._clock = clock
        self._debug = debug

    def decide(self, tag: Tag, now: float | None = None) -> Decision:
        """Return the decision for *tag* at *now*."""
        if not self._connection.is_connected:
            return Skip("not connected")
        if not tag.publishes:
            return Skip("not published")

        when = self._clock.now() if now is None else now
        reading = self._registry.reading(tag.channel)
        if not reading.is_expired(tag.expiry, when):
            return Publish(tag.scale(reading.raw), tag.retain)

        match tag.noread_action:
            case NoreadAction.PUBLISH_NULL:
                return ClearRetained()
            case NoreadAction.PUBLISH_SUBSTITUTE:
                return PublishNoreadSubstitute(tag.noread_value, tag.retain)
            case _:
                return Skip("noread ignored")

    def apply(self, tag: Tag, decision: Decision) -> bool:
        """Send *decision* for *tag* to the transport.

        Transport errors are logged and not retried; the next due
        cycle tries again.

        Returns:
            ``True`` if something was sent.
        """
        try:
            match decision:
                case Publish(value=value, retain=retain) | PublishNoreadSubstitute(
                    value=value, retain=retain
                ):
                    payload = tag.format_value(value)
                    self._transport.publish(tag.topic, payload, retain=retain)
                    if self._debug:
                        logger.info("Published %s = %s", tag.topic, payload)
                case ClearRetained():
                    self._transport.clear_retained(tag.topic)
                    if self._debug:
                        logger.info("Cleared retained %s", tag.topic)
                case _:
                    return False
        except TransportError as exc:
            logger.warning("Publish to %s failed: %s", tag.topic, exc)
            return False
        return True

    def process(self, tag: Tag, now: float | None = None) -> Decision:
        """Decide and apply in one step."""
        decision = self.decide(tag, now)
        self.apply(tag, decision)
        return decision
