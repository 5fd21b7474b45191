"""Tag registry — per-channel configuration and live readings.

A :class:`Tag` holds the frozen configuration of one sensor channel.
The live part (last raw value and its timestamp) is kept by the
:class:`TagRegistry`, which is the only state shared between the main
loop and the device reader thread.

Thread model:

- The device reader writes readings with :meth:`TagRegistry.set_raw`.
- The main loop reads them with :meth:`TagRegistry.reading` (or the
  convenience queries built on it).
- One coarse :class:`threading.Lock` guards every raw/timestamp pair.
  Critical sections are a couple of attribute accesses, so contention
  is negligible.

Everything else on a tag is read-only after configuration and needs no
locking.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from ds1820bridge._clock import ClockPort
from ds1820bridge._settings import NoreadAction, TagSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Tag:
    """Immutable configuration of one channel."""

    channel: int
    topic: str = ""
    format: str = "%.1f"
    multiplier: float = 1.0
    offset: float = 0.0
    noread_value: float = 0.0
    noread_action: NoreadAction = NoreadAction.IGNORE
    expiry: int = 0
    retain: bool = False
    update_cycle: int | None = None
    subscribe: bool = False

    @classmethod
    def from_settings(cls, settings: TagSettings, *, retain_default: bool) -> Tag:
        """Build a tag from its configuration entry."""
        return cls(
            channel=settings.channel,
            topic=settings.topic,
            format=settings.format,
            multiplier=settings.multiplier,
            offset=settings.offset,
            noread_value=settings.noread_value,
            noread_action=settings.noread_action,
            expiry=settings.expiry,
            retain=retain_default if settings.retain is None else settings.retain,
            update_cycle=settings.update_cycle,
            subscribe=settings.mode == "subscribe",
        )

    @property
    def publishes(self) -> bool:
        """True when the tag has a topic and is published by the bridge."""
        return bool(self.topic) and not self.subscribe

    def scale(self, raw: float) -> float:
        """Apply ``raw * multiplier + offset``."""
        return raw * self.multiplier + self.offset

    def format_value(self, value: float) -> str:
        """Render *value* with the tag's printf-style format."""
        return self.format % value


@dataclass(frozen=True, slots=True)
class TagReading:
    """Consistent snapshot of a tag's raw value and update time.

    ``updated_at`` is ``None`` until the first value arrives.
    """

    raw: float = 0.0
    updated_at: float | None = None
    retained: bool = False

    def is_expired(self, expiry: int, now: float) -> bool:
        """Whether this reading is older than *expiry* seconds at *now*.

        An expiry of 0 never expires.  A reading that was never updated
        counts as expired once an expiry is configured.
        """
        if expiry <= 0:
            return False
        if self.updated_at is None:
            return True
        return now - self.updated_at > expiry


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TagRegistry:
    """Channel-indexed store of tags and their latest readings.

    The backing array is sized to the highest configured channel + 1
    so that the channel number reported by the sensor bridge is the
    array index.  Slots without a configured tag stay empty and any
    write to them is dropped.

    Args:
        tags: The configured tags.  Channels must be unique and
            non-negative.
        clock: Source of update timestamps.
    """

    def __init__(self, tags: Iterable[Tag], clock: ClockPort) -> None:
        tag_list = list(tags)
        for tag in tag_list:
            if tag.channel < 0:
                msg = f"channel {tag.channel} is negative"
                raise ValueError(msg)
        size = max((tag.channel for tag in tag_list), default=-1) + 1
        self._tags: list[Tag | None] = [None] * size
        for tag in tag_list:
            if self._tags[tag.channel] is not None:
                msg = f"channel {tag.channel} registered twice"
                raise ValueError(msg)
            self._tags[tag.channel] = tag
        self._readings: list[TagReading] = [TagReading() for _ in range(size)]
        self._by_topic = {tag.topic: tag for tag in tag_list if tag.subscribe and tag.topic}
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        tags: Iterable[TagSettings],
        clock: ClockPort,
        *,
        retain_default: bool = False,
    ) -> TagRegistry:
        """Build a registry from configuration entries."""
        return cls(
            (Tag.from_settings(t, retain_default=retain_default) for t in tags),
            clock,
        )

    # -- Read-only structure ------------------------------------------------

    def __len__(self) -> int:
        """Size of the channel array (highest channel + 1)."""
        return len(self._tags)

    def __iter__(self) -> Iterator[Tag]:
        """Iterate over configured tags in channel order."""
        return (tag for tag in self._tags if tag is not None)

    def __contains__(self, channel: object) -> bool:
        return isinstance(channel, int) and self.get(channel) is not None

    def get(self, channel: int) -> Tag | None:
        """Return the tag for *channel*, or ``None``."""
        if 0 <= channel < len(self._tags):
            return self._tags[channel]
        return None

    def __getitem__(self, channel: int) -> Tag:
        tag = self.get(channel)
        if tag is None:
            raise KeyError(channel)
        return tag

    @property
    def subscribe_topics(self) -> list[str]:
        """Topics of subscribe-mode tags, in channel order."""
        return [tag.topic for tag in self if tag.subscribe and tag.topic]

    # -- Shared state -------------------------------------------------------

    def set_raw(self, channel: int, value: float, *, retained: bool = False) -> bool:
        """Store a new raw value for *channel*.

        Out-of-range and unconfigured channels are dropped.

        Returns:
            ``True`` when the value was stored.
        """
        if self.get(channel) is None:
            logger.debug("Dropping sample for unconfigured channel %d", channel)
            return False
        now = self._clock.now()
        with self._lock:
            previous = self._readings[channel].updated_at
            if previous is not None and now < previous:
                now = previous
            self._readings[channel] = TagReading(float(value), now, retained)
        return True

    def reading(self, channel: int) -> TagReading:
        """Return an atomic snapshot of *channel*'s raw value and timestamp.

        Raises:
            KeyError: If *channel* is not configured.
        """
        if self.get(channel) is None:
            raise KeyError(channel)
        with self._lock:
            return self._readings[channel]

    def scaled_value(self, channel: int) -> float:
        """Return ``raw * multiplier + offset`` for *channel*."""
        return self[channel].scale(self.reading(channel).raw)

    def is_expired(self, channel: int, now: float | None = None) -> bool:
        """Whether *channel*'s value is older than its expiry."""
        tag = self[channel]
        when = self._clock.now() if now is None else now
        return self.reading(channel).is_expired(tag.expiry, when)

    def set_from_payload(self, topic: str, payload: str, *, retained: bool = False) -> bool:
        """Update a subscribe-mode tag from an MQTT payload.

        Numeric payloads are stored as-is; payloads starting with
        ``t``/``T`` or ``f``/``F`` are stored as 1 and 0.

        Returns:
            ``False`` if *topic* is unknown or the payload cannot be
            converted.
        """
        tag = self._by_topic.get(topic)
        if tag is None:
            logger.debug("Message for unknown topic %s ignored", topic)
            return False
        text = payload.strip()
        try:
            value = float(text)
        except ValueError:
            first = text[:1].lower()
            if first == "t":
                value = 1.0
            elif first == "f":
                value = 0.0
            else:
                logger.warning(
                    "Failed to convert <%s> for topic %s",
                    payload,
                    topic,
                )
                return False
        return self.set_raw(tag.channel, value, retained=retained)
