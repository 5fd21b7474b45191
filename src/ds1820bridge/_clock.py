"""Monotonic clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock.  Tag update times,
cycle due times and reconnect timers all come from a single ClockPort,
so they are comparable with each other.

**Why monotonic?** time.monotonic() is immune to NTP adjustments and
manual system-clock changes, so a tag's last-update timestamp can only
ever advance and expiry/reconnect arithmetic never jumps.  The epoch
is arbitrary; only *differences* between now() calls are meaningful
(PEP 418).
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic clock for timing measurements.

    The default implementation wraps ``time.monotonic()``. Tests
    inject a deterministic fake clock for reproducible timing.
    """

    def now(self) -> float:
        """Return monotonic time in seconds.

        Returns:
            A float representing seconds from an arbitrary epoch.
            Only the *difference* between two calls is meaningful.
        """
        ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()``.

    Satisfies :class:`ClockPort` via structural subtyping (PEP 544).
    It is safe to share one instance between the main loop and the
    device reader thread.
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()
