"""Update-cycle scheduler.

Tags are grouped into update cycles, each with its own publish
interval.  Every main-loop pass asks :meth:`UpdateCycleScheduler.due_cycles`
which cycles are due; the due ones are rescheduled *before* their tags
are processed, so a slow pass cannot make the same cycle fire twice.

This is a level-triggered poll over a short list rather than a
priority queue: configurations have tens of cycles at most and
intervals are whole seconds.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from ds1820bridge._settings import UpdateCycleSettings
from ds1820bridge._tags import TagRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpdateCycle:
    """One publish cadence and the channels assigned to it.

    Only ``next_due`` changes after construction.
    """

    ident: int
    interval: float
    next_due: float
    channels: tuple[int, ...] = ()

    @property
    def inert(self) -> bool:
        """A cycle without tags is never due."""
        return not self.channels


class UpdateCycleScheduler:
    """Decides, per tick, which update cycles are due.

    Args:
        cycles: Cycles in configuration order.
    """

    def __init__(self, cycles: Iterable[UpdateCycle]) -> None:
        self._cycles = list(cycles)

    @classmethod
    def from_settings(
        cls,
        cycles: Iterable[UpdateCycleSettings],
        registry: TagRegistry,
        start: float,
    ) -> UpdateCycleScheduler:
        """Assign the registry's tags to the configured cycles.

        Each cycle's channels are listed in channel order.  The first
        due time of every cycle is ``start + interval``.
        """
        members: dict[int, list[int]] = {}
        for tag in registry:
            if tag.update_cycle is not None:
                members.setdefault(tag.update_cycle, []).append(tag.channel)

        built: list[UpdateCycle] = []
        for settings in cycles:
            channels = tuple(members.get(settings.id, ()))
            if not channels:
                logger.warning("Update cycle %d has no tags", settings.id)
            built.append(
                UpdateCycle(
                    ident=settings.id,
                    interval=float(settings.interval),
                    next_due=start + settings.interval,
                    channels=channels,
                ),
            )
        return cls(built)

    def __iter__(self) -> Iterator[UpdateCycle]:
        return iter(self._cycles)

    def __len__(self) -> int:
        return len(self._cycles)

    def due_cycles(self, now: float) -> list[UpdateCycle]:
        """Return the cycles due at *now*, in configuration order.

        Each returned cycle has already been rescheduled to
        ``now + interval``.  Inert cycles are skipped.
        """
        due: list[UpdateCycle] = []
        for cycle in self._cycles:
            if cycle.inert or now < cycle.next_due:
                continue
            cycle.next_due = now + cycle.interval
            due.append(cycle)
        return due

    def channels(self) -> Iterator[int]:
        """Every scheduled channel, cycle by cycle."""
        for cycle in self._cycles:
            yield from cycle.channels
