"""Unit tests for ds1820bridge._scheduler — update-cycle timing.

Test Techniques Used:
    - Specification-based Testing: Grouping of tags into cycles
    - Boundary Value Analysis: Due exactly at next_due, one tick early
    - State Transition Testing: Rescheduling after each due pass
"""

from __future__ import annotations

import logging

import pytest

from ds1820bridge._scheduler import UpdateCycle, UpdateCycleScheduler
from ds1820bridge._settings import UpdateCycleSettings
from ds1820bridge._tags import Tag, TagRegistry
from ds1820bridge.testing import FakeClock


@pytest.fixture
def registry(fake_clock: FakeClock) -> TagRegistry:
    """Tags 1 and 4 in cycle 1, tag 2 in cycle 2, tag 3 in no cycle."""
    return TagRegistry(
        [
            Tag(channel=4, topic="d", update_cycle=1),
            Tag(channel=1, topic="a", update_cycle=1),
            Tag(channel=2, topic="b", update_cycle=2),
            Tag(channel=3, topic="c"),
        ],
        fake_clock,
    )


def _cycles(*pairs: tuple[int, int]) -> list[UpdateCycleSettings]:
    return [UpdateCycleSettings(id=i, interval=s) for i, s in pairs]


class TestFromSettings:
    """Building the scheduler from configuration.

    Technique: Specification-based Testing.
    """

    def test_channels_grouped_in_channel_order(self, registry: TagRegistry) -> None:
        """Each cycle lists its channels sorted."""
        sched = UpdateCycleScheduler.from_settings(_cycles((1, 10), (2, 60)), registry, 0.0)

        assert [c.channels for c in sched] == [(1, 4), (2,)]

    def test_first_due_is_start_plus_interval(self, registry: TagRegistry) -> None:
        """Cycles first fire one interval after start."""
        sched = UpdateCycleScheduler.from_settings(_cycles((1, 10), (2, 60)), registry, 5.0)

        assert [c.next_due for c in sched] == [15.0, 65.0]

    def test_tag_without_cycle_never_scheduled(self, registry: TagRegistry) -> None:
        """Channel 3 has no cycle and is in no cycle's list."""
        sched = UpdateCycleScheduler.from_settings(_cycles((1, 10), (2, 60)), registry, 0.0)

        assert 3 not in set(sched.channels())
        assert sorted(sched.channels()) == [1, 2, 4]

    def test_empty_cycle_is_inert_and_logged(
        self,
        registry: TagRegistry,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A cycle nobody references is kept but marked inert."""
        with caplog.at_level(logging.WARNING, logger="ds1820bridge._scheduler"):
            sched = UpdateCycleScheduler.from_settings(
                _cycles((1, 10), (2, 60), (9, 5)),
                registry,
                0.0,
            )

        assert [c.inert for c in sched] == [False, False, True]
        assert "Update cycle 9 has no tags" in caplog.text
        assert len(sched) == 3


class TestDueCycles:
    """Which cycles fire on a given tick.

    Technique: Boundary Value Analysis.
    """

    def test_not_due_before_next_due(self) -> None:
        """Nothing fires one tick early."""
        sched = UpdateCycleScheduler([UpdateCycle(1, 10.0, 10.0, (1,))])
        assert sched.due_cycles(9.99) == []

    def test_due_exactly_at_next_due(self) -> None:
        """A cycle fires when now == next_due."""
        sched = UpdateCycleScheduler([UpdateCycle(1, 10.0, 10.0, (1,))])
        assert [c.ident for c in sched.due_cycles(10.0)] == [1]

    def test_rescheduled_from_now(self) -> None:
        """next_due becomes now + interval, not old next_due + interval."""
        cycle = UpdateCycle(1, 10.0, 10.0, (1,))
        sched = UpdateCycleScheduler([cycle])

        sched.due_cycles(13.0)

        assert cycle.next_due == 23.0

    def test_fires_once_per_interval(self) -> None:
        """Ticking every 0.25 s for 30 s fires a 10 s cycle three times."""
        sched = UpdateCycleScheduler([UpdateCycle(1, 10.0, 10.0, (1,))])
        fired = 0
        for tick in range(1, 121):
            fired += len(sched.due_cycles(tick * 0.25))
        assert fired == 3

    def test_inert_cycle_never_due(self) -> None:
        """A cycle without channels is skipped."""
        sched = UpdateCycleScheduler([UpdateCycle(1, 1.0, 0.0)])
        assert sched.due_cycles(100.0) == []

    def test_independent_cycles(self) -> None:
        """Cycles keep their own schedules and configuration order."""
        sched = UpdateCycleScheduler(
            [
                UpdateCycle(2, 5.0, 5.0, (2,)),
                UpdateCycle(1, 10.0, 10.0, (1,)),
            ],
        )
        assert [c.ident for c in sched.due_cycles(5.0)] == [2]
        assert [c.ident for c in sched.due_cycles(10.0)] == [2, 1]
