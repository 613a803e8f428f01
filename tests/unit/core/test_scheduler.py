"""Unit tests for periodic entity scheduling."""

import asyncio

import pytest

from zonebus.config import FALLBACK_FREQUENCY
from zonebus.core.scheduler import ScheduleEntry, TaskScheduler, plan_schedule


class TickCounter:
    def __init__(self, entity_id: str, duration: float = 0.0, fail: bool = False):
        self.entity_id = entity_id
        self.duration = duration
        self.fail = fail
        self.ticks = 0
        self.active = 0
        self.max_active = 0

    async def run_once(self) -> None:
        self.ticks += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.duration:
                await asyncio.sleep(self.duration)
            if self.fail:
                raise RuntimeError("tick failed")
        finally:
            self.active -= 1


class SharedCounter:
    """Tracks overlap across several entities."""

    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0


class OverlapProbe:
    def __init__(self, entity_id: str, shared: SharedCounter):
        self.entity_id = entity_id
        self.shared = shared
        self.ticks = 0

    async def run_once(self) -> None:
        self.ticks += 1
        self.shared.active += 1
        self.shared.max_active = max(self.shared.max_active, self.shared.active)
        await asyncio.sleep(0.02)
        self.shared.active -= 1


class TestPlanSchedule:
    def test_staggered_initial_delays(self) -> None:
        entries = plan_schedule(["a", "b", "c"], lambda _: 60, startup_delay=10)

        assert [e.initial_delay for e in entries] == [0, 10, 20]
        assert all(e.interval == 60 for e in entries)

    def test_disabled_entity_uses_fallback_interval(self) -> None:
        frequencies = {"a": 0, "b": 15}
        entries = plan_schedule(["a", "b"], frequencies.__getitem__, startup_delay=0)

        assert entries[0] == ScheduleEntry("a", 0, FALLBACK_FREQUENCY, False)
        assert entries[1] == ScheduleEntry("b", 0, 15, True)

    def test_empty(self) -> None:
        assert plan_schedule([], lambda _: 1, 10) == []


class TestTaskScheduler:
    @pytest.mark.asyncio
    async def test_entities_tick_repeatedly(self) -> None:
        scheduler = TaskScheduler("publishers")
        entity = TickCounter("StudentPublisher")

        scheduler.schedule([entity], lambda _: 0.01, startup_delay=0)
        await asyncio.sleep(0.1)
        await scheduler.shutdown()

        assert entity.ticks >= 3
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_initial_delay_is_respected(self) -> None:
        scheduler = TaskScheduler("publishers")
        first = TickCounter("first")
        second = TickCounter("second")

        scheduler.schedule([first, second], lambda _: 10, startup_delay=5)
        await asyncio.sleep(0.05)
        await scheduler.shutdown()

        assert first.ticks == 1
        assert second.ticks == 0

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_schedule(self) -> None:
        scheduler = TaskScheduler("subscribers")
        entity = TickCounter("StudentSubscriber", fail=True)

        scheduler.schedule([entity], lambda _: 0.01, startup_delay=0)
        await asyncio.sleep(0.1)
        await scheduler.shutdown()

        assert entity.ticks >= 2

    @pytest.mark.asyncio
    async def test_ticks_do_not_overlap_per_entity(self) -> None:
        scheduler = TaskScheduler("publishers")
        entity = TickCounter("slow", duration=0.03)

        scheduler.schedule([entity], lambda _: 0.001, startup_delay=0)
        await asyncio.sleep(0.15)
        await scheduler.shutdown()

        assert entity.max_active == 1

    @pytest.mark.asyncio
    async def test_shared_mode_serializes_entities(self) -> None:
        shared = SharedCounter()
        entities = [OverlapProbe(f"p{i}", shared) for i in range(3)]
        scheduler = TaskScheduler("publishers", isolated=False)

        scheduler.schedule(entities, lambda _: 0.01, startup_delay=0)
        await asyncio.sleep(0.15)
        await scheduler.shutdown()

        assert shared.max_active == 1
        assert all(e.ticks >= 1 for e in entities)

    @pytest.mark.asyncio
    async def test_isolated_mode_runs_entities_concurrently(self) -> None:
        shared = SharedCounter()
        entities = [OverlapProbe(f"p{i}", shared) for i in range(3)]
        scheduler = TaskScheduler("publishers")

        scheduler.schedule(entities, lambda _: 1, startup_delay=0)
        await asyncio.sleep(0.01)
        await scheduler.shutdown()

        assert shared.max_active == 3

    @pytest.mark.asyncio
    async def test_shutdown_interrupts_long_intervals(self) -> None:
        scheduler = TaskScheduler("subscribers")
        entity = TickCounter("StudentSubscriber")
        scheduler.schedule([entity], lambda _: FALLBACK_FREQUENCY, startup_delay=0)
        await asyncio.sleep(0.01)

        await asyncio.wait_for(scheduler.shutdown(), timeout=1.0)

        assert entity.ticks == 1

    @pytest.mark.asyncio
    async def test_schedule_after_shutdown(self) -> None:
        scheduler = TaskScheduler("publishers")
        await scheduler.shutdown()

        with pytest.raises(RuntimeError):
            scheduler.schedule([TickCounter("late")], lambda _: 1, startup_delay=0)
