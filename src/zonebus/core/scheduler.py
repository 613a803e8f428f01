"""Periodic ticking of publishers and subscribers.

Each entity gets an initial delay of ``index * startup_delay`` so that
entities do not all hit shared downstream resources at once, then ticks
with a fixed delay of its configured frequency between runs.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from zonebus.config.config import DISABLED_FREQUENCY, FALLBACK_FREQUENCY
from zonebus.schemas.types import StopToken
from zonebus.utils.telemetry import get_logger


class Schedulable(Protocol):
    entity_id: str

    async def run_once(self) -> None:
        ...


@dataclass(frozen=True)
class ScheduleEntry:
    """When and how often one entity ticks."""

    entity_id: str
    initial_delay: float
    interval: float
    enabled: bool


def plan_schedule(
    entity_ids: Sequence[str],
    frequency_for: Callable[[str], float],
    startup_delay: float,
) -> list[ScheduleEntry]:
    """Compute the schedule of each entity, in the given order.

    A disabled entity is still scheduled, at the fallback interval; its
    ticks do no work.
    """
    entries = []
    for index, entity_id in enumerate(entity_ids):
        frequency = frequency_for(entity_id)
        enabled = frequency != DISABLED_FREQUENCY
        entries.append(
            ScheduleEntry(
                entity_id=entity_id,
                initial_delay=index * startup_delay,
                interval=frequency if enabled else FALLBACK_FREQUENCY,
                enabled=enabled,
            )
        )
    return entries


class TaskScheduler:
    """Runs ``run_once`` of each scheduled entity on its own asyncio task.

    In isolated mode entities tick independently. In shared mode all ticks
    go through one lock, so at most one entity of this scheduler runs at a
    time, like a single timer thread per entity kind.
    """

    def __init__(self, name: str, isolated: bool = True):
        self.name = name
        self.isolated = isolated
        self.entries: list[ScheduleEntry] = []

        self._lock: asyncio.Lock | None = None if isolated else asyncio.Lock()
        self._stop = StopToken(name)
        self._tasks: list[asyncio.Task[None]] = []
        self._logger = get_logger("zonebus.scheduler", scheduler=name)

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stop.stopped

    def schedule(
        self,
        entities: Sequence[Schedulable],
        frequency_for: Callable[[str], float],
        startup_delay: float,
    ) -> list[ScheduleEntry]:
        """Start ticking entities. Must be called on the running event loop."""
        if self._stop.stopped:
            raise RuntimeError(f"Scheduler {self.name} has been shut down")

        entries = plan_schedule(
            [entity.entity_id for entity in entities], frequency_for, startup_delay
        )
        for entity, entry in zip(entities, entries):
            self._logger.info(
                "Scheduling entity",
                entity_id=entry.entity_id,
                initial_delay=entry.initial_delay,
                interval=entry.interval,
                enabled=entry.enabled,
                isolated=self.isolated,
            )
            self._tasks.append(
                asyncio.create_task(
                    self._run(entity, entry), name=f"{self.name}:{entry.entity_id}"
                )
            )

        self.entries.extend(entries)
        return entries

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns False if the scheduler stopped."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def _run(self, entity: Schedulable, entry: ScheduleEntry) -> None:
        if not await self._sleep(entry.initial_delay):
            return

        while not self._stop.stopped:
            await self._tick(entity)
            if not await self._sleep(entry.interval):
                return

    async def _tick(self, entity: Schedulable) -> None:
        try:
            if self._lock is not None:
                async with self._lock:
                    await entity.run_once()
            else:
                await entity.run_once()
        except Exception as e:
            self._logger.error(
                "Scheduled run failed",
                entity_id=entity.entity_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop scheduling. Running ticks get ``timeout`` seconds to finish."""
        self._stop.stop("scheduler shutdown")
        if not self._tasks:
            return

        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            self._logger.warning("Cancelling unfinished scheduled runs", pending=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self._tasks = []
        self._logger.info("Scheduler stopped")
