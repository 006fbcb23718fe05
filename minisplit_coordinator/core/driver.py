"""Periodic driver for the coordination engine."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from minisplit_coordinator.core.coordinator import CoordinationEngine
from minisplit_coordinator.models.schemas import CoordinationResult

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "coordination_cycle"
AUTOSAVE_JOB_ID = "state_autosave"


class CoordinatorDriver:
    """Run coordination cycles and state autosave on fixed intervals.

    Usage::

        driver = CoordinatorDriver(engine, interval_minutes=2)
        await driver.start()
        ...
        await driver.stop()
    """

    def __init__(
        self,
        engine: CoordinationEngine,
        *,
        interval_minutes: float = 2,
        autosave_minutes: float = 5,
    ) -> None:
        if interval_minutes <= 0 or autosave_minutes <= 0:
            raise ValueError("Intervals must be positive")
        self._engine = engine
        self._interval_minutes = interval_minutes
        self._autosave_minutes = autosave_minutes
        self._scheduler: AsyncIOScheduler | None = None
        self._last_result: CoordinationResult | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def last_result(self) -> CoordinationResult | None:
        return self._last_result

    @property
    def scheduler(self) -> AsyncIOScheduler | None:
        return self._scheduler

    async def start(self) -> CoordinationResult | None:
        """Run one cycle immediately, then schedule the periodic jobs."""
        if self.is_running:
            logger.debug("Coordinator driver already running")
            return self._last_result

        logger.info(
            "Starting coordinator (cycle every %s min, autosave every %s min)",
            self._interval_minutes,
            self._autosave_minutes,
        )
        self._engine.set_running(True)
        result = await self.run_once()

        scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )
        scheduler.add_job(
            self._cycle_job,
            IntervalTrigger(minutes=self._interval_minutes),
            id=CYCLE_JOB_ID,
            name="Coordination Cycle",
            replace_existing=True,
        )
        scheduler.add_job(
            self._autosave_job,
            IntervalTrigger(minutes=self._autosave_minutes),
            id=AUTOSAVE_JOB_ID,
            name="State Autosave",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        return result

    async def stop(self) -> None:
        """Cancel the timers, let an in-flight cycle finish, then save."""
        if self._scheduler is not None:
            logger.info("Stopping coordinator scheduler...")
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        # Acquiring the lock waits out any cycle or manual call in progress.
        async with self._engine.lock:
            self._engine.set_running(False)
            self._engine.store.save_all()
        logger.info("Coordinator stopped")

    async def run_once(self) -> CoordinationResult:
        result = await self._engine.run_coordination_cycle()
        self._record(result)
        return result

    async def _cycle_job(self) -> None:
        try:
            result = await self._engine.run_scheduled_cycle()
        except Exception:
            logger.exception("Scheduled coordination cycle failed")
            return
        if result is not None:
            self._record(result)

    def _record(self, result: CoordinationResult) -> None:
        self._last_result = result
        if not result.success:
            logger.warning("Coordination cycle reported failure: %s", result.reasoning)

    async def _autosave_job(self) -> None:
        try:
            self._engine.store.save_state()
        except Exception:
            logger.exception("Autosave failed")


__all__ = ["AUTOSAVE_JOB_ID", "CYCLE_JOB_ID", "CoordinatorDriver"]
