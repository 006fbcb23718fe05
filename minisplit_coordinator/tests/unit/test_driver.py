"""Tests for the periodic coordinator driver."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from minisplit_coordinator.core.coordinator import CoordinationEngine
from minisplit_coordinator.core.driver import AUTOSAVE_JOB_ID, CYCLE_JOB_ID, CoordinatorDriver

EngineFactory = Callable[..., CoordinationEngine]


@pytest.fixture
def engine(build_engine: EngineFactory, devices: Any) -> CoordinationEngine:
    devices.add_unit("unit-a")
    devices.add_unit("unit-b")
    return build_engine()


class TestCoordinatorDriver:
    def test_rejects_non_positive_interval(self, engine: CoordinationEngine) -> None:
        with pytest.raises(ValueError):
            CoordinatorDriver(engine, interval_minutes=0)

    async def test_start_runs_cycle_and_schedules_jobs(self, engine: CoordinationEngine) -> None:
        driver = CoordinatorDriver(engine, interval_minutes=2, autosave_minutes=5)
        result = await driver.start()
        try:
            assert result is not None and result.success
            assert driver.last_result is result
            assert driver.is_running is True
            assert engine.is_running is True
            assert driver.scheduler is not None
            job_ids = {job.id for job in driver.scheduler.get_jobs()}
            assert job_ids == {CYCLE_JOB_ID, AUTOSAVE_JOB_ID}
        finally:
            await driver.stop()
        assert driver.is_running is False
        assert engine.is_running is False

    async def test_start_twice_is_noop(self, engine: CoordinationEngine) -> None:
        driver = CoordinatorDriver(engine)
        await driver.start()
        try:
            with patch.object(engine, "run_coordination_cycle", new=AsyncMock()) as cycle:
                await driver.start()
            cycle.assert_not_awaited()
        finally:
            await driver.stop()

    async def test_stop_saves_state(self, engine: CoordinationEngine, data_dir: Path) -> None:
        driver = CoordinatorDriver(engine)
        await driver.start()
        await driver.stop()
        assert (data_dir / "coordinator-state.json").exists()
        assert (data_dir / "user-preferences.json").exists()

    async def test_stop_waits_for_in_flight_cycle(self, engine: CoordinationEngine) -> None:
        driver = CoordinatorDriver(engine)
        await engine.lock.acquire()
        stopping = asyncio.create_task(driver.stop())
        await asyncio.sleep(0.01)
        assert not stopping.done()
        engine.lock.release()
        await stopping
        assert engine.is_running is False

    async def test_run_once(self, engine: CoordinationEngine) -> None:
        driver = CoordinatorDriver(engine)
        result = await driver.run_once()
        assert driver.last_result is result

    async def test_cycle_job_never_raises(self, engine: CoordinationEngine) -> None:
        driver = CoordinatorDriver(engine)
        with patch.object(
            engine, "run_scheduled_cycle", new=AsyncMock(side_effect=RuntimeError("boom"))
        ):
            await driver._cycle_job()

    async def test_cycle_job_records_result_while_running(
        self, engine: CoordinationEngine
    ) -> None:
        driver = CoordinatorDriver(engine)
        engine.set_running(True)
        await driver._cycle_job()
        assert driver.last_result is not None and driver.last_result.success

    async def test_cycle_job_queued_behind_stop_is_skipped(
        self, engine: CoordinationEngine, devices: Any
    ) -> None:
        driver = CoordinatorDriver(engine)
        engine.set_running(True)
        await engine.lock.acquire()
        stopping = asyncio.create_task(driver.stop())
        await asyncio.sleep(0.01)
        queued = asyncio.create_task(driver._cycle_job())
        await asyncio.sleep(0.01)
        engine.lock.release()
        await asyncio.gather(stopping, queued)

        assert engine.is_running is False
        assert driver.last_result is None
        assert devices.calls == []

    async def test_autosave_job_writes_state(
        self, engine: CoordinationEngine, data_dir: Path
    ) -> None:
        driver = CoordinatorDriver(engine)
        await driver._autosave_job()
        assert (data_dir / "coordinator-state.json").exists()
