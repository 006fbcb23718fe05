"""System-level FastAPI routes."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter

from minisplit_coordinator import __version__
from minisplit_coordinator.api.dependencies import DriverDep, EngineDep, SettingsDep

router = APIRouter()


@router.get("/health", response_model=dict[str, object])
async def health_check(engine: EngineDep, driver: DriverDep) -> dict[str, object]:
    status = engine.get_coordinator_status()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "coordinator_running": driver.is_running if driver is not None else False,
        "device_authenticated": status.is_authenticated,
        "online_units": status.online_units,
        "total_units": status.total_units,
    }


@router.get("/version", response_model=dict[str, str])
async def get_version(settings: SettingsDep) -> dict[str, str]:
    return {"name": settings.app_name, "version": __version__}
