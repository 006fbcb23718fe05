"""FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from minisplit_coordinator.config import SETTINGS, Settings
from minisplit_coordinator.core.coordinator import CoordinationEngine
from minisplit_coordinator.core.driver import CoordinatorDriver

# ---------------------------------------------------------------------------
# Settings dependency
# ---------------------------------------------------------------------------


def get_settings_dependency() -> Settings:
    return SETTINGS


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# ---------------------------------------------------------------------------
# Coordinator dependencies
# ---------------------------------------------------------------------------


def get_engine(request: Request) -> CoordinationEngine:
    """Return the engine built during application startup."""
    engine: CoordinationEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Coordinator is not initialized",
        )
    return engine


def get_driver(request: Request) -> CoordinatorDriver | None:
    return getattr(request.app.state, "driver", None)


EngineDep = Annotated[CoordinationEngine, Depends(get_engine)]
DriverDep = Annotated[CoordinatorDriver | None, Depends(get_driver)]


__all__ = [
    "DriverDep",
    "EngineDep",
    "SettingsDep",
    "get_driver",
    "get_engine",
    "get_settings_dependency",
]
