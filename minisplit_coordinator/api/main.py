"""
Mini-Split Coordinator API - Main Entry Point

FastAPI application that owns the coordinator lifecycle: the state store,
device and weather clients, coordination engine and periodic driver are
built once at startup and torn down on shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from minisplit_coordinator import __version__
from minisplit_coordinator.api.routes import api_router
from minisplit_coordinator.config import Settings, get_settings
from minisplit_coordinator.core.coordinator import CoordinationEngine
from minisplit_coordinator.core.driver import CoordinatorDriver
from minisplit_coordinator.core.state_store import CoordinatorValidationError, StateStore
from minisplit_coordinator.integrations.device_client import SmartThingsClient
from minisplit_coordinator.integrations.weather_service import (
    OpenWeatherClient,
    OutdoorTemperatureSource,
)


def log_level_for(settings: Settings) -> int:
    """Map the configured level name to a logging level; ``debug`` wins."""
    if settings.debug:
        return logging.DEBUG
    level = logging.getLevelName(settings.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


# Configure logging
settings_instance = get_settings()
logging.basicConfig(
    level=log_level_for(settings_instance),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# ============================================================================
# Component wiring
# ============================================================================


@dataclass(slots=True)
class Components:
    store: StateStore
    devices: SmartThingsClient
    weather: OutdoorTemperatureSource
    engine: CoordinationEngine
    driver: CoordinatorDriver


def build_components(settings: Settings) -> Components:
    """Construct the coordinator object graph from settings."""
    override_age = (
        timedelta(minutes=settings.manual_override_max_age_minutes)
        if settings.manual_override_max_age_minutes
        else None
    )
    store = StateStore(
        settings.data_dir,
        default_min_temp=settings.default_min_temp,
        default_max_temp=settings.default_max_temp,
        default_mode_hysteresis=settings.mode_hysteresis,
        manual_override_max_age=override_age,
    )

    devices = SmartThingsClient(
        settings.smartthings_token,
        base_url=str(settings.smartthings_api_url),
        timeout=settings.device_timeout,
    )
    if not devices.is_authenticated():
        logger.warning("No SmartThings token configured; running on cached state only")

    weather_client = None
    if settings.weather_configured:
        weather_client = OpenWeatherClient(
            settings.openweather_api_key,
            lat=settings.location_lat,
            lon=settings.location_lon,
            zip_code=settings.location_zip,
            country=settings.location_country,
            base_url=str(settings.openweather_api_url),
            timeout=settings.weather_timeout,
        )
    else:
        logger.warning(
            "OpenWeatherMap not configured; using fallback outdoor temperature %.1f°F",
            settings.weather_fallback_temp_f,
        )
    weather = OutdoorTemperatureSource(
        weather_client,
        cache_ttl=settings.weather_cache_minutes * 60,
        fallback_temperature=settings.weather_fallback_temp_f,
    )

    unit_ids = settings.unit_id_list
    rooms = settings.room_name_list
    engine = CoordinationEngine(
        store,
        devices,
        weather,
        unit_ids=unit_ids,
        rooms={unit_id: rooms[i] for i, unit_id in enumerate(unit_ids) if i < len(rooms)},
        action_delay=settings.action_delay_seconds,
    )
    driver = CoordinatorDriver(
        engine,
        interval_minutes=settings.coordination_interval_minutes,
        autosave_minutes=settings.autosave_interval_minutes,
    )
    return Components(store, devices, weather, engine, driver)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager for startup and shutdown.
    """
    logger.info("Starting %s...", settings_instance.app_name)

    try:
        components = build_components(settings_instance)
        app.state.engine = components.engine
        app.state.driver = components.driver
        if not settings_instance.unit_id_list:
            logger.warning("No unit ids configured; set MINISPLIT_UNIT_IDS")
        if settings_instance.coordinator_enabled:
            await components.driver.start()
        else:
            logger.info("Coordinator disabled; manual API only")
    except Exception as e:
        logger.error("Startup failed: %s", e)
        raise

    yield

    logger.info("Shutting down %s...", settings_instance.app_name)
    await components.driver.stop()
    await components.devices.close()
    logger.info("Shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

settings = settings_instance

app = FastAPI(
    title="Mini-Split Coordinator API",
    description="Coordinates multiple mini-split units as a single HVAC system.",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

app.include_router(api_router)


# ============================================================================
# Exception Handlers
# ============================================================================


@app.exception_handler(CoordinatorValidationError)
async def coordinator_validation_handler(
    request: Request, exc: CoordinatorValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.message, "field": exc.field},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(str(error.get("msg", "")) for error in errors) or "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": message, "errors": jsonable_errors(errors)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": 500,
                "message": "An internal error occurred" if not settings.debug else str(exc),
            },
        },
    )


def jsonable_errors(errors: object) -> list[dict[str, object]]:
    """Strip non-serialisable context from pydantic error dicts."""
    if not isinstance(errors, (list, tuple)):
        return []
    cleaned: list[dict[str, object]] = []
    for error in errors:
        if isinstance(error, dict):
            cleaned.append(
                {
                    "loc": list(error.get("loc", ())),
                    "msg": str(error.get("msg", "")),
                    "type": str(error.get("type", "")),
                }
            )
    return cleaned


# ============================================================================
# CLI Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "minisplit_coordinator.api.main:app",
        host=settings.host,
        port=settings.port,
        loop="asyncio",
        reload=settings.debug,
        log_level="debug" if settings.debug else settings.log_level,
        access_log=True,
    )
