from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from minisplit_coordinator.api.dependencies import get_driver, get_engine
from minisplit_coordinator.api.main import app
from minisplit_coordinator.core.coordinator import CoordinationEngine
from minisplit_coordinator.core.state_store import StateStore
from minisplit_coordinator.integrations.device_client import (
    DeviceCommandError,
    DeviceConnectionError,
    TemperatureValue,
    UnitReading,
)
from minisplit_coordinator.integrations.weather_service import (
    OutdoorTemperatureSource,
    WeatherReading,
)
from minisplit_coordinator.models.enums import HVACMode, TemperatureUnit

# ===================================================================
# Fake device cloud
# ===================================================================


@dataclass
class FakeUnit:
    current: float = 70
    target: float = 70
    mode: HVACMode = HVACMode.off
    unit: TemperatureUnit = TemperatureUnit.fahrenheit


@dataclass
class FakeDeviceClient:
    """In-memory device cloud that applies commands to its own unit table."""

    authenticated: bool = True
    units: dict[str, FakeUnit] = field(default_factory=dict)
    offline: set[str] = field(default_factory=set)
    calls: list[tuple[str, str, object]] = field(default_factory=list)

    def add_unit(self, unit_id: str, **kwargs: object) -> FakeUnit:
        unit = FakeUnit(**kwargs)  # type: ignore[arg-type]
        self.units[unit_id] = unit
        return unit

    def is_authenticated(self) -> bool:
        return self.authenticated

    async def get_status(self, unit_id: str) -> UnitReading:
        if unit_id in self.offline or unit_id not in self.units:
            raise DeviceConnectionError(f"{unit_id} unreachable")
        unit = self.units[unit_id]
        return UnitReading(
            current_temperature=TemperatureValue(unit.current, unit.unit),
            target_temperature=TemperatureValue(unit.target, unit.unit),
            mode=unit.mode,
        )

    async def set_mode(self, unit_id: str, mode: HVACMode) -> None:
        self.calls.append(("set_mode", unit_id, mode))
        if unit_id in self.offline or unit_id not in self.units:
            raise DeviceCommandError(f"{unit_id} did not accept setThermostatMode")
        self.units[unit_id].mode = mode

    async def set_temperature(self, unit_id: str, temp_f: int) -> None:
        self.calls.append(("set_temperature", unit_id, temp_f))
        if unit_id in self.offline or unit_id not in self.units:
            raise DeviceCommandError(f"{unit_id} did not accept setHeatingSetpoint")
        unit = self.units[unit_id]
        unit.target = temp_f
        unit.unit = TemperatureUnit.fahrenheit


# ===================================================================
# Fixtures
# ===================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def store(data_dir: Path) -> StateStore:
    return StateStore(data_dir)


@pytest.fixture
def devices() -> FakeDeviceClient:
    return FakeDeviceClient()


@pytest.fixture
def weather_client() -> AsyncMock:
    client = AsyncMock()
    client.fetch_current = AsyncMock(return_value=WeatherReading(temperature=70.0))
    return client


@pytest.fixture
def weather(weather_client: AsyncMock) -> OutdoorTemperatureSource:
    # ttl 0 so each cycle sees the temperature the test configured
    return OutdoorTemperatureSource(weather_client, cache_ttl=0)


@pytest.fixture
def set_outside(weather_client: AsyncMock) -> Callable[[float], None]:
    def _set(temperature: float) -> None:
        weather_client.fetch_current.return_value = WeatherReading(temperature=temperature)

    return _set


@pytest.fixture
def build_engine(
    store: StateStore,
    devices: FakeDeviceClient,
    weather: OutdoorTemperatureSource,
) -> Callable[..., CoordinationEngine]:
    def _build(
        unit_ids: Sequence[str] = ("unit-a", "unit-b"),
        rooms: dict[str, str] | None = None,
    ) -> CoordinationEngine:
        return CoordinationEngine(
            store,
            devices,
            weather,
            unit_ids=unit_ids,
            rooms=rooms,
            action_delay=0,
        )

    return _build


@pytest.fixture
async def client(
    build_engine: Callable[..., CoordinationEngine],
    devices: FakeDeviceClient,
) -> AsyncGenerator[AsyncClient]:
    devices.add_unit("unit-a")
    devices.add_unit("unit-b")
    engine = build_engine()
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_driver] = lambda: None
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
