"""Pydantic schemas for coordinator records and API payloads."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import (
    ActionKind,
    ConflictKind,
    HVACMode,
    ModeChangeReason,
    ModePolicy,
    WriteOrigin,
)

ABSOLUTE_MIN_TEMP_F = 50
ABSOLUTE_MAX_TEMP_F = 90
DEFAULT_UNIT_TEMP_F = 70
DEFAULT_PRIORITY = 5

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _utc_now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class UnitState(BaseModel):
    """Last-known state of one coordinated mini-split."""

    id: str
    name: str
    room: str = "Unknown"
    current_temperature: int = DEFAULT_UNIT_TEMP_F
    target_temperature: int = DEFAULT_UNIT_TEMP_F
    mode: HVACMode = HVACMode.off
    is_online: bool = False
    last_updated: datetime = Field(default_factory=_utc_now)
    priority: int = Field(default=DEFAULT_PRIORITY, ge=1, le=10)
    manual_override_active: bool = False
    last_manual_temperature_change_at: datetime | None = None
    last_write_origin: WriteOrigin = WriteOrigin.coordinator
    last_synced_at: datetime | None = None


class ModeChangeEvent(BaseModel):
    timestamp: datetime = Field(default_factory=_utc_now)
    unit_id: str | None = None
    previous_mode: HVACMode
    new_mode: HVACMode
    reason: ModeChangeReason
    outside_temp_at_change: float | None = None


class ConflictEvent(BaseModel):
    timestamp: datetime = Field(default_factory=_utc_now)
    kind: ConflictKind
    description: str
    affected_unit_ids: list[str] = Field(default_factory=list)
    resolved: bool = False
    resolution: str | None = None


class ScheduleBase(BaseModel):
    name: str
    enabled: bool = True
    time_start: str = Field(description="Local start time, HH:MM")
    time_end: str = Field(description="Local end time, HH:MM")
    days_of_week: list[int] = Field(
        default_factory=lambda: list(range(7)),
        description="Weekdays the schedule applies to (0 = Sunday)",
    )
    target_min_temp: int
    target_max_temp: int
    mode: HVACMode | None = None
    applicable_rooms: list[str] | None = None

    @field_validator("time_start", "time_end")
    @classmethod
    def _check_time(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError("time must be formatted as HH:MM (24h)")
        return v

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, v: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @model_validator(mode="after")
    def _check_range(self) -> ScheduleBase:
        if self.target_min_temp >= self.target_max_temp:
            raise ValueError("target_min_temp must be less than target_max_temp")
        if (
            self.target_min_temp < ABSOLUTE_MIN_TEMP_F
            or self.target_max_temp > ABSOLUTE_MAX_TEMP_F
        ):
            raise ValueError(
                f"Schedule range must be between {ABSOLUTE_MIN_TEMP_F}°F and {ABSOLUTE_MAX_TEMP_F}°F"
            )
        return self


class ScheduleCreate(ScheduleBase):
    model_config = ConfigDict(extra="forbid")


class Schedule(ScheduleBase):
    id: str


class ScheduleUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    enabled: bool | None = None
    time_start: str | None = None
    time_end: str | None = None
    days_of_week: list[int] | None = None
    target_min_temp: int | None = None
    target_max_temp: int | None = None
    mode: HVACMode | None = None
    applicable_rooms: list[str] | None = None


class UserPreferences(BaseModel):
    default_min_temp: int = 68
    default_max_temp: int = 72
    schedules: list[Schedule] = Field(default_factory=list)
    room_priorities: dict[str, int] = Field(default_factory=dict)
    weather_based_mode_enabled: bool = True
    mode_hysteresis: float = Field(default=2.0, ge=0.0)
    mode_policy: ModePolicy = ModePolicy.setpoint


class SystemStateRecord(BaseModel):
    """On-disk layout of the coordination state file."""

    global_mode: HVACMode = HVACMode.off
    global_min_temp: int = 68
    global_max_temp: int = 72
    outside_temperature: float = 70.0
    last_outside_weather_update_at: datetime | None = None
    units: dict[str, UnitState] = Field(default_factory=dict)
    mode_change_history: list[ModeChangeEvent] = Field(default_factory=list)
    conflicts: list[ConflictEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Coordination results / published state
# ---------------------------------------------------------------------------


class CoordinationAction(BaseModel):
    unit_id: str
    kind: ActionKind
    value: HVACMode | int
    reason: str
    succeeded: bool | None = None
    error: str | None = None


class CoordinationResult(BaseModel):
    success: bool
    actions: list[CoordinationAction] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    system_mode: HVACMode
    reasoning: str


class GlobalRange(BaseModel):
    min: int
    max: int


class CoordinatorStatus(BaseModel):
    is_running: bool
    is_authenticated: bool
    global_mode: HVACMode
    global_range: GlobalRange
    outside_temperature: float
    last_weather_update: datetime | None
    online_units: int
    total_units: int
    unresolved_conflicts: int
    weather_cache_valid: bool


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class ModeRequest(BaseModel):
    mode: str
    reason: ModeChangeReason = ModeChangeReason.user_request


class TemperatureRangeRequest(BaseModel):
    min_temp: int
    max_temp: int
    immediate: bool = True


class EmergencyOffRequest(BaseModel):
    reason: str = "api_emergency_stop"


class ResolveConflictRequest(BaseModel):
    resolution: str


class OperationResponse(BaseModel):
    success: bool
    detail: dict[str, Any] | None = None


class IndexedConflict(ConflictEvent):
    """Conflict log entry with its position, used to resolve it."""

    index: int


class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_min_temp: int | None = None
    default_max_temp: int | None = None
    room_priorities: dict[str, int] | None = None
    weather_based_mode_enabled: bool | None = None
    mode_hysteresis: float | None = Field(default=None, ge=0.0)
    mode_policy: ModePolicy | None = None


__all__ = [
    "ABSOLUTE_MAX_TEMP_F",
    "ABSOLUTE_MIN_TEMP_F",
    "DEFAULT_PRIORITY",
    "DEFAULT_UNIT_TEMP_F",
    "ConflictEvent",
    "CoordinationAction",
    "CoordinationResult",
    "CoordinatorStatus",
    "EmergencyOffRequest",
    "GlobalRange",
    "IndexedConflict",
    "ModeChangeEvent",
    "ModeRequest",
    "OperationResponse",
    "PreferencesUpdate",
    "ResolveConflictRequest",
    "Schedule",
    "ScheduleBase",
    "ScheduleCreate",
    "ScheduleUpdate",
    "SystemStateRecord",
    "TemperatureRangeRequest",
    "UnitState",
    "UserPreferences",
]
