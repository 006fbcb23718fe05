"""Coordinator domain models."""

from .enums import (
    ActionKind,
    ConflictKind,
    HVACMode,
    ModeChangeReason,
    ModePolicy,
    TemperatureUnit,
    WriteOrigin,
)
from .schemas import (
    ABSOLUTE_MAX_TEMP_F,
    ABSOLUTE_MIN_TEMP_F,
    ConflictEvent,
    CoordinationAction,
    CoordinationResult,
    CoordinatorStatus,
    GlobalRange,
    ModeChangeEvent,
    Schedule,
    ScheduleCreate,
    ScheduleUpdate,
    SystemStateRecord,
    UnitState,
    UserPreferences,
)

__all__ = [
    "ABSOLUTE_MAX_TEMP_F",
    "ABSOLUTE_MIN_TEMP_F",
    "ActionKind",
    "ConflictEvent",
    "ConflictKind",
    "CoordinationAction",
    "CoordinationResult",
    "CoordinatorStatus",
    "GlobalRange",
    "HVACMode",
    "ModeChangeEvent",
    "ModeChangeReason",
    "ModePolicy",
    "Schedule",
    "ScheduleCreate",
    "ScheduleUpdate",
    "SystemStateRecord",
    "TemperatureUnit",
    "UnitState",
    "UserPreferences",
    "WriteOrigin",
]
