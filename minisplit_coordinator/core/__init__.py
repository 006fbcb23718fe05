"""Core coordination logic."""

from __future__ import annotations

from .coordinator import CoordinationEngine, ModeDecision
from .driver import CoordinatorDriver
from .state_store import (
    CoordinatorValidationError,
    InvalidModeError,
    StateStore,
    SystemState,
    TemperatureRangeError,
)

__all__ = [
    "CoordinationEngine",
    "CoordinatorDriver",
    "CoordinatorValidationError",
    "InvalidModeError",
    "ModeDecision",
    "StateStore",
    "SystemState",
    "TemperatureRangeError",
]
