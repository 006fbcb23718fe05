"""Domain enums for the mini-split coordinator."""

from enum import StrEnum


class HVACMode(StrEnum):
    heat = "heat"
    cool = "cool"
    off = "off"


class ModeChangeReason(StrEnum):
    user_request = "user_request"
    weather_based = "weather_based"
    coordinator_logic = "coordinator_logic"
    schedule = "schedule"
    override = "override"


class ConflictKind(StrEnum):
    mode_mismatch = "mode_mismatch"
    temperature_spread = "temperature_spread"
    rapid_switching = "rapid_switching"


class WriteOrigin(StrEnum):
    """Who last changed a unit's target temperature."""

    coordinator = "coordinator"
    external = "external"


class ActionKind(StrEnum):
    set_mode = "set_mode"
    set_temperature = "set_temperature"


class TemperatureUnit(StrEnum):
    fahrenheit = "F"
    celsius = "C"


class ModePolicy(StrEnum):
    setpoint = "setpoint"
    hysteresis = "hysteresis"


__all__ = [
    "ActionKind",
    "ConflictKind",
    "HVACMode",
    "ModeChangeReason",
    "ModePolicy",
    "TemperatureUnit",
    "WriteOrigin",
]
