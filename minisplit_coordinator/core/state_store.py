"""Durable coordination state and user preferences.

The store owns the single ``SystemState`` and ``UserPreferences`` instances
for a coordinator.  All mutation goes through its methods so that mode
history, conflict logs and manual-override bookkeeping stay consistent.
State is persisted as two JSON files in the configured data directory.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from statistics import fmean
from typing import Any

from pydantic import ValidationError

from minisplit_coordinator.core.schedule import select_active_schedule
from minisplit_coordinator.models.enums import (
    ConflictKind,
    HVACMode,
    ModeChangeReason,
    WriteOrigin,
)
from minisplit_coordinator.models.schemas import (
    ABSOLUTE_MAX_TEMP_F,
    ABSOLUTE_MIN_TEMP_F,
    DEFAULT_PRIORITY,
    ConflictEvent,
    ModeChangeEvent,
    Schedule,
    ScheduleCreate,
    ScheduleUpdate,
    SystemStateRecord,
    UnitState,
    UserPreferences,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
CONFLICT_LIMIT = 100
STATE_FILENAME = "coordinator-state.json"
PREFERENCES_FILENAME = "user-preferences.json"

_UNIT_FIELDS = frozenset(UnitState.model_fields) - {"id"}


def _utc_now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CoordinatorValidationError(ValueError):
    """A manual request violated a coordinator invariant."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class TemperatureRangeError(CoordinatorValidationError):
    """Rejected global or schedule temperature range."""


class InvalidModeError(CoordinatorValidationError):
    """Rejected HVAC mode argument."""


def parse_mode(value: str | HVACMode) -> HVACMode:
    try:
        return HVACMode(value)
    except ValueError as exc:
        raise InvalidModeError(
            "Invalid mode. Must be heat, cool, or off", field="mode"
        ) from exc


def validate_temperature_range(min_temp: float, max_temp: float) -> None:
    if min_temp >= max_temp:
        raise TemperatureRangeError(
            "Minimum temperature must be less than maximum temperature", field="min_temp"
        )
    if min_temp < ABSOLUTE_MIN_TEMP_F or max_temp > ABSOLUTE_MAX_TEMP_F:
        raise TemperatureRangeError(
            f"Temperature range must be between {ABSOLUTE_MIN_TEMP_F}°F and {ABSOLUTE_MAX_TEMP_F}°F",
            field="max_temp" if max_temp > ABSOLUTE_MAX_TEMP_F else "min_temp",
        )


# ---------------------------------------------------------------------------
# In-memory state
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SystemState:
    """Live coordination state; bounded logs are fixed-capacity deques."""

    global_mode: HVACMode = HVACMode.off
    global_min_temp: int = 68
    global_max_temp: int = 72
    outside_temperature: float = 70.0
    last_outside_weather_update_at: datetime | None = None
    units: dict[str, UnitState] = field(default_factory=dict)
    mode_change_history: deque[ModeChangeEvent] = field(
        default_factory=lambda: deque(maxlen=HISTORY_LIMIT)
    )
    conflicts: deque[ConflictEvent] = field(default_factory=lambda: deque(maxlen=CONFLICT_LIMIT))

    @classmethod
    def from_record(cls, record: SystemStateRecord) -> SystemState:
        return cls(
            global_mode=record.global_mode,
            global_min_temp=record.global_min_temp,
            global_max_temp=record.global_max_temp,
            outside_temperature=record.outside_temperature,
            last_outside_weather_update_at=record.last_outside_weather_update_at,
            units=dict(record.units),
            mode_change_history=deque(record.mode_change_history, maxlen=HISTORY_LIMIT),
            conflicts=deque(record.conflicts, maxlen=CONFLICT_LIMIT),
        )

    def to_record(self) -> SystemStateRecord:
        return SystemStateRecord(
            global_mode=self.global_mode,
            global_min_temp=self.global_min_temp,
            global_max_temp=self.global_max_temp,
            outside_temperature=self.outside_temperature,
            last_outside_weather_update_at=self.last_outside_weather_update_at,
            units=dict(self.units),
            mode_change_history=list(self.mode_change_history),
            conflicts=list(self.conflicts),
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StateStore:
    """Load, mutate and persist coordinator state.

    Usage::

        store = StateStore("./data")
        store.update_global_temperature_range(68, 72)
        store.update_unit_state("unit-1", is_online=True, current_temperature=66)
        store.save_state()
    """

    def __init__(
        self,
        data_dir: str | Path,
        *,
        default_min_temp: int = 68,
        default_max_temp: int = 72,
        default_mode_hysteresis: float = 2.0,
        manual_override_max_age: timedelta | None = timedelta(minutes=240),
        autoload: bool = True,
    ) -> None:
        validate_temperature_range(default_min_temp, default_max_temp)
        self._data_dir = Path(data_dir)
        self._state_path = self._data_dir / STATE_FILENAME
        self._preferences_path = self._data_dir / PREFERENCES_FILENAME
        self._default_min_temp = default_min_temp
        self._default_max_temp = default_max_temp
        self._default_mode_hysteresis = default_mode_hysteresis
        self._override_max_age = manual_override_max_age
        self._state = self._default_state()
        self._preferences = self._default_preferences()
        if autoload:
            self.load()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SystemState:
        return self._state

    @property
    def preferences(self) -> UserPreferences:
        return self._preferences

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        self._state = self._load_state()
        self._preferences = self._load_preferences()

    def save_state(self) -> bool:
        """Write coordination state; failures are logged and retried later."""
        payload = self._state.to_record().model_dump_json(indent=2)
        return self._write_json(self._state_path, payload)

    def save_preferences(self) -> bool:
        payload = self._preferences.model_dump_json(indent=2)
        saved = self._write_json(self._preferences_path, payload)
        if saved:
            logger.info("User preferences saved")
        return saved

    def save_all(self) -> bool:
        state_ok = self.save_state()
        prefs_ok = self.save_preferences()
        return state_ok and prefs_ok

    def _load_state(self) -> SystemState:
        if not self._state_path.exists():
            logger.info("No coordinator state at %s; starting from defaults", self._state_path)
            return self._default_state()
        try:
            raw = self._state_path.read_text(encoding="utf-8")
            record = SystemStateRecord.model_validate_json(raw)
        except (OSError, ValidationError, ValueError):
            logger.warning(
                "Coordinator state file %s is unreadable or corrupt; previous state is lost "
                "and defaults are used",
                self._state_path,
                exc_info=True,
            )
            self._quarantine(self._state_path)
            return self._default_state()

        state = SystemState.from_record(record)
        try:
            validate_temperature_range(state.global_min_temp, state.global_max_temp)
        except TemperatureRangeError as exc:
            logger.warning(
                "Persisted range %s-%s rejected (%s); using %s-%s",
                state.global_min_temp,
                state.global_max_temp,
                exc.message,
                self._default_min_temp,
                self._default_max_temp,
            )
            state.global_min_temp = self._default_min_temp
            state.global_max_temp = self._default_max_temp
        logger.info(
            "Coordinator state loaded (%d units, %d history entries, %d conflicts)",
            len(state.units),
            len(state.mode_change_history),
            len(state.conflicts),
        )
        return state

    def _load_preferences(self) -> UserPreferences:
        if not self._preferences_path.exists():
            logger.info("No user preferences at %s; using defaults", self._preferences_path)
            return self._default_preferences()
        try:
            raw = self._preferences_path.read_text(encoding="utf-8")
            preferences = UserPreferences.model_validate_json(raw)
        except (OSError, ValidationError, ValueError):
            logger.warning(
                "User preferences file %s is unreadable or corrupt; previous preferences "
                "are lost and defaults are used",
                self._preferences_path,
                exc_info=True,
            )
            self._quarantine(self._preferences_path)
            return self._default_preferences()
        logger.info("User preferences loaded (%d schedules)", len(preferences.schedules))
        return preferences

    def _default_state(self) -> SystemState:
        return SystemState(
            global_min_temp=self._default_min_temp,
            global_max_temp=self._default_max_temp,
        )

    def _default_preferences(self) -> UserPreferences:
        return UserPreferences(
            default_min_temp=self._default_min_temp,
            default_max_temp=self._default_max_temp,
            mode_hysteresis=self._default_mode_hysteresis,
        )

    def _write_json(self, path: Path, payload: str) -> bool:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError:
            logger.exception("Failed to write %s; will retry on next save", path)
            return False
        logger.debug("Wrote %s (%d bytes)", path, len(payload))
        return True

    @staticmethod
    def _quarantine(path: Path) -> None:
        """Move a corrupt file aside so the next save does not destroy it."""
        target = path.with_name(path.name + ".corrupt")
        try:
            os.replace(path, target)
        except OSError:
            logger.debug("Could not move %s aside", path)
        else:
            logger.warning("Corrupt file preserved as %s", target)

    # ------------------------------------------------------------------
    # Global setpoints / mode
    # ------------------------------------------------------------------

    def update_global_temperature_range(self, min_temp: int, max_temp: int) -> None:
        """Validate and apply a new global range; persistence is left to the caller."""
        validate_temperature_range(min_temp, max_temp)
        self._state.global_min_temp = int(min_temp)
        self._state.global_max_temp = int(max_temp)
        logger.info("Global temperature range updated: %s°F - %s°F", min_temp, max_temp)

    def update_global_mode(
        self,
        new_mode: HVACMode,
        reason: ModeChangeReason,
        outside_temp: float | None = None,
    ) -> bool:
        previous = self._state.global_mode
        if previous == new_mode:
            return False
        self._state.global_mode = new_mode
        self._add_mode_change_event(None, previous, new_mode, reason, outside_temp)
        logger.info(
            "Global mode changed from %s to %s (reason: %s)", previous, new_mode, reason
        )
        return True

    def update_outside_temperature(
        self, temperature: float, *, updated_at: datetime | None = None
    ) -> None:
        self._state.outside_temperature = temperature
        self._state.last_outside_weather_update_at = updated_at or _utc_now()

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    def ensure_unit(self, unit_id: str, *, name: str, room: str) -> UnitState:
        """Create the default entry for a configured unit if it is missing."""
        existing = self._state.units.get(unit_id)
        if existing is not None:
            return existing
        unit = UnitState(
            id=unit_id,
            name=name,
            room=room,
            priority=self._room_priority(room),
        )
        self._state.units[unit_id] = unit
        logger.info("Registered unit %s (%s)", unit_id, name)
        return unit

    def update_unit_state(
        self,
        unit_id: str,
        *,
        reason: ModeChangeReason = ModeChangeReason.user_request,
        origin: WriteOrigin = WriteOrigin.external,
        baseline: bool = False,
        **updates: Any,
    ) -> UnitState:
        """Merge *updates* into a unit, creating a default entry if absent.

        A changed ``target_temperature`` is tagged with *origin*; external
        writes mark the unit as manually overridden.  A changed ``mode``
        appends a unit-scoped history event with *reason*.

        With *baseline* the values are taken as the unit's starting point:
        no override is recorded and no history event is appended.
        """
        unknown = set(updates) - _UNIT_FIELDS
        if unknown:
            raise KeyError(f"Unknown unit field(s): {', '.join(sorted(unknown))}")

        now = _utc_now()
        existing = self._state.units.get(unit_id)
        base = existing or UnitState(
            id=unit_id, name=f"Mini-Split {unit_id[-4:]}", priority=DEFAULT_PRIORITY
        )
        data = base.model_dump()
        data.update(updates)

        changed = existing is not None and not baseline
        if changed and data["target_temperature"] != existing.target_temperature:
            data["last_write_origin"] = origin
            if origin is WriteOrigin.external:
                data["manual_override_active"] = True
                data["last_manual_temperature_change_at"] = now
            else:
                data["manual_override_active"] = False
        data["last_updated"] = now

        updated = UnitState.model_validate(data)
        if changed and existing.mode != updated.mode:
            self._add_mode_change_event(unit_id, existing.mode, updated.mode, reason)

        self._state.units[unit_id] = updated
        logger.debug("Unit %s updated: %s", unit_id, updates)
        return updated

    def record_coordinator_temperature_set(self, unit_id: str, value: float) -> UnitState:
        """Record a setpoint written by the coordinator itself."""
        return self.update_unit_state(
            unit_id,
            origin=WriteOrigin.coordinator,
            target_temperature=int(round(value)),
            last_write_origin=WriteOrigin.coordinator,
            manual_override_active=False,
        )

    def should_respect_manual_override(
        self, unit: UnitState, *, now: datetime | None = None
    ) -> bool:
        """True when the unit's setpoint came from a user and is still acceptable.

        Overrides outside the global range are never respected.
        """
        if unit.last_write_origin is not WriteOrigin.external:
            return False
        if not (
            self._state.global_min_temp <= unit.target_temperature <= self._state.global_max_temp
        ):
            return False
        if self._override_max_age is not None and unit.last_manual_temperature_change_at:
            age = (now or _utc_now()) - unit.last_manual_temperature_change_at
            if age > self._override_max_age:
                return False
        return True

    def clear_manual_override(self, unit_id: str) -> bool:
        if unit_id not in self._state.units:
            return False
        self.update_unit_state(
            unit_id,
            manual_override_active=False,
            last_write_origin=WriteOrigin.coordinator,
        )
        logger.info("Manual override cleared for %s", unit_id)
        return True

    def clear_all_manual_overrides(self) -> int:
        cleared = 0
        for unit_id in list(self._state.units):
            if self.clear_manual_override(unit_id):
                cleared += 1
        return cleared

    def get_unit(self, unit_id: str) -> UnitState | None:
        return self._state.units.get(unit_id)

    def get_all_units(self) -> list[UnitState]:
        return list(self._state.units.values())

    def get_online_units(self) -> list[UnitState]:
        return [unit for unit in self._state.units.values() if unit.is_online]

    def get_average_current_temperature(self) -> float:
        online = self.get_online_units()
        if not online:
            return 70.0
        return fmean(unit.current_temperature for unit in online)

    def get_average_desired_temperature(self) -> float:
        online = self.get_online_units()
        if not online:
            return (self._state.global_min_temp + self._state.global_max_temp) / 2
        return fmean(unit.target_temperature for unit in online)

    # ------------------------------------------------------------------
    # History / conflicts
    # ------------------------------------------------------------------

    def _add_mode_change_event(
        self,
        unit_id: str | None,
        previous: HVACMode,
        new: HVACMode,
        reason: ModeChangeReason,
        outside_temp: float | None = None,
    ) -> None:
        self._state.mode_change_history.append(
            ModeChangeEvent(
                unit_id=unit_id,
                previous_mode=previous,
                new_mode=new,
                reason=reason,
                outside_temp_at_change=outside_temp,
            )
        )

    def get_recent_mode_changes(
        self, hours: float = 24, *, now: datetime | None = None
    ) -> list[ModeChangeEvent]:
        cutoff = (now or _utc_now()) - timedelta(hours=hours)
        return [event for event in self._state.mode_change_history if event.timestamp > cutoff]

    def add_conflict_event(
        self, kind: ConflictKind, description: str, unit_ids: list[str]
    ) -> ConflictEvent:
        conflict = ConflictEvent(kind=kind, description=description, affected_unit_ids=unit_ids)
        self._state.conflicts.append(conflict)
        logger.warning("Conflict detected: %s", description)
        return conflict

    def resolve_conflict(self, index: int, resolution: str) -> bool:
        if index < 0 or index >= len(self._state.conflicts):
            return False
        conflict = self._state.conflicts[index]
        conflict.resolved = True
        conflict.resolution = resolution
        logger.info("Conflict %d resolved: %s", index, resolution)
        return True

    def get_unresolved_conflicts(self) -> list[ConflictEvent]:
        return [conflict for conflict in self._state.conflicts if not conflict.resolved]

    # ------------------------------------------------------------------
    # Preferences / schedules
    # ------------------------------------------------------------------

    def get_active_schedule(self, *, now: datetime | None = None) -> Schedule | None:
        return select_active_schedule(self._preferences.schedules, now=now)

    def add_schedule(self, schedule: ScheduleCreate) -> Schedule:
        new_schedule = Schedule(id=f"schedule_{uuid.uuid4().hex[:12]}", **schedule.model_dump())
        self._preferences.schedules.append(new_schedule)
        self.save_preferences()
        logger.info('Schedule "%s" added with ID: %s', new_schedule.name, new_schedule.id)
        return new_schedule

    def update_schedule(
        self, schedule_id: str, changes: ScheduleUpdate | Mapping[str, Any]
    ) -> Schedule | None:
        if isinstance(changes, ScheduleUpdate):
            patch = changes.model_dump(exclude_unset=True)
        else:
            patch = dict(changes)
        for index, existing in enumerate(self._preferences.schedules):
            if existing.id != schedule_id:
                continue
            data = existing.model_dump()
            data.update(patch)
            data["id"] = schedule_id
            try:
                updated = Schedule.model_validate(data)
            except ValidationError as exc:
                raise CoordinatorValidationError(
                    "; ".join(err["msg"] for err in exc.errors()), field="schedule"
                ) from exc
            self._preferences.schedules[index] = updated
            self.save_preferences()
            logger.info("Schedule %s updated", schedule_id)
            return updated
        return None

    def delete_schedule(self, schedule_id: str) -> bool:
        before = len(self._preferences.schedules)
        self._preferences.schedules = [
            schedule for schedule in self._preferences.schedules if schedule.id != schedule_id
        ]
        if len(self._preferences.schedules) == before:
            return False
        self.save_preferences()
        logger.info("Schedule %s deleted", schedule_id)
        return True

    def update_preferences(self, **changes: Any) -> UserPreferences:
        """Apply preference changes (not schedules) and persist them."""
        if "schedules" in changes:
            raise CoordinatorValidationError(
                "Schedules are managed through the schedule operations", field="schedules"
            )
        data = self._preferences.model_dump()
        data.update(changes)
        try:
            preferences = UserPreferences.model_validate(data)
        except ValidationError as exc:
            raise CoordinatorValidationError(
                "; ".join(err["msg"] for err in exc.errors()), field="preferences"
            ) from exc
        validate_temperature_range(preferences.default_min_temp, preferences.default_max_temp)
        self._preferences = preferences
        if "room_priorities" in changes:
            for unit in self.get_all_units():
                self.update_unit_state(unit.id, priority=self._room_priority(unit.room))
        self.save_preferences()
        return preferences

    def _room_priority(self, room: str) -> int:
        value = self._preferences.room_priorities.get(room, DEFAULT_PRIORITY)
        return max(1, min(10, int(value)))


__all__ = [
    "CONFLICT_LIMIT",
    "HISTORY_LIMIT",
    "CoordinatorValidationError",
    "InvalidModeError",
    "StateStore",
    "SystemState",
    "TemperatureRangeError",
    "parse_mode",
    "validate_temperature_range",
]
