"""Schedule window lookup for the coordinator."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from minisplit_coordinator.models.schemas import Schedule


def select_active_schedule(
    schedules: Iterable[Schedule], *, now: datetime | None = None
) -> Schedule | None:
    """Return the first enabled schedule whose window contains *now*.

    Schedules are evaluated in configured order, so earlier entries win when
    windows overlap.  *now* is local wall-clock time.
    """
    now = now or datetime.now()
    for schedule in schedules:
        if is_schedule_active(schedule, now=now):
            return schedule
    return None


def is_schedule_active(schedule: Schedule, *, now: datetime) -> bool:
    if not schedule.enabled:
        return False
    start = parse_time(schedule.time_start)
    end = parse_time(schedule.time_end)
    minutes = now.hour * 60 + now.minute
    today = weekday_index(now)

    if start <= end:
        return today in schedule.days_of_week and start <= minutes <= end

    # Window wraps past midnight; the early-morning tail belongs to yesterday.
    if minutes >= start:
        return today in schedule.days_of_week
    if minutes <= end:
        return (today - 1) % 7 in schedule.days_of_week
    return False


def resolve_setpoints(
    schedule: Schedule | None,
    global_min: int,
    global_max: int,
    *,
    room: str | None = None,
) -> tuple[int, int]:
    """Return (heating_setpoint, cooling_setpoint) for an optional room."""
    if schedule is None:
        return (global_min, global_max)
    if room is not None and not applies_to_room(schedule, room):
        return (global_min, global_max)
    return (schedule.target_min_temp, schedule.target_max_temp)


def applies_to_room(schedule: Schedule, room: str) -> bool:
    if not schedule.applicable_rooms:
        return True
    return room in schedule.applicable_rooms


def weekday_index(now: datetime) -> int:
    """Weekday with Sunday = 0, Saturday = 6."""
    return (now.weekday() + 1) % 7


def parse_time(value: str) -> int:
    hour, minute = value.split(":")
    return int(hour) * 60 + int(minute)


__all__ = [
    "applies_to_room",
    "is_schedule_active",
    "parse_time",
    "resolve_setpoints",
    "select_active_schedule",
    "weekday_index",
]
