"""Coordination engine: keeps every mini-split acting as one HVAC system."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from minisplit_coordinator.core.schedule import resolve_setpoints
from minisplit_coordinator.core.state_store import (
    StateStore,
    parse_mode,
    validate_temperature_range,
)
from minisplit_coordinator.integrations.device_client import DeviceClient
from minisplit_coordinator.integrations.weather_service import OutdoorTemperatureSource
from minisplit_coordinator.models.enums import (
    ActionKind,
    ConflictKind,
    HVACMode,
    ModeChangeReason,
    ModePolicy,
    WriteOrigin,
)
from minisplit_coordinator.models.schemas import (
    ConflictEvent,
    CoordinationAction,
    CoordinationResult,
    CoordinatorStatus,
    GlobalRange,
    Schedule,
)

logger = logging.getLogger(__name__)

TEMPERATURE_SPREAD_LIMIT_F = 10
RAPID_SWITCH_LIMIT = 3
RAPID_SWITCH_WINDOW_HOURS = 1
TEMPERATURE_DEADBAND_F = 1


@dataclass(slots=True)
class ModeDecision:
    mode: HVACMode
    reason: ModeChangeReason
    explanation: str
    heating_setpoint: int
    cooling_setpoint: int


class CoordinationEngine:
    """Run coordination cycles and manual commands against a set of units.

    Every public coroutine takes the same lock, so a manual command issued
    while a cycle is in flight waits for it to finish.
    """

    def __init__(
        self,
        store: StateStore,
        devices: DeviceClient,
        weather: OutdoorTemperatureSource,
        *,
        unit_ids: Sequence[str],
        rooms: Mapping[str, str] | None = None,
        action_delay: float = 1.0,
    ) -> None:
        self._store = store
        self._devices = devices
        self._weather = weather
        self._unit_ids = list(dict.fromkeys(unit_ids))
        self._action_delay = action_delay
        self._lock = asyncio.Lock()
        self._running = False

        rooms = rooms or {}
        for unit_id in self._unit_ids:
            self._store.ensure_unit(
                unit_id,
                name=f"Mini-Split {unit_id[-4:]}",
                room=rooms.get(unit_id, "Unknown"),
            )

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def unit_ids(self) -> list[str]:
        return list(self._unit_ids)

    @property
    def is_running(self) -> bool:
        return self._running

    def set_running(self, running: bool) -> None:
        self._running = running

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_coordination_cycle(self) -> CoordinationResult:
        async with self._lock:
            return await self._guarded_cycle()

    async def run_scheduled_cycle(self) -> CoordinationResult | None:
        """Run a timer-driven cycle unless the engine was stopped meanwhile.

        Returns ``None`` when ``set_running(False)`` happened while the call
        waited for the lock.
        """
        async with self._lock:
            if not self._running:
                logger.debug("Coordinator stopped; skipping queued cycle")
                return None
            return await self._guarded_cycle()

    async def _guarded_cycle(self) -> CoordinationResult:
        try:
            return await self._cycle()
        except Exception as exc:
            logger.exception("Coordination cycle failed")
            return CoordinationResult(
                success=False,
                system_mode=self._store.state.global_mode,
                reasoning=f"Coordination cycle failed: {exc}",
            )

    async def _cycle(self) -> CoordinationResult:
        logger.info("Starting coordination cycle")
        await self._sync_devices()

        outside = await self._weather.current_temperature()
        self._store.update_outside_temperature(outside, updated_at=self._weather.last_updated)

        schedule = self._store.get_active_schedule(now=datetime.now())
        decision = self.determine_target_mode(outside, schedule)
        conflicts = self.detect_conflicts()
        actions = self.generate_actions(decision.mode, schedule)
        executed = await self._execute_actions(actions)

        self._store.update_global_mode(decision.mode, decision.reason, outside)
        self._store.save_state()

        failures = _failure_messages(actions)
        parts = [
            f"Outside temperature: {outside:.1f}°F",
            f"Setpoints: heat {decision.heating_setpoint}°F / cool {decision.cooling_setpoint}°F"
            + (f' (schedule "{schedule.name}")' if schedule else " (global range)"),
            decision.explanation,
            f"Generated {len(actions)} action(s)",
        ]
        if actions and not executed:
            parts.append("Actions skipped: device client not authenticated")
        if failures:
            parts.append(f"{len(failures)} action(s) failed")
        reasoning = ". ".join(parts)
        logger.info("Coordination cycle complete: %s", reasoning)

        return CoordinationResult(
            success=True,
            actions=actions,
            conflicts=[conflict.description for conflict in conflicts] + failures,
            system_mode=decision.mode,
            reasoning=reasoning,
        )

    # ------------------------------------------------------------------
    # Step 1: sync
    # ------------------------------------------------------------------

    async def _sync_devices(self) -> int:
        if not self._devices.is_authenticated():
            logger.info("Device client not authenticated; using cached unit state")
            return 0

        synced = 0
        for unit_id in self._unit_ids:
            try:
                reading = await self._devices.get_status(unit_id)
            except Exception as exc:
                logger.warning("Failed to sync unit %s: %s", unit_id, exc)
                self._store.update_unit_state(unit_id, is_online=False)
                continue

            stored = self._store.get_unit(unit_id)
            # The first reading of a unit is its starting point, not a user change.
            baseline = stored is None or stored.last_synced_at is None
            updates: dict[str, object] = {"is_online": True, "last_synced_at": datetime.now(UTC)}
            if reading.current_temperature is not None:
                updates["current_temperature"] = reading.current_temperature.to_fahrenheit()
            if reading.target_temperature is not None:
                updates["target_temperature"] = reading.target_temperature.to_fahrenheit()
            if reading.mode is not None:
                updates["mode"] = reading.mode
            self._store.update_unit_state(
                unit_id,
                reason=ModeChangeReason.user_request,
                origin=WriteOrigin.external,
                baseline=baseline,
                **updates,
            )
            synced += 1

        logger.debug("Synced %d/%d units", synced, len(self._unit_ids))
        return synced

    # ------------------------------------------------------------------
    # Step 2: mode
    # ------------------------------------------------------------------

    def determine_target_mode(
        self, outside_temp: float, schedule: Schedule | None = None
    ) -> ModeDecision:
        state = self._store.state
        preferences = self._store.preferences
        heat_sp, cool_sp = resolve_setpoints(schedule, state.global_min_temp, state.global_max_temp)
        current = state.global_mode

        def decide(mode: HVACMode, reason: ModeChangeReason, explanation: str) -> ModeDecision:
            return ModeDecision(mode, reason, explanation, heat_sp, cool_sp)

        if not self._store.get_online_units():
            return decide(
                HVACMode.off, ModeChangeReason.coordinator_logic, "No units online; forcing off"
            )
        if schedule is not None and schedule.mode is not None:
            return decide(
                schedule.mode,
                ModeChangeReason.schedule,
                f'Schedule "{schedule.name}" sets mode {schedule.mode}',
            )
        if not preferences.weather_based_mode_enabled:
            return decide(
                current,
                ModeChangeReason.coordinator_logic,
                f"Weather-based mode disabled; keeping {current}",
            )

        if preferences.mode_policy is ModePolicy.hysteresis:
            desired = self._store.get_average_desired_temperature()
            band = preferences.mode_hysteresis
            if outside_temp < desired - band:
                return decide(
                    HVACMode.heat,
                    ModeChangeReason.coordinator_logic,
                    f"Outside {outside_temp:.1f}°F is more than {band:g}°F below "
                    f"desired {desired:.1f}°F; heating",
                )
            if outside_temp > desired + band:
                return decide(
                    HVACMode.cool,
                    ModeChangeReason.coordinator_logic,
                    f"Outside {outside_temp:.1f}°F is more than {band:g}°F above "
                    f"desired {desired:.1f}°F; cooling",
                )
            return decide(
                current,
                ModeChangeReason.coordinator_logic,
                f"Outside temperature within ±{band:g}°F of desired; keeping {current}",
            )

        if outside_temp < heat_sp:
            return decide(
                HVACMode.heat,
                ModeChangeReason.coordinator_logic,
                f"Outside {outside_temp:.1f}°F below heating setpoint {heat_sp}°F; heating",
            )
        if outside_temp > cool_sp:
            return decide(
                HVACMode.cool,
                ModeChangeReason.coordinator_logic,
                f"Outside {outside_temp:.1f}°F above cooling setpoint {cool_sp}°F; cooling",
            )
        return decide(
            current,
            ModeChangeReason.coordinator_logic,
            f"Outside temperature within setpoints; keeping {current}",
        )

    # ------------------------------------------------------------------
    # Step 3: conflicts
    # ------------------------------------------------------------------

    def detect_conflicts(self) -> list[ConflictEvent]:
        online = self._store.get_online_units()
        found: list[ConflictEvent] = []

        active = [unit for unit in online if unit.mode is not HVACMode.off]
        modes = sorted({unit.mode for unit in active})
        if len(modes) > 1:
            found.append(
                self._store.add_conflict_event(
                    ConflictKind.mode_mismatch,
                    f"Units have conflicting modes: {', '.join(modes)}",
                    [unit.id for unit in active],
                )
            )

        if len(online) > 1:
            temps = [unit.current_temperature for unit in online]
            spread = max(temps) - min(temps)
            if spread > TEMPERATURE_SPREAD_LIMIT_F:
                found.append(
                    self._store.add_conflict_event(
                        ConflictKind.temperature_spread,
                        f"Large temperature spread: {spread}°F between units",
                        [unit.id for unit in online],
                    )
                )

        recent = self._store.get_recent_mode_changes(hours=RAPID_SWITCH_WINDOW_HOURS)
        if len(recent) > RAPID_SWITCH_LIMIT:
            global_changes = sum(1 for event in recent if event.unit_id is None)
            per_unit = Counter(event.unit_id for event in recent if event.unit_id is not None)
            affected = set(per_unit)
            if global_changes:
                affected.update(unit.id for unit in online)
            breakdown = [f"{global_changes} global"] + [
                f"{count} on {unit_id}" for unit_id, count in sorted(per_unit.items())
            ]
            found.append(
                self._store.add_conflict_event(
                    ConflictKind.rapid_switching,
                    f"Rapid mode switching: {len(recent)} mode changes in the last hour "
                    f"({', '.join(breakdown)})",
                    sorted(affected),
                )
            )
        return found

    # ------------------------------------------------------------------
    # Step 4: actions
    # ------------------------------------------------------------------

    def generate_actions(
        self,
        target_mode: HVACMode,
        schedule: Schedule | None = None,
        *,
        include_mode: bool = True,
        include_temperature: bool = True,
    ) -> list[CoordinationAction]:
        """Return the minimal command list for online units, highest priority first."""
        state = self._store.state
        online = sorted(self._store.get_online_units(), key=lambda unit: -unit.priority)
        actions: list[CoordinationAction] = []

        for unit in online:
            if include_mode and unit.mode != target_mode:
                actions.append(
                    CoordinationAction(
                        unit_id=unit.id,
                        kind=ActionKind.set_mode,
                        value=target_mode,
                        reason=f"Coordinating to {target_mode} mode",
                    )
                )
            if not include_temperature or target_mode is HVACMode.off:
                continue
            if self._store.should_respect_manual_override(unit):
                logger.debug(
                    "Respecting manual override on %s (%s°F)", unit.id, unit.target_temperature
                )
                continue

            heat_sp, cool_sp = resolve_setpoints(
                schedule, state.global_min_temp, state.global_max_temp, room=unit.room
            )
            desired = heat_sp if target_mode is HVACMode.heat else cool_sp
            if abs(desired - unit.target_temperature) >= TEMPERATURE_DEADBAND_F:
                actions.append(
                    CoordinationAction(
                        unit_id=unit.id,
                        kind=ActionKind.set_temperature,
                        value=desired,
                        reason=f"Setting {target_mode} setpoint to {desired}°F",
                    )
                )
        return actions

    # ------------------------------------------------------------------
    # Step 5: execute
    # ------------------------------------------------------------------

    async def _execute_actions(
        self, actions: list[CoordinationAction], *, emergency: bool = False
    ) -> bool:
        """Run *actions* in order; returns False when execution was skipped."""
        if not actions:
            return True
        if not emergency and not self._devices.is_authenticated():
            logger.info("Device client not authenticated; skipping %d action(s)", len(actions))
            return False

        mode_reason = ModeChangeReason.override if emergency else ModeChangeReason.coordinator_logic
        for index, action in enumerate(actions):
            if index and self._action_delay > 0:
                await asyncio.sleep(self._action_delay)
            try:
                if action.kind is ActionKind.set_mode:
                    mode = HVACMode(action.value)
                    await self._devices.set_mode(action.unit_id, mode)
                    self._store.update_unit_state(
                        action.unit_id,
                        reason=mode_reason,
                        origin=WriteOrigin.coordinator,
                        mode=mode,
                    )
                else:
                    await self._devices.set_temperature(action.unit_id, int(action.value))
                    self._store.record_coordinator_temperature_set(action.unit_id, int(action.value))
            except Exception as exc:
                logger.error(
                    "Action %s=%s on %s failed: %s", action.kind, action.value, action.unit_id, exc
                )
                action.succeeded = False
                action.error = str(exc)
            else:
                action.succeeded = True
                logger.info("Executed %s=%s on %s", action.kind, action.value, action.unit_id)
        return True

    # ------------------------------------------------------------------
    # Manual surface
    # ------------------------------------------------------------------

    async def set_global_mode(
        self, mode: str | HVACMode, reason: ModeChangeReason = ModeChangeReason.user_request
    ) -> CoordinationResult:
        target = parse_mode(mode)
        async with self._lock:
            self._store.update_global_mode(target, reason, self._store.state.outside_temperature)
            actions = self.generate_actions(target, include_temperature=False)
            executed = await self._execute_actions(actions)
            self._store.save_state()
            return _manual_result(
                target, actions, executed, f"Global mode set to {target} ({reason})"
            )

    async def set_global_temperature_range(self, min_temp: int, max_temp: int) -> CoordinationResult:
        validate_temperature_range(min_temp, max_temp)
        async with self._lock:
            self._store.update_global_temperature_range(min_temp, max_temp)
            return await self._guarded_cycle()

    async def set_global_temperature_range_immediate(
        self, min_temp: int, max_temp: int
    ) -> CoordinationResult:
        """Apply a new range as setpoints now, without re-evaluating the mode."""
        validate_temperature_range(min_temp, max_temp)
        async with self._lock:
            self._store.update_global_temperature_range(min_temp, max_temp)
            mode = self._store.state.global_mode
            schedule = self._store.get_active_schedule(now=datetime.now())
            actions = self.generate_actions(mode, schedule, include_mode=False)
            executed = await self._execute_actions(actions)
            self._store.save_state()
            return _manual_result(
                mode,
                actions,
                executed,
                f"Temperature range set to {min_temp}-{max_temp}°F in {mode} mode",
            )

    async def emergency_off(self, reason: str = "emergency") -> CoordinationResult:
        """Turn every configured unit off, online or not."""
        logger.warning("EMERGENCY OFF triggered: %s", reason)
        async with self._lock:
            actions = [
                CoordinationAction(
                    unit_id=unit_id,
                    kind=ActionKind.set_mode,
                    value=HVACMode.off,
                    reason=f"Emergency off: {reason}",
                )
                for unit_id in self._unit_ids
            ]
            await self._execute_actions(actions, emergency=True)
            self._store.update_global_mode(
                HVACMode.off, ModeChangeReason.override, self._store.state.outside_temperature
            )
            self._store.save_state()
            succeeded = sum(1 for action in actions if action.succeeded)
            return _manual_result(
                HVACMode.off,
                actions,
                True,
                f"Emergency off ({reason}): {succeeded}/{len(actions)} units turned off",
            )

    async def clear_manual_override(self, unit_id: str) -> CoordinationResult | None:
        """Hand the unit back to the coordinator; ``None`` if the unit is unknown."""
        async with self._lock:
            if not self._store.clear_manual_override(unit_id):
                return None
            return await self._guarded_cycle()

    async def clear_all_manual_overrides(self) -> CoordinationResult:
        async with self._lock:
            cleared = self._store.clear_all_manual_overrides()
            logger.info("Cleared manual overrides on %d unit(s)", cleared)
            return await self._guarded_cycle()

    async def trigger_device_sync(self) -> int:
        async with self._lock:
            synced = await self._sync_devices()
            self._store.save_state()
            return synced

    def get_coordinator_status(self) -> CoordinatorStatus:
        state = self._store.state
        return CoordinatorStatus(
            is_running=self._running,
            is_authenticated=self._devices.is_authenticated(),
            global_mode=state.global_mode,
            global_range=GlobalRange(min=state.global_min_temp, max=state.global_max_temp),
            outside_temperature=state.outside_temperature,
            last_weather_update=state.last_outside_weather_update_at,
            online_units=len(self._store.get_online_units()),
            total_units=len(state.units),
            unresolved_conflicts=len(self._store.get_unresolved_conflicts()),
            weather_cache_valid=self._weather.cache_valid(),
        )


def _failure_messages(actions: Sequence[CoordinationAction]) -> list[str]:
    return [
        f"{action.kind} on {action.unit_id} failed: {action.error}"
        for action in actions
        if action.succeeded is False
    ]


def _manual_result(
    mode: HVACMode, actions: list[CoordinationAction], executed: bool, summary: str
) -> CoordinationResult:
    parts = [summary, f"{len(actions)} action(s)"]
    if actions and not executed:
        parts.append("Actions skipped: device client not authenticated")
    failures = _failure_messages(actions)
    if failures:
        parts.append(f"{len(failures)} action(s) failed")
    return CoordinationResult(
        success=True,
        actions=actions,
        conflicts=failures,
        system_mode=mode,
        reasoning=". ".join(parts),
    )


__all__ = ["CoordinationEngine", "ModeDecision"]
