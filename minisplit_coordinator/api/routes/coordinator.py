"""Coordinator FastAPI routes: published state and manual commands."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from minisplit_coordinator.api.dependencies import EngineDep
from minisplit_coordinator.models.schemas import (
    CoordinationResult,
    CoordinatorStatus,
    EmergencyOffRequest,
    IndexedConflict,
    ModeChangeEvent,
    ModeRequest,
    OperationResponse,
    PreferencesUpdate,
    ResolveConflictRequest,
    Schedule,
    ScheduleCreate,
    ScheduleUpdate,
    TemperatureRangeRequest,
    UnitState,
    UserPreferences,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Status / commands
# ---------------------------------------------------------------------------


@router.get("/status", response_model=CoordinatorStatus)
async def get_status(engine: EngineDep) -> CoordinatorStatus:
    return engine.get_coordinator_status()


@router.post("/mode", response_model=CoordinationResult)
async def set_mode(payload: ModeRequest, engine: EngineDep) -> CoordinationResult:
    return await engine.set_global_mode(payload.mode, payload.reason)


@router.post("/temperature-range", response_model=CoordinationResult)
async def set_temperature_range(
    payload: TemperatureRangeRequest, engine: EngineDep
) -> CoordinationResult:
    if payload.immediate:
        return await engine.set_global_temperature_range_immediate(
            payload.min_temp, payload.max_temp
        )
    return await engine.set_global_temperature_range(payload.min_temp, payload.max_temp)


@router.post("/emergency-off", response_model=CoordinationResult)
async def emergency_off(
    engine: EngineDep, payload: EmergencyOffRequest | None = None
) -> CoordinationResult:
    reason = payload.reason if payload else EmergencyOffRequest().reason
    return await engine.emergency_off(reason)


@router.post("/run-cycle", response_model=CoordinationResult)
async def run_cycle(engine: EngineDep) -> CoordinationResult:
    return await engine.run_coordination_cycle()


@router.post("/sync", response_model=OperationResponse)
async def sync_devices(engine: EngineDep) -> OperationResponse:
    synced = await engine.trigger_device_sync()
    return OperationResponse(
        success=True, detail={"synced_units": synced, "total_units": len(engine.unit_ids)}
    )


# ---------------------------------------------------------------------------
# Units / overrides
# ---------------------------------------------------------------------------


@router.get("/units", response_model=list[UnitState])
async def list_units(engine: EngineDep) -> list[UnitState]:
    return engine.store.get_all_units()


@router.post("/units/{unit_id}/clear-override", response_model=CoordinationResult)
async def clear_override(unit_id: str, engine: EngineDep) -> CoordinationResult:
    result = await engine.clear_manual_override(unit_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unit {unit_id} not found"
        )
    return result


@router.post("/clear-overrides", response_model=CoordinationResult)
async def clear_all_overrides(engine: EngineDep) -> CoordinationResult:
    return await engine.clear_all_manual_overrides()


# ---------------------------------------------------------------------------
# Conflicts / history
# ---------------------------------------------------------------------------


@router.get("/conflicts", response_model=list[IndexedConflict])
async def list_conflicts(
    engine: EngineDep,
    unresolved_only: bool = Query(default=False),
) -> list[IndexedConflict]:
    entries = [
        IndexedConflict(index=index, **conflict.model_dump())
        for index, conflict in enumerate(engine.store.state.conflicts)
    ]
    if unresolved_only:
        entries = [entry for entry in entries if not entry.resolved]
    return entries


@router.post("/conflicts/{index}/resolve", response_model=OperationResponse)
async def resolve_conflict(
    index: int, payload: ResolveConflictRequest, engine: EngineDep
) -> OperationResponse:
    async with engine.lock:
        resolved = engine.store.resolve_conflict(index, payload.resolution)
        if resolved:
            engine.store.save_state()
    if not resolved:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Conflict {index} not found"
        )
    return OperationResponse(success=True, detail={"index": index})


@router.get("/history", response_model=list[ModeChangeEvent])
async def mode_history(
    engine: EngineDep,
    hours: float = Query(default=24, gt=0, le=24 * 30),
) -> list[ModeChangeEvent]:
    return engine.store.get_recent_mode_changes(hours=hours)


# ---------------------------------------------------------------------------
# Schedules / preferences
# ---------------------------------------------------------------------------


@router.get("/schedules", response_model=list[Schedule])
async def list_schedules(engine: EngineDep) -> list[Schedule]:
    return list(engine.store.preferences.schedules)


@router.post("/schedules", response_model=Schedule, status_code=status.HTTP_201_CREATED)
async def create_schedule(payload: ScheduleCreate, engine: EngineDep) -> Schedule:
    async with engine.lock:
        return engine.store.add_schedule(payload)


@router.patch("/schedules/{schedule_id}", response_model=Schedule)
async def update_schedule(
    schedule_id: str, payload: ScheduleUpdate, engine: EngineDep
) -> Schedule:
    if not payload.model_fields_set:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No fields provided for update"
        )
    async with engine.lock:
        schedule = engine.store.update_schedule(schedule_id, payload)
    if schedule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Schedule {schedule_id} not found"
        )
    return schedule


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(schedule_id: str, engine: EngineDep) -> None:
    async with engine.lock:
        deleted = engine.store.delete_schedule(schedule_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Schedule {schedule_id} not found"
        )


@router.get("/preferences", response_model=UserPreferences)
async def get_preferences(engine: EngineDep) -> UserPreferences:
    return engine.store.preferences


@router.patch("/preferences", response_model=UserPreferences)
async def update_preferences(payload: PreferencesUpdate, engine: EngineDep) -> UserPreferences:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No fields provided for update"
        )
    async with engine.lock:
        return engine.store.update_preferences(**changes)
