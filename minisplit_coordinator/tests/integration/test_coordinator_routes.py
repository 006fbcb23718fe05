from __future__ import annotations

from typing import Any

from minisplit_coordinator.models.enums import ConflictKind

BASE = "/api/v1/coordinator"


async def test_health_check(client: Any) -> None:
    response = await client.get("/api/v1/system/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["total_units"] == 2


async def test_version(client: Any) -> None:
    response = await client.get("/api/v1/system/version")
    assert response.status_code == 200
    assert "version" in response.json()


async def test_status(client: Any) -> None:
    response = await client.get(f"{BASE}/status")
    assert response.status_code == 200
    data = response.json()
    assert data["global_mode"] == "off"
    assert data["global_range"] == {"min": 68, "max": 72}
    assert data["total_units"] == 2


async def test_run_cycle_then_units(client: Any) -> None:
    response = await client.post(f"{BASE}/run-cycle")
    assert response.status_code == 200
    assert response.json()["success"] is True

    units = (await client.get(f"{BASE}/units")).json()
    assert [unit["id"] for unit in units] == ["unit-a", "unit-b"]
    assert all(unit["is_online"] for unit in units)


async def test_set_mode(client: Any) -> None:
    await client.post(f"{BASE}/sync")
    response = await client.post(f"{BASE}/mode", json={"mode": "heat"})
    assert response.status_code == 200
    data = response.json()
    assert data["system_mode"] == "heat"
    assert [action["kind"] for action in data["actions"]] == ["set_mode", "set_mode"]


async def test_invalid_mode_is_400(client: Any) -> None:
    response = await client.post(f"{BASE}/mode", json={"mode": "turbo"})
    assert response.status_code == 400
    assert "Invalid mode" in response.json()["detail"]


async def test_invalid_range_is_400(client: Any) -> None:
    response = await client.post(
        f"{BASE}/temperature-range", json={"min_temp": 75, "max_temp": 70}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Minimum temperature must be less than maximum temperature"
    )
    status = (await client.get(f"{BASE}/status")).json()
    assert status["global_range"] == {"min": 68, "max": 72}


async def test_range_update(client: Any) -> None:
    response = await client.post(
        f"{BASE}/temperature-range", json={"min_temp": 66, "max_temp": 74, "immediate": False}
    )
    assert response.status_code == 200
    status = (await client.get(f"{BASE}/status")).json()
    assert status["global_range"] == {"min": 66, "max": 74}


async def test_emergency_off_without_body(client: Any) -> None:
    response = await client.post(f"{BASE}/emergency-off")
    assert response.status_code == 200
    data = response.json()
    assert data["system_mode"] == "off"
    assert len(data["actions"]) == 2
    assert "api_emergency_stop" in data["reasoning"]


async def test_sync(client: Any) -> None:
    response = await client.post(f"{BASE}/sync")
    assert response.status_code == 200
    assert response.json()["detail"] == {"synced_units": 2, "total_units": 2}


async def test_clear_override_unknown_unit(client: Any) -> None:
    response = await client.post(f"{BASE}/units/ghost/clear-override")
    assert response.status_code == 404


async def test_clear_all_overrides(client: Any) -> None:
    response = await client.post(f"{BASE}/clear-overrides")
    assert response.status_code == 200
    assert response.json()["success"] is True


async def test_conflicts_and_resolve(client: Any, store: Any) -> None:
    store.add_conflict_event(ConflictKind.mode_mismatch, "heat vs cool", ["unit-a", "unit-b"])

    conflicts = (await client.get(f"{BASE}/conflicts", params={"unresolved_only": True})).json()
    assert [c["index"] for c in conflicts] == [0]

    response = await client.post(f"{BASE}/conflicts/0/resolve", json={"resolution": "aligned"})
    assert response.status_code == 200
    assert (await client.get(f"{BASE}/conflicts", params={"unresolved_only": True})).json() == []

    missing = await client.post(f"{BASE}/conflicts/7/resolve", json={"resolution": "x"})
    assert missing.status_code == 404


async def test_history(client: Any) -> None:
    await client.post(f"{BASE}/sync")
    await client.post(f"{BASE}/mode", json={"mode": "cool"})
    history = (await client.get(f"{BASE}/history", params={"hours": 1})).json()
    assert any(event["unit_id"] is None and event["new_mode"] == "cool" for event in history)


async def test_schedule_crud(client: Any) -> None:
    payload = {
        "name": "Night",
        "time_start": "22:00",
        "time_end": "06:00",
        "days_of_week": [0, 6],
        "target_min_temp": 64,
        "target_max_temp": 70,
    }
    created = await client.post(f"{BASE}/schedules", json=payload)
    assert created.status_code == 201
    schedule_id = created.json()["id"]

    listed = (await client.get(f"{BASE}/schedules")).json()
    assert [s["id"] for s in listed] == [schedule_id]

    patched = await client.patch(f"{BASE}/schedules/{schedule_id}", json={"enabled": False})
    assert patched.status_code == 200
    assert patched.json()["enabled"] is False

    empty = await client.patch(f"{BASE}/schedules/{schedule_id}", json={})
    assert empty.status_code == 400

    invalid = await client.patch(
        f"{BASE}/schedules/{schedule_id}", json={"target_min_temp": 75}
    )
    assert invalid.status_code == 400

    deleted = await client.delete(f"{BASE}/schedules/{schedule_id}")
    assert deleted.status_code == 204
    again = await client.delete(f"{BASE}/schedules/{schedule_id}")
    assert again.status_code == 404


async def test_invalid_schedule_body_is_400(client: Any) -> None:
    response = await client.post(
        f"{BASE}/schedules",
        json={
            "name": "Bad",
            "time_start": "7am",
            "time_end": "09:00",
            "target_min_temp": 68,
            "target_max_temp": 72,
        },
    )
    assert response.status_code == 400


async def test_preferences(client: Any) -> None:
    response = await client.patch(
        f"{BASE}/preferences", json={"mode_policy": "hysteresis", "mode_hysteresis": 3}
    )
    assert response.status_code == 200
    prefs = (await client.get(f"{BASE}/preferences")).json()
    assert prefs["mode_policy"] == "hysteresis"
    assert prefs["mode_hysteresis"] == 3.0
