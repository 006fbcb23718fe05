"""Tests for SmartThings payload normalisation and the REST client."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from minisplit_coordinator.integrations.device_client import (
    DeviceAuthenticationError,
    DeviceClient,
    DeviceCommandError,
    DeviceConnectionError,
    SmartThingsClient,
    TemperatureValue,
    UnitReading,
    parse_device_status,
)
from minisplit_coordinator.models.enums import HVACMode, TemperatureUnit


def _status(
    *,
    temperature: dict[str, Any] | None = None,
    mode: str | None = "heat",
    heating: dict[str, Any] | None = None,
    cooling: dict[str, Any] | None = None,
) -> dict[str, Any]:
    main: dict[str, Any] = {}
    if temperature is not None:
        main["temperatureMeasurement"] = {"temperature": temperature}
    if mode is not None:
        main["thermostat"] = {"thermostatMode": {"value": mode}}
    if heating is not None:
        main["thermostatHeatingSetpoint"] = {"heatingSetpoint": heating}
    if cooling is not None:
        main["thermostatCoolingSetpoint"] = {"coolingSetpoint": cooling}
    return {"components": {"main": main}}


# ===================================================================
# Normalisation
# ===================================================================


class TestTemperatureValue:
    def test_fahrenheit_rounds(self) -> None:
        assert TemperatureValue(70.6).to_fahrenheit() == 71

    def test_celsius_converts(self) -> None:
        assert TemperatureValue(22.0, TemperatureUnit.celsius).to_fahrenheit() == 72


class TestParseDeviceStatus:
    def test_full_payload(self) -> None:
        reading = parse_device_status(
            _status(
                temperature={"value": 66, "unit": "F"},
                heating={"value": 68, "unit": "F"},
            )
        )
        assert reading.current_temperature == TemperatureValue(66.0)
        assert reading.target_temperature == TemperatureValue(68.0)
        assert reading.mode == HVACMode.heat

    def test_cool_mode_prefers_cooling_setpoint(self) -> None:
        reading = parse_device_status(
            _status(
                mode="cool",
                heating={"value": 20, "unit": "C"},
                cooling={"value": 24, "unit": "C"},
            )
        )
        assert reading.target_temperature == TemperatureValue(24.0, TemperatureUnit.celsius)

    def test_unknown_mode_becomes_none(self) -> None:
        assert parse_device_status(_status(mode="dry")).mode is None

    def test_malformed_values_dropped(self) -> None:
        reading = parse_device_status(
            _status(temperature={"value": "warm"}, heating={"value": 68, "unit": "K"})
        )
        assert reading.current_temperature is None
        assert reading.target_temperature is None

    @pytest.mark.parametrize("payload", [None, [], {"components": None}, {"components": {}}])
    def test_garbage_payload(self, payload: Any) -> None:
        assert parse_device_status(payload) == UnitReading()


# ===================================================================
# SmartThingsClient
# ===================================================================


class TestSmartThingsClient:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(SmartThingsClient("token"), DeviceClient)

    def test_authentication_follows_token(self) -> None:
        assert SmartThingsClient("token").is_authenticated() is True
        assert SmartThingsClient("").is_authenticated() is False

    async def test_get_status(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json=_status(temperature={"value": 70, "unit": "F"}, mode="cool")
            )

        async with SmartThingsClient("token", transport=httpx.MockTransport(handler)) as client:
            reading = await client.get_status("dev-1")

        assert reading.mode == HVACMode.cool
        assert seen[0].url.path == "/v1/devices/dev-1/status"
        assert seen[0].headers["Authorization"] == "Bearer token"

    async def test_set_mode_command_payload(self) -> None:
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"results": []})

        async with SmartThingsClient("token", transport=httpx.MockTransport(handler)) as client:
            await client.set_mode("dev-1", HVACMode.heat)

        assert bodies == [
            {
                "commands": [
                    {
                        "component": "main",
                        "capability": "thermostat",
                        "command": "setThermostatMode",
                        "arguments": ["heat"],
                    }
                ]
            }
        ]

    async def test_set_temperature_uses_mode_capability(self) -> None:
        commands: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            commands.append(json.loads(request.content)["commands"][0]["command"])
            return httpx.Response(200, json={})

        async with SmartThingsClient("token", transport=httpx.MockTransport(handler)) as client:
            await client.set_temperature("dev-1", 68)
            await client.set_mode("dev-1", HVACMode.cool)
            await client.set_temperature("dev-1", 74)

        assert commands == [
            "setHeatingSetpoint",
            "setThermostatMode",
            "setCoolingSetpoint",
        ]

    @pytest.mark.parametrize(
        ("status_code", "error"),
        [
            (401, DeviceAuthenticationError),
            (403, DeviceAuthenticationError),
            (422, DeviceCommandError),
            (500, DeviceCommandError),
        ],
    )
    async def test_http_errors_mapped(self, status_code: int, error: type[Exception]) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(status_code, text="nope"))
        async with SmartThingsClient("token", transport=transport) as client:
            with pytest.raises(error):
                await client.get_status("dev-1")

    async def test_connect_error_mapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with SmartThingsClient("token", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(DeviceConnectionError):
                await client.set_mode("dev-1", HVACMode.off)

    async def test_missing_token(self) -> None:
        async with SmartThingsClient("") as client:
            with pytest.raises(DeviceAuthenticationError):
                await client.get_status("dev-1")
