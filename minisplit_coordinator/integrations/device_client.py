"""Device collaborator contract and the SmartThings REST implementation.

The coordination engine talks to mini-splits only through the
:class:`DeviceClient` protocol.  :class:`SmartThingsClient` implements it on
top of the SmartThings v1 REST API using a pre-provisioned bearer token and
normalises the device status payload into a strict :class:`UnitReading`.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from minisplit_coordinator.models.enums import HVACMode, TemperatureUnit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DeviceClientError(Exception):
    """Base exception for all device client errors."""


class DeviceConnectionError(DeviceClientError):
    """Raised when the device cloud cannot be reached."""


class DeviceAuthenticationError(DeviceClientError):
    """Raised on 401/403 responses."""


class DeviceCommandError(DeviceClientError):
    """Raised when a status request or command is rejected."""


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TemperatureValue:
    value: float
    unit: TemperatureUnit = TemperatureUnit.fahrenheit

    def to_fahrenheit(self) -> int:
        """Return the value in whole degrees Fahrenheit."""
        if self.unit is TemperatureUnit.celsius:
            return round(self.value * 9 / 5 + 32)
        return round(self.value)


@dataclass(slots=True, frozen=True)
class UnitReading:
    """Normalised status of one unit; ``None`` fields were absent or malformed."""

    current_temperature: TemperatureValue | None = None
    target_temperature: TemperatureValue | None = None
    mode: HVACMode | None = None


@runtime_checkable
class DeviceClient(Protocol):
    def is_authenticated(self) -> bool: ...

    async def get_status(self, unit_id: str) -> UnitReading: ...

    async def set_mode(self, unit_id: str, mode: HVACMode) -> None: ...

    async def set_temperature(self, unit_id: str, temp_f: int) -> None: ...


# ---------------------------------------------------------------------------
# Payload normalisation
# ---------------------------------------------------------------------------


def _parse_temperature(attribute: Any) -> TemperatureValue | None:
    if not isinstance(attribute, dict):
        return None
    value = attribute.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        unit = TemperatureUnit(attribute.get("unit") or TemperatureUnit.fahrenheit)
    except ValueError:
        logger.debug("Unknown temperature unit %r", attribute.get("unit"))
        return None
    return TemperatureValue(float(value), unit)


def parse_device_status(payload: Any) -> UnitReading:
    """Build a :class:`UnitReading` from a SmartThings ``/status`` payload.

    Cooling setpoint wins over heating setpoint when the unit reports cool
    mode; otherwise the heating setpoint is used when present.
    """
    if not isinstance(payload, dict):
        return UnitReading()
    main = (payload.get("components") or {}).get("main") or {}
    if not isinstance(main, dict):
        return UnitReading()

    current = _parse_temperature(
        (main.get("temperatureMeasurement") or {}).get("temperature")
    )

    raw_mode = ((main.get("thermostat") or {}).get("thermostatMode") or {}).get("value")
    if raw_mode is None:
        raw_mode = ((main.get("thermostatMode") or {}).get("thermostatMode") or {}).get("value")
    mode: HVACMode | None
    try:
        mode = HVACMode(raw_mode) if raw_mode is not None else None
    except ValueError:
        logger.debug("Ignoring unsupported thermostat mode %r", raw_mode)
        mode = None

    heating = _parse_temperature(
        (main.get("thermostatHeatingSetpoint") or {}).get("heatingSetpoint")
    )
    cooling = _parse_temperature(
        (main.get("thermostatCoolingSetpoint") or {}).get("coolingSetpoint")
    )
    if mode is HVACMode.cool and cooling is not None:
        target = cooling
    else:
        target = heating or cooling

    return UnitReading(current_temperature=current, target_temperature=target, mode=mode)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SmartThingsClient:
    """Async SmartThings REST client for mini-split thermostats.

    Usage::

        async with SmartThingsClient(token="...") as client:
            reading = await client.get_status(device_id)
            await client.set_mode(device_id, HVACMode.heat)
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://api.smartthings.com/v1",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._last_modes: dict[str, HVACMode] = {}

    async def __aenter__(self) -> SmartThingsClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def is_authenticated(self) -> bool:
        return bool(self._token)

    async def close(self) -> None:
        if self._client is not None:
            with suppress(Exception):
                await self._client.aclose()
            self._client = None
            logger.info("SmartThings client closed")

    # -- internal request helper ----------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if not self._token:
            raise DeviceAuthenticationError("SmartThings access token is not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _raise_for_status(self, response: httpx.Response, *, context: str) -> None:
        if response.is_success:
            return
        status = response.status_code
        detail = response.text[:300]
        if status in (401, 403):
            msg = f"[{context}] Authentication failed ({status}). Check the SmartThings token."
            logger.error(msg)
            raise DeviceAuthenticationError(msg)
        msg = f"[{context}] Request failed {status}: {detail}"
        logger.warning(msg)
        raise DeviceCommandError(msg)

    async def _request(
        self, method: str, path: str, *, json: Any = None, context: str
    ) -> httpx.Response:
        client = self._ensure_client()
        try:
            response = await client.request(method, path, json=json)
        except httpx.ConnectError as exc:
            msg = f"Cannot reach SmartThings at {self._base_url}: {exc}"
            logger.error(msg)
            raise DeviceConnectionError(msg) from exc
        except httpx.TimeoutException as exc:
            msg = f"Request to {path} timed out ({self._timeout}s)"
            logger.error(msg)
            raise DeviceConnectionError(msg) from exc
        self._raise_for_status(response, context=context)
        return response

    async def _send_command(
        self, device_id: str, capability: str, command: str, arguments: list[Any]
    ) -> None:
        payload = {
            "commands": [
                {
                    "component": "main",
                    "capability": capability,
                    "command": command,
                    "arguments": arguments,
                }
            ]
        }
        await self._request(
            "POST",
            f"/devices/{device_id}/commands",
            json=payload,
            context=f"{command}({device_id})",
        )

    # -- DeviceClient ---------------------------------------------------------

    async def get_status(self, unit_id: str) -> UnitReading:
        response = await self._request(
            "GET", f"/devices/{unit_id}/status", context=f"get_status({unit_id})"
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise DeviceCommandError(f"Malformed status payload for {unit_id}") from exc
        reading = parse_device_status(payload)
        if reading.mode is not None:
            self._last_modes[unit_id] = reading.mode
        logger.debug("Status %s: %s", unit_id, reading)
        return reading

    async def set_mode(self, unit_id: str, mode: HVACMode) -> None:
        logger.info("Setting mode on %s to %s", unit_id, mode)
        await self._send_command(unit_id, "thermostat", "setThermostatMode", [str(mode)])
        self._last_modes[unit_id] = mode

    async def set_temperature(self, unit_id: str, temp_f: int) -> None:
        """Write the setpoint matching the unit's last known mode."""
        logger.info("Setting temperature on %s to %s°F", unit_id, temp_f)
        if self._last_modes.get(unit_id) is HVACMode.cool:
            await self._send_command(
                unit_id, "thermostatCoolingSetpoint", "setCoolingSetpoint", [temp_f]
            )
        else:
            await self._send_command(
                unit_id, "thermostatHeatingSetpoint", "setHeatingSetpoint", [temp_f]
            )


__all__ = [
    "DeviceAuthenticationError",
    "DeviceClient",
    "DeviceClientError",
    "DeviceCommandError",
    "DeviceConnectionError",
    "SmartThingsClient",
    "TemperatureValue",
    "UnitReading",
    "parse_device_status",
]
