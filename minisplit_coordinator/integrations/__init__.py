"""Device and weather integration clients."""

from .device_client import (
    DeviceClient,
    DeviceClientError,
    SmartThingsClient,
    TemperatureValue,
    UnitReading,
)
from .weather_service import OpenWeatherClient, OutdoorTemperatureSource, WeatherReading

__all__ = [
    "DeviceClient",
    "DeviceClientError",
    "OpenWeatherClient",
    "OutdoorTemperatureSource",
    "SmartThingsClient",
    "TemperatureValue",
    "UnitReading",
    "WeatherReading",
]
