"""Application configuration powered by Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Final

from pydantic import AnyUrl, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Centralized configuration object with environment fallbacks."""

    model_config = SettingsConfigDict(env_prefix="MINISPLIT_", env_file=".env", extra="allow")

    # App
    app_name: str = "Mini-Split Coordinator"
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    debug: bool = False
    log_level: str = Field(default="info")

    # Persistence
    data_dir: str = Field(default="./data")

    # Coordinated units (comma-separated; room names are matched by position)
    unit_ids: str = Field(default="")
    room_names: str = Field(default="Living Room,Master Bedroom,Guest Bedroom,Office")

    # SmartThings
    smartthings_api_url: AnyUrl | str = Field(default="https://api.smartthings.com/v1")
    smartthings_token: str = Field(default="")
    device_timeout: float = Field(default=15.0)

    # OpenWeatherMap
    openweather_api_key: str = Field(default="")
    openweather_api_url: AnyUrl | str = Field(
        default="https://api.openweathermap.org"
    )
    location_lat: float | None = Field(default=None)
    location_lon: float | None = Field(default=None)
    location_zip: str = Field(default="")
    location_country: str = Field(default="US")
    weather_cache_minutes: int = Field(default=15)
    weather_timeout: float = Field(default=10.0)
    weather_fallback_temp_f: float = Field(default=70.0)

    # Coordination
    coordinator_enabled: bool = Field(default=True)
    coordination_interval_minutes: int = Field(default=2, ge=1)
    autosave_interval_minutes: int = Field(default=5, ge=1)
    action_delay_seconds: float = Field(default=1.0, ge=0.0)
    default_min_temp: int = Field(default=68)
    default_max_temp: int = Field(default=72)
    mode_hysteresis: float = Field(default=2.0, ge=0.0)
    manual_override_max_age_minutes: int | None = Field(default=240)

    @field_validator("manual_override_max_age_minutes", mode="before")
    @classmethod
    def _coerce_disabled_override_age(cls, v: object) -> object:
        """Treat an empty string or zero as "overrides never age out"."""
        if v in ("", 0, "0"):
            return None
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unit_id_list(self) -> list[str]:
        return _split_csv(self.unit_ids)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def room_name_list(self) -> list[str]:
        return _split_csv(self.room_names)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def weather_configured(self) -> bool:
        """Return True when an API key and a location are both present."""

        has_location = (
            self.location_lat is not None and self.location_lon is not None
        ) or bool(self.location_zip)
        return bool(self.openweather_api_key) and has_location


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


SETTINGS: Final[Settings] = get_settings()
