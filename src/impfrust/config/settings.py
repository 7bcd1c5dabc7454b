# src/impfrust/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/impfrust/config/defaults.yaml`, then optionally overridden by:
- an external YAML file via `IMPFRUST_CONFIG_PATH` (replaces the packaged defaults)
- a small whitelist of environment variables (`PORT`, `IMPFRUST_UPSTREAM_URL`, ...)
- CLI flags, applied by `impfrust.config.overrides`

Any validation failure surfaces as `InvalidConfigurationError`, which is fatal at startup.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from impfrust.core.env import load_dotenv_if_present
from impfrust.core.geo import Coordinate, SearchArea


class InvalidConfigurationError(ValueError):
    """Raised for malformed startup configuration (bad coordinates, negative radius, ...)."""


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `impfrust.config`."""
    text = resources.files("impfrust.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise InvalidConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "impfrust"
    timezone: str = "Europe/Berlin"
    host: str = "0.0.0.0"
    port: int = Field(8080, ge=1, le=65535)
    log_level: str = "INFO"

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        # Naive upstream timestamps are resolved in this zone on every fetch.
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown IANA timezone {value!r}") from exc
        return value


class SearchSettings(BaseModel):
    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    lon: float = Field(..., ge=-180, le=180, allow_inf_nan=False)
    radius_km: float = Field(..., ge=0, allow_inf_nan=False)

    def to_area(self) -> SearchArea:
        return SearchArea(center=Coordinate(lat=self.lat, lon=self.lon), radius_km=self.radius_km)


class UpstreamFieldSettings(BaseModel):
    id: str = "id"
    lat: str = "lat"
    lon: str = "lon"
    start: str = "start"
    end: str = "end"


class UpstreamKeywordSettings(BaseModel):
    payload_field: str = "title"
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)

    @property
    def active(self) -> bool:
        return bool(self.include or self.exclude)


class UpstreamSettings(BaseModel):
    url: str | None = None
    params: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(10, gt=0)
    items_path: str = ""
    fields: UpstreamFieldSettings = Field(default_factory=UpstreamFieldSettings)
    keywords: UpstreamKeywordSettings = Field(default_factory=UpstreamKeywordSettings)


class QuietHoursSettings(BaseModel):
    enabled: bool = False
    start_hour: int = Field(22, ge=0, le=23)
    end_hour: int = Field(3, ge=0, le=23)
    interval_seconds: float = Field(1200, gt=0)
    interval_jitter_seconds: float = Field(0, ge=0)


class PollerSettings(BaseModel):
    interval_seconds: float = Field(300, gt=0)
    interval_jitter_seconds: float = Field(0, ge=0)
    backoff_base_seconds: float = Field(30, gt=0)
    backoff_max_seconds: float = Field(1800, gt=0)
    stale_after_seconds: float = Field(900, gt=0)
    history_size: int = Field(50, ge=1)
    quiet_hours: QuietHoursSettings = Field(default_factory=QuietHoursSettings)

    @model_validator(mode="after")
    def _validate_backoff(self) -> "PollerSettings":
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("poller.backoff_max_seconds must be >= poller.backoff_base_seconds")
        return self


class TelegramSettings(BaseModel):
    enabled: bool = True
    api_base: str = "https://api.telegram.org"
    token: str | None = None
    chat_id: str | None = None
    timeout_seconds: float = Field(15, gt=0)

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.token and self.chat_id)


class NotifySettings(BaseModel):
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    search: SearchSettings
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    poller: PollerSettings = Field(default_factory=PollerSettings)
    notify: NotifySettings = Field(default_factory=NotifySettings)


def validate_settings(raw: dict[str, Any]) -> Settings:
    """Validate a raw settings payload, mapping Pydantic errors to `InvalidConfigurationError`."""
    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors()
        )
        raise InvalidConfigurationError(f"Invalid configuration: {problems}") from exc


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload."""
    load_dotenv_if_present()
    data = dict(data)

    port = os.getenv("PORT")
    if port:
        try:
            data.setdefault("app", {})["port"] = int(port)
        except ValueError as exc:
            raise InvalidConfigurationError(f"PORT must be an integer, got {port!r}") from exc

    log_level = os.getenv("IMPFRUST_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    upstream_url = os.getenv("IMPFRUST_UPSTREAM_URL")
    if upstream_url:
        data.setdefault("upstream", {})["url"] = upstream_url

    token = os.getenv("TELEGRAM_TOKEN")
    chat_id = os.getenv("TELEGRAM_CHAT_ID")
    if token:
        data.setdefault("notify", {}).setdefault("telegram", {})["token"] = token
    if chat_id:
        data.setdefault("notify", {}).setdefault("telegram", {})["chat_id"] = chat_id

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("IMPFRUST_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return validate_settings(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
