from __future__ import annotations

from typing import Any, Mapping

from impfrust.config.settings import InvalidConfigurationError, Settings, validate_settings

"""
Startup settings overrides.

The CLI maps its flags (`--lat`, `--radius`, `--interval`, ...) onto a nested mapping and
applies it here. This module:
- deep-merges the override payload onto the loaded settings,
- re-validates with Pydantic so ranges (latitude, non-negative radius, ...) still hold.

The loaded `Settings` object is never mutated (it is shared via lru_cache).
"""


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any], *, path: str = "") -> dict[str, Any]:
    out = dict(base)
    for key, value in overrides.items():
        dotted = f"{path}.{key}" if path else str(key)
        current = out.get(key)
        if isinstance(value, Mapping):
            if current is not None and not isinstance(current, dict):
                raise InvalidConfigurationError(f"settings override '{dotted}' must be a scalar")
            out[key] = _deep_merge(current or {}, value, path=dotted)
        else:
            if isinstance(current, dict):
                raise InvalidConfigurationError(f"settings override '{dotted}' must be a mapping")
            out[key] = value
    return out


def apply_settings_overrides(settings: Settings, overrides: Mapping[str, Any] | None) -> Settings:
    """Return a new validated `Settings` with `overrides` applied (None values are skipped)."""
    if not overrides:
        return settings
    cleaned = _drop_none(overrides)
    if not cleaned:
        return settings
    merged = _deep_merge(settings.model_dump(mode="python"), cleaned)
    return validate_settings(merged)


def _drop_none(overrides: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            nested = _drop_none(value)
            if nested:
                out[key] = nested
            continue
        out[key] = value
    return out
