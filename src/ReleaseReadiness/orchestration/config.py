"""Configuration loading for the release readiness engine."""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

DEFAULT_TEMPLATE_CACHE_TTL = 60.0


@dataclass(frozen=True)
class ReleaseSettings:
    """Operator configuration for release orchestration."""

    required_gates: tuple[str, ...] = tuple()
    thresholds: Mapping[str, Any] = field(default_factory=dict)
    template_cache_ttl_seconds: float = DEFAULT_TEMPLATE_CACHE_TTL
    enable_otel: bool = False


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_gate_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return tuple()
    items = value.split(",") if isinstance(value, str) else value
    cleaned = (str(item).strip() for item in items)
    return tuple(dict.fromkeys(item for item in cleaned if item))


def _load_file(path: Path) -> Mapping[str, Any]:
    suffix = path.suffix.lower()
    content = path.read_bytes()
    if suffix == ".json":
        data = json.loads(content)
    elif suffix in {".yml", ".yaml"}:
        data = yaml.safe_load(content.decode("utf-8")) or {}
    elif suffix in {".toml", ".tml"}:
        data = tomllib.loads(content.decode("utf-8"))
    else:
        raise ValueError(f"Unsupported config format: {path.suffix}")
    if not isinstance(data, Mapping):
        raise ValueError(f"Release config {path} must be a mapping")
    section = data.get("release", data)
    if not isinstance(section, Mapping):
        raise ValueError(f"'release' section in {path} must be a mapping")
    return section


def _settings_from_mapping(data: Mapping[str, Any]) -> ReleaseSettings:
    defaults = ReleaseSettings()
    thresholds = data.get("thresholds") or {}
    if not isinstance(thresholds, Mapping):
        raise ValueError("release thresholds must be a mapping")
    ttl = float(data.get("template_cache_ttl_seconds", defaults.template_cache_ttl_seconds))
    if ttl < 0:
        raise ValueError("template_cache_ttl_seconds cannot be negative")
    return ReleaseSettings(
        required_gates=_parse_gate_list(data.get("required_gates")),
        thresholds=dict(thresholds),
        template_cache_ttl_seconds=ttl,
        enable_otel=_parse_bool(data.get("enable_otel", defaults.enable_otel)),
    )


def _apply_env_overrides(settings: ReleaseSettings, env: Mapping[str, str]) -> ReleaseSettings:
    updates: Dict[str, Any] = {}
    required = env.get("RELEASE_REQUIRED_GATES")
    ttl = env.get("RELEASE_TEMPLATE_CACHE_TTL")
    enable_otel = env.get("RELEASE_ENABLE_OTEL")
    if required:
        updates["required_gates"] = _parse_gate_list(required)
    if ttl:
        updates["template_cache_ttl_seconds"] = max(0.0, float(ttl))
    if enable_otel:
        updates["enable_otel"] = _parse_bool(enable_otel)
    return replace(settings, **updates) if updates else settings


def load_release_settings(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ReleaseSettings:
    """Load settings from an optional file, then apply ``RELEASE_*`` environment overrides."""

    env = os.environ if env is None else env
    settings = _settings_from_mapping(_load_file(path)) if path else ReleaseSettings()
    return _apply_env_overrides(settings, env)


__all__ = ["ReleaseSettings", "load_release_settings"]
