"""Configuration loading and runtime directory bootstrapping."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from core.settings import USER_PREFERENCE_KEYS, TidySettings
from persistence.preferences import Preferences

logger = logging.getLogger("tidy.config")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML from file, returning empty mapping when missing."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_effective_config(root: Path) -> dict[str, Any]:
    """Load shipped defaults and an optional local override file."""
    config_dir = root / "config"
    default_cfg = load_yaml(config_dir / "default.yaml")
    local_cfg = load_yaml(config_dir / "local.yaml")
    return merge_dicts(default_cfg, local_cfg)


def ensure_runtime_dirs(config: dict[str, Any]) -> dict[str, Path]:
    """Ensure the data directory exists and return resolved file paths."""
    paths_cfg = config.get("paths", {})
    data_dir = Path(str(paths_cfg.get("data_dir", "~/.app_tidy"))).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)
    return {
        "data_dir": data_dir,
        "db_path": data_dir / paths_cfg.get("db_file", "preferences.db"),
        "audit_log_path": data_dir / paths_cfg.get("audit_log_file", "audit.jsonl"),
    }


def load_settings(config: dict[str, Any], preferences: Preferences | None = None) -> TidySettings:
    """Validate YAML settings, then overlay persisted user preferences.

    Invalid YAML values raise; invalid persisted values are logged and skipped.
    """
    values = TidySettings(**config.get("tidy", {})).model_dump()
    if preferences is None:
        return TidySettings(**values)

    for key, value in preferences.all().items():
        if key not in USER_PREFERENCE_KEYS:
            continue
        candidate = {**values, key: value}
        try:
            TidySettings(**candidate)
        except ValidationError:
            logger.warning("Ignoring invalid persisted preference %s=%r", key, value)
            continue
        values = candidate
    return TidySettings(**values)


def save_preference(preferences: Preferences, key: str, raw_value: str) -> Any:
    """Parse, validate and persist one user preference; returns the stored value."""
    if key not in USER_PREFERENCE_KEYS:
        raise ValueError(f"Unknown preference: {key}")
    value = yaml.safe_load(raw_value)
    try:
        validated = TidySettings(**{key: value})
    except ValidationError as exc:
        raise ValueError(f"Invalid value for {key}: {raw_value}") from exc
    stored = getattr(validated, key)
    preferences.set(key, stored)
    return stored
