"""
Runtime configuration loading.

Reads config/dossier.yaml (or the path in DOSSIER_CONFIG), deep-merges it
over DEFAULT_SETTINGS and validates the result against
config/schemas/dossier_config.schema.json.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema
import yaml

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = REPO_ROOT / "config" / "dossier.yaml"
DEFAULT_SCHEMA_PATH = REPO_ROOT / "config" / "schemas" / "dossier_config.schema.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "refresh_interval_seconds": 60,
    "fetch_timeout_seconds": 12,
    "display_points": 48,
    "change_lookback_hours": 24,
    "history": {
        "max_points": 400,
        "max_age_days": 30,
    },
    "stale_after_minutes": {},
    "snapshot": {
        "store_dir": "data/cache",
        "key": "dossier.snapshot",
    },
    "digest": {
        "enabled": True,
        "base_url": "http://localhost:8787",
        "refresh_minutes": 30,
        "ttl_hours": 24,
        "cache_path": "data/cache/news_daily_brief.json",
        "model": "gpt-4o-mini",
        "timeout_seconds": 60,
    },
}


class ConfigValidationError(Exception):
    """Raised when the configuration file fails validation."""
    pass


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_settings(
    settings: Dict[str, Any],
    schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH,
) -> bool:
    """
    Validate settings against the JSON schema.

    Args:
        settings: Merged settings dictionary
        schema_path: Path to JSON schema (skipped when None or missing)

    Returns:
        True if valid

    Raises:
        ConfigValidationError: If validation fails
    """
    if schema_path is None or not schema_path.exists():
        return True

    with open(schema_path) as f:
        schema = json.load(f)

    try:
        jsonschema.validate(settings, schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "<root>"
        raise ConfigValidationError(f"Invalid config at {path}: {e.message}")

    return True


def load_settings(
    path: Optional[Path] = None,
    schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH,
) -> Dict[str, Any]:
    """
    Load settings, preferring the YAML file over defaults.

    Args:
        path: Config file path. Defaults to $DOSSIER_CONFIG or config/dossier.yaml.
        schema_path: JSON schema used for validation

    Returns:
        Settings dict (defaults when no file exists)

    Raises:
        ConfigValidationError: If the merged settings are invalid
    """
    if path is None:
        env_path = os.environ.get("DOSSIER_CONFIG", "").strip()
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    overrides: Dict[str, Any] = {}
    if path.exists():
        with open(path, "r") as f:
            overrides = yaml.safe_load(f) or {}
        if not isinstance(overrides, dict):
            raise ConfigValidationError(f"{path} must contain a mapping at top level")
    else:
        logger.info(f"No config file at {path}, using defaults")

    settings = _deep_merge(DEFAULT_SETTINGS, overrides)

    model_override = os.environ.get("OPENAI_MODEL", "").strip()
    if model_override:
        settings["digest"]["model"] = model_override

    validate_settings(settings, schema_path)
    return settings
