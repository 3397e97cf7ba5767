"""
Settings bootstrap for PopRadius.

Every entry point (CLI commands, the JSON-lines session, tests that want real
defaults) reads configuration through `load_settings()` first. The result is a
plain dict so it can be logged, merged, and passed around without ceremony.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any

# PyYAML parses the human-editable config files.
import yaml

from popradius.log import configure_logging

# Defaults used when the YAML file omits a section (or when no file exists at all).
DEFAULTS: dict[str, Any] = {
    "project": {"log_level": "INFO", "logs_dir": "logs"},
    "dataset": {
        "location": None,
        "id_fields": ["AGS", "id"],
        "id_width": 8,
        "area_field": "area",
        "timeout_s": 60,
    },
    "years": [
        {"label": "1871", "field": "pop_1871", "reference": 931984},
        {"label": "1900-1910", "field": "pop_1900_1910", "reference": 3734258},
        {"label": "1939", "field": "pop_1939", "reference": 4338756},
        {"label": "1946-1950", "field": "pop_1946_1950", "reference": 3170832},
        {"label": "1961-1964", "field": "pop_1961_1964", "reference": 3270959},
        {"label": "1985-1987", "field": "pop_1985_1987", "reference": 3075670},
        {"label": "1996", "field": "pop_1996", "reference": 3458763},
        {"label": "2019", "field": "pop_2019", "reference": 3669491},
    ],
    "search": {
        "initial_high_km": 25.0,
        "max_doublings": 30,
        "ceiling_km": 5000.0,
        "eps_km": 0.05,
        "circle_steps": 192,
    },
}


# Environment variables that beat YAML, keyed by (section, key).
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "POPRADIUS_DATASET": ("dataset", "location"),
    "POPRADIUS_LOG_LEVEL": ("project", "log_level"),
}


def _read_overrides(path: Path) -> dict[str, Any]:
    # Profiles are optional; a missing file contributes nothing.
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML must be a mapping: {path}")
    # A misspelled section ("serach:") would otherwise be ignored without a trace.
    unknown = sorted(set(data) - set(DEFAULTS))
    if unknown:
        raise ValueError(f"Unknown config sections in {path}: {unknown}")
    return data


def _apply(settings: dict[str, Any], overrides: dict[str, Any]) -> None:
    for section, value in overrides.items():
        # `years` is a list and is replaced as a whole; the other sections are flat mappings
        # where a profile only lists the keys it changes.
        if isinstance(settings.get(section), dict) and isinstance(value, dict):
            settings[section].update(value)
        else:
            settings[section] = value


def load_settings(config_path: Path, profile: str = "default") -> dict[str, Any]:
    """
    Build settings as defaults <- config file <- `config/profiles/<profile>.yaml`
    <- environment, then initialize logging.

    `project.logs_dir: null` turns the log file off (stderr only).
    """
    config_path = config_path.resolve()
    # config/default.yaml lives one level below the project root.
    root = config_path.parent.parent if config_path.parent.name == "config" else config_path.parent
    profile_path = root / "config" / "profiles" / f"{profile}.yaml"

    settings = copy.deepcopy(DEFAULTS)
    _apply(settings, _read_overrides(config_path))
    _apply(settings, _read_overrides(profile_path))
    for env_name, (section, key) in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            settings[section][key] = env_value

    logs_dir_name = settings["project"].get("logs_dir")
    logs_dir = root / logs_dir_name if logs_dir_name else None
    logger = configure_logging(logs_dir, level=str(settings["project"].get("log_level", "INFO")))

    settings["_meta"] = {
        "config_path": str(config_path),
        "profile": profile,
        "profile_path": str(profile_path),
    }
    # Strings keep the settings dict JSON-serializable; a disabled log file stays None.
    settings["paths"] = {"root": str(root), "logs_dir": str(logs_dir) if logs_dir else None}
    logger.info("Loaded settings: config=%s profile=%s log_file=%s", config_path, profile, logs_dir is not None)
    return settings


def default_settings() -> dict[str, Any]:
    """Return a detached copy of the built-in defaults (no file I/O, no logging setup)."""
    return copy.deepcopy(DEFAULTS)
