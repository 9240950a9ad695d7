"""Persisted configuration management."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from .models import Config

CONFIG_PATH = (Path.home() / ".freeflow" / "config.json").expanduser()

ENV_OVERRIDES = {
    "FREEFLOW_TRANSCRIPTION_API_KEY": "transcription_api_key",
    "FREEFLOW_REWRITE_API_KEY": "rewrite_api_key",
}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or saved."""


def load_config() -> Config:
    """Read the configuration file, applying environment overrides."""

    config = _read_config()
    for variable, key in ENV_OVERRIDES.items():
        value = os.environ.get(variable, "").strip()
        if value:
            setattr(config, key, value)
    return config


def _read_config() -> Config:
    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Configuration file must contain a JSON object.")

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration key(s): {', '.join(unknown)}")
    return Config(**payload)


def save_config(config: Config) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    config = _read_config()
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    save_config(config)
    return config
