"""Config loader — reads YAML, applies INTEGRITY_* and provider key env var overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from market_integrity.config.schema import AppConfig

# Provider API keys keep the names the upstream services document
_API_KEY_ENV = {
    "OPENWEATHER_API_KEY": "openweather",
    "THE_ODDS_API_KEY": "theoddsapi",
}


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from a YAML file, then apply env var overrides.

    If *path* is None or the file doesn't exist, returns defaults.

    Environment variable overrides:
        INTEGRITY_DATABASE_URL  -> database.url (also enables the database)
        INTEGRITY_LOG_LEVEL     -> logging.level
        INTEGRITY_LOG_FORMAT    -> logging.format
        OPENWEATHER_API_KEY     -> adapters.openweather.api_key
        THE_ODDS_API_KEY        -> adapters.theoddsapi.api_key
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}

    db_url = os.environ.get("INTEGRITY_DATABASE_URL")
    if db_url:
        db = data.setdefault("database", {})
        db["url"] = db_url
        db["enabled"] = True

    log_level = os.environ.get("INTEGRITY_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level

    log_format = os.environ.get("INTEGRITY_LOG_FORMAT")
    if log_format:
        data.setdefault("logging", {})["format"] = log_format

    for env_name, adapter in _API_KEY_ENV.items():
        key = os.environ.get(env_name)
        if key:
            adapters = data.setdefault("adapters", {})
            entry = adapters.get(adapter) or {}
            entry["api_key"] = key
            adapters[adapter] = entry

    return AppConfig.model_validate(data)
