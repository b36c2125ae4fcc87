"""Configuration system."""

from market_integrity.config.loader import load_config
from market_integrity.config.schema import AppConfig

__all__ = ["AppConfig", "load_config"]
