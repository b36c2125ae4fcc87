"""HTTP API for the integrity services."""

from market_integrity.api.app import create_app

__all__ = ["create_app"]
