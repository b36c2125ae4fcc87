"""Structured logging."""

from market_integrity.logging.setup import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
