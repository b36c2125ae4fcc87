"""Multi-source market resolution."""

from market_integrity.resolution.consensus import (
    min_sources,
    resolve_categorical,
    resolve_numeric,
)
from market_integrity.resolution.engine import ResolutionEngine

__all__ = ["ResolutionEngine", "min_sources", "resolve_categorical", "resolve_numeric"]
