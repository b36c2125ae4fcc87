"""External data source adapters."""

from market_integrity.adapters.base import FetchFailure, SourceAdapter
from market_integrity.adapters.registry import ADAPTER_REGISTRY, build_adapters, register

__all__ = ["ADAPTER_REGISTRY", "FetchFailure", "SourceAdapter", "build_adapters", "register"]
