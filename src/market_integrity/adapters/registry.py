"""Adapter registry — decorated classes are auto-registered."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from market_integrity.models import MarketCategory

if TYPE_CHECKING:
    import httpx

    from market_integrity.adapters.base import SourceAdapter
    from market_integrity.config.schema import AdapterConfig

log = structlog.get_logger("adapter_registry")

ADAPTER_REGISTRY: dict[str, type[SourceAdapter]] = {}


def register(cls: type[SourceAdapter]) -> type[SourceAdapter]:
    """Class decorator that adds an adapter to the global registry."""
    if not getattr(cls, "name", None):
        raise ValueError(f"Adapter class {cls.__name__} must define a 'name' attribute")
    if cls.name in ADAPTER_REGISTRY:
        raise ValueError(f"Duplicate adapter name: {cls.name!r}")
    if not 0.0 <= cls.confidence <= 1.0:
        raise ValueError(f"Adapter {cls.name!r} confidence must be within [0, 1]")
    ADAPTER_REGISTRY[cls.name] = cls
    return cls


def build_adapters(
    configs: dict[str, AdapterConfig] | None = None,
    timeout_s: float = 15.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[MarketCategory, list[SourceAdapter]]:
    """Instantiate the enabled adapters and group them by category.

    Adapters without a config entry fall back to their class default.
    Order within a category follows registration order, which is the
    order categorical resolution consults them in.
    """
    configs = configs or {}
    unknown = set(configs) - set(ADAPTER_REGISTRY)
    for name in sorted(unknown):
        log.warning("adapter_not_found", adapter=name)

    grouped: dict[MarketCategory, list[SourceAdapter]] = {}
    for name, cls in ADAPTER_REGISTRY.items():
        conf = configs.get(name)
        enabled = cls.enabled_by_default
        if conf is not None and conf.enabled is not None:
            enabled = conf.enabled
        if not enabled:
            log.info("adapter_disabled", adapter=name)
            continue
        adapter = cls(
            base_url=conf.base_url if conf else None,
            api_key=conf.api_key if conf else None,
            timeout_s=timeout_s,
            transport=transport,
        )
        grouped.setdefault(cls.category, []).append(adapter)
        log.info("adapter_loaded", adapter=name, category=cls.category.value)
    return grouped
