"""Market registry — the source of active markets for each scheduler tick."""

from __future__ import annotations

import threading
from typing import Protocol

import structlog

from market_integrity.config.schema import MarketConfig
from market_integrity.models import ActiveMarket, MarketCategory, parse_category

log = structlog.get_logger("market_registry")


class MarketRegistry(Protocol):
    """Anything that can list the currently active markets."""

    def list_active(self) -> list[ActiveMarket]:
        ...


class InMemoryMarketRegistry:
    """Process-local registry, refreshed by whatever syncs it with the platform.

    Reads return a snapshot copy, so a tick is unaffected by concurrent
    updates.
    """

    def __init__(self, markets: list[ActiveMarket] | None = None) -> None:
        self._markets: dict[str, ActiveMarket] = {}
        self._lock = threading.Lock()
        for market in markets or []:
            self.upsert(market)

    @classmethod
    def from_config(cls, markets: list[MarketConfig]) -> InMemoryMarketRegistry:
        return cls([
            ActiveMarket(market_id=m.market_id, category=m.category, active=m.active)
            for m in markets
        ])

    def upsert(self, market: ActiveMarket) -> None:
        with self._lock:
            self._markets[market.market_id] = market

    def register(self, market_id: str, category: str | MarketCategory) -> ActiveMarket | None:
        """Add an active market from a platform category label.

        Returns None (and registers nothing) for categories the oracle
        cannot resolve.
        """
        parsed = category if isinstance(category, MarketCategory) else parse_category(category)
        if parsed is None:
            log.info("market_skipped_unknown_category", market_id=market_id, category=category)
            return None
        market = ActiveMarket(market_id=market_id, category=parsed, active=True)
        self.upsert(market)
        return market

    def deactivate(self, market_id: str) -> None:
        with self._lock:
            market = self._markets.get(market_id)
            if market is not None:
                self._markets[market_id] = market.model_copy(update={"active": False})

    def remove(self, market_id: str) -> None:
        with self._lock:
            self._markets.pop(market_id, None)

    def list_active(self) -> list[ActiveMarket]:
        with self._lock:
            return [m for m in self._markets.values() if m.active]
