"""ResolutionEngine — fan out to every adapter of a category, then apply consensus."""

from __future__ import annotations

import asyncio
import weakref

import structlog

from market_integrity.adapters import FetchFailure, SourceAdapter
from market_integrity.config.schema import ResolutionConfig
from market_integrity.detection import AnomalyDetector
from market_integrity.models import MarketCategory, Quote, ResolutionDecision
from market_integrity.resolution.consensus import resolve_categorical, resolve_numeric
from market_integrity.screening.persistence import AlertStore

log = structlog.get_logger("resolution_engine")

# Quotes scoring above this are kept as alerts even when not anomalous
ALERT_SCORE_FLOOR = 0.3


class ResolutionEngine:
    """Resolves one market at a time per market id.

    Adapters for a market are called concurrently, each under its own
    timeout; any single adapter failing only removes its quote. A per-market
    lock keeps two resolutions of the same market from overlapping.
    """

    def __init__(
        self,
        adapters: dict[MarketCategory, list[SourceAdapter]],
        quorum_fraction: float = 0.6,
        adapter_timeout_s: float = 5.0,
        anomaly: AnomalyDetector | None = None,
        alerts: AlertStore | None = None,
    ) -> None:
        self.adapters = adapters
        self.quorum_fraction = quorum_fraction
        self.adapter_timeout_s = adapter_timeout_s
        self.anomaly = anomaly
        self.alerts = alerts
        self._market_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @classmethod
    def from_config(
        cls,
        config: ResolutionConfig,
        adapters: dict[MarketCategory, list[SourceAdapter]],
        anomaly: AnomalyDetector | None = None,
        alerts: AlertStore | None = None,
    ) -> ResolutionEngine:
        return cls(
            adapters,
            quorum_fraction=config.quorum_fraction,
            adapter_timeout_s=config.adapter_timeout_s,
            anomaly=anomaly if config.score_quotes else None,
            alerts=alerts,
        )

    async def resolve_market(self, market_id: str, category: MarketCategory) -> ResolutionDecision:
        """Collect quotes for *market_id* and reduce them to one decision."""
        adapters = self.adapters.get(category, [])
        if not adapters:
            log.warning("no_adapters_for_category", market_id=market_id, category=category.value)
            return ResolutionDecision.retry()

        lock = self._market_locks.get(market_id)
        if lock is None:
            lock = asyncio.Lock()
            self._market_locks[market_id] = lock

        async with lock:
            quotes = await self._collect(market_id, adapters)

        if category.is_categorical:
            decision = resolve_categorical(quotes)
        else:
            await self._score_quotes(market_id, quotes)
            decision = resolve_numeric(quotes, len(adapters), self.quorum_fraction)

        log.debug(
            "quotes_reduced",
            market_id=market_id,
            category=category.value,
            status=decision.status,
            value=decision.value,
            confidence=decision.confidence,
            quotes=len(quotes),
            adapters=len(adapters),
        )
        return decision

    async def close(self) -> None:
        for adapters in self.adapters.values():
            for adapter in adapters:
                await adapter.close()

    # ── Internals ─────────────────────────────────────────────

    async def _collect(self, market_id: str, adapters: list[SourceAdapter]) -> list[Quote]:
        """Fetch from every adapter concurrently; failed adapters are dropped.

        The returned quotes keep adapter order, not completion order.
        """
        results = await asyncio.gather(*(self._fetch_one(a, market_id) for a in adapters))
        return [q for q in results if q is not None]

    async def _fetch_one(self, adapter: SourceAdapter, market_id: str) -> Quote | None:
        try:
            return await asyncio.wait_for(adapter.fetch(market_id), timeout=self.adapter_timeout_s)
        except FetchFailure as exc:
            log.warning("fetch_failed", market_id=market_id, adapter=adapter.name, error=exc.message)
        except asyncio.TimeoutError:
            log.warning(
                "fetch_timeout",
                market_id=market_id,
                adapter=adapter.name,
                timeout_s=self.adapter_timeout_s,
            )
        except Exception:
            log.exception("fetch_error", market_id=market_id, adapter=adapter.name)
        return None

    async def _score_quotes(self, market_id: str, quotes: list[Quote]) -> None:
        """Score each numeric quote against its source history, then record it.

        Scores are informational; they never change the consensus value.
        """
        if self.anomaly is None:
            return
        for quote in quotes:
            if not quote.is_numeric:
                continue
            source_key = f"{quote.source}:{market_id}"
            result = self.anomaly.detect_anomaly(source_key, quote.value)
            self.anomaly.add_data_point(source_key, quote.value, quote.observed_at)

            if result.is_anomaly:
                log.warning(
                    "quote_anomaly",
                    market_id=market_id,
                    source=quote.source,
                    value=quote.value,
                    score=result.score.value,
                    severity=result.score.severity,
                    reasons=result.score.reasons,
                )
            if self.alerts is not None and (result.is_anomaly or result.score.value > ALERT_SCORE_FLOOR):
                try:
                    await asyncio.to_thread(
                        self.alerts.record_anomaly, source_key, quote.value, result, market_id,
                    )
                except Exception:
                    log.exception("anomaly_alert_persist_failed", market_id=market_id, source=quote.source)
