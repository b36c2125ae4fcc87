"""Decision sinks — where the scheduler hands finished resolutions."""

from __future__ import annotations

from typing import Protocol

import structlog

from market_integrity.models import ActiveMarket, ResolutionDecision

log = structlog.get_logger("decision_sink")


class DecisionSink(Protocol):
    """Integration point for committing settlement values back to market state.

    ``commit`` receives every decision, RETRY included; implementations
    that settle markets act on RESOLVED only. ``stalled`` is called once
    when a market exhausts its retry budget.
    """

    async def commit(self, market: ActiveMarket, decision: ResolutionDecision) -> None:
        ...

    async def stalled(self, market: ActiveMarket, attempts: int) -> None:
        ...


class LoggingDecisionSink:
    """Default sink: records decisions in the log and nothing else."""

    async def commit(self, market: ActiveMarket, decision: ResolutionDecision) -> None:
        if decision.is_resolved:
            log.info(
                "market_resolved",
                market_id=market.market_id,
                category=market.category.value,
                value=decision.value,
                confidence=round(decision.confidence, 3),
            )
        else:
            log.info("market_retry", market_id=market.market_id, category=market.category.value)

    async def stalled(self, market: ActiveMarket, attempts: int) -> None:
        log.warning(
            "market_resolution_stalled",
            market_id=market.market_id,
            category=market.category.value,
            attempts=attempts,
        )
