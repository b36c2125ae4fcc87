"""FastAPI application — trade screening, fraud/anomaly inspection, manual resolution."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from market_integrity.models import TradeEvent, TradeSide, parse_category
from market_integrity.services import Services

logger = structlog.get_logger()


class ScreenTradeRequest(BaseModel):
    user_id: str
    market_id: str
    side: TradeSide
    amount: float = Field(ge=0.0, allow_inf_nan=False)
    price: float = Field(allow_inf_nan=False)
    tx_hash: Optional[str] = None
    timestamp: Optional[datetime] = None


def _fraud_payload(result) -> dict:
    return {
        "riskScore": result.overall_risk_score,
        "recommendation": result.recommendation,
        "indicators": [
            {
                "type": i.kind.value,
                "severity": i.severity,
                "score": i.score,
                "evidence": i.evidence,
            }
            for i in result.indicators
        ],
    }


def create_app(services: Services) -> FastAPI:
    """Build the API around an already-wired set of services."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await services.engine.close()

    app = FastAPI(
        title="Market Integrity API",
        description="Trade screening, fraud and anomaly inspection, and on-demand market resolution",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "alertStore": services.alerts is not None,
        }

    # ═══════════════════════════════════════════════════════════════
    # Trade screening
    # ═══════════════════════════════════════════════════════════════

    @app.post("/api/trades/screen")
    def screen_trade(req: ScreenTradeRequest):
        """Screen a trade before it is persisted. 403 means do not persist."""
        trade = TradeEvent(
            user_id=req.user_id,
            market_id=req.market_id,
            side=req.side,
            amount=req.amount,
            price=req.price,
            observed_at=req.timestamp or datetime.now(timezone.utc),
            tx_hash=req.tx_hash,
        )
        verdict = services.screener.screen(trade)

        if not verdict.allowed:
            if verdict.reason == "fraud":
                detail = {
                    "error": "Trade blocked due to suspicious activity",
                    "fraud": _fraud_payload(verdict.fraud),
                }
            else:
                detail = {
                    "error": "Trade blocked due to critical anomaly",
                    "anomaly": {
                        "score": verdict.anomaly.score.value,
                        "severity": verdict.anomaly.score.severity,
                        "reasons": verdict.anomaly.score.reasons,
                    },
                }
            raise HTTPException(status_code=403, detail=detail)

        return {
            "allowed": True,
            "fraud": {
                "flagged": verdict.fraud.recommendation == "FLAG",
                **_fraud_payload(verdict.fraud),
            },
            "anomaly": {
                "detected": verdict.anomaly.is_anomaly,
                "score": verdict.anomaly.score.value,
                "severity": verdict.anomaly.score.severity,
                "reasons": verdict.anomaly.score.reasons,
            },
        }

    # ═══════════════════════════════════════════════════════════════
    # Fraud
    # ═══════════════════════════════════════════════════════════════

    @app.get("/api/fraud/users/{user_id}")
    async def user_stats(user_id: str):
        """Running trade pattern for one user."""
        pattern = services.fraud.get_user_stats(user_id)
        if pattern is None:
            raise HTTPException(status_code=404, detail=f"No trades recorded for user {user_id!r}")
        return {"stats": pattern.model_dump(mode="json")}

    @app.get("/api/fraud/flagged")
    async def flagged_users(threshold: float = 0.6):
        """Users whose highest observed risk reached *threshold*."""
        flagged = services.fraud.get_flagged_users(threshold)
        return {
            "threshold": threshold,
            "users": [p.model_dump(mode="json") for p in flagged.values()],
        }

    @app.get("/api/fraud/alerts")
    def fraud_alerts(
        limit: int = 50,
        market_id: Optional[str] = None,
        recommendation: Optional[str] = None,
    ):
        """Newest-first persisted fraud alerts."""
        if services.alerts is None:
            raise HTTPException(status_code=503, detail="Alert store is not configured")
        alerts = services.alerts.recent_fraud_alerts(
            limit=max(1, min(limit, 500)),
            market_id=market_id,
            recommendation=recommendation,
        )
        return {"alerts": alerts}

    # ═══════════════════════════════════════════════════════════════
    # Anomaly
    # ═══════════════════════════════════════════════════════════════

    @app.get("/api/anomaly/{source_key}/stats")
    async def anomaly_stats(source_key: str):
        stats = services.anomaly.get_stats(source_key)
        if stats is None:
            raise HTTPException(status_code=404, detail=f"No history for {source_key!r}")
        return {"sourceKey": source_key, **stats.model_dump(mode="json")}

    @app.delete("/api/anomaly/history")
    async def clear_anomaly_history(source_key: Optional[str] = None):
        """Drop history for one source, or for every source when none is given."""
        services.anomaly.clear_history(source_key)
        logger.info("anomaly_history_cleared", source_key=source_key or "*")
        return {"cleared": source_key or "all"}

    # ═══════════════════════════════════════════════════════════════
    # Resolution
    # ═══════════════════════════════════════════════════════════════

    @app.post("/api/resolution/{category}/{market_id}")
    async def resolve_market(category: str, market_id: str):
        """Run one resolution attempt now, outside the scheduler cadence."""
        parsed = parse_category(category)
        if parsed is None:
            raise HTTPException(status_code=404, detail=f"Unknown market category {category!r}")
        decision = await services.engine.resolve_market(market_id, parsed)
        return {"marketId": market_id, "category": parsed.value, **decision.model_dump()}

    return app
