"""Alert persistence — write fraud and anomaly alerts to the alert tables."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from market_integrity.db.tables.alerts import AnomalyAlertRow, FraudAlertRow
from market_integrity.models import AnomalyResult, FraudDetectionResult, TradeEvent


class AlertStore:
    """Thin write/read wrapper around the alert tables.

    Each call opens and closes its own session so the store can be shared
    between the trading path, the resolution engine and API handlers.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def record_fraud(
        self,
        trade: TradeEvent,
        result: FraudDetectionResult,
        blocked: bool,
    ) -> int:
        """Insert a fraud alert for *trade* and return the row id."""
        row = FraudAlertRow(
            ts=datetime.now(timezone.utc),
            user_id=trade.user_id,
            market_id=trade.market_id,
            tx_hash=trade.tx_hash,
            risk_score=result.overall_risk_score,
            recommendation=result.recommendation,
            blocked=blocked,
            indicators=[i.model_dump(mode="json") for i in result.indicators],
        )
        return self._insert(row)

    def record_anomaly(
        self,
        source_key: str,
        value: float,
        result: AnomalyResult,
        market_id: str | None = None,
    ) -> int:
        """Insert an anomaly alert and return the row id."""
        row = AnomalyAlertRow(
            ts=datetime.now(timezone.utc),
            source_key=source_key,
            market_id=market_id,
            value=value,
            score=result.score.value,
            severity=result.score.severity,
            is_anomaly=result.is_anomaly,
            reasons=list(result.score.reasons),
            metadata_=result.metadata.model_dump(),
        )
        return self._insert(row)

    def recent_fraud_alerts(
        self,
        limit: int = 50,
        market_id: str | None = None,
        recommendation: str | None = None,
    ) -> list[dict]:
        """Newest-first fraud alerts, optionally filtered."""
        stmt = select(FraudAlertRow).order_by(FraudAlertRow.ts.desc(), FraudAlertRow.id.desc())
        if market_id is not None:
            stmt = stmt.where(FraudAlertRow.market_id == market_id)
        if recommendation is not None:
            stmt = stmt.where(FraudAlertRow.recommendation == recommendation)
        stmt = stmt.limit(limit)

        with self._session_factory() as session:
            rows = session.execute(stmt).scalars().all()
            return [
                {
                    "id": r.id,
                    "ts": r.ts.isoformat(),
                    "user_id": r.user_id,
                    "market_id": r.market_id,
                    "tx_hash": r.tx_hash,
                    "risk_score": r.risk_score,
                    "recommendation": r.recommendation,
                    "blocked": r.blocked,
                    "indicators": r.indicators or [],
                }
                for r in rows
            ]

    def _insert(self, row: FraudAlertRow | AnomalyAlertRow) -> int:
        with self._session_factory() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id
