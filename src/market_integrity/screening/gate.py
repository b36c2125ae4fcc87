"""Trade screening — the synchronous fraud/anomaly gate on the trading path.

Called once per submitted trade, before it is persisted. A blocked verdict
means the caller must not persist the trade.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from market_integrity.config.schema import ScreeningConfig
from market_integrity.detection import AnomalyDetector, FraudDetector
from market_integrity.models import AnomalyResult, FraudDetectionResult, TradeEvent
from market_integrity.screening.persistence import AlertStore

log = structlog.get_logger("trade_screener")


@dataclass
class ScreeningVerdict:
    """Result of screening one trade — allowed, or blocked with a reason."""

    allowed: bool
    fraud: FraudDetectionResult
    anomaly: AnomalyResult | None = None
    reason: str = ""


class TradeScreener:
    """Runs a trade through the fraud detector and the market's price history."""

    def __init__(
        self,
        fraud: FraudDetector,
        anomaly: AnomalyDetector,
        config: ScreeningConfig | None = None,
        alerts: AlertStore | None = None,
    ) -> None:
        self.fraud = fraud
        self.anomaly = anomaly
        self.config = config or ScreeningConfig()
        self.alerts = alerts if self.config.persist_alerts else None

    def screen(self, trade: TradeEvent) -> ScreeningVerdict:
        """Score *trade*; BLOCK or a blocking critical anomaly rejects it."""
        fraud_result = self.fraud.record_trade(trade)

        if fraud_result.recommendation == "BLOCK":
            log.warning(
                "trade_blocked_fraud",
                user_id=trade.user_id,
                market_id=trade.market_id,
                risk_score=round(fraud_result.overall_risk_score, 3),
                indicators=[i.kind.value for i in fraud_result.indicators],
            )
            self._save_fraud(trade, fraud_result, blocked=True)
            return ScreeningVerdict(allowed=False, fraud=fraud_result, reason="fraud")

        if fraud_result.recommendation == "FLAG":
            log.warning(
                "trade_flagged",
                user_id=trade.user_id,
                market_id=trade.market_id,
                risk_score=round(fraud_result.overall_risk_score, 3),
                indicators=[f"{i.kind.value}({i.severity})" for i in fraud_result.indicators],
            )

        # Score first, then record, so the trade is not compared with itself
        anomaly_result = self.anomaly.detect_anomaly(trade.market_id, trade.price)
        self.anomaly.add_data_point(trade.market_id, trade.price, trade.observed_at)

        if anomaly_result.is_anomaly:
            log.warning(
                "price_anomaly",
                market_id=trade.market_id,
                price=trade.price,
                score=anomaly_result.score.value,
                severity=anomaly_result.score.severity,
                reasons=anomaly_result.score.reasons,
            )
            self._save_anomaly(trade, anomaly_result)

        if self._blocks(anomaly_result):
            return ScreeningVerdict(
                allowed=False,
                fraud=fraud_result,
                anomaly=anomaly_result,
                reason="anomaly",
            )

        if fraud_result.is_suspicious or fraud_result.recommendation == "FLAG":
            self._save_fraud(trade, fraud_result, blocked=False)

        return ScreeningVerdict(allowed=True, fraud=fraud_result, anomaly=anomaly_result)

    def _blocks(self, result: AnomalyResult) -> bool:
        return (
            self.config.block_on_critical_anomaly
            and result.is_anomaly
            and result.score.severity == "critical"
            and result.score.value > self.config.anomaly_block_score
        )

    # Alert writes never fail the trading path

    def _save_fraud(self, trade: TradeEvent, result: FraudDetectionResult, blocked: bool) -> None:
        if self.alerts is None:
            return
        try:
            self.alerts.record_fraud(trade, result, blocked=blocked)
        except Exception:
            log.exception("fraud_alert_persist_failed", market_id=trade.market_id)

    def _save_anomaly(self, trade: TradeEvent, result: AnomalyResult) -> None:
        if self.alerts is None:
            return
        try:
            self.alerts.record_anomaly(trade.market_id, trade.price, result, market_id=trade.market_id)
        except Exception:
            log.exception("anomaly_alert_persist_failed", market_id=trade.market_id)
