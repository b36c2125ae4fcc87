"""Fraud detection models — trades, per-user patterns, indicators, results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from market_integrity.models.anomaly import Severity


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class IndicatorKind(str, Enum):
    WASH_TRADING = "WASH_TRADING"
    PUMP_DUMP = "PUMP_DUMP"
    COORDINATED_TRADES = "COORDINATED_TRADES"
    SUSPICIOUS_TIMING = "SUSPICIOUS_TIMING"
    MANIPULATION_ATTEMPT = "MANIPULATION_ATTEMPT"


Recommendation = Literal["ALLOW", "FLAG", "BLOCK"]


class TradeEvent(BaseModel):
    """A submitted trade, as seen by the trading path before persistence."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    market_id: str
    side: TradeSide
    amount: float = Field(ge=0.0, allow_inf_nan=False)
    price: float = Field(allow_inf_nan=False)
    observed_at: datetime
    tx_hash: str | None = None


class UserTradePattern(BaseModel):
    """Running aggregates for one trader."""

    user_id: str
    total_trades: int = 0
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    net_position: float = 0.0
    avg_trade_size: float = 0.0
    avg_time_between_trades: float = 0.0  # seconds
    last_trade_time: datetime | None = None


class FraudIndicator(BaseModel):
    kind: IndicatorKind
    severity: Severity
    score: float = Field(ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)
    suspicious_users: list[str] = Field(default_factory=list)
    affected_markets: list[str] = Field(default_factory=list)


class FraudDetectionResult(BaseModel):
    is_suspicious: bool
    indicators: list[FraudIndicator] = Field(default_factory=list)
    overall_risk_score: float = 0.0
    recommendation: Recommendation = "ALLOW"
