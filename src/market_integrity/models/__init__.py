"""Pydantic domain models."""

from market_integrity.models.anomaly import (
    AnomalyMetadata,
    AnomalyResult,
    AnomalyScore,
    DataPoint,
    SourceStats,
)
from market_integrity.models.fraud import (
    FraudDetectionResult,
    FraudIndicator,
    IndicatorKind,
    TradeEvent,
    TradeSide,
    UserTradePattern,
)
from market_integrity.models.market import ActiveMarket, MarketCategory, parse_category
from market_integrity.models.quote import Quote, ResolutionDecision

__all__ = [
    "ActiveMarket",
    "AnomalyMetadata",
    "AnomalyResult",
    "AnomalyScore",
    "DataPoint",
    "FraudDetectionResult",
    "FraudIndicator",
    "IndicatorKind",
    "MarketCategory",
    "Quote",
    "ResolutionDecision",
    "SourceStats",
    "TradeEvent",
    "TradeSide",
    "UserTradePattern",
    "parse_category",
]
