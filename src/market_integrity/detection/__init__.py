"""Anomaly and fraud detection over price and trade streams."""

from market_integrity.detection.anomaly import AnomalyDetector, severity_for
from market_integrity.detection.fraud import FraudDetector, aggregate, recommendation_for

__all__ = [
    "AnomalyDetector",
    "FraudDetector",
    "aggregate",
    "recommendation_for",
    "severity_for",
]
