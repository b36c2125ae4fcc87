"""Import all table modules so Base.metadata knows about them."""

from market_integrity.db.tables.alerts import AnomalyAlertRow, FraudAlertRow

__all__ = ["AnomalyAlertRow", "FraudAlertRow"]
