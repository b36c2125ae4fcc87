"""Trading-path screening and alert persistence."""

from market_integrity.screening.gate import ScreeningVerdict, TradeScreener
from market_integrity.screening.persistence import AlertStore

__all__ = ["AlertStore", "ScreeningVerdict", "TradeScreener"]
