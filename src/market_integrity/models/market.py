"""Market models — categories and the active-market registry item."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class MarketCategory(str, Enum):
    CRYPTO = "CRYPTO"
    WEATHER = "WEATHER"
    SPORTS = "SPORTS"
    ELECTION = "ELECTION"

    @property
    def is_categorical(self) -> bool:
        """True when the market settles on a string outcome rather than a number."""
        return self in (MarketCategory.SPORTS, MarketCategory.ELECTION)


# Platform category labels -> oracle category
_CATEGORY_ALIASES = {
    "crypto": MarketCategory.CRYPTO,
    "weather": MarketCategory.WEATHER,
    "sports": MarketCategory.SPORTS,
    "election": MarketCategory.ELECTION,
    "politics": MarketCategory.ELECTION,
}


def parse_category(raw: str) -> MarketCategory | None:
    """Map a platform category label onto a MarketCategory.

    Returns None for labels with no oracle coverage rather than raising,
    since the platform carries categories this service never resolves.
    """
    if not raw:
        return None
    return _CATEGORY_ALIASES.get(raw.strip().lower())


class ActiveMarket(BaseModel):
    """One entry of a market-registry snapshot."""

    market_id: str
    category: MarketCategory
    active: bool = True
