"""Election results source — DecisionDeskHQ race calls."""

from __future__ import annotations

from market_integrity.adapters.base import SourceAdapter
from market_integrity.adapters.registry import register
from market_integrity.models import MarketCategory, Quote


@register
class DecisionDeskAdapter(SourceAdapter):
    name = "decisiondesk"
    source = "DecisionDeskHQ"
    category = MarketCategory.ELECTION
    confidence = 0.95
    base_url = "https://api.decisiondeskhq.com"

    async def fetch(self, market_id: str) -> Quote:
        data = await self._get_json(f"/results/{market_id}")
        winner = data.get("winner") if isinstance(data, dict) else None
        if not isinstance(winner, str) or not winner:
            raise self._fail("no final result")
        return self._quote(market_id, winner)
