"""Sports outcome sources — ESPN final results and TheOddsAPI favourites."""

from __future__ import annotations

from typing import Any

from market_integrity.adapters.base import SourceAdapter
from market_integrity.adapters.registry import register
from market_integrity.models import MarketCategory, Quote

ESPN_SPORT_PATHS = {
    "NBA": "basketball/nba",
    "NFL": "football/nfl",
    "MLB": "baseball/mlb",
    "NHL": "hockey/nhl",
}

ODDS_SPORT_KEYS = {
    "NBA": "basketball_nba",
    "NFL": "americanfootball_nfl",
    "MLB": "baseball_mlb",
    "NHL": "icehockey_nhl",
}


@register
class ESPNAdapter(SourceAdapter):
    """Winning team of a finished game, for ``LEAGUE-EVENTID`` market ids."""

    name = "espn"
    source = "ESPN"
    category = MarketCategory.SPORTS
    confidence = 0.95
    base_url = "https://site.api.espn.com"

    async def fetch(self, market_id: str) -> Quote:
        league, _, event_id = market_id.partition("-")
        if not league or not event_id:
            raise self._fail(f"invalid market id {market_id!r}")
        sport_path = ESPN_SPORT_PATHS.get(league.upper())
        if sport_path is None:
            raise self._fail(f"unsupported league {league!r}")

        data = await self._get_json(
            f"/apis/site/v2/sports/{sport_path}/summary",
            params={"event": event_id},
        )
        competitors = _dig(data, "header", "competitions", 0, "competitors")
        if not isinstance(competitors, list):
            raise self._fail("invalid response")

        winner = next(
            (c for c in competitors if isinstance(c, dict) and c.get("winner") is True),
            None,
        )
        team = _dig(winner, "team", "name")
        if not isinstance(team, str) or not team:
            raise self._fail("game not final")
        return self._quote(market_id, team)


@register
class TheOddsAPIAdapter(SourceAdapter):
    """Bookmaker favourite for the next event of a league.

    A pre-game signal rather than a final result, so it is off unless
    enabled in config and carries a lower confidence weight.
    """

    name = "theoddsapi"
    source = "TheOddsAPI"
    category = MarketCategory.SPORTS
    confidence = 0.7
    base_url = "https://api.the-odds-api.com"
    enabled_by_default = False

    async def fetch(self, market_id: str) -> Quote:
        if not self.api_key:
            raise self._fail("missing API key")
        sport_key = ODDS_SPORT_KEYS.get(market_id.upper())
        if sport_key is None:
            raise self._fail(f"unsupported sport {market_id!r}")

        data = await self._get_json(
            f"/v4/sports/{sport_key}/odds",
            params={"apiKey": self.api_key, "regions": "us", "markets": "h2h"},
        )
        outcomes = _dig(data, 0, "bookmakers", 0, "markets", 0, "outcomes")
        if not isinstance(outcomes, list) or not outcomes:
            raise self._fail("no odds data")

        try:
            favourite = min(outcomes, key=lambda o: float(o["price"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise self._fail("malformed odds") from exc
        name = favourite.get("name")
        if not isinstance(name, str) or not name:
            raise self._fail("malformed odds")
        return self._quote(market_id, name)


def _dig(data: Any, *path: str | int) -> Any:
    """Walk nested dicts/lists, returning None at the first missing step."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(data, list) or len(data) <= step:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[step] if isinstance(step, int) else data.get(step)
    return data
