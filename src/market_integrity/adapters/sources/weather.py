"""Weather source — current temperature from OpenWeather."""

from __future__ import annotations

from market_integrity.adapters.base import SourceAdapter
from market_integrity.adapters.registry import register
from market_integrity.models import MarketCategory, Quote


@register
class OpenWeatherAdapter(SourceAdapter):
    """Current temperature (metric) for the city in ``City-...`` market ids."""

    name = "openweather"
    source = "OpenWeather"
    category = MarketCategory.WEATHER
    confidence = 0.95
    base_url = "https://api.openweathermap.org"

    async def fetch(self, market_id: str) -> Quote:
        if not self.api_key:
            raise self._fail("missing API key")
        city = market_id.split("-")[0]
        if not city:
            raise self._fail(f"invalid market id {market_id!r}")
        data = await self._get_json(
            "/data/2.5/weather",
            params={"q": city, "units": "metric", "appid": self.api_key},
        )
        main = data.get("main") if isinstance(data, dict) else None
        if not isinstance(main, dict):
            raise self._fail("invalid response")
        return self._quote(market_id, self._numeric(main.get("temp"), "temperature"))
