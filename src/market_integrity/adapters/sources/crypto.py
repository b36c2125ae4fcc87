"""Crypto spot price sources — Binance and CoinGecko.

Market identifiers take the form ``COIN-CURRENCY`` (``BTC-USDT``).
"""

from __future__ import annotations

from market_integrity.adapters.base import SourceAdapter
from market_integrity.adapters.registry import register
from market_integrity.models import MarketCategory, Quote

COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "SOL": "solana",
    "MATIC": "matic-network",
    "ADA": "cardano",
}


@register
class BinanceAdapter(SourceAdapter):
    """Last traded price from Binance's public ticker endpoint."""

    name = "binance"
    source = "Binance"
    category = MarketCategory.CRYPTO
    confidence = 0.95
    base_url = "https://api.binance.com"

    @staticmethod
    def symbol_for(market_id: str) -> str | None:
        """``ETH-USDT`` -> ``ETHUSDT``; None when either half is missing."""
        coin, _, currency = market_id.partition("-")
        if not coin or not currency:
            return None
        return f"{coin}{currency}".upper()

    async def fetch(self, market_id: str) -> Quote:
        symbol = self.symbol_for(market_id)
        if symbol is None:
            raise self._fail(f"invalid market id {market_id!r}")
        data = await self._get_json("/api/v3/ticker/price", params={"symbol": symbol})
        if not isinstance(data, dict):
            raise self._fail("invalid response")
        return self._quote(market_id, self._numeric(data.get("price"), "price"))


@register
class CoinGeckoAdapter(SourceAdapter):
    """USD price from CoinGecko's simple price endpoint."""

    name = "coingecko"
    source = "CoinGecko"
    category = MarketCategory.CRYPTO
    confidence = 0.95
    base_url = "https://api.coingecko.com"

    async def fetch(self, market_id: str) -> Quote:
        symbol = market_id.split("-")[0].upper()
        coin_id = COINGECKO_IDS.get(symbol)
        if coin_id is None:
            raise self._fail(f"unsupported symbol {symbol!r}")
        data = await self._get_json(
            "/api/v3/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
        )
        entry = data.get(coin_id) if isinstance(data, dict) else None
        if not isinstance(entry, dict):
            raise self._fail("invalid response")
        return self._quote(market_id, self._numeric(entry.get("usd"), "price"))
