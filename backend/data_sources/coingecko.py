"""
CoinGecko API Client
Trending coins and simple price for the tracked coin (free tier, no key).
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx

from infrastructure.config import DataSourceConfig

logger = logging.getLogger("CoinGecko")


@dataclass
class TrendingCoin:
    name: str
    symbol: str
    market_cap_rank: int
    price_btc: float
    score: int


@dataclass
class CoinPrice:
    usd: float
    usd_24h_change: float
    usd_market_cap: float


class CoinGeckoClient:
    def __init__(self, config: DataSourceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    async def _fetch_json(self, endpoint: str, params: dict = None) -> Any:
        url = f"{self.config.coingecko_url}{endpoint}"
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, timeout=self.config.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except Exception as e:
            logger.warning(f"CoinGecko request failed for {endpoint}: {e}")
            return None

    async def get_trending(self) -> List[TrendingCoin]:
        data = await self._fetch_json("/search/trending")
        if not isinstance(data, dict):
            return []
        coins = []
        for entry in (data.get("coins") or [])[:self.config.max_trending]:
            item = (entry or {}).get("item") or {}
            coins.append(TrendingCoin(
                name=item.get("name") or "unknown",
                symbol=item.get("symbol") or "???",
                market_cap_rank=int(item.get("market_cap_rank") or 0),
                price_btc=float(item.get("price_btc") or 0),
                score=int(item.get("score") or 0),
            ))
        return coins

    async def get_price(self) -> Optional[CoinPrice]:
        data = await self._fetch_json("/simple/price", {
            "ids": self.config.coin_id,
            "vs_currencies": "usd",
            "include_24hr_change": "true",
            "include_market_cap": "true",
        })
        coin = (data or {}).get(self.config.coin_id) if isinstance(data, dict) else None
        if not coin:
            return None
        return CoinPrice(
            usd=float(coin.get("usd") or 0),
            usd_24h_change=float(coin.get("usd_24h_change") or 0),
            usd_market_cap=float(coin.get("usd_market_cap") or 0),
        )
