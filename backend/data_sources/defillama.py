"""
DefiLlama API Client
Chain TVL, yield pools and protocol list, filtered to one chain.
Free, no API key. Failures degrade to None / [] and are logged.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx

from infrastructure.config import DataSourceConfig

logger = logging.getLogger("DefiLlama")


@dataclass
class ChainTVL:
    name: str
    tvl: float
    change_1d: float = 0.0
    change_7d: float = 0.0


@dataclass
class YieldPool:
    project: str
    symbol: str
    apy: float
    tvl_usd: float
    pool: str
    chain: str


@dataclass
class ProtocolData:
    name: str
    tvl: float
    change_1d: float
    change_7d: float
    category: str
    chains: List[str] = field(default_factory=list)


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class DefiLlamaClient:
    def __init__(self, config: DataSourceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    async def _fetch_json(self, url: str) -> Any:
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self.config.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.get(url)
            response.raise_for_status()
            return response.json()
        except Exception as e:
            logger.warning(f"DefiLlama request failed for {url}: {e}")
            return None

    async def get_chain_tvl(self) -> Optional[ChainTVL]:
        chains = await self._fetch_json(self.config.defillama_chains_url)
        if not isinstance(chains, list):
            return None
        for chain in chains:
            if isinstance(chain, dict) and chain.get("name") == self.config.chain_name:
                return ChainTVL(
                    name=self.config.chain_name,
                    tvl=_num(chain.get("tvl")),
                    change_1d=_num(chain.get("change_1d")),
                    change_7d=_num(chain.get("change_7d")),
                )
        return None

    async def get_yield_pools(self) -> List[YieldPool]:
        data = await self._fetch_json(self.config.defillama_yields_url)
        if not isinstance(data, dict):
            return []
        pools = [p for p in data.get("data") or [] if isinstance(p, dict) and p.get("chain") == self.config.chain_name]
        pools.sort(key=lambda p: _num(p.get("tvlUsd")), reverse=True)
        return [
            YieldPool(
                project=p.get("project") or "unknown",
                symbol=p.get("symbol") or "???",
                apy=_num(p.get("apy")),
                tvl_usd=_num(p.get("tvlUsd")),
                pool=p.get("pool") or "",
                chain=self.config.chain_name,
            )
            for p in pools[:self.config.max_yield_pools]
        ]

    async def get_protocols(self) -> List[ProtocolData]:
        protocols = await self._fetch_json(self.config.defillama_protocols_url)
        if not isinstance(protocols, list):
            return []
        on_chain = [
            p for p in protocols
            if isinstance(p, dict) and self.config.chain_name in (p.get("chains") or [])
        ]
        on_chain.sort(key=lambda p: _num(p.get("tvl")), reverse=True)
        return [
            ProtocolData(
                name=p.get("name") or "unknown",
                tvl=_num(p.get("tvl")),
                change_1d=_num(p.get("change_1d")),
                change_7d=_num(p.get("change_7d")),
                category=p.get("category") or "unknown",
                chains=list(p.get("chains") or []),
            )
            for p in on_chain[:self.config.max_protocols]
        ]
