"""
Scanner Agent - Environment Scan
Concurrent read of public market and news sources merged into one scan record.

Sources:
- DefiLlama: chain TVL, yield pools, protocols
- CoinGecko: trending coins, price
- RSS: Sui blog, CoinTelegraph, Decrypt

No retries: a failed source is logged and treated as absent data.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from data_sources.coingecko import CoinGeckoClient, CoinPrice, TrendingCoin
from data_sources.defillama import ChainTVL, DefiLlamaClient, ProtocolData, YieldPool
from data_sources.rss import RSSClient, RSSItem
from infrastructure.activity_log import ActivityLog, AgentPhase
from infrastructure.config import DataSourceConfig

from .models import ScanSnapshot

logger = logging.getLogger("Scanner")


def _signed(value: float, digits: int) -> str:
    return f"{'+' if value > 0 else ''}{value:.{digits}f}"


@dataclass
class ScanResult:
    chain: Optional[ChainTVL] = None
    yields: List[YieldPool] = field(default_factory=list)
    protocols: List[ProtocolData] = field(default_factory=list)
    trending: List[TrendingCoin] = field(default_factory=list)
    price: Optional[CoinPrice] = None
    news: List[RSSItem] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)

    def stats(self) -> Dict[str, Any]:
        return {
            "sui_tvl": (
                f"${self.chain.tvl / 1e9:.2f}B ({_signed(self.chain.change_1d, 1)}% 24h)"
                if self.chain else "unavailable"
            ),
            "sui_price": (
                f"${self.price.usd:.4f} ({_signed(self.price.usd_24h_change, 1)}%)"
                if self.price else "unavailable"
            ),
            "protocols": len(self.protocols),
            "yield_pools": len(self.yields),
            "trending": len(self.trending),
            "news": len(self.news),
        }

    def to_text(self) -> str:
        """Flattened rendering used as language-model context"""
        parts = []

        if self.chain:
            parts.append(
                "=== SUI CHAIN ===\n"
                f"TVL: ${self.chain.tvl / 1e9:.2f}B | 24h: {_signed(self.chain.change_1d, 2)}% | "
                f"7d: {_signed(self.chain.change_7d, 2)}%"
            )

        if self.price:
            parts.append(
                "=== SUI PRICE ===\n"
                f"${self.price.usd:.4f} | 24h: {_signed(self.price.usd_24h_change, 2)}% | "
                f"MCap: ${self.price.usd_market_cap / 1e9:.2f}B"
            )

        if self.protocols:
            lines = [
                f"- {p.name} | {p.category} | TVL: ${p.tvl / 1e6:.1f}M | "
                f"24h: {_signed(p.change_1d, 1)}% | 7d: {_signed(p.change_7d, 1)}%"
                for p in self.protocols[:15]
            ]
            parts.append("=== TOP SUI PROTOCOLS (by TVL) ===\n" + "\n".join(lines))

        if self.yields:
            lines = [
                f"- {p.project} | {p.symbol} | APY: {p.apy:.2f}% | TVL: ${p.tvl_usd / 1e6:.1f}M"
                for p in self.yields[:15]
            ]
            parts.append("=== TOP SUI YIELD POOLS ===\n" + "\n".join(lines))

        if self.trending:
            lines = [f"- {c.name} ({c.symbol}) — rank #{c.market_cap_rank}" for c in self.trending]
            parts.append("=== TRENDING COINS (CoinGecko) ===\n" + "\n".join(lines))

        if self.news:
            lines = [f"- [{n.pub_date or 'recent'}] {n.title}" for n in self.news[:15]]
            parts.append("=== RECENT NEWS ===\n" + "\n".join(lines))

        return "\n\n".join(parts)


class Scanner:
    def __init__(self, config: DataSourceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.defillama = DefiLlamaClient(config, client)
        self.coingecko = CoinGeckoClient(config, client)
        self.rss = RSSClient(config, client)

    async def scan(self) -> ScanResult:
        logger.info("Fetching DefiLlama, CoinGecko, RSS feeds in parallel...")

        named = [
            ("defillama:chains", self.defillama.get_chain_tvl()),
            ("defillama:yields", self.defillama.get_yield_pools()),
            ("defillama:protocols", self.defillama.get_protocols()),
            ("coingecko:trending", self.coingecko.get_trending()),
            ("coingecko:price", self.coingecko.get_price()),
        ] + [
            (f"rss:{label}", self.rss.fetch_feed(url, label))
            for url, label in self.config.rss_feeds
        ]

        results = await asyncio.gather(*(coro for _, coro in named), return_exceptions=True)

        values = {}
        failed = []
        for (name, _), result in zip(named, results):
            if isinstance(result, Exception):
                logger.warning(f"Source {name} failed: {result}")
                result = None
            if not result:
                failed.append(name)
            values[name] = result

        news: List[RSSItem] = []
        for url, label in self.config.rss_feeds:
            news.extend(values.get(f"rss:{label}") or [])

        return ScanResult(
            chain=values["defillama:chains"],
            yields=values["defillama:yields"] or [],
            protocols=values["defillama:protocols"] or [],
            trending=values["coingecko:trending"] or [],
            price=values["coingecko:price"],
            news=news,
            failed_sources=failed,
        )

    async def run(self, activity: ActivityLog) -> ScanSnapshot:
        """SCAN phase: scan, log the stats, return the LLM-ready snapshot"""
        activity.log(AgentPhase.SCAN, "Starting environment scan...")
        result = await self.scan()
        stats = result.stats()

        activity.log(AgentPhase.SCAN, f"Sui TVL: {stats['sui_tvl']}")
        activity.log(AgentPhase.SCAN, f"SUI Price: {stats['sui_price']}")
        activity.log(AgentPhase.SCAN, f"Protocols scanned: {stats['protocols']}")
        activity.log(AgentPhase.SCAN, f"Yield pools found: {stats['yield_pools']}")
        activity.log(AgentPhase.SCAN, f"Trending coins: {stats['trending']}")
        activity.log(AgentPhase.SCAN, f"News articles: {stats['news']}")
        if result.failed_sources:
            activity.log(AgentPhase.SCAN, f"Sources unavailable: {', '.join(result.failed_sources)}")
        activity.log(AgentPhase.SCAN, "Scan complete.", stats)

        total = 5 + len(self.config.rss_feeds)
        return ScanSnapshot(
            text=result.to_text(),
            stats=stats,
            sources_ok=total - len(result.failed_sources),
            sources_total=total,
        )
