"""
Hunter - HUNT phase
Follows a signal's hunt queries: URLs are fetched with a bounded timeout,
anything else becomes a research pointer. The scan itself is always the last source.
"""

import asyncio
import logging
from typing import List, Optional
from urllib.parse import quote, urlparse

import httpx

from infrastructure.activity_log import ActivityLog, AgentPhase
from infrastructure.config import PipelineConfig

from .models import HuntedSource, Signal, SourceKind

logger = logging.getLogger("Hunter")

SCAN_SOURCE_TITLE = "SealForge Environment Scan"
SCAN_SOURCE_URL = "https://api.llama.fi/v2/chains"
SEARCH_URL = "https://www.google.com/search?q="


def is_url(query: str) -> bool:
    return query.startswith("http")


class Hunter:
    def __init__(self, config: PipelineConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    async def _fetch(self, url: str) -> Optional[HuntedSource]:
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self.config.hunt_timeout)
            else:
                async with httpx.AsyncClient(timeout=self.config.hunt_timeout, follow_redirects=True) as client:
                    response = await client.get(url)
        except Exception as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Failed to fetch {url}: HTTP {response.status_code}")
            return None

        return HuntedSource(
            title=f"API: {urlparse(url).path}",
            url=url,
            content=response.text[:self.config.hunt_snippet_chars],
            kind=SourceKind.API,
        )

    async def _follow(self, query: str) -> Optional[HuntedSource]:
        if is_url(query):
            return await self._fetch(query)
        return HuntedSource(
            title=f"Research: {query}",
            url=SEARCH_URL + quote(query, safe="-_.!~*'()"),
            content=f"Search query: {query}",
            kind=SourceKind.WEB,
        )

    async def hunt(self, signal: Signal, scan_text: str, activity: Optional[ActivityLog] = None) -> List[HuntedSource]:
        activity = activity or ActivityLog()
        activity.log(AgentPhase.HUNT, f'Hunting sources for "{signal.title}"...')
        for query in signal.hunt_queries:
            activity.log(AgentPhase.HUNT, f"Fetching: {query[:60]}...")

        # Queries are independent; results keep query order
        results = await asyncio.gather(*(self._follow(q) for q in signal.hunt_queries))
        sources = [s for s in results if s is not None]
        skipped = len(signal.hunt_queries) - len(sources)
        if skipped:
            activity.log(AgentPhase.HUNT, f"Skipped {skipped} unreachable queries")

        sources.append(HuntedSource(
            title=SCAN_SOURCE_TITLE,
            url=SCAN_SOURCE_URL,
            content=scan_text[:self.config.scan_context_chars],
            kind=SourceKind.API,
        ))

        activity.log(AgentPhase.HUNT, f"Collected {len(sources)} sources.")
        return sources
