"""
RSS news feeds (Sui blog, CoinTelegraph, Decrypt)
Lightweight regex parsing of <item> blocks; no feed library needed for title/link/date.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx

from infrastructure.config import DataSourceConfig

logger = logging.getLogger("RSS")

ITEM_RE = re.compile(r"<item>(.*?)</item>", re.IGNORECASE | re.DOTALL)
TITLE_RE = re.compile(r"<title>(?:<!\[CDATA\[)?(.*?)(?:\]\]>)?</title>", re.DOTALL)
LINK_RE = re.compile(r"<link>(.*?)</link>", re.DOTALL)
PUBDATE_RE = re.compile(r"<pubDate>(.*?)</pubDate>", re.DOTALL)
DESCRIPTION_RE = re.compile(r"<description>(?:<!\[CDATA\[)?(.*?)(?:\]\]>)?</description>", re.DOTALL)


@dataclass
class RSSItem:
    title: str
    link: str
    pub_date: str
    description: str
    source: str = ""


def _first(pattern: re.Pattern, block: str) -> str:
    match = pattern.search(block)
    return match.group(1).strip() if match else ""


def parse_rss(xml: str, source: str = "") -> List[RSSItem]:
    items = []
    for block in ITEM_RE.findall(xml):
        title = _first(TITLE_RE, block)
        if not title:
            continue
        items.append(RSSItem(
            title=title,
            link=_first(LINK_RE, block),
            pub_date=_first(PUBDATE_RE, block),
            description=_first(DESCRIPTION_RE, block)[:200],
            source=source,
        ))
    return items


class RSSClient:
    def __init__(self, config: DataSourceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    async def fetch_feed(self, url: str, label: str) -> List[RSSItem]:
        headers = {"User-Agent": self.config.user_agent}
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers, timeout=self.config.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout, follow_redirects=True) as client:
                    response = await client.get(url, headers=headers)
            if not response.is_success:
                logger.warning(f"RSS {label} returned {response.status_code}")
                return []
            return parse_rss(response.text, label)[:self.config.max_rss_items]
        except Exception as e:
            logger.warning(f"RSS {label} failed: {e}")
            return []
