"""
Treasury Service
Agent P&L bookkeeping on the AgentTreasury object: content created, earnings
from sales and estimated gas spend.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from infrastructure.errors import SealForgeError

from .ledger import LedgerClient, mist_to_sui

logger = logging.getLogger("Treasury")


@dataclass
class BackfillReport:
    content_recorded: int = 0
    earnings_recorded: int = 0
    earned_mist: int = 0
    spent_mist: int = 0
    failures: List[str] = field(default_factory=list)
    final_state: Optional[Dict[str, Any]] = None


class TreasuryService:
    """Best-effort treasury records; a failed record never fails a publish"""

    def __init__(self, ledger: LedgerClient, gas_per_listing_mist: int = 10_000_000, delay: float = 0.5):
        self.ledger = ledger
        self.gas_per_listing_mist = gas_per_listing_mist
        self.delay = delay

    async def on_published(self, title: str) -> bool:
        try:
            await self.ledger.record_content_created(title)
            await self.ledger.record_spending(f"Gas: listing '{title[:40]}' + Walrus upload", self.gas_per_listing_mist)
            return True
        except SealForgeError as e:
            logger.warning(f"Treasury record skipped for '{title}': {e}")
            return False

    async def pnl(self) -> Optional[Dict[str, Any]]:
        state = await self.ledger.get_treasury()
        return state.summary() if state else None

    async def backfill(self) -> BackfillReport:
        """Populate the treasury from marketplace state and purchase events"""
        report = BackfillReport()
        marketplace = await self.ledger.get_marketplace()
        logger.info(f"Found {len(marketplace.listings)} listings")

        for listing_id in marketplace.listings:
            try:
                listing = await self.ledger.get_listing(listing_id)
                await self.ledger.record_content_created(listing.title)
                report.content_recorded += 1
                logger.info(f"  Recorded: \"{listing.title}\"")
            except SealForgeError as e:
                report.failures.append(f"content {listing_id}: {e}")
            await asyncio.sleep(self.delay)

        events = await self.ledger.list_purchase_events(limit=50)
        logger.info(f"Found {len(events)} purchase events")
        for event in events:
            try:
                await self.ledger.record_earning(f"Sale: {event.listing_id}", event.amount_mist)
                report.earnings_recorded += 1
                report.earned_mist += event.amount_mist
                logger.info(f"  Sale: listing {event.listing_id[:16]}... amount {mist_to_sui(event.amount_mist)} SUI")
            except SealForgeError as e:
                report.failures.append(f"earning {event.listing_id}: {e}")
            await asyncio.sleep(self.delay)

        total_gas = len(marketplace.listings) * self.gas_per_listing_mist
        if total_gas:
            try:
                await self.ledger.record_spending(
                    f"Gas: {len(marketplace.listings)} listings + Walrus uploads", total_gas
                )
                report.spent_mist = total_gas
            except SealForgeError as e:
                report.failures.append(f"spending: {e}")

        report.final_state = await self.pnl()
        return report
