"""
In-process ledger with the marketplace and treasury semantics of the Move
contracts. Used by offline runs (`demo`) and tests.
"""

import logging
import secrets
import time
from dataclasses import replace
from typing import Dict, List, Optional

from infrastructure.errors import LedgerError
from seal.identity import normalize_object_id

from .ledger import (
    CreatedListing,
    LedgerClient,
    Listing,
    Marketplace,
    PurchaseEvent,
    TreasuryState,
    TxReceipt,
    seal_approve_admits,
)

logger = logging.getLogger("LocalLedger")


def _new_object_id() -> str:
    return "0x" + secrets.token_hex(32)


def _new_digest() -> str:
    return secrets.token_hex(32)


class LocalLedger(LedgerClient):
    def __init__(self, sender: str, agent_name: str = "SealForge Agent", with_treasury: bool = True):
        self.sender = normalize_object_id(sender)
        self.package_id = _new_object_id()
        self.marketplace = Marketplace(object_id=_new_object_id())
        self.listings: Dict[str, Listing] = {}
        self.caps: Dict[str, str] = {}  # cap id -> listing id
        self.events: List[PurchaseEvent] = []
        self.treasury: Optional[TreasuryState] = (
            TreasuryState(object_id=_new_object_id(), agent_name=agent_name) if with_treasury else None
        )
        self.treasury_records: List[Dict] = []

    @property
    def address(self) -> str:
        return self.sender

    def _listing(self, listing_id: str) -> Listing:
        listing = self.listings.get(normalize_object_id(listing_id))
        if listing is None:
            raise LedgerError(f"Listing {listing_id} not found")
        return listing

    async def create_listing(self, title: str, description: str, theme: str, price_mist: int) -> CreatedListing:
        listing_id, cap_id = _new_object_id(), _new_object_id()
        self.listings[listing_id] = Listing(
            object_id=listing_id,
            creator=self.sender,
            title=title,
            description=description,
            theme=theme,
            price_mist=price_mist,
            created_at=int(time.time() * 1000),
        )
        self.caps[cap_id] = listing_id
        self.marketplace.listings.append(listing_id)
        self.marketplace.total_listings += 1
        logger.info(f"Listing created: {listing_id[:16]}... ({title})")
        return CreatedListing(listing_id=listing_id, cap_id=cap_id, digest=_new_digest())

    async def update_content_address(self, cap_id: str, listing_id: str, blob_id: str) -> TxReceipt:
        listing = self._listing(listing_id)
        if self.caps.get(normalize_object_id(cap_id)) != listing.object_id:
            raise LedgerError(f"Cap {cap_id} does not authorize listing {listing_id}")
        listing.walrus_blob_id = blob_id
        return TxReceipt(digest=_new_digest())

    async def purchase(self, listing_id: str, buyer: Optional[str] = None) -> TxReceipt:
        listing = self._listing(listing_id)
        buyer = normalize_object_id(buyer or self.sender)
        if not listing.is_active:
            raise LedgerError(f"Listing {listing_id} is not active")
        if buyer in listing.buyers:
            raise LedgerError(f"{buyer} already purchased {listing_id}")

        listing.buyers.append(buyer)
        listing.total_revenue += listing.price_mist
        self.marketplace.total_sales += 1
        digest = _new_digest()
        event = PurchaseEvent(listing.object_id, buyer, listing.price_mist, digest)
        self.events.append(event)
        return TxReceipt(digest=digest, events=[{
            "type": "ContentPurchased",
            "listing_id": event.listing_id,
            "buyer": event.buyer,
            "amount": event.amount_mist,
        }])

    def deactivate(self, listing_id: str):
        self._listing(listing_id).is_active = False

    async def get_listing(self, listing_id: str) -> Listing:
        listing = self._listing(listing_id)
        return replace(listing, buyers=list(listing.buyers))

    async def get_marketplace(self) -> Marketplace:
        return replace(self.marketplace, listings=list(self.marketplace.listings))

    async def evaluate_admission(self, identifier: bytes, listing_id: str, sender: str) -> bool:
        try:
            listing = self._listing(listing_id)
        except (LedgerError, ValueError):
            return False
        return seal_approve_admits(identifier, listing, sender)

    def _require_treasury(self) -> TreasuryState:
        if self.treasury is None:
            raise LedgerError("No treasury deployed")
        return self.treasury

    async def record_content_created(self, title: str) -> TxReceipt:
        self._require_treasury().total_content_created += 1
        self.treasury_records.append({"kind": "content_created", "title": title})
        return TxReceipt(digest=_new_digest())

    async def record_earning(self, description: str, amount_mist: int) -> TxReceipt:
        treasury = self._require_treasury()
        treasury.total_earned += amount_mist
        treasury.total_sales += 1
        self.treasury_records.append({"kind": "earning", "description": description, "amount": amount_mist})
        return TxReceipt(digest=_new_digest())

    async def record_spending(self, description: str, amount_mist: int) -> TxReceipt:
        self._require_treasury().total_spent += amount_mist
        self.treasury_records.append({"kind": "spending", "description": description, "amount": amount_mist})
        return TxReceipt(digest=_new_digest())

    async def get_treasury(self) -> Optional[TreasuryState]:
        return replace(self.treasury) if self.treasury else None

    async def list_purchase_events(self, limit: int = 50) -> List[PurchaseEvent]:
        return list(self.events[:limit])
