"""
Ledger model and client interface
Listing / Marketplace / AgentTreasury records and the calls the agent makes on them.

The admission predicate (`seal_approve`) lives here once so the local ledger
and its callers evaluate exactly the same rule as the on-chain contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from seal.identity import LISTING_ID_LENGTH, normalize_object_id, object_id_to_bytes

MIST_PER_SUI = 1_000_000_000


def sui_to_mist(amount_sui: float) -> int:
    return int(round(amount_sui * MIST_PER_SUI))


def mist_to_sui(amount_mist: int) -> float:
    return amount_mist / MIST_PER_SUI


def decode_bytes_field(value: Any) -> str:
    """Move vector<u8> fields arrive as int lists (or already as strings)"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return bytes(value).decode("utf-8", errors="replace")


@dataclass
class Listing:
    object_id: str
    creator: str
    title: str
    description: str
    theme: str
    price_mist: int
    walrus_blob_id: str = ""
    buyers: List[str] = field(default_factory=list)
    total_revenue: int = 0
    is_active: bool = True
    created_at: int = 0

    @property
    def price_sui(self) -> float:
        return mist_to_sui(self.price_mist)

    @property
    def has_content(self) -> bool:
        return bool(self.walrus_blob_id)

    @classmethod
    def from_fields(cls, object_id: str, fields: Dict[str, Any]) -> "Listing":
        return cls(
            object_id=object_id,
            creator=fields.get("creator", ""),
            title=decode_bytes_field(fields.get("title")),
            description=decode_bytes_field(fields.get("description")),
            theme=decode_bytes_field(fields.get("theme")),
            price_mist=int(fields.get("price") or 0),
            walrus_blob_id=decode_bytes_field(fields.get("walrus_blob_id")),
            buyers=list(fields.get("buyers") or []),
            total_revenue=int(fields.get("total_revenue") or 0),
            is_active=bool(fields.get("is_active", True)),
            created_at=int(fields.get("created_at") or 0),
        )


@dataclass
class Marketplace:
    object_id: str
    listings: List[str] = field(default_factory=list)
    total_listings: int = 0
    total_sales: int = 0


@dataclass
class TreasuryState:
    object_id: str
    agent_name: str = ""
    total_earned: int = 0
    total_spent: int = 0
    total_content_created: int = 0
    total_sales: int = 0

    @property
    def net_pnl_mist(self) -> int:
        return self.total_earned - self.total_spent

    def summary(self) -> Dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "content_created": self.total_content_created,
            "total_sales": self.total_sales,
            "total_earned_sui": round(mist_to_sui(self.total_earned), 4),
            "total_spent_sui": round(mist_to_sui(self.total_spent), 4),
            "net_pnl_sui": round(mist_to_sui(self.net_pnl_mist), 4),
        }


@dataclass
class CreatedListing:
    listing_id: str
    cap_id: str
    digest: str


@dataclass
class TxReceipt:
    digest: str
    ok: bool = True
    events: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class PurchaseEvent:
    listing_id: str
    buyer: str
    amount_mist: int
    digest: str = ""


def seal_approve_admits(identifier: bytes, listing: Optional[Listing], sender: str) -> bool:
    """
    Identifier prefix must be the listing's own object id, and the sender must be
    its creator or a buyer. Deactivation does not revoke existing access.
    """
    if listing is None or len(identifier) <= LISTING_ID_LENGTH:
        return False
    if identifier[:LISTING_ID_LENGTH] != object_id_to_bytes(listing.object_id):
        return False
    sender = normalize_object_id(sender)
    if sender == normalize_object_id(listing.creator):
        return True
    return any(normalize_object_id(b) == sender for b in listing.buyers)


class LedgerClient(ABC):
    """Calls the agent makes against the marketplace and treasury contracts"""

    @property
    @abstractmethod
    def address(self) -> str:
        ...

    @abstractmethod
    async def create_listing(self, title: str, description: str, theme: str, price_mist: int) -> CreatedListing:
        ...

    @abstractmethod
    async def update_content_address(self, cap_id: str, listing_id: str, blob_id: str) -> TxReceipt:
        ...

    @abstractmethod
    async def purchase(self, listing_id: str) -> TxReceipt:
        ...

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Listing:
        ...

    @abstractmethod
    async def get_marketplace(self) -> Marketplace:
        ...

    @abstractmethod
    async def evaluate_admission(self, identifier: bytes, listing_id: str, sender: str) -> bool:
        ...

    @abstractmethod
    async def record_content_created(self, title: str) -> TxReceipt:
        ...

    @abstractmethod
    async def record_earning(self, description: str, amount_mist: int) -> TxReceipt:
        ...

    @abstractmethod
    async def record_spending(self, description: str, amount_mist: int) -> TxReceipt:
        ...

    @abstractmethod
    async def get_treasury(self) -> Optional[TreasuryState]:
        ...

    @abstractmethod
    async def list_purchase_events(self, limit: int = 50) -> List[PurchaseEvent]:
        ...

    async def list_listings(self) -> List[Listing]:
        marketplace = await self.get_marketplace()
        return [await self.get_listing(listing_id) for listing_id in marketplace.listings]

    async def close(self):
        pass
