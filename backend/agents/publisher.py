"""
Publisher - PACKAGE + PUBLISH phases

Two ledger transactions, strictly ordered:
1. create_listing → listing id + ListingCap (confirmed before continuing)
2. encrypt under the new listing id → upload envelope → update_blob_id

Anything failing after step 1 leaves a listing with an empty content address.
That state is reported as PARTIAL with the ids needed for reattach().
Ledger writes are never retried automatically.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from infrastructure.activity_log import ActivityLog, AgentPhase
from infrastructure.config import SealForgeConfig
from infrastructure.errors import EncryptionError, LedgerError, SealForgeError, StorageError
from seal.encryptor import EnvelopeEncryptor
from services.ledger import LedgerClient, sui_to_mist
from services.treasury import TreasuryService

from .models import IntelligenceArtifact, Signal

logger = logging.getLogger("Publisher")


class BlobWriter(Protocol):
    async def put(self, data: bytes, epochs: Optional[int] = None) -> str:
        ...


class PublishStatus(str, Enum):
    PUBLISHED = "published"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class PublishResult:
    status: PublishStatus
    title: str
    listing_id: Optional[str] = None
    cap_id: Optional[str] = None
    blob_id: Optional[str] = None
    price_sui: float = 0.0
    confidence: int = 0
    digests: List[str] = field(default_factory=list)
    explorer_url: Optional[str] = None
    step: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == PublishStatus.PUBLISHED

    def to_dict(self) -> Dict:
        result = vars(self).copy()
        result["status"] = self.status.value
        return result


class Publisher:
    def __init__(
        self,
        ledger: LedgerClient,
        storage: BlobWriter,
        encryptor: EnvelopeEncryptor,
        config: SealForgeConfig,
        treasury: Optional[TreasuryService] = None,
    ):
        self.ledger = ledger
        self.storage = storage
        self.encryptor = encryptor
        self.config = config
        self.treasury = treasury

    async def publish(
        self,
        signal: Signal,
        artifact: IntelligenceArtifact,
        activity: Optional[ActivityLog] = None,
    ) -> PublishResult:
        result = await self.publish_content(
            signal.title,
            signal.description,
            signal.theme.value,
            signal.price_sui,
            artifact.to_bytes(),
            activity,
        )
        result.confidence = artifact.confidence
        return result

    async def publish_content(
        self,
        title: str,
        description: str,
        theme: str,
        price_sui: float,
        plaintext: bytes,
        activity: Optional[ActivityLog] = None,
    ) -> PublishResult:
        activity = activity or ActivityLog()
        result = PublishResult(status=PublishStatus.FAILED, title=title, price_sui=price_sui)

        activity.log(AgentPhase.PUBLISH, f'Creating listing: "{title}"...')
        try:
            created = await self.ledger.create_listing(title, description, theme, sui_to_mist(price_sui))
        except SealForgeError as e:
            logger.error(f"❌ create_listing failed for '{title}': {e}")
            result.step = "create_listing"
            result.error = str(e)
            return result

        result.listing_id = created.listing_id
        result.cap_id = created.cap_id
        result.digests.append(created.digest)
        result.explorer_url = self.config.explorer_link("object", created.listing_id)
        activity.log(AgentPhase.PUBLISH, f"Listing: {created.listing_id}")

        # From here on a failure leaves an orphaned listing
        result.status = PublishStatus.PARTIAL

        activity.log(AgentPhase.PACKAGE, f"Artifact: {len(plaintext)} bytes")
        try:
            envelope = self.encryptor.encrypt(created.listing_id, plaintext)
        except EncryptionError as e:
            return self._partial(result, "encrypt", e)
        data = envelope.to_bytes()
        activity.log(AgentPhase.PACKAGE, f"Encrypted with Seal ({len(data)} bytes)")

        try:
            blob_id = await self.storage.put(data, epochs=self.config.walrus.epochs)
        except StorageError as e:
            return self._partial(result, "upload", e)
        result.blob_id = blob_id
        activity.log(AgentPhase.PACKAGE, f"Walrus blob: {blob_id}")

        try:
            receipt = await self.ledger.update_content_address(created.cap_id, created.listing_id, blob_id)
        except LedgerError as e:
            return self._partial(result, "update_blob_id", e)
        result.digests.append(receipt.digest)

        result.status = PublishStatus.PUBLISHED
        activity.log(AgentPhase.PUBLISH, f"Live on marketplace! Price: {price_sui} SUI")
        logger.info(f"✅ Published '{title}' → {created.listing_id}")

        if self.treasury is not None and await self.treasury.on_published(title):
            activity.log(AgentPhase.PUBLISH, "Treasury: content + gas recorded")

        return result

    def _partial(self, result: PublishResult, step: str, error: Exception) -> PublishResult:
        result.step = step
        result.error = str(error)
        logger.error(
            f"⚠️ {step} failed for listing {result.listing_id} (cap {result.cap_id}): {error}. "
            f"Listing has no content; use reattach once a blob is available."
        )
        return result

    async def reattach(self, listing_id: str, cap_id: str, blob_id: str) -> PublishResult:
        """Attach a content address to a listing left in the PARTIAL state"""
        listing = await self.ledger.get_listing(listing_id)
        result = PublishResult(
            status=PublishStatus.PARTIAL,
            title=listing.title,
            listing_id=listing_id,
            cap_id=cap_id,
            blob_id=blob_id,
            price_sui=listing.price_sui,
            explorer_url=self.config.explorer_link("object", listing_id),
        )
        try:
            receipt = await self.ledger.update_content_address(cap_id, listing_id, blob_id)
        except LedgerError as e:
            return self._partial(result, "update_blob_id", e)
        result.digests.append(receipt.digest)
        result.status = PublishStatus.PUBLISHED
        logger.info(f"✅ Reattached blob {blob_id} to {listing_id}")
        return result
