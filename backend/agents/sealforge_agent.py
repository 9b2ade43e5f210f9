"""
SealForge Agent
Autonomous crypto intelligence producer and consumer on Sui.

Producer pipeline, per run:
    SCAN → IDENTIFY → (per signal) HUNT → REASON → PACKAGE → PUBLISH

Signals are processed one at a time with a pause between them; a failure
while producing one signal is logged and never aborts the others.

Consumer side: purchase a listing, then decrypt it through the custodians.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

import httpx

from infrastructure.activity_log import ActivityLog, AgentPhase
from infrastructure.config import SealForgeConfig, SecretsManager
from infrastructure.errors import LedgerError, SealForgeError
from infrastructure.result import Outcome
from seal.access import AccessProver
from seal.custodian import CustodianClient, HttpCustodianClient
from seal.decryptor import DecryptResult, Decryptor, FailureKind
from seal.encryptor import EnvelopeEncryptor
from seal.session import SessionKey
from services.keypair import SuiKeypair
from services.ledger import LedgerClient, Listing, TxReceipt
from services.replicate_llm import ReplicateClient
from services.sui_ledger import SuiLedgerClient
from services.treasury import BackfillReport, TreasuryService
from services.walrus_storage import WalrusStorage

from .hunter import Hunter
from .models import ScanSnapshot, Signal
from .publisher import Publisher, PublishResult, PublishStatus
from .reasoner import Reasoner
from .scanner import Scanner
from .signal_selector import LLM, SignalSelector

logger = logging.getLogger("SealForgeAgent")

VERIFY_MESSAGE = "Hello SealForge!"
VERIFY_PRICE_SUI = 0.1


class SealForgeAgent:
    def __init__(
        self,
        config: SealForgeConfig,
        ledger: LedgerClient,
        storage,
        keypair: SuiKeypair,
        custodians: Sequence[CustodianClient],
        llm: Optional[LLM] = None,
        scanner: Optional[Scanner] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.storage = storage
        self.keypair = keypair
        self.llm = llm

        self.scanner = scanner or Scanner(config.data_sources, http_client)
        self.selector = SignalSelector(llm, config.pipeline)
        self.hunter = Hunter(config.pipeline, http_client)
        self.reasoner = Reasoner(llm, config.pipeline)
        self.treasury = TreasuryService(ledger, config.pipeline.gas_per_listing_mist)

        self.encryptor = EnvelopeEncryptor(
            config.network.package_id,
            config.seal.custodians,
            config.seal.threshold,
        )
        self.publisher = Publisher(ledger, storage, self.encryptor, config, self.treasury)
        self.prover = AccessProver(keypair, config.network, config.seal)
        self.decryptor = Decryptor(storage, custodians, self.prover, timeout=config.seal.custodian_timeout)

        self.activity = ActivityLog(config.pipeline.activity_log_path)

    @classmethod
    def from_config(cls, config: SealForgeConfig, secrets: SecretsManager) -> "SealForgeAgent":
        """Wire the networked collaborators: Sui RPC, Walrus, Replicate, HTTP custodians"""
        config.require_deployed()
        keypair = SuiKeypair.from_secrets(secrets)
        logger.info(f"🤖 Agent address: {keypair.address}")
        return cls(
            config=config,
            ledger=SuiLedgerClient(config.network, keypair),
            storage=WalrusStorage(config.walrus),
            keypair=keypair,
            custodians=[
                HttpCustodianClient(info, timeout=config.seal.custodian_timeout)
                for info in config.seal.custodians
            ],
            llm=ReplicateClient(config.llm, secrets.get("REPLICATE_API_TOKEN")),
        )

    # ------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------

    async def scan_only(self) -> ScanSnapshot:
        return await self.scanner.run(self.activity)

    async def auto(self, topic_hint: Optional[str] = None) -> List[PublishResult]:
        """Full autonomous run; returns one PublishResult per signal attempted"""
        logger.info("🚀 SealForge agent starting autonomous run")
        snapshot = await self.scanner.run(self.activity)

        if snapshot.is_empty and not self.config.pipeline.publish_without_data:
            logger.warning(
                f"⚠️ Scan returned no data ({snapshot.sources_ok}/{snapshot.sources_total} sources). "
                f"Skipping publish; set SEALFORGE_PUBLISH_WITHOUT_DATA=true to publish template signals."
            )
            self.activity.log(AgentPhase.SCAN, "No market data available. Nothing published.")
            self.save_activity()
            return []

        signals = await self.selector.select(snapshot.text, topic_hint, self.activity)

        results = []
        for i, signal in enumerate(signals):
            if i > 0:
                await asyncio.sleep(self.config.pipeline.inter_item_delay)
            results.append(await self.produce(signal, snapshot.text))

        published = sum(1 for r in results if r.ok)
        logger.info(f"🏁 Run complete: {published}/{len(results)} published")
        self.save_activity()
        return results

    async def create(self, topic: str) -> List[PublishResult]:
        return await self.auto(topic_hint=topic)

    async def produce(self, signal: Signal, scan_text: str) -> PublishResult:
        """HUNT → REASON → PACKAGE → PUBLISH for one signal"""
        try:
            sources = await self.hunter.hunt(signal, scan_text, self.activity)
            artifact = await self.reasoner.reason(signal, sources, scan_text, self.activity)
            result = await self.publisher.publish(signal, artifact, self.activity)
        except Exception as e:
            logger.error(f"❌ Pipeline failed for '{signal.title}': {e}", exc_info=True)
            return PublishResult(status=PublishStatus.FAILED, title=signal.title, step="pipeline", error=str(e))

        if result.status == PublishStatus.PARTIAL:
            self.activity.log(
                AgentPhase.PUBLISH,
                f"Partial publish at {result.step}: listing {result.listing_id} has no content",
                {"listing_id": result.listing_id, "cap_id": result.cap_id},
            )
        elif result.status == PublishStatus.FAILED:
            self.activity.log(AgentPhase.PUBLISH, f"Publish failed: {result.error}")
        return result

    async def reattach(self, listing_id: str, cap_id: str, blob_id: str) -> PublishResult:
        return await self.publisher.reattach(listing_id, cap_id, blob_id)

    def save_activity(self):
        try:
            self.activity.save()
        except OSError as e:
            logger.warning(f"Could not save activity log: {e}")

    # ------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------

    def new_session(self, ttl_min: Optional[int] = None) -> SessionKey:
        return self.prover.create_session(ttl_min)

    async def decrypt(self, listing_id: str, session: Optional[SessionKey] = None) -> DecryptResult:
        try:
            listing = await self.ledger.get_listing(listing_id)
        except LedgerError as e:
            return DecryptResult.failure(FailureKind.DOWNLOAD, f"Listing lookup failed: {e}")

        logger.info(f"📄 Listing: \"{listing.title}\" ({listing.price_sui} SUI), blob {listing.walrus_blob_id or '-'}")
        return await self.decryptor.decrypt(listing.walrus_blob_id, listing_id, session or self.new_session())

    async def purchase(self, listing_id: str) -> Outcome[TxReceipt]:
        try:
            receipt = await self.ledger.purchase(listing_id)
        except SealForgeError as e:
            logger.error(f"❌ Purchase of {listing_id} failed: {e}")
            return Outcome.failure(e, step="purchase")
        logger.info(f"💰 Purchased {listing_id}: {self.config.explorer_link('tx', receipt.digest)}")
        return Outcome.success(receipt, step="purchase")

    async def list_listings(self) -> List[Listing]:
        return await self.ledger.list_listings()

    # ------------------------------------------------------------
    # Treasury / maintenance
    # ------------------------------------------------------------

    async def backfill_treasury(self) -> BackfillReport:
        return await self.treasury.backfill()

    async def verify_all(self) -> Dict[str, bool]:
        """Marketplace, treasury and a full create → encrypt → upload → attach → decrypt round trip"""
        checks: Dict[str, bool] = {}

        try:
            marketplace = await self.ledger.get_marketplace()
            checks["marketplace"] = True
            logger.info(f"✅ Marketplace {marketplace.object_id}: {marketplace.total_listings} listings")
        except SealForgeError as e:
            checks["marketplace"] = False
            logger.error(f"❌ Marketplace check failed: {e}")

        try:
            checks["treasury"] = await self.treasury.pnl() is not None
        except SealForgeError as e:
            checks["treasury"] = False
            logger.error(f"❌ Treasury check failed: {e}")

        published = await self.publisher.publish_content(
            "SealForge Verification",
            "Round-trip check of the encrypt/upload/attach/decrypt path",
            "blue-data",
            VERIFY_PRICE_SUI,
            VERIFY_MESSAGE.encode("utf-8"),
            self.activity,
        )
        checks["publish"] = published.ok
        if published.ok:
            decrypted = await self.decrypt(published.listing_id)
            checks["decrypt"] = decrypted.ok and decrypted.text == VERIFY_MESSAGE
            if not decrypted.ok:
                logger.error(f"❌ Decrypt check failed: {decrypted.describe()}")
        else:
            checks["decrypt"] = False

        for name, ok in checks.items():
            logger.info(f"{'✅' if ok else '❌'} {name}")
        return checks

    async def close(self):
        for resource in (self.ledger, self.storage, self.llm):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()


def with_deployment(config: SealForgeConfig, package_id: str, marketplace_id: str, custodians) -> SealForgeConfig:
    """Copy of `config` pointing at a specific deployment and custodian set"""
    return replace(
        config,
        network=replace(config.network, package_id=package_id, marketplace_id=marketplace_id),
        seal=replace(config.seal, custodians=tuple(custodians)),
    )
