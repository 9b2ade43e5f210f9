"""
Publish Flow Tests
Two-transaction publish ordering, partial state and reattach, agent orchestration

Run: python -m pytest tests/test_publisher.py -v
"""

import json
from dataclasses import replace

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from agents.models import IntelligenceArtifact, ScanSnapshot
from agents.publisher import Publisher, PublishStatus
from agents.sealforge_agent import VERIFY_MESSAGE, SealForgeAgent
from infrastructure.config import NetworkConfig
from infrastructure.errors import LedgerError, StorageError
from seal.decryptor import FailureKind
from seal.encryptor import EnvelopeEncryptor
from services.ledger import sui_to_mist
from services.sui_ledger import SuiLedgerClient
from services.treasury import TreasuryService

from conftest import new_object_id

SCAN_TEXT = "=== SUI CHAIN ===\nTVL: $1.20B | 24h: -3.10% | 7d: +1.00%"


@pytest.fixture
def encryptor(ledger, custodians):
    return EnvelopeEncryptor(ledger.package_id, [c.info() for c in custodians], threshold=2)


@pytest.fixture
def publisher(ledger, storage, encryptor, config):
    return Publisher(ledger, storage, encryptor, config, TreasuryService(ledger, delay=0))


def scanner_returning(text):
    scanner = MagicMock()
    scanner.run = AsyncMock(return_value=ScanSnapshot(text=text, sources_ok=1 if text else 0, sources_total=8))
    return scanner


@pytest.fixture
def http_client():
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"tvl": 1})))


@pytest.fixture
def agent(config, ledger, storage, creator, custodian_clients, http_client):
    return SealForgeAgent(
        config, ledger, storage, creator, custodian_clients,
        llm=None, scanner=scanner_returning(SCAN_TEXT), http_client=http_client,
    )


# =============================================================================
# TEST: Publisher
# =============================================================================

class TestPublisher:

    @pytest.mark.asyncio
    async def test_publish_attaches_envelope(self, publisher, ledger, storage):
        result = await publisher.publish_content("Report", "desc", "blue-data", 0.5, b"secret report")

        assert result.status == PublishStatus.PUBLISHED
        assert result.ok
        assert len(result.digests) == 2
        listing = await ledger.get_listing(result.listing_id)
        assert listing.walrus_blob_id == result.blob_id
        assert listing.price_mist == sui_to_mist(0.5)
        assert result.blob_id in storage.blobs
        assert result.explorer_url.endswith(f"/object/{result.listing_id}")

    @pytest.mark.asyncio
    async def test_publish_records_treasury(self, publisher, ledger):
        await publisher.publish_content("Report", "desc", "blue-data", 0.5, b"x")

        kinds = [r["kind"] for r in ledger.treasury_records]
        assert kinds == ["content_created", "spending"]

    @pytest.mark.asyncio
    async def test_treasury_without_id_leaves_listing_published(self, ledger, storage, encryptor, config, creator):
        network = NetworkConfig(package_id=ledger.package_id, marketplace_id=new_object_id(), treasury_id=None)
        unreachable = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        treasury = TreasuryService(SuiLedgerClient(network, creator, unreachable))

        result = await Publisher(ledger, storage, encryptor, config, treasury).publish_content(
            "Report", "desc", "blue-data", 0.5, b"x"
        )

        assert result.status == PublishStatus.PUBLISHED
        assert (await ledger.get_listing(result.listing_id)).walrus_blob_id == result.blob_id

    @pytest.mark.asyncio
    async def test_create_failure_is_failed_without_upload(self, encryptor, config):
        ledger = AsyncMock()
        ledger.create_listing.side_effect = LedgerError("insufficient gas")
        storage = AsyncMock()

        result = await Publisher(ledger, storage, encryptor, config).publish_content("R", "d", "blue-data", 0.1, b"x")

        assert result.status == PublishStatus.FAILED
        assert result.step == "create_listing"
        assert result.listing_id is None
        storage.put.assert_not_awaited()
        ledger.update_content_address.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upload_failure_leaves_partial_listing(self, ledger, encryptor, config):
        storage = AsyncMock()
        storage.put.side_effect = StorageError("Walrus upload failed: 503", 503)
        treasury = TreasuryService(ledger)

        result = await Publisher(ledger, storage, encryptor, config, treasury).publish_content(
            "Report", "desc", "blue-data", 0.5, b"x"
        )

        assert result.status == PublishStatus.PARTIAL
        assert result.step == "upload"
        assert result.listing_id and result.cap_id
        assert result.blob_id is None
        assert "503" in result.error
        listing = await ledger.get_listing(result.listing_id)
        assert listing.walrus_blob_id == ""
        assert ledger.treasury_records == []

    @pytest.mark.asyncio
    async def test_update_failure_is_partial_with_blob(self, publisher, ledger):
        with patch.object(ledger, "update_content_address", AsyncMock(side_effect=LedgerError("object locked"))):
            result = await publisher.publish_content("Report", "desc", "blue-data", 0.5, b"x")

        assert result.status == PublishStatus.PARTIAL
        assert result.step == "update_blob_id"
        assert result.blob_id is not None

    @pytest.mark.asyncio
    async def test_encryption_failure_is_partial(self, ledger, storage, custodians, config):
        encryptor = EnvelopeEncryptor(ledger.package_id, [c.info() for c in custodians], threshold=3)

        result = await Publisher(ledger, storage, encryptor, config).publish_content("R", "d", "blue-data", 0.1, b"x")

        assert result.status == PublishStatus.PARTIAL
        assert result.step == "encrypt"
        assert storage.blobs == {}

    @pytest.mark.asyncio
    async def test_reattach_completes_partial_listing(self, ledger, storage, encryptor, config):
        failing = AsyncMock()
        failing.put.side_effect = StorageError("timeout")
        partial = await Publisher(ledger, failing, encryptor, config).publish_content(
            "Report", "desc", "blue-data", 0.5, b"x"
        )
        blob_id = await storage.put(b"uploaded later")

        result = await Publisher(ledger, storage, encryptor, config).reattach(partial.listing_id, partial.cap_id, blob_id)

        assert result.status == PublishStatus.PUBLISHED
        assert result.title == "Report"
        assert (await ledger.get_listing(partial.listing_id)).walrus_blob_id == blob_id

    @pytest.mark.asyncio
    async def test_reattach_with_foreign_cap_stays_partial(self, publisher, ledger):
        created = await ledger.create_listing("R", "d", "blue-data", 1)

        result = await publisher.reattach(created.listing_id, new_object_id(), "blob")

        assert result.status == PublishStatus.PARTIAL
        assert result.step == "update_blob_id"


# =============================================================================
# TEST: Agent orchestration
# =============================================================================

class TestAgentRun:

    @pytest.mark.asyncio
    async def test_empty_scan_publishes_nothing(self, agent, ledger):
        agent.scanner = scanner_returning("")

        results = await agent.auto()

        assert results == []
        assert ledger.listings == {}
        assert agent.activity.entries[-1].message == "No market data available. Nothing published."

    @pytest.mark.asyncio
    async def test_empty_scan_publishes_templates_when_enabled(self, agent, config):
        agent.config = replace(config, pipeline=replace(config.pipeline, publish_without_data=True))
        agent.scanner = scanner_returning("")

        results = await agent.auto()

        assert [r.status for r in results] == [PublishStatus.PUBLISHED, PublishStatus.PUBLISHED]

    @pytest.mark.asyncio
    async def test_auto_publishes_each_signal(self, agent, ledger):
        results = await agent.auto()

        assert len(results) == 2
        assert all(r.ok for r in results)
        assert len(ledger.marketplace.listings) == 2
        assert results[0].title == "Sui DeFi Capital Rotation Alert"

    @pytest.mark.asyncio
    async def test_failing_signal_does_not_abort_others(self, agent):
        calls = []

        async def flaky(signal, sources, scan_text, activity=None):
            calls.append(signal.title)
            if len(calls) == 1:
                raise RuntimeError("reasoner crashed")
            return agent.reasoner.fallback(signal, sources)

        with patch.object(agent.reasoner, "reason", side_effect=flaky):
            results = await agent.auto()

        assert [r.status for r in results] == [PublishStatus.FAILED, PublishStatus.PUBLISHED]
        assert results[0].step == "pipeline"
        assert "reasoner crashed" in results[0].error

    @pytest.mark.asyncio
    async def test_topic_hint_passed_to_selector(self, agent):
        with patch.object(agent.selector, "select", AsyncMock(return_value=[])) as select:
            await agent.create("Walrus storage")

        assert select.await_args.args[1] == "Walrus storage"

    @pytest.mark.asyncio
    async def test_creator_reads_own_report(self, agent):
        results = await agent.auto()

        decrypted = await agent.decrypt(results[0].listing_id)

        assert decrypted.ok, decrypted.describe()
        artifact = IntelligenceArtifact.from_bytes(decrypted.plaintext)
        assert artifact.signal.title == results[0].title
        assert json.loads(decrypted.text)["version"] == "1.0"

    @pytest.mark.asyncio
    async def test_decrypt_unknown_listing(self, agent):
        result = await agent.decrypt(new_object_id())

        assert not result.ok
        assert result.kind == FailureKind.DOWNLOAD

    @pytest.mark.asyncio
    async def test_purchase_outcome(self, agent, ledger):
        created = await ledger.create_listing("R", "d", "blue-data", 1)

        bought = await agent.purchase(created.listing_id)
        again = await agent.purchase(created.listing_id)

        assert bought.ok
        assert bought.step == "purchase"
        assert not again.ok
        assert isinstance(again.error, LedgerError)

    @pytest.mark.asyncio
    async def test_verify_all_local(self, agent, ledger):
        checks = await agent.verify_all()

        assert checks == {"marketplace": True, "treasury": True, "publish": True, "decrypt": True}
        titles = [listing.title for listing in await agent.list_listings()]
        assert titles == ["SealForge Verification"]

    @pytest.mark.asyncio
    async def test_backfill_through_agent(self, agent, ledger, buyer):
        created = await ledger.create_listing("R", "d", "blue-data", sui_to_mist(0.1))
        await ledger.purchase(created.listing_id, buyer=buyer.address)
        agent.treasury.delay = 0

        report = await agent.backfill_treasury()

        assert report.content_recorded == 1
        assert report.earned_mist == sui_to_mist(0.1)

    def test_verify_message(self):
        assert VERIFY_MESSAGE == "Hello SealForge!"
