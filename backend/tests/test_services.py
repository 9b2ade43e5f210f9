"""
Service Client Tests
Replicate LLM polling/backoff, Walrus storage, Sui ledger RPC, treasury bookkeeping

Run: python -m pytest tests/test_services.py -v
"""

import base64
import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from infrastructure.config import LLMConfig, NetworkConfig, SealForgeConfig, WalrusConfig
from infrastructure.errors import LedgerError, LLMError, LLMRateLimitError, StorageError
from seal.identity import EncryptionIdentifier
from services.keypair import SuiKeypair, verify_personal_message
from services.ledger import Listing, seal_approve_admits, sui_to_mist
from services.local_ledger import LocalLedger
from services.replicate_llm import ReplicateClient, prediction_output_text
from services.sui_ledger import SuiLedgerClient, find_created_object
from services.treasury import TreasuryService
from services.walrus_storage import LocalBlobStore, WalrusStorage, blob_id_from_response

from conftest import new_object_id

GET_URL = "https://api.replicate.com/v1/predictions/p1"


class ReplicateStub:
    """Scripted Replicate API: per-model create status codes, then poll states"""

    def __init__(self, create_status=None, poll=None):
        self.create_status = create_status or {}
        self.poll = list(poll or [{"status": "succeeded", "output": "ok"}])
        self.creates = []
        self.polls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            model = request.url.path.split("/models/")[1].rsplit("/predictions", 1)[0]
            self.creates.append(model)
            statuses = self.create_status.get(model, [201])
            status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
            if status >= 400:
                return httpx.Response(status, text="Request was throttled" if status == 429 else "boom")
            return httpx.Response(201, json={"id": "p1", "status": "starting", "urls": {"get": GET_URL}})

        self.polls += 1
        state = self.poll.pop(0) if len(self.poll) > 1 else self.poll[0]
        return httpx.Response(200, json=state)


def replicate(stub, **config):
    config.setdefault("poll_interval", 0)
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return ReplicateClient(LLMConfig(**config), "r8_test", client)


# =============================================================================
# TEST: Replicate LLM
# =============================================================================

class TestReplicateClient:

    @pytest.mark.asyncio
    async def test_polls_until_succeeded(self):
        stub = ReplicateStub(poll=[
            {"status": "starting"},
            {"status": "processing"},
            {"status": "succeeded", "output": ["{\"a\"", ": 1}"]},
        ])
        llm = replicate(stub)

        response = await llm.complete("system", "user")

        assert response.text == '{"a": 1}'
        assert response.model == "claude-4.5-sonnet via Replicate"
        assert stub.creates == ["anthropic/claude-4.5-sonnet"]
        assert stub.polls == 3
        await llm.close()

    @pytest.mark.asyncio
    async def test_primary_failure_uses_secondary(self):
        stub = ReplicateStub(create_status={"anthropic/claude-4.5-sonnet": [500]})
        llm = replicate(stub)

        response = await llm.complete("system", "user")

        assert stub.creates == ["anthropic/claude-4.5-sonnet", "deepseek-ai/deepseek-r1"]
        assert response.model == "deepseek-r1 via Replicate"

    @pytest.mark.asyncio
    async def test_non_json_primary_reply_uses_secondary(self):
        stub = ReplicateStub()

        def gateway(request):
            if request.method == "POST" and "anthropic" in request.url.path:
                stub.creates.append("anthropic/claude-4.5-sonnet")
                return httpx.Response(200, text="<html>gateway</html>")
            return stub(request)

        llm = replicate(gateway)

        response = await llm.complete("system", "user")

        assert stub.creates == ["anthropic/claude-4.5-sonnet", "deepseek-ai/deepseek-r1"]
        assert response.model == "deepseek-r1 via Replicate"

    @pytest.mark.asyncio
    async def test_non_json_poll_reply_is_llm_error(self):
        stub = ReplicateStub()

        def gateway(request):
            if request.method == "GET":
                return httpx.Response(200, text="<html>gateway</html>")
            return stub(request)

        with pytest.raises(LLMError, match="non-JSON"):
            await replicate(gateway).run("anthropic/claude-4.5-sonnet", {"prompt": "x"})

    @pytest.mark.asyncio
    async def test_secondary_rate_limit_retried_with_fixed_backoff(self):
        stub = ReplicateStub(create_status={
            "anthropic/claude-4.5-sonnet": [500],
            "deepseek-ai/deepseek-r1": [429, 429, 201],
        })
        llm = replicate(stub, rate_limit_backoff=12.0)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await llm.complete("system", "user")

        assert response.text == "ok"
        assert stub.creates.count("deepseek-ai/deepseek-r1") == 3
        backoffs = [c.args[0] for c in sleep.await_args_list if c.args[0] == 12.0]
        assert backoffs == [12.0, 12.0]

    @pytest.mark.asyncio
    async def test_secondary_gives_up_after_three_attempts(self):
        stub = ReplicateStub(create_status={
            "anthropic/claude-4.5-sonnet": [500],
            "deepseek-ai/deepseek-r1": [429],
        })
        llm = replicate(stub, rate_limit_backoff=0)

        with pytest.raises(LLMRateLimitError):
            await llm.complete("system", "user")
        assert stub.creates.count("deepseek-ai/deepseek-r1") == 3

    @pytest.mark.asyncio
    async def test_other_secondary_errors_not_retried(self):
        stub = ReplicateStub(create_status={
            "anthropic/claude-4.5-sonnet": [500],
            "deepseek-ai/deepseek-r1": [500],
        })
        llm = replicate(stub, rate_limit_backoff=0)

        with pytest.raises(LLMError):
            await llm.complete("system", "user")
        assert stub.creates.count("deepseek-ai/deepseek-r1") == 1

    @pytest.mark.asyncio
    async def test_throttled_prediction_failure_is_rate_limit(self):
        stub = ReplicateStub(poll=[{"status": "failed", "error": "Throttled: too many requests"}])
        llm = replicate(stub)

        with pytest.raises(LLMRateLimitError):
            await llm.run("deepseek-ai/deepseek-r1", {"prompt": "x"})

    @pytest.mark.asyncio
    async def test_canceled_prediction(self):
        llm = replicate(ReplicateStub(poll=[{"status": "canceled"}]))

        with pytest.raises(LLMError, match="canceled"):
            await llm.run("anthropic/claude-4.5-sonnet", {"prompt": "x"})

    @pytest.mark.asyncio
    async def test_wait_ceiling(self):
        llm = replicate(ReplicateStub(poll=[{"status": "processing"}]), max_wait=0)

        with pytest.raises(LLMError, match="timed out"):
            await llm.run("anthropic/claude-4.5-sonnet", {"prompt": "x"})

    @pytest.mark.asyncio
    async def test_missing_token_fails_without_network(self):
        def unreachable(request):
            raise AssertionError("no request expected")

        client = httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
        llm = ReplicateClient(LLMConfig(), None, client)

        with pytest.raises(LLMError, match="REPLICATE_API_TOKEN"):
            await llm.create_prediction("anthropic/claude-4.5-sonnet", {})

    def test_structured_output_serialized(self):
        assert prediction_output_text({"a": 1}) == '{"a": 1}'


# =============================================================================
# TEST: Walrus storage
# =============================================================================

class TestWalrusStorage:

    def test_blob_id_from_fresh_upload(self):
        assert blob_id_from_response({"newlyCreated": {"blobObject": {"blobId": "fresh"}}}) == "fresh"

    def test_blob_id_from_already_certified(self):
        assert blob_id_from_response({"alreadyCertified": {"blobId": "known"}}) == "known"

    def test_unexpected_upload_response(self):
        with pytest.raises(StorageError):
            blob_id_from_response({"something": "else"})

    @pytest.mark.asyncio
    async def test_put_and_get(self):
        seen = []

        def handler(request):
            seen.append(request)
            if request.method == "PUT":
                return httpx.Response(200, json={"newlyCreated": {"blobObject": {"blobId": "blob-1"}}})
            return httpx.Response(200, content=b"sealed bytes")

        config = WalrusConfig(publisher_url="https://pub.test", aggregator_url="https://agg.test", epochs=7)
        storage = WalrusStorage(config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        blob_id = await storage.put(b"sealed bytes", epochs=5)
        data = await storage.get(blob_id)

        assert blob_id == "blob-1"
        assert data == b"sealed bytes"
        assert seen[0].url.host == "pub.test"
        assert seen[0].url.params["epochs"] == "5"
        assert seen[0].content == b"sealed bytes"
        assert str(seen[1].url) == "https://agg.test/v1/blobs/blob-1"
        await storage.close()

    @pytest.mark.asyncio
    async def test_non_success_is_storage_error(self):
        storage = WalrusStorage(WalrusConfig(), httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        ))

        with pytest.raises(StorageError) as exc:
            await storage.put(b"x")
        assert exc.value.details["http_status"] == 500

        with pytest.raises(StorageError):
            await storage.get("missing")

    @pytest.mark.asyncio
    async def test_local_store_is_content_addressed(self):
        store = LocalBlobStore()

        a = await store.put(b"same")
        b = await store.put(b"same")

        assert a == b
        assert await store.get(a) == b"same"
        with pytest.raises(StorageError):
            await store.get("nope")


# =============================================================================
# TEST: Admission predicate
# =============================================================================

class TestSealApprove:

    def listing(self, creator, buyers=()):
        return Listing(
            object_id=new_object_id(),
            creator=creator.address,
            title="t", description="d", theme="blue-data",
            price_mist=sui_to_mist(0.1),
            buyers=[b.address for b in buyers],
        )

    def test_creator_and_buyer_admitted(self, creator, buyer):
        listing = self.listing(creator, [buyer])
        identifier = EncryptionIdentifier.fresh(listing.object_id).to_bytes()

        assert seal_approve_admits(identifier, listing, creator.address)
        assert seal_approve_admits(identifier, listing, buyer.address.upper())

    def test_outsider_rejected(self, creator, outsider):
        listing = self.listing(creator)
        identifier = EncryptionIdentifier.fresh(listing.object_id).to_bytes()

        assert not seal_approve_admits(identifier, listing, outsider.address)

    def test_identifier_of_other_listing_rejected(self, creator):
        listing = self.listing(creator)
        identifier = EncryptionIdentifier.fresh(new_object_id()).to_bytes()

        assert not seal_approve_admits(identifier, listing, creator.address)

    def test_bare_listing_id_rejected(self, creator):
        listing = self.listing(creator)
        bare = bytes.fromhex(listing.object_id[2:])

        assert not seal_approve_admits(bare, listing, creator.address)

    def test_missing_listing(self, creator):
        assert not seal_approve_admits(b"\x00" * 37, None, creator.address)


# =============================================================================
# TEST: Sui ledger RPC
# =============================================================================

class RpcStub:
    def __init__(self, **results):
        self.results = results
        self.calls = []

    def __call__(self, request):
        payload = json.loads(request.content)
        self.calls.append(payload)
        result = self.results.get(payload["method"])
        if isinstance(result, Exception):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": {"message": str(result)}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})


def sui_ledger(stub, keypair=None):
    config = NetworkConfig(package_id=new_object_id(), marketplace_id=new_object_id(), treasury_id=new_object_id())
    return SuiLedgerClient(config, keypair, httpx.AsyncClient(transport=httpx.MockTransport(stub)), poll_interval=0)


class TestSuiLedger:

    @pytest.mark.asyncio
    async def test_admission_by_dry_run(self, outsider):
        stub = RpcStub(
            unsafe_moveCall={"txBytes": base64.b64encode(b"tx").decode()},
            sui_dryRunTransactionBlock={"effects": {"status": {"status": "success"}}},
        )
        ledger = sui_ledger(stub)
        listing_id = new_object_id()
        identifier = EncryptionIdentifier.fresh(listing_id).to_bytes()

        assert await ledger.evaluate_admission(identifier, listing_id, outsider.address)
        move_call = stub.calls[0]["params"]
        assert move_call[0] == outsider.address
        assert move_call[3] == "seal_approve"
        assert move_call[5] == [list(identifier), listing_id]

    @pytest.mark.asyncio
    async def test_aborted_dry_run_denies(self, outsider):
        stub = RpcStub(
            unsafe_moveCall={"txBytes": "dHg="},
            sui_dryRunTransactionBlock={"effects": {"status": {"status": "failure", "error": "MoveAbort 1"}}},
        )

        assert not await sui_ledger(stub).evaluate_admission(b"\x01" * 37, new_object_id(), outsider.address)

    @pytest.mark.asyncio
    async def test_rpc_error_denies(self, outsider):
        stub = RpcStub(unsafe_moveCall=Exception("object not found"))

        assert not await sui_ledger(stub).evaluate_admission(b"\x01" * 37, new_object_id(), outsider.address)

    @pytest.mark.asyncio
    async def test_listing_fields_decoded(self, creator):
        listing_id = new_object_id()
        stub = RpcStub(sui_getObject={"data": {"content": {"fields": {
            "creator": creator.address,
            "title": list(b"Alpha Report"),
            "description": "plain",
            "theme": list(b"green-money"),
            "price": "250000000",
            "walrus_blob_id": list(b"blob-9"),
            "buyers": [],
            "total_revenue": "0",
            "is_active": True,
        }}}})

        listing = await sui_ledger(stub).get_listing(listing_id)

        assert listing.title == "Alpha Report"
        assert listing.theme == "green-money"
        assert listing.price_sui == 0.25
        assert listing.walrus_blob_id == "blob-9"
        assert listing.has_content

    @pytest.mark.asyncio
    async def test_create_listing_reads_created_objects(self, creator):
        listing_id, cap_id = new_object_id(), new_object_id()
        stub = RpcStub(
            unsafe_moveCall={"txBytes": base64.b64encode(b"tx").decode()},
            sui_executeTransactionBlock={
                "digest": "D1",
                "effects": {"status": {"status": "success"}},
                "objectChanges": [
                    {"type": "mutated", "objectType": "x::content_marketplace::Marketplace", "objectId": "0x1"},
                    {"type": "created", "objectType": "p::content_marketplace::ContentListing", "objectId": listing_id},
                    {"type": "created", "objectType": "p::content_marketplace::ListingCap", "objectId": cap_id},
                ],
            },
            sui_getTransactionBlock={"digest": "D1"},
        )

        created = await sui_ledger(stub, creator).create_listing("t", "d", "blue-data", 100)

        assert created.listing_id == listing_id
        assert created.cap_id == cap_id
        assert created.digest == "D1"

    @pytest.mark.asyncio
    async def test_failed_transaction_raises(self, creator):
        stub = RpcStub(
            unsafe_moveCall={"txBytes": base64.b64encode(b"tx").decode()},
            sui_executeTransactionBlock={"digest": "D2", "effects": {"status": {"status": "failure", "error": "E"}}},
        )

        with pytest.raises(LedgerError, match="failed"):
            await sui_ledger(stub, creator).record_content_created("t")

    def test_find_created_object_matches_type_fragment(self):
        result = {"objectChanges": [
            {"type": "created", "objectType": "p::m::ListingCap", "objectId": "0xcap"},
            {"type": "created", "objectType": "p::m::ContentListing", "objectId": "0xlisting"},
        ]}

        assert find_created_object(result, "ContentListing") == "0xlisting"
        assert find_created_object(result, "::ListingCap") == "0xcap"
        assert find_created_object(result, "::Treasury") is None


# =============================================================================
# TEST: Keypair
# =============================================================================

class TestKeypair:

    def test_address_format(self, creator):
        assert creator.address.startswith("0x")
        assert len(creator.address) == 66

    def test_personal_message_signature(self, creator, outsider):
        signature = creator.sign_personal_message(b"hello")

        assert verify_personal_message(creator.public_key, b"hello", signature)
        assert not verify_personal_message(outsider.public_key, b"hello", signature)
        assert not verify_personal_message(creator.public_key, b"hullo", signature)

    def test_transaction_signature_layout(self, creator):
        raw = base64.b64decode(creator.sign_transaction(b"tx"))

        assert raw[0] == 0
        assert len(raw) == 1 + 64 + 32
        assert raw[65:] == creator.public_key

    def test_seed_is_deterministic(self):
        assert SuiKeypair.from_seed(b"\x07" * 32).address == SuiKeypair.from_seed(b"\x07" * 32).address


# =============================================================================
# TEST: Treasury
# =============================================================================

class TestTreasury:

    @pytest.mark.asyncio
    async def test_on_published_records_content_and_gas(self, ledger):
        treasury = TreasuryService(ledger, gas_per_listing_mist=10_000_000)

        assert await treasury.on_published("Report")

        pnl = await treasury.pnl()
        assert pnl["content_created"] == 1
        assert pnl["total_spent_sui"] == 0.01

    @pytest.mark.asyncio
    async def test_missing_treasury_is_not_fatal(self, creator):
        treasury = TreasuryService(LocalLedger(creator.address, with_treasury=False))

        assert await treasury.on_published("Report") is False
        assert await treasury.pnl() is None

    @pytest.mark.asyncio
    async def test_sui_ledger_without_treasury_id_is_not_fatal(self, creator):
        stub = RpcStub()
        config = NetworkConfig(package_id=new_object_id(), marketplace_id=new_object_id(), treasury_id=None)
        client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
        treasury = TreasuryService(SuiLedgerClient(config, creator, client, poll_interval=0))

        assert await treasury.on_published("Report") is False
        assert await treasury.pnl() is None
        assert stub.calls == []

    @pytest.mark.asyncio
    async def test_backfill_from_marketplace_and_events(self, ledger, buyer):
        first = await ledger.create_listing("One", "d", "blue-data", sui_to_mist(0.5))
        await ledger.create_listing("Two", "d", "red-alert", sui_to_mist(0.25))
        await ledger.purchase(first.listing_id, buyer=buyer.address)

        report = await TreasuryService(ledger, gas_per_listing_mist=10_000_000, delay=0).backfill()

        assert report.content_recorded == 2
        assert report.earnings_recorded == 1
        assert report.earned_mist == sui_to_mist(0.5)
        assert report.spent_mist == 20_000_000
        assert report.failures == []
        assert report.final_state["net_pnl_sui"] == 0.48


# =============================================================================
# TEST: Configuration
# =============================================================================

class TestConfig:

    @pytest.fixture
    def clean_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for name in ("SUI_NETWORK", "SUI_RPC_URL", "SUI_EXPLORER_URL", "SEAL_KEY_SERVERS", "SEALFORGE_ENV"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("SEALFORGE_DEPLOYED_FILE", str(tmp_path / "deployed.json"))
        return monkeypatch

    def test_network_urls_follow_sui_network(self, clean_env):
        clean_env.setenv("SUI_NETWORK", "mainnet")

        config = SealForgeConfig.from_env()

        assert config.network.rpc_url == "https://fullnode.mainnet.sui.io:443"
        assert config.explorer_link("object", "0xabc") == "https://suiscan.xyz/mainnet/object/0xabc"

    def test_testnet_defaults(self, clean_env):
        config = SealForgeConfig.from_env()

        assert config.network.network == "testnet"
        assert config.network.explorer_url == "https://suiscan.xyz/testnet"
        assert config.network.treasury_id is None

    def test_explorer_override(self, clean_env):
        clean_env.setenv("SUI_NETWORK", "devnet")
        clean_env.setenv("SUI_EXPLORER_URL", "https://explorer.example")

        config = SealForgeConfig.from_env()

        assert config.explorer_link("tx", "D1") == "https://explorer.example/tx/D1"
