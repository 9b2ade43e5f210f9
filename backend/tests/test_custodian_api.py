"""
Key Custodian API Tests
FastAPI surface of a custodian and the HTTP client that talks to it

Run: python -m pytest tests/test_custodian_api.py -v
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from agents.publisher import Publisher
from api.custodian_router import create_app
from infrastructure.errors import AccessDeniedError, CredentialError, EnvelopeFormatError, SealForgeError
from seal.access import AccessProver
from seal.custodian import HttpCustodianClient
from seal.decryptor import Decryptor, FailureKind
from seal.encryptor import EnvelopeEncryptor
from seal.envelope import EncryptedEnvelope
from seal.sealed_box import generate_keypair

MESSAGE = b"Hello SealForge!"


async def published_envelope(config, ledger, storage):
    encryptor = EnvelopeEncryptor(config.network.package_id, config.seal.custodians, config.seal.threshold)
    result = await Publisher(ledger, storage, encryptor, config).publish_content(
        "Hello", "Test listing", "blue-data", 0.1, MESSAGE
    )
    assert result.ok, result.error
    return result.listing_id, EncryptedEnvelope.parse(await storage.get(result.blob_id))


def fetch_body(keypair, config, listing_id, envelope, custodian):
    prover = AccessProver(keypair, config.network, config.seal)
    skeleton = prover.build_skeleton(envelope.identifier, listing_id)
    _, ephemeral_public = generate_keypair()
    request = prover.build_request(
        prover.create_session(), skeleton, envelope.share_for(custodian.object_id).sealed, ephemeral_public
    )
    return request.to_dict()


def asgi_client(custodian):
    return HttpCustodianClient(
        custodian.info(url="http://custodian.test"),
        client=httpx.AsyncClient(transport=httpx.ASGITransport(app=create_app(custodian))),
    )


def scripted_client(custodian, response):
    return HttpCustodianClient(
        custodian.info(url="http://custodian.test"),
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)),
    )


# =============================================================================
# TEST: HTTP surface
# =============================================================================

class TestCustodianEndpoints:

    def test_service_info(self, custodians):
        custodian = custodians[0]
        client = TestClient(create_app(custodian))

        response = client.get("/v1/service")

        assert response.status_code == 200
        assert response.json()["public_key"] == custodian.public_key.hex()
        assert response.json()["package_id"] == custodian.package_id

    @pytest.mark.asyncio
    async def test_creator_receives_sealed_share(self, config, ledger, storage, creator, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        custodian = custodians[0]

        response = TestClient(create_app(custodian)).post(
            "/v1/fetch_key", json=fetch_body(creator, config, listing_id, envelope, custodian)
        )

        assert response.status_code == 200
        assert len(bytes.fromhex(response.json()["sealed_share"])) > 32

    @pytest.mark.asyncio
    async def test_outsider_is_not_entitled(self, config, ledger, storage, outsider, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        custodian = custodians[0]

        response = TestClient(create_app(custodian)).post(
            "/v1/fetch_key", json=fetch_body(outsider, config, listing_id, envelope, custodian)
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "NOT_ENTITLED"

    @pytest.mark.asyncio
    async def test_mismatched_verification_key(self, config, ledger, storage, creator, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        custodian = custodians[0]
        body = fetch_body(creator, config, listing_id, envelope, custodian)
        body["verification_key"] = "00" * 32

        response = TestClient(create_app(custodian)).post("/v1/fetch_key", json=body)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "INVALID_CREDENTIAL"

    def test_missing_fields_rejected(self, custodians):
        response = TestClient(create_app(custodians[0])).post("/v1/fetch_key", json={"identifier": "00"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rejections_are_tracked(self, config, ledger, storage, outsider, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        custodian = custodians[0]
        client = TestClient(create_app(custodian))
        client.post("/v1/fetch_key", json=fetch_body(outsider, config, listing_id, envelope, custodian))

        stats = client.get("/v1/errors").json()

        assert stats["error_counts"].get("AccessDeniedError", 0) >= 1


# =============================================================================
# TEST: HTTP client
# =============================================================================

class TestHttpCustodianClient:

    @pytest.mark.asyncio
    async def test_decrypt_through_http_custodians(self, config, ledger, storage, creator, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        prover = AccessProver(creator, config.network, config.seal)
        decryptor = Decryptor(storage, [asgi_client(c) for c in custodians], prover)

        result = await decryptor.decrypt_bytes(envelope.to_bytes(), listing_id, prover.create_session())

        assert result.ok, result.describe()
        assert result.plaintext == MESSAGE

    @pytest.mark.asyncio
    async def test_outsider_over_http_is_not_entitled(self, config, ledger, storage, outsider, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        prover = AccessProver(outsider, config.network, config.seal)
        decryptor = Decryptor(storage, [asgi_client(c) for c in custodians], prover)

        result = await decryptor.decrypt_bytes(envelope.to_bytes(), listing_id, prover.create_session())

        assert result.kind == FailureKind.NOT_ENTITLED
        assert all(reason.startswith("denied") for reason in result.failures.values())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,error_type", [
        ("NOT_ENTITLED", AccessDeniedError),
        ("INVALID_CREDENTIAL", CredentialError),
        ("MALFORMED_ENVELOPE", EnvelopeFormatError),
    ])
    async def test_error_body_mapped_to_typed_error(self, config, ledger, storage, creator, custodians, code, error_type):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        custodian = custodians[0]
        prover = AccessProver(creator, config.network, config.seal)
        request = prover.build_request(
            prover.create_session(),
            prover.build_skeleton(envelope.identifier, listing_id),
            envelope.shares[0].sealed,
            b"\x01" * 32,
        )
        response = httpx.Response(403, json={"success": False, "error": {"code": code, "message": "no"}})

        with pytest.raises(error_type):
            await scripted_client(custodian, response).fetch_key(request)

    @pytest.mark.asyncio
    async def test_expired_credential_code(self, config, ledger, storage, creator, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        prover = AccessProver(creator, config.network, config.seal)
        request = prover.build_request(
            prover.create_session(), prover.build_skeleton(envelope.identifier, listing_id), b"x", b"\x01" * 32
        )
        response = httpx.Response(403, json={"error": {"code": "EXPIRED_CREDENTIAL", "message": "expired"}})

        with pytest.raises(CredentialError) as exc:
            await scripted_client(custodians[0], response).fetch_key(request)
        assert exc.value.expired

    @pytest.mark.asyncio
    async def test_non_json_failure_and_bad_reply(self, config, ledger, storage, creator, custodians):
        listing_id, envelope = await published_envelope(config, ledger, storage)
        prover = AccessProver(creator, config.network, config.seal)
        request = prover.build_request(
            prover.create_session(), prover.build_skeleton(envelope.identifier, listing_id), b"x", b"\x01" * 32
        )

        with pytest.raises(SealForgeError, match="HTTP 502"):
            await scripted_client(custodians[0], httpx.Response(502, text="Bad Gateway")).fetch_key(request)
        with pytest.raises(SealForgeError, match="Bad custodian response"):
            await scripted_client(custodians[0], httpx.Response(200, json={"share": "zz"})).fetch_key(request)
