"""
Key Custodian
Reference key server holding one X25519 share key. A share is released only
after the credential checks out and the ledger's admission predicate, simulated
for the requester, admits them.

Clients:
- LocalCustodianClient: in-process, used for offline runs and tests
- HttpCustodianClient: POST {url}/v1/fetch_key via httpx
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from infrastructure.config import CustodianInfo
from infrastructure.errors import (
    AccessDeniedError,
    CredentialError,
    EnvelopeFormatError,
    SealForgeError,
    error_from_payload,
)

from .access import APPROVE_FUNCTION, FetchKeyRequest
from .encryptor import SHARE_INFO, share_aad
from .identity import normalize_object_id
from .sealed_box import SealedBoxError, generate_keypair, load_private_key, open_sealed, public_bytes, seal
from .session import Clock, now_ms

logger = logging.getLogger("KeyCustodian")

REPLY_INFO = b"reply"


def reply_aad(request: FetchKeyRequest, custodian_id: str) -> bytes:
    return share_aad(request.identifier, custodian_id)


class AdmissionLedger(Protocol):
    async def evaluate_admission(self, identifier: bytes, listing_id: str, sender: str) -> bool:
        ...


class KeyCustodian:
    def __init__(
        self,
        object_id: str,
        private_key: X25519PrivateKey,
        ledger: AdmissionLedger,
        package_id: str,
        module: str = "content_marketplace",
        clock: Optional[Clock] = None,
        name: str = "",
    ):
        self.object_id = normalize_object_id(object_id)
        self._private_key = private_key
        self.public_key = public_bytes(private_key)
        self.ledger = ledger
        self.package_id = normalize_object_id(package_id)
        self.module = module
        self.clock = clock or now_ms
        self.name = name or f"custodian-{self.object_id[2:8]}"

    @classmethod
    def generate(cls, object_id: str, ledger: AdmissionLedger, package_id: str, **kwargs) -> "KeyCustodian":
        private_key, _ = generate_keypair()
        return cls(object_id, private_key, ledger, package_id, **kwargs)

    @classmethod
    def from_private_bytes(cls, object_id: str, raw: bytes, ledger: AdmissionLedger, package_id: str, **kwargs):
        return cls(object_id, load_private_key(raw), ledger, package_id, **kwargs)

    def info(self, url: str = "") -> CustodianInfo:
        return CustodianInfo(
            object_id=self.object_id,
            url=url or f"local://{self.name}",
            public_key=self.public_key.hex(),
            name=self.name,
        )

    def service_info(self) -> Dict[str, Any]:
        return {
            "object_id": self.object_id,
            "name": self.name,
            "public_key": self.public_key.hex(),
            "package_id": self.package_id,
        }

    def _check_request(self, request: FetchKeyRequest):
        credential = request.credential
        credential.verify(self.clock())

        skeleton = request.call_skeleton
        if normalize_object_id(credential.package_id) != self.package_id:
            raise CredentialError(f"Credential is for package {credential.package_id}")
        if skeleton.package_id != self.package_id:
            raise CredentialError(f"Call skeleton targets package {skeleton.package_id}")
        if skeleton.module != self.module or skeleton.function != APPROVE_FUNCTION:
            raise CredentialError(f"Unexpected call {skeleton.module}::{skeleton.function}")
        if skeleton.sender != normalize_object_id(credential.address):
            raise CredentialError("Call skeleton sender does not match credential")
        if not credential.verify_request(request.signed_message(), request.request_signature):
            raise CredentialError("Request signature invalid")
        if skeleton.identifier != request.identifier:
            raise AccessDeniedError("Call skeleton identifier does not match requested identifier")

    async def fetch_key(self, request: FetchKeyRequest) -> bytes:
        """Return this custodian's share, sealed to the requester's ephemeral key"""
        self._check_request(request)

        skeleton = request.call_skeleton
        admitted = await self.ledger.evaluate_admission(
            request.identifier.to_bytes(), skeleton.listing_id, skeleton.sender
        )
        if not admitted:
            logger.info(f"🚫 {self.name}: {skeleton.sender[:10]}... not admitted to {skeleton.listing_id[:12]}...")
            raise AccessDeniedError()

        try:
            share = open_sealed(
                request.encrypted_share,
                self._private_key,
                info=SHARE_INFO,
                aad=share_aad(request.identifier, self.object_id),
            )
            sealed = seal(
                share,
                request.ephemeral_encryption_key,
                info=REPLY_INFO,
                aad=reply_aad(request, self.object_id),
            )
        except SealedBoxError as e:
            raise EnvelopeFormatError(f"Share does not open for {self.name}: {e}")

        logger.info(f"✅ {self.name}: released share to {skeleton.sender[:10]}...")
        return sealed


class CustodianClient(Protocol):
    object_id: str

    async def fetch_key(self, request: FetchKeyRequest) -> bytes:
        ...


class LocalCustodianClient:
    def __init__(self, custodian: KeyCustodian):
        self.custodian = custodian
        self.object_id = custodian.object_id

    async def fetch_key(self, request: FetchKeyRequest) -> bytes:
        return await self.custodian.fetch_key(request)


class HttpCustodianClient:
    def __init__(self, info: CustodianInfo, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        self.info = info
        self.object_id = normalize_object_id(info.object_id)
        self.timeout = timeout
        self._client = client

    async def fetch_key(self, request: FetchKeyRequest) -> bytes:
        url = f"{self.info.url.rstrip('/')}/v1/fetch_key"
        if self._client is not None:
            response = await self._client.post(url, json=request.to_dict(), timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=request.to_dict())

        if response.status_code != 200:
            try:
                payload = response.json()
            except ValueError:
                payload = {"error": {"message": f"HTTP {response.status_code}: {response.text[:200]}"}}
            raise error_from_payload(payload)

        try:
            return bytes.fromhex(response.json()["sealed_share"])
        except (KeyError, TypeError, ValueError) as e:
            raise SealForgeError(f"Bad custodian response from {self.info.url}: {e}")
