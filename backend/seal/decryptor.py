"""
Decryptor
Consumer side: download → parse → binding check → custodian fan-out → combine → decrypt.

Every failure is reported as a DecryptResult naming the failing step; nothing
is retried beyond the single fan-out.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Protocol, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from infrastructure.errors import (
    AccessDeniedError,
    CredentialError,
    EnvelopeFormatError,
    QuorumError,
    StorageError,
)

from . import shamir
from .access import AccessProver
from .custodian import REPLY_INFO, CustodianClient
from .encryptor import share_aad
from .envelope import EncryptedEnvelope
from .identity import normalize_object_id
from .sealed_box import SealedBoxError, generate_keypair, open_sealed
from .session import SessionKey

logger = logging.getLogger("Decryptor")


class FailureKind(str, Enum):
    DOWNLOAD = "download"
    MALFORMED_ENVELOPE = "malformed_envelope"
    IDENTIFIER_MISMATCH = "identifier_mismatch"
    CREDENTIAL = "credential"
    NOT_ENTITLED = "not_entitled"
    QUORUM = "quorum"
    DECRYPT = "decrypt"


# Per-custodian rejection reasons
DENIED = "denied"
BAD_CREDENTIAL = "credential"
UNAVAILABLE = "unavailable"


@dataclass
class DecryptResult:
    ok: bool
    plaintext: Optional[bytes] = None
    kind: Optional[FailureKind] = None
    message: str = ""
    failures: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def success(cls, plaintext: bytes) -> "DecryptResult":
        return cls(ok=True, plaintext=plaintext)

    @classmethod
    def failure(cls, kind: FailureKind, message: str, failures: Dict[str, str] = None) -> "DecryptResult":
        return cls(ok=False, kind=kind, message=message, failures=failures or {})

    @property
    def text(self) -> str:
        return self.plaintext.decode("utf-8") if self.plaintext is not None else ""

    def describe(self) -> str:
        if self.ok:
            return f"decrypted {len(self.plaintext)} bytes"
        return f"[{self.kind.value}] {self.message}"


class BlobReader(Protocol):
    async def get(self, blob_id: str) -> bytes:
        ...


class Decryptor:
    def __init__(
        self,
        storage: BlobReader,
        custodians: Iterable[CustodianClient],
        prover: AccessProver,
        timeout: float = 15.0,
    ):
        self.storage = storage
        self.custodians: Dict[str, CustodianClient] = {
            normalize_object_id(c.object_id): c for c in custodians
        }
        self.prover = prover
        self.timeout = timeout

    async def decrypt(self, blob_id: str, listing_id: str, session: SessionKey) -> DecryptResult:
        if not blob_id:
            return DecryptResult.failure(FailureKind.DOWNLOAD, f"Listing {listing_id} has no content address")
        try:
            data = await self.storage.get(blob_id)
        except StorageError as e:
            logger.error(f"❌ Download failed for blob {blob_id}: {e}")
            return DecryptResult.failure(FailureKind.DOWNLOAD, str(e))

        logger.info(f"📥 Downloaded {len(data)} bytes for blob {blob_id}")
        return await self.decrypt_bytes(data, listing_id, session)

    async def decrypt_bytes(self, data: bytes, listing_id: str, session: SessionKey) -> DecryptResult:
        try:
            envelope = EncryptedEnvelope.parse(data)
        except EnvelopeFormatError as e:
            return DecryptResult.failure(FailureKind.MALFORMED_ENVELOPE, str(e))

        if not envelope.identifier.is_bound_to(listing_id):
            return DecryptResult.failure(
                FailureKind.IDENTIFIER_MISMATCH,
                f"Envelope is bound to {envelope.identifier.listing_object_id}, not {listing_id}",
            )

        if session.is_expired():
            return DecryptResult.failure(FailureKind.CREDENTIAL, "Session key expired; create a new one")
        if session.package_id != envelope.package_id:
            return DecryptResult.failure(
                FailureKind.CREDENTIAL,
                f"Session is for package {session.package_id}, envelope for {envelope.package_id}",
            )

        shares, failures = await self._collect_shares(envelope, listing_id, session)
        if len(shares) < envelope.threshold:
            return self._quorum_failure(envelope.threshold, shares, failures)

        try:
            data_key = shamir.combine(shares)
            plaintext = AESGCM(data_key).decrypt(envelope.nonce, envelope.ciphertext, envelope.payload_aad())
        except (InvalidTag, ValueError) as e:
            return DecryptResult.failure(FailureKind.DECRYPT, f"Integrity check failed after key reconstruction ({type(e).__name__})")

        logger.info(f"🔓 Decrypted {len(plaintext)} bytes for listing {listing_id[:12]}...")
        return DecryptResult.success(plaintext)

    async def _collect_shares(
        self, envelope: EncryptedEnvelope, listing_id: str, session: SessionKey
    ) -> Tuple[Dict[int, bytes], Dict[str, str]]:
        ephemeral_key, ephemeral_public = generate_keypair()
        skeleton = self.prover.build_skeleton(envelope.identifier, listing_id)

        failures: Dict[str, str] = {}
        tasks = {}
        for share in envelope.shares:
            client = self.custodians.get(share.custodian_id)
            if client is None:
                failures[share.custodian_id] = f"{UNAVAILABLE}: no client configured"
                continue
            request = self.prover.build_request(session, skeleton, share.sealed, ephemeral_public)
            task = asyncio.create_task(asyncio.wait_for(client.fetch_key(request), self.timeout))
            tasks[task] = share

        shares: Dict[int, bytes] = {}
        pending = set(tasks)
        while pending and len(shares) < envelope.threshold:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                share = tasks[task]
                try:
                    sealed = task.result()
                    shares[share.index] = open_sealed(
                        sealed, ephemeral_key, info=REPLY_INFO, aad=share_aad(envelope.identifier, share.custodian_id)
                    )
                except AccessDeniedError as e:
                    failures[share.custodian_id] = f"{DENIED}: {e.message}"
                except CredentialError as e:
                    failures[share.custodian_id] = f"{BAD_CREDENTIAL}: {e.message}"
                except asyncio.TimeoutError:
                    failures[share.custodian_id] = f"{UNAVAILABLE}: timed out after {self.timeout}s"
                except SealedBoxError as e:
                    failures[share.custodian_id] = f"{UNAVAILABLE}: unreadable reply ({e})"
                except Exception as e:
                    failures[share.custodian_id] = f"{UNAVAILABLE}: {e}"

        # Quorum reached; stragglers are no longer needed
        for task in pending:
            task.cancel()

        for custodian_id, reason in failures.items():
            logger.warning(f"⚠️ Custodian {custodian_id[:12]}... rejected: {reason}")
        return shares, failures

    @staticmethod
    def _quorum_failure(threshold: int, shares: Dict[int, bytes], failures: Dict[str, str]) -> DecryptResult:
        error = QuorumError(threshold, len(shares), failures)
        reasons = [r.split(":", 1)[0] for r in failures.values()]
        if DENIED in reasons:
            kind = FailureKind.NOT_ENTITLED
            message = f"Not entitled: access denied by the listing's policy ({error.message})"
        elif reasons and all(r == BAD_CREDENTIAL for r in reasons):
            kind = FailureKind.CREDENTIAL
            message = f"Credential rejected by custodians ({error.message})"
        else:
            kind = FailureKind.QUORUM
            message = error.message
        logger.error(f"❌ {message}")
        return DecryptResult.failure(kind, message, failures)
