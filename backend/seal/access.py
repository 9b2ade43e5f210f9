"""
AccessProver
Builds what a requester presents to key custodians: a session credential and an
unsigned `seal_approve` call skeleton that custodians simulate against the
ledger. The skeleton is never submitted for execution.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from infrastructure.config import NetworkConfig, SealConfig
from infrastructure.errors import CredentialError
from services.keypair import SuiKeypair

from .identity import EncryptionIdentifier, normalize_object_id
from .session import AccessCredential, Clock, SessionKey

logger = logging.getLogger("AccessProver")

APPROVE_FUNCTION = "seal_approve"


@dataclass(frozen=True)
class CallSkeleton:
    package_id: str
    module: str
    function: str
    arguments: Tuple[str, ...]
    sender: str

    @property
    def identifier(self) -> EncryptionIdentifier:
        return EncryptionIdentifier.from_hex(self.arguments[0])

    @property
    def listing_id(self) -> str:
        return self.arguments[1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package_id,
            "module": self.module,
            "function": self.function,
            "arguments": list(self.arguments),
            "sender": self.sender,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallSkeleton":
        try:
            arguments = tuple(str(a) for a in data["arguments"])
            if len(arguments) != 2:
                raise ValueError(f"expected 2 arguments, got {len(arguments)}")
            EncryptionIdentifier.from_hex(arguments[0])
            normalize_object_id(arguments[1])
            return cls(
                package_id=normalize_object_id(data["package_id"]),
                module=str(data["module"]),
                function=str(data["function"]),
                arguments=arguments,
                sender=normalize_object_id(data["sender"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CredentialError(f"Malformed call skeleton: {e}")


@dataclass(frozen=True)
class FetchKeyRequest:
    """One custodian's view of a decryption attempt"""
    call_skeleton: CallSkeleton
    identifier: EncryptionIdentifier
    encrypted_share: bytes
    ephemeral_encryption_key: bytes
    request_signature: bytes
    credential: AccessCredential

    @property
    def verification_key(self) -> str:
        return self.credential.session_vk

    def signed_message(self) -> bytes:
        return request_message(self.ephemeral_encryption_key, self.call_skeleton)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_skeleton": self.call_skeleton.to_dict(),
            "identifier": self.identifier.hex(),
            "encrypted_share": self.encrypted_share.hex(),
            "ephemeral_encryption_key": self.ephemeral_encryption_key.hex(),
            "verification_key": self.verification_key,
            "request_signature": self.request_signature.hex(),
            "credential": self.credential.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FetchKeyRequest":
        credential = AccessCredential.from_dict(data.get("credential") or {})
        if data.get("verification_key") != credential.session_vk:
            raise CredentialError("Verification key does not match credential session key")
        try:
            return cls(
                call_skeleton=CallSkeleton.from_dict(data["call_skeleton"]),
                identifier=EncryptionIdentifier.from_hex(data["identifier"]),
                encrypted_share=bytes.fromhex(data["encrypted_share"]),
                ephemeral_encryption_key=bytes.fromhex(data["ephemeral_encryption_key"]),
                request_signature=bytes.fromhex(data["request_signature"]),
                credential=credential,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CredentialError(f"Malformed fetch_key request: {e}")


def request_message(ephemeral_encryption_key: bytes, skeleton: CallSkeleton) -> bytes:
    return ephemeral_encryption_key + skeleton.to_bytes()


class AccessProver:
    """Builds session credentials and call skeletons for one requester"""

    def __init__(
        self,
        keypair: SuiKeypair,
        network: NetworkConfig,
        seal: SealConfig,
        clock: Optional[Clock] = None,
    ):
        self.keypair = keypair
        self.network = network
        self.seal = seal
        self.clock = clock

    @property
    def address(self) -> str:
        return self.keypair.address

    def create_session(self, ttl_min: Optional[int] = None) -> SessionKey:
        session = SessionKey(
            self.keypair,
            self.network.package_id,
            ttl_min=ttl_min or self.seal.session_ttl_min,
            clock=self.clock,
            skew_buffer_ms=self.seal.clock_skew_buffer_ms,
        )
        logger.info(
            f"🔑 Session key for {self.address[:10]}... "
            f"(ttl={session.ttl_min}m, created={session.credential.creation_time_ms})"
        )
        return session

    def build_skeleton(self, identifier: EncryptionIdentifier, listing_id: str) -> CallSkeleton:
        return CallSkeleton(
            package_id=normalize_object_id(self.network.package_id),
            module=self.network.module,
            function=APPROVE_FUNCTION,
            arguments=("0x" + identifier.hex(), normalize_object_id(listing_id)),
            sender=self.address,
        )

    def build_request(
        self,
        session: SessionKey,
        skeleton: CallSkeleton,
        encrypted_share: bytes,
        ephemeral_encryption_key: bytes,
    ) -> FetchKeyRequest:
        signature = session.sign_request(request_message(ephemeral_encryption_key, skeleton))
        return FetchKeyRequest(
            call_skeleton=skeleton,
            identifier=skeleton.identifier,
            encrypted_share=encrypted_share,
            ephemeral_encryption_key=ephemeral_encryption_key,
            request_signature=signature,
            credential=session.credential,
        )
