"""
Session keys and access credentials.

A SessionKey is a short-lived Ed25519 key certified by the requester's wallet
signature. Custodians accept the resulting AccessCredential as proof that the
requester controls the address, for at most `ttl_min` minutes.

Custodians reject any credential whose creation time lies in their own future,
so the creation time is backdated by a fixed buffer before the wallet signs.
"""

import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from infrastructure.errors import CredentialError
from services.keypair import (
    SuiKeypair,
    address_from_public_key,
    verify_ed25519,
    verify_personal_message,
)

from .identity import normalize_object_id

MIN_TTL_MIN = 1
MAX_TTL_MIN = 30
DEFAULT_SKEW_BUFFER_MS = 5000

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def session_challenge(package_id: str, ttl_min: int, creation_time_ms: int, session_vk: str) -> bytes:
    created = datetime.fromtimestamp(creation_time_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    return (
        f"Accessing keys of package {package_id} for {ttl_min} mins from {created} UTC, "
        f"session key {session_vk}"
    ).encode()


@dataclass(frozen=True)
class AccessCredential:
    """Bearer credential presented to custodians (hex-encoded key material)"""
    address: str
    public_key: str
    package_id: str
    creation_time_ms: int
    ttl_min: int
    session_vk: str
    signature: str

    @property
    def expires_at_ms(self) -> int:
        return self.creation_time_ms + self.ttl_min * 60_000

    def challenge(self) -> bytes:
        return session_challenge(self.package_id, self.ttl_min, self.creation_time_ms, self.session_vk)

    def is_expired(self, at_ms: Optional[int] = None) -> bool:
        return (at_ms if at_ms is not None else now_ms()) >= self.expires_at_ms

    def verify(self, at_ms: Optional[int] = None):
        """Raise CredentialError unless the credential is well-formed, signed and live at `at_ms`"""
        at_ms = at_ms if at_ms is not None else now_ms()

        if not MIN_TTL_MIN <= self.ttl_min <= MAX_TTL_MIN:
            raise CredentialError(f"TTL {self.ttl_min} min outside [{MIN_TTL_MIN}, {MAX_TTL_MIN}]")
        try:
            public_key = bytes.fromhex(self.public_key)
            signature = bytes.fromhex(self.signature)
            bytes.fromhex(self.session_vk)
        except ValueError:
            raise CredentialError("Credential key material is not hex")

        if address_from_public_key(public_key) != normalize_object_id(self.address):
            raise CredentialError("Credential public key does not match address")
        if not verify_personal_message(public_key, self.challenge(), signature):
            raise CredentialError("Credential signature invalid")
        if self.creation_time_ms > at_ms:
            raise CredentialError(
                f"Credential created {self.creation_time_ms - at_ms}ms in the future"
            )
        if self.is_expired(at_ms):
            raise CredentialError("Credential expired", expired=True)

    def verify_request(self, message: bytes, request_signature: bytes) -> bool:
        return verify_ed25519(bytes.fromhex(self.session_vk), message, request_signature)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessCredential":
        try:
            return cls(
                address=str(data["address"]),
                public_key=str(data["public_key"]),
                package_id=str(data["package_id"]),
                creation_time_ms=int(data["creation_time_ms"]),
                ttl_min=int(data["ttl_min"]),
                session_vk=str(data["session_vk"]),
                signature=str(data["signature"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CredentialError(f"Malformed credential: {e}")


class SessionKey:
    """
    Requester-side session: holds the ephemeral signing key and the wallet-signed
    credential that certifies it.
    """

    def __init__(
        self,
        keypair: SuiKeypair,
        package_id: str,
        ttl_min: int = 10,
        clock: Optional[Clock] = None,
        skew_buffer_ms: int = DEFAULT_SKEW_BUFFER_MS,
    ):
        if not MIN_TTL_MIN <= ttl_min <= MAX_TTL_MIN:
            raise CredentialError(f"TTL must be between {MIN_TTL_MIN} and {MAX_TTL_MIN} minutes")

        self.clock = clock or now_ms
        self.address = keypair.address
        self.package_id = normalize_object_id(package_id)
        self.ttl_min = ttl_min

        self._session_key = Ed25519PrivateKey.generate()
        session_vk = self._session_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        ).hex()

        creation_time_ms = self.clock() - skew_buffer_ms
        challenge = session_challenge(self.package_id, ttl_min, creation_time_ms, session_vk)
        self.credential = AccessCredential(
            address=keypair.address,
            public_key=keypair.public_key.hex(),
            package_id=self.package_id,
            creation_time_ms=creation_time_ms,
            ttl_min=ttl_min,
            session_vk=session_vk,
            signature=keypair.sign_personal_message(challenge).hex(),
        )

    def is_expired(self) -> bool:
        return self.credential.is_expired(self.clock())

    def sign_request(self, message: bytes) -> bytes:
        return self._session_key.sign(message)
