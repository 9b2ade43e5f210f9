"""
Encryption identifiers: listing object id (32 bytes) || random nonce (5 bytes).

The admission predicate is evaluated against the listing prefix; the nonce only
keeps identifiers unique across repeated encryptions of the same listing.
"""

import secrets
from dataclasses import dataclass

LISTING_ID_LENGTH = 32
NONCE_LENGTH = 5


def normalize_object_id(object_id: str) -> str:
    """0x-prefixed, lowercase, left-padded to 32 bytes"""
    raw = object_id.lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not raw or len(raw) > LISTING_ID_LENGTH * 2:
        raise ValueError(f"Invalid object id: {object_id!r}")
    int(raw, 16)
    return "0x" + raw.rjust(LISTING_ID_LENGTH * 2, "0")


def object_id_to_bytes(object_id: str) -> bytes:
    return bytes.fromhex(normalize_object_id(object_id)[2:])


def bytes_to_object_id(raw: bytes) -> str:
    return "0x" + raw.hex()


@dataclass(frozen=True)
class EncryptionIdentifier:
    listing_id: bytes
    nonce: bytes

    def __post_init__(self):
        if len(self.listing_id) != LISTING_ID_LENGTH:
            raise ValueError(f"listing id must be {LISTING_ID_LENGTH} bytes, got {len(self.listing_id)}")
        if len(self.nonce) != NONCE_LENGTH:
            raise ValueError(f"nonce must be {NONCE_LENGTH} bytes, got {len(self.nonce)}")

    @classmethod
    def fresh(cls, listing_object_id: str) -> "EncryptionIdentifier":
        return cls(object_id_to_bytes(listing_object_id), secrets.token_bytes(NONCE_LENGTH))

    @classmethod
    def from_bytes(cls, raw: bytes) -> "EncryptionIdentifier":
        if len(raw) != LISTING_ID_LENGTH + NONCE_LENGTH:
            raise ValueError(f"identifier must be {LISTING_ID_LENGTH + NONCE_LENGTH} bytes, got {len(raw)}")
        return cls(bytes(raw[:LISTING_ID_LENGTH]), bytes(raw[LISTING_ID_LENGTH:]))

    @classmethod
    def from_hex(cls, value: str) -> "EncryptionIdentifier":
        return cls.from_bytes(bytes.fromhex(value[2:] if value.startswith("0x") else value))

    def to_bytes(self) -> bytes:
        return self.listing_id + self.nonce

    def hex(self) -> str:
        return self.to_bytes().hex()

    @property
    def listing_object_id(self) -> str:
        return bytes_to_object_id(self.listing_id)

    def is_bound_to(self, listing_object_id: str) -> bool:
        try:
            return self.listing_id == object_id_to_bytes(listing_object_id)
        except ValueError:
            return False
