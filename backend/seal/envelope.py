"""
Encrypted envelope wire format.

Self-describing: a holder of the bytes can recover the threshold, the custodian
set, the encryption identifier and the ciphertext without any other metadata.

    magic "SFEV" | version u8
    package id (32)
    identifier length u16 | identifier
    threshold u8 | share count u8
    per share: custodian object id (32) | x-index u8 | sealed length u16 | sealed share
    payload nonce (12)
    ciphertext length u32 | ciphertext
"""

import struct
from dataclasses import dataclass
from typing import List, Tuple

from infrastructure.errors import EnvelopeFormatError

from .identity import EncryptionIdentifier, bytes_to_object_id, object_id_to_bytes

MAGIC = b"SFEV"
VERSION = 1
PAYLOAD_NONCE_LENGTH = 12


@dataclass(frozen=True)
class EncryptedShare:
    custodian_id: str
    index: int
    sealed: bytes


@dataclass(frozen=True)
class EncryptedEnvelope:
    package_id: str
    identifier: EncryptionIdentifier
    threshold: int
    shares: Tuple[EncryptedShare, ...]
    nonce: bytes
    ciphertext: bytes

    @property
    def custodian_ids(self) -> List[str]:
        return [s.custodian_id for s in self.shares]

    def share_for(self, custodian_id: str) -> EncryptedShare:
        for share in self.shares:
            if share.custodian_id == custodian_id:
                return share
        raise KeyError(custodian_id)

    def payload_aad(self) -> bytes:
        return payload_aad(self.package_id, self.identifier)

    def to_bytes(self) -> bytes:
        out = bytearray(MAGIC)
        out += struct.pack(">B", VERSION)
        out += object_id_to_bytes(self.package_id)
        ident = self.identifier.to_bytes()
        out += struct.pack(">H", len(ident)) + ident
        out += struct.pack(">BB", self.threshold, len(self.shares))
        for share in self.shares:
            out += object_id_to_bytes(share.custodian_id)
            out += struct.pack(">BH", share.index, len(share.sealed)) + share.sealed
        out += self.nonce
        out += struct.pack(">I", len(self.ciphertext)) + self.ciphertext
        return bytes(out)

    @classmethod
    def parse(cls, data: bytes) -> "EncryptedEnvelope":
        reader = _Reader(data)
        if reader.take(4) != MAGIC:
            raise EnvelopeFormatError("Not a SealForge envelope (bad magic)")
        version = reader.unpack(">B")[0]
        if version != VERSION:
            raise EnvelopeFormatError(f"Unsupported envelope version {version}")

        package_id = bytes_to_object_id(reader.take(32))
        (ident_len,) = reader.unpack(">H")
        try:
            identifier = EncryptionIdentifier.from_bytes(reader.take(ident_len))
        except ValueError as e:
            raise EnvelopeFormatError(f"Bad encryption id: {e}")

        threshold, count = reader.unpack(">BB")
        shares = []
        for _ in range(count):
            custodian_id = bytes_to_object_id(reader.take(32))
            index, sealed_len = reader.unpack(">BH")
            shares.append(EncryptedShare(custodian_id, index, reader.take(sealed_len)))

        nonce = reader.take(PAYLOAD_NONCE_LENGTH)
        (ct_len,) = reader.unpack(">I")
        ciphertext = reader.take(ct_len)
        if not reader.exhausted:
            raise EnvelopeFormatError("Trailing bytes after envelope")

        if not 1 <= threshold <= count:
            raise EnvelopeFormatError(f"Invalid threshold {threshold} for {count} custodians")
        if len({s.index for s in shares}) != count or len({s.custodian_id for s in shares}) != count:
            raise EnvelopeFormatError("Duplicate custodian or share index")

        return cls(package_id, identifier, threshold, tuple(shares), nonce, ciphertext)


def payload_aad(package_id: str, identifier: EncryptionIdentifier) -> bytes:
    return object_id_to_bytes(package_id) + identifier.to_bytes()


class _Reader:
    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise EnvelopeFormatError("Envelope truncated")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def unpack(self, fmt: str) -> tuple:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))

    @property
    def exhausted(self) -> bool:
        return self.pos == len(self.data)
