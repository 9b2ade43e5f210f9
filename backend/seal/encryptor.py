"""
Envelope Encryptor
Local threshold encryption of an artifact under a listing-bound identifier.

Encryption never contacts the custodians: only their public X25519 keys are
needed. Decryption later requires `threshold` of them to cooperate.
"""

import logging
import os
from typing import Iterable, Optional, Sequence, Set

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from infrastructure.config import CustodianInfo
from infrastructure.errors import EncryptionError

from . import shamir
from .envelope import PAYLOAD_NONCE_LENGTH, EncryptedEnvelope, EncryptedShare, payload_aad
from .identity import EncryptionIdentifier, normalize_object_id
from .sealed_box import SealedBoxError, seal

logger = logging.getLogger("Encryptor")

DATA_KEY_LENGTH = 32
SHARE_INFO = b"share"

# Bound on redraws when a fresh nonce hits an already issued identifier
_MAX_REDRAWS = 8


def share_aad(identifier: EncryptionIdentifier, custodian_id: str) -> bytes:
    return identifier.to_bytes() + normalize_object_id(custodian_id).encode()


class EnvelopeEncryptor:
    """
    Builds EncryptedEnvelopes for one package (program id) and custodian set.

    Every identifier issued by an instance is remembered; a fresh nonce is drawn
    per call and an explicitly supplied identifier that was already used is
    rejected.
    """

    def __init__(self, package_id: str, custodians: Sequence[CustodianInfo], threshold: int):
        self.package_id = normalize_object_id(package_id) if package_id else ""
        self.custodians = list(custodians)
        self.threshold = threshold
        self._issued: Set[bytes] = set()

    def _validate(self):
        if not self.package_id:
            raise EncryptionError("No package id configured for encryption")
        if not self.custodians:
            raise EncryptionError("No key custodians configured")
        missing = [c.object_id for c in self.custodians if not c.public_key]
        if missing:
            raise EncryptionError("Custodians without public keys", {"custodians": missing})
        if not 1 <= self.threshold <= len(self.custodians):
            raise EncryptionError(
                f"Threshold {self.threshold} invalid for {len(self.custodians)} custodians"
            )
        ids = {normalize_object_id(c.object_id) for c in self.custodians}
        if len(ids) != len(self.custodians):
            raise EncryptionError("Duplicate custodian object ids")

    def new_identifier(self, listing_id: str) -> EncryptionIdentifier:
        for _ in range(_MAX_REDRAWS):
            identifier = EncryptionIdentifier.fresh(listing_id)
            if identifier.to_bytes() not in self._issued:
                return identifier
            logger.warning(f"Nonce collision for listing {listing_id}, redrawing")
        raise EncryptionError(f"Could not draw a unique identifier for {listing_id}")

    def issued(self) -> Iterable[EncryptionIdentifier]:
        return [EncryptionIdentifier.from_bytes(raw) for raw in self._issued]

    def encrypt(
        self,
        listing_id: str,
        plaintext: bytes,
        identifier: Optional[EncryptionIdentifier] = None,
    ) -> EncryptedEnvelope:
        self._validate()

        try:
            normalize_object_id(listing_id)
        except ValueError as e:
            raise EncryptionError(f"Invalid listing id: {e}")

        if identifier is None:
            identifier = self.new_identifier(listing_id)
        else:
            if not identifier.is_bound_to(listing_id):
                raise EncryptionError(
                    f"Identifier {identifier.hex()} is not bound to listing {listing_id}"
                )
            if identifier.to_bytes() in self._issued:
                raise EncryptionError(f"Identifier {identifier.hex()} was already used")

        data_key = AESGCM.generate_key(bit_length=DATA_KEY_LENGTH * 8)
        nonce = os.urandom(PAYLOAD_NONCE_LENGTH)
        ciphertext = AESGCM(data_key).encrypt(
            nonce, plaintext, payload_aad(self.package_id, identifier)
        )

        try:
            raw_shares = shamir.split(data_key, self.threshold, len(self.custodians))
            shares = []
            for custodian, (index, share) in zip(self.custodians, raw_shares):
                custodian_id = normalize_object_id(custodian.object_id)
                sealed = seal(
                    share,
                    bytes.fromhex(custodian.public_key.removeprefix("0x")),
                    info=SHARE_INFO,
                    aad=share_aad(identifier, custodian_id),
                )
                shares.append(EncryptedShare(custodian_id, index, sealed))
        except (SealedBoxError, ValueError) as e:
            raise EncryptionError(f"Failed to seal key shares: {e}")

        self._issued.add(identifier.to_bytes())
        logger.info(
            f"🔐 Encrypted {len(plaintext)} bytes for {listing_id[:12]}... "
            f"(id={identifier.hex()[:16]}..., {self.threshold}-of-{len(shares)})"
        )

        return EncryptedEnvelope(
            package_id=self.package_id,
            identifier=identifier,
            threshold=self.threshold,
            shares=tuple(shares),
            nonce=nonce,
            ciphertext=ciphertext,
        )
