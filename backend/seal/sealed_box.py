"""
Public-key sealing of small secrets (key shares) to an X25519 recipient.

Layout: ephemeral public key (32) || nonce (12) || AES-256-GCM ciphertext+tag
"""

import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

PUBLIC_KEY_LENGTH = 32
NONCE_LENGTH = 12


class SealedBoxError(ValueError):
    pass


def generate_keypair() -> Tuple[X25519PrivateKey, bytes]:
    private_key = X25519PrivateKey.generate()
    return private_key, public_bytes(private_key)


def public_bytes(private_key: X25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def private_bytes(private_key: X25519PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key(raw: bytes) -> X25519PrivateKey:
    return X25519PrivateKey.from_private_bytes(raw)


def _derive_key(shared: bytes, ephemeral_public: bytes, recipient_public: bytes, info: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral_public + recipient_public,
        info=b"sealforge-share-v1|" + info,
    ).derive(shared)


def seal(plaintext: bytes, recipient_public: bytes, info: bytes = b"", aad: bytes = b"") -> bytes:
    if len(recipient_public) != PUBLIC_KEY_LENGTH:
        raise SealedBoxError(f"recipient key must be {PUBLIC_KEY_LENGTH} bytes")
    ephemeral = X25519PrivateKey.generate()
    ephemeral_public = public_bytes(ephemeral)
    shared = ephemeral.exchange(X25519PublicKey.from_public_bytes(recipient_public))
    key = _derive_key(shared, ephemeral_public, recipient_public, info)
    nonce = os.urandom(NONCE_LENGTH)
    return ephemeral_public + nonce + AESGCM(key).encrypt(nonce, plaintext, aad)


def open_sealed(sealed: bytes, recipient: X25519PrivateKey, info: bytes = b"", aad: bytes = b"") -> bytes:
    if len(sealed) < PUBLIC_KEY_LENGTH + NONCE_LENGTH + 16:
        raise SealedBoxError("sealed box too short")
    ephemeral_public = sealed[:PUBLIC_KEY_LENGTH]
    nonce = sealed[PUBLIC_KEY_LENGTH:PUBLIC_KEY_LENGTH + NONCE_LENGTH]
    ciphertext = sealed[PUBLIC_KEY_LENGTH + NONCE_LENGTH:]
    try:
        shared = recipient.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
    except ValueError as e:
        raise SealedBoxError(f"bad ephemeral key: {e}")
    key = _derive_key(shared, ephemeral_public, public_bytes(recipient), info)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, aad)
    except InvalidTag:
        raise SealedBoxError("sealed box authentication failed")
