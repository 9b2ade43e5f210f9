"""
Sui Ed25519 keypair
Address derivation, intent signing for transactions and personal messages.
"""

import base64
import hashlib
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from infrastructure.config import SecretsManager, load_secret_key_bytes

ED25519_FLAG = 0x00

# Sui intent prefixes: [scope, version, app_id]
TRANSACTION_INTENT = bytes([0, 0, 0])
PERSONAL_MESSAGE_INTENT = bytes([3, 0, 0])


def blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def _uleb128(n: int) -> bytes:
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def address_from_public_key(public_key: bytes) -> str:
    return "0x" + blake2b256(bytes([ED25519_FLAG]) + public_key).hex()


def personal_message_digest(message: bytes) -> bytes:
    # Personal messages are BCS-encoded as vector<u8> before hashing
    return blake2b256(PERSONAL_MESSAGE_INTENT + _uleb128(len(message)) + message)


def transaction_digest(tx_bytes: bytes) -> bytes:
    return blake2b256(TRANSACTION_INTENT + tx_bytes)


def verify_ed25519(public_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def verify_personal_message(public_key: bytes, message: bytes, signature: bytes) -> bool:
    return verify_ed25519(public_key, personal_message_digest(message), signature)


class SuiKeypair:
    """Ed25519 keypair as used by the Sui CLI"""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self.public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.address = address_from_public_key(self.public_key)

    @classmethod
    def generate(cls) -> "SuiKeypair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "SuiKeypair":
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_secrets(cls, secrets: SecretsManager, home: Optional[str] = None) -> "SuiKeypair":
        return cls.from_seed(load_secret_key_bytes(secrets, home))

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def sign_personal_message(self, message: bytes) -> bytes:
        return self.sign(personal_message_digest(message))

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Serialized signature (flag || sig || pubkey), base64, as sui_executeTransactionBlock expects"""
        signature = self.sign(transaction_digest(tx_bytes))
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self.public_key).decode()

    def __repr__(self) -> str:
        return f"SuiKeypair({self.address})"
