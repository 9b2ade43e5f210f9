"""
SealForge threshold encryption
Listing-bound identifiers, envelopes, session credentials, custodians and decryption
"""

from .identity import EncryptionIdentifier, normalize_object_id
from .envelope import EncryptedEnvelope, EncryptedShare
from .encryptor import EnvelopeEncryptor
from .session import AccessCredential, SessionKey
from .access import AccessProver, CallSkeleton, FetchKeyRequest
from .custodian import KeyCustodian, LocalCustodianClient, HttpCustodianClient
from .decryptor import Decryptor, DecryptResult, FailureKind

__all__ = [
    "EncryptionIdentifier",
    "normalize_object_id",
    "EncryptedEnvelope",
    "EncryptedShare",
    "EnvelopeEncryptor",
    "AccessCredential",
    "SessionKey",
    "AccessProver",
    "CallSkeleton",
    "FetchKeyRequest",
    "KeyCustodian",
    "LocalCustodianClient",
    "HttpCustodianClient",
    "Decryptor",
    "DecryptResult",
    "FailureKind",
]
