"""
SealForge Services
Sui keys and ledger, Walrus storage, Replicate LLM and treasury bookkeeping
"""

from .keypair import SuiKeypair, address_from_public_key
from .ledger import LedgerClient, Listing, Marketplace, TreasuryState, seal_approve_admits, sui_to_mist, mist_to_sui
from .local_ledger import LocalLedger
from .sui_ledger import SuiLedgerClient
from .walrus_storage import WalrusStorage, LocalBlobStore
from .replicate_llm import ReplicateClient, LLMResponse
from .treasury import TreasuryService, BackfillReport

__all__ = [
    # Keys
    "SuiKeypair",
    "address_from_public_key",

    # Ledger
    "LedgerClient",
    "Listing",
    "Marketplace",
    "TreasuryState",
    "seal_approve_admits",
    "sui_to_mist",
    "mist_to_sui",
    "LocalLedger",
    "SuiLedgerClient",

    # Storage
    "WalrusStorage",
    "LocalBlobStore",

    # LLM
    "ReplicateClient",
    "LLMResponse",

    # Treasury
    "TreasuryService",
    "BackfillReport",
]
