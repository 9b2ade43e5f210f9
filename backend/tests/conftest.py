"""
Pytest Configuration for SealForge Backend Tests

Run all tests: python -m pytest backend/tests -v
Run unit tests only: python -m pytest backend/tests -v -m "not integration"
"""

import pytest
import secrets
import sys
from dataclasses import replace
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from infrastructure.config import PipelineConfig, SealForgeConfig
from seal.custodian import KeyCustodian, LocalCustodianClient
from services.keypair import SuiKeypair
from services.local_ledger import LocalLedger
from services.walrus_storage import LocalBlobStore


def new_object_id() -> str:
    return "0x" + secrets.token_hex(32)


# =============================================================================
# FIXTURES - Shared across all test files
# =============================================================================

@pytest.fixture
def creator():
    """Keypair that creates listings"""
    return SuiKeypair.generate()


@pytest.fixture
def buyer():
    return SuiKeypair.generate()


@pytest.fixture
def outsider():
    """Keypair that neither created nor bought anything"""
    return SuiKeypair.generate()


@pytest.fixture
def ledger(creator):
    return LocalLedger(creator.address)


@pytest.fixture
def storage():
    return LocalBlobStore()


@pytest.fixture
def custodians(ledger):
    """Two in-process key custodians admitting through the local ledger"""
    return [
        KeyCustodian.generate(new_object_id(), ledger, ledger.package_id, name=f"custodian-{i + 1}")
        for i in range(2)
    ]


@pytest.fixture
def custodian_clients(custodians):
    return [LocalCustodianClient(c) for c in custodians]


@pytest.fixture
def config(ledger, custodians):
    """Config pointing at the local deployment, 2-of-2 threshold, no pauses"""
    base = SealForgeConfig()
    return replace(
        base,
        network=replace(base.network, package_id=ledger.package_id, marketplace_id=ledger.marketplace.object_id),
        seal=replace(base.seal, custodians=tuple(c.info() for c in custodians), threshold=2),
        pipeline=PipelineConfig(inter_item_delay=0, activity_log_path=""),
    )


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (use real APIs)"
    )
