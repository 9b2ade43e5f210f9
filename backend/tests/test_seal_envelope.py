"""
Envelope Encryption Tests
Secret sharing, envelope wire format and identifier discipline of the encryptor

Run: python -m pytest tests/test_seal_envelope.py -v
"""

import os

import pytest
from dataclasses import replace

from infrastructure.errors import EncryptionError, EnvelopeFormatError
from seal import shamir
from seal.encryptor import EnvelopeEncryptor
from seal.envelope import EncryptedEnvelope
from seal.identity import EncryptionIdentifier, normalize_object_id

from conftest import new_object_id


@pytest.fixture
def encryptor(ledger, custodians):
    return EnvelopeEncryptor(ledger.package_id, [c.info() for c in custodians], threshold=2)


# =============================================================================
# TEST: Shamir over GF(256)
# =============================================================================

class TestShamir:

    def test_any_threshold_subset_recovers_secret(self):
        secret = os.urandom(32)
        shares = shamir.split(secret, 3, 5)

        assert shamir.combine(dict(shares[:3])) == secret
        assert shamir.combine(dict([shares[0], shares[2], shares[4]])) == secret

    def test_below_threshold_does_not_recover(self):
        secret = os.urandom(32)
        shares = shamir.split(secret, 3, 5)

        assert shamir.combine(dict(shares[:2])) != secret

    def test_single_share_threshold_is_the_secret(self):
        secret = os.urandom(16)
        for _, share in shamir.split(secret, 1, 3):
            assert share == secret

    @pytest.mark.parametrize("threshold,count", [(0, 2), (3, 2), (1, 256)])
    def test_invalid_parameters_rejected(self, threshold, count):
        with pytest.raises(ValueError):
            shamir.split(b"k" * 32, threshold, count)

    def test_mismatched_share_lengths_rejected(self):
        with pytest.raises(ValueError):
            shamir.combine({1: b"ab", 2: b"abc"})


# =============================================================================
# TEST: Envelope format
# =============================================================================

class TestEnvelopeFormat:

    def test_parse_reads_back_all_fields(self, encryptor):
        listing_id = new_object_id()
        envelope = encryptor.encrypt(listing_id, b"payload")

        parsed = EncryptedEnvelope.parse(envelope.to_bytes())

        assert parsed == envelope
        assert parsed.threshold == 2
        assert len(parsed.shares) == 2
        assert parsed.identifier.is_bound_to(listing_id)
        assert parsed.package_id == encryptor.package_id

    def test_bad_magic(self, encryptor):
        data = encryptor.encrypt(new_object_id(), b"x").to_bytes()
        with pytest.raises(EnvelopeFormatError, match="magic"):
            EncryptedEnvelope.parse(b"XXXX" + data[4:])

    def test_truncated(self, encryptor):
        data = encryptor.encrypt(new_object_id(), b"x").to_bytes()
        with pytest.raises(EnvelopeFormatError, match="truncated"):
            EncryptedEnvelope.parse(data[:-1])

    def test_trailing_bytes(self, encryptor):
        data = encryptor.encrypt(new_object_id(), b"x").to_bytes()
        with pytest.raises(EnvelopeFormatError, match="Trailing"):
            EncryptedEnvelope.parse(data + b"\x00")

    def test_threshold_above_share_count(self, encryptor):
        envelope = encryptor.encrypt(new_object_id(), b"x")
        broken = replace(envelope, threshold=3)
        with pytest.raises(EnvelopeFormatError, match="threshold"):
            EncryptedEnvelope.parse(broken.to_bytes())

    def test_duplicate_custodian(self, encryptor):
        envelope = encryptor.encrypt(new_object_id(), b"x")
        first = envelope.shares[0]
        broken = replace(envelope, shares=(first, replace(first, index=2)))
        with pytest.raises(EnvelopeFormatError, match="Duplicate"):
            EncryptedEnvelope.parse(broken.to_bytes())

    def test_garbage(self):
        with pytest.raises(EnvelopeFormatError):
            EncryptedEnvelope.parse(b"")


# =============================================================================
# TEST: Encryptor
# =============================================================================

class TestEncryptor:

    def test_identifier_bound_to_listing(self, encryptor):
        listing_id = new_object_id()
        envelope = encryptor.encrypt(listing_id, b"report")

        assert envelope.identifier.listing_object_id == normalize_object_id(listing_id)

    def test_identifiers_unique_for_same_listing(self, encryptor):
        listing_id = new_object_id()
        identifiers = {encryptor.encrypt(listing_id, b"same").identifier for _ in range(50)}

        assert len(identifiers) == 50
        assert len(list(encryptor.issued())) == 50

    def test_ciphertext_differs_for_same_plaintext(self, encryptor):
        listing_id = new_object_id()
        a = encryptor.encrypt(listing_id, b"same")
        b = encryptor.encrypt(listing_id, b"same")

        assert a.ciphertext != b.ciphertext

    def test_explicit_identifier_reuse_rejected(self, encryptor):
        listing_id = new_object_id()
        identifier = EncryptionIdentifier.fresh(listing_id)
        encryptor.encrypt(listing_id, b"first", identifier=identifier)

        with pytest.raises(EncryptionError, match="already used"):
            encryptor.encrypt(listing_id, b"second", identifier=identifier)

    def test_identifier_for_other_listing_rejected(self, encryptor):
        identifier = EncryptionIdentifier.fresh(new_object_id())
        with pytest.raises(EncryptionError, match="not bound"):
            encryptor.encrypt(new_object_id(), b"x", identifier=identifier)

    def test_nonce_collision_is_redrawn(self, encryptor, monkeypatch):
        listing_id = new_object_id()
        taken = encryptor.encrypt(listing_id, b"x").identifier
        draws = iter([taken, EncryptionIdentifier.fresh(listing_id)])
        monkeypatch.setattr(EncryptionIdentifier, "fresh", classmethod(lambda cls, _: next(draws)))

        assert encryptor.encrypt(listing_id, b"y").identifier != taken

    def test_no_custodians(self, ledger):
        with pytest.raises(EncryptionError, match="No key custodians"):
            EnvelopeEncryptor(ledger.package_id, [], 1).encrypt(new_object_id(), b"x")

    def test_threshold_out_of_range(self, ledger, custodians):
        encryptor = EnvelopeEncryptor(ledger.package_id, [c.info() for c in custodians], threshold=3)
        with pytest.raises(EncryptionError, match="Threshold"):
            encryptor.encrypt(new_object_id(), b"x")

    def test_missing_package(self, custodians):
        encryptor = EnvelopeEncryptor("", [c.info() for c in custodians], threshold=1)
        with pytest.raises(EncryptionError, match="package"):
            encryptor.encrypt(new_object_id(), b"x")
