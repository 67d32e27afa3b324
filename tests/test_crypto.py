"""
Tests for confidential amounts, chunked data and the migration bundle.
"""

from dataclasses import replace

import pytest

from ghostscore.crypto import (
    CHUNK_SIZE,
    ENCRYPTION_VERSION,
    MAX_AMOUNT,
    EncryptedAmount,
    create_commitment,
    decrypt_amount,
    decrypt_data,
    encrypt_amount,
    encrypt_data,
    generate_keypair,
    generate_randomness,
    prepare_for_zk_migration,
    verify_commitment,
    verify_migration_bundle,
)
from ghostscore.errors import TamperEvidenceError, ValidationError
from ghostscore.metrics import get_metrics


def _flip(data: bytes, index: int) -> bytes:
    mutable = bytearray(data)
    mutable[index] ^= 0x01
    return bytes(mutable)


class TestKeys:
    def test_keys_are_32_bytes(self, keypair):
        assert len(keypair.public_key) == 32
        assert len(keypair.secret_key) == 32

    def test_seeded_generation_is_deterministic(self):
        assert generate_keypair(b"agent-seed") == generate_keypair(b"agent-seed")
        assert generate_keypair(b"agent-seed") != generate_keypair(b"other-seed")


class TestAmounts:
    """encrypt_amount / decrypt_amount."""

    @pytest.mark.parametrize("amount", [0, 1, 2**32 - 1, 2**63 - 1, MAX_AMOUNT])
    def test_round_trip(self, keypair, amount):
        encrypted = encrypt_amount(amount, keypair.public_key)

        assert encrypted.version == ENCRYPTION_VERSION
        assert decrypt_amount(encrypted, keypair.secret_key) == amount

    @pytest.mark.parametrize("amount", [-1, MAX_AMOUNT + 1, 1.5, True])
    def test_out_of_range_amount_rejected(self, keypair, amount):
        with pytest.raises(ValidationError):
            encrypt_amount(amount, keypair.public_key)

    def test_commitment_layout(self, keypair):
        encrypted = encrypt_amount(42, keypair.public_key)
        assert encrypted.commitment == create_commitment(42, keypair.public_key)
        assert verify_commitment(encrypted, 42) is True
        assert verify_commitment(encrypted, 43) is False

    def test_same_amount_encrypts_differently(self, keypair):
        first = encrypt_amount(7, keypair.public_key)
        second = encrypt_amount(7, keypair.public_key)
        assert first.ciphertext != second.ciphertext
        assert first.commitment == second.commitment

    def test_flipped_commitment_byte_is_tamper_evidence(self, keypair):
        encrypted = encrypt_amount(1000, keypair.public_key)
        tampered = replace(encrypted, commitment=_flip(encrypted.commitment, 0))

        with pytest.raises(TamperEvidenceError):
            decrypt_amount(tampered, keypair.secret_key)

    def test_flipped_ciphertext_byte_is_tamper_evidence(self, keypair):
        encrypted = encrypt_amount(1000, keypair.public_key)
        tampered = replace(encrypted, ciphertext=_flip(encrypted.ciphertext, 40))

        with pytest.raises(TamperEvidenceError):
            decrypt_amount(tampered, keypair.secret_key)

    def test_wrong_key_is_tamper_evidence(self, keypair):
        encrypted = encrypt_amount(1000, keypair.public_key)
        other = generate_keypair()

        with pytest.raises(TamperEvidenceError):
            decrypt_amount(encrypted, other.secret_key)

    def test_tamper_event_is_counted(self, keypair):
        encrypted = encrypt_amount(5, keypair.public_key)
        tampered = replace(encrypted, commitment=_flip(encrypted.commitment, 3))
        before = get_metrics().get_stats().get("tamper_events", 0)

        with pytest.raises(TamperEvidenceError):
            decrypt_amount(tampered, keypair.secret_key)

        assert get_metrics().get_stats()["tamper_events"] == before + 1

    def test_unsupported_version_rejected(self, keypair):
        encrypted = replace(encrypt_amount(5, keypair.public_key), version=99)
        with pytest.raises(ValidationError):
            decrypt_amount(encrypted, keypair.secret_key)

    def test_persisted_layout(self, keypair):
        encrypted = encrypt_amount(123456, keypair.public_key, timestamp=1_700_000_000)
        restored = EncryptedAmount.from_dict(encrypted.to_dict())

        assert restored == encrypted
        assert decrypt_amount(restored, keypair.secret_key) == 123456


class TestData:
    """Chunked encrypt_data / decrypt_data."""

    def test_multi_chunk_round_trip(self, keypair):
        data = bytes(range(256)) * 3
        encrypted = encrypt_data(data, keypair.public_key)

        assert encrypted.chunk_count == -(-len(data) // CHUNK_SIZE)
        assert decrypt_data(encrypted, keypair.secret_key) == data

    def test_single_chunk_round_trip(self, keypair):
        encrypted = encrypt_data(b"short", keypair.public_key)
        assert encrypted.chunk_count == 1
        assert decrypt_data(encrypted, keypair.secret_key) == b"short"

    def test_truncated_ciphertext_is_tamper_evidence(self, keypair):
        encrypted = encrypt_data(b"x" * 100, keypair.public_key)
        truncated = replace(encrypted, ciphertext=encrypted.ciphertext[:-10])

        with pytest.raises(TamperEvidenceError):
            decrypt_data(truncated, keypair.secret_key)

    def test_wrong_chunk_count_is_tamper_evidence(self, keypair):
        encrypted = encrypt_data(b"x" * 100, keypair.public_key)
        wrong = replace(encrypted, chunk_count=encrypted.chunk_count - 1)

        with pytest.raises(TamperEvidenceError):
            decrypt_data(wrong, keypair.secret_key)


class TestMigration:
    """prepare_for_zk_migration / verify_migration_bundle."""

    def test_bundle_with_randomness_verifies(self, keypair):
        randomness = generate_randomness()
        encrypted = encrypt_amount(777, keypair.public_key, randomness=randomness)

        bundle = prepare_for_zk_migration(encrypted, amount=777, randomness=randomness)

        assert bundle.can_reprove is True
        assert bundle.ciphertext == encrypted.ciphertext
        assert verify_migration_bundle(bundle) is True

    def test_bundle_without_secrets(self, keypair):
        bundle = prepare_for_zk_migration(encrypt_amount(777, keypair.public_key))

        assert bundle.can_reprove is False
        assert bundle.to_dict()["randomness"] is None
        assert verify_migration_bundle(bundle) is True

    def test_mismatched_amount_rejected(self, keypair):
        encrypted = encrypt_amount(777, keypair.public_key)
        with pytest.raises(ValidationError):
            prepare_for_zk_migration(encrypted, amount=778)

    def test_wrong_randomness_fails_verification(self, keypair):
        encrypted = encrypt_amount(777, keypair.public_key, randomness=generate_randomness())
        bundle = prepare_for_zk_migration(encrypted, amount=777, randomness=generate_randomness())

        assert verify_migration_bundle(bundle) is False

    def test_altered_amount_fails_verification(self, keypair):
        encrypted = encrypt_amount(777, keypair.public_key)
        bundle = replace(prepare_for_zk_migration(encrypted, amount=777), amount=778)

        assert verify_migration_bundle(bundle) is False
