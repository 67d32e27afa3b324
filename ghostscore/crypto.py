"""
GhostScore Commitment / Encryption Layer.

Placeholder confidentiality scheme for payment amounts and private metadata,
pending a real zero-knowledge proof system.

Each record is encrypted to the recipient's X25519 public key with a fresh
ephemeral key (ECDH -> HKDF-SHA256 -> ChaCha20-Poly1305) and carries a
SHA-256 commitment over ``amount || recipient_public_key``. The commitment is
re-verified on every decrypt so a substituted ciphertext or public key is
detected before the plaintext is trusted.

Every record carries ``version``. ``prepare_for_zk_migration`` bundles the raw
amount and randomness next to the ciphertext so records can be re-proved once
a proof system exists, without collecting plaintext from users again.

Example:
    >>> keys = generate_keypair()
    >>> encrypted = encrypt_amount(1_000_000, keys.public_key)
    >>> decrypt_amount(encrypted, keys.secret_key)
    1000000
"""

import os
import hmac
import time
import struct
import hashlib
import logging
from typing import Optional, List, Tuple
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ghostscore.errors import TamperEvidenceError, ValidationError
from ghostscore.metrics import get_metrics

logger = logging.getLogger(__name__)

ENCRYPTION_VERSION = 1
SUPPORTED_VERSIONS = (1,)

KEY_SIZE = 32
NONCE_SIZE = 12
CHUNK_SIZE = 32
MAX_AMOUNT = 2**64 - 1

_AMOUNT_CONTEXT = b"ghostscore:amount:v1"
_DATA_CONTEXT = b"ghostscore:data:v1"
_FRAME_HEADER = struct.Struct("<II")  # chunk index, frame length


# =============================================================================
# Records
# =============================================================================


@dataclass
class KeyPair:
    """Raw 32-byte X25519 keypair."""

    public_key: bytes
    secret_key: bytes


@dataclass
class EncryptedAmount:
    """
    An encrypted amount with its tamper-evidence commitment.

    Attributes:
        ciphertext: ephemeral public key || AEAD ciphertext.
        public_key: Recipient public key the amount was encrypted to.
        commitment: SHA-256(amount_le64 || public_key).
        timestamp: Unix timestamp of encryption.
        version: Scheme version, see ENCRYPTION_VERSION.
    """

    ciphertext: bytes
    public_key: bytes
    commitment: bytes
    timestamp: int
    version: int = ENCRYPTION_VERSION

    def to_dict(self) -> dict:
        return {
            "ciphertext": self.ciphertext.hex(),
            "public_key": self.public_key.hex(),
            "commitment": self.commitment.hex(),
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedAmount":
        return cls(
            ciphertext=bytes.fromhex(data["ciphertext"]),
            public_key=bytes.fromhex(data["public_key"]),
            commitment=bytes.fromhex(data["commitment"]),
            timestamp=int(data["timestamp"]),
            version=int(data.get("version", ENCRYPTION_VERSION)),
        )


@dataclass
class EncryptedData:
    """
    Arbitrary data encrypted in independently sealed chunks.

    ``ciphertext`` is a sequence of frames, each ``index || length || sealed``,
    so chunk order survives storage and transport.
    """

    ciphertext: bytes
    public_key: bytes
    commitment: bytes
    chunk_count: int
    total_length: int
    timestamp: int
    version: int = ENCRYPTION_VERSION

    def to_dict(self) -> dict:
        return {
            "ciphertext": self.ciphertext.hex(),
            "public_key": self.public_key.hex(),
            "commitment": self.commitment.hex(),
            "chunk_count": self.chunk_count,
            "total_length": self.total_length,
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedData":
        return cls(
            ciphertext=bytes.fromhex(data["ciphertext"]),
            public_key=bytes.fromhex(data["public_key"]),
            commitment=bytes.fromhex(data["commitment"]),
            chunk_count=int(data["chunk_count"]),
            total_length=int(data["total_length"]),
            timestamp=int(data["timestamp"]),
            version=int(data.get("version", ENCRYPTION_VERSION)),
        )


@dataclass
class ZkMigrationData:
    """
    Everything needed to re-prove a confidential record under a future
    proof system.

    ``amount`` and ``randomness`` are optional: without them the bundle can
    only be migrated by the key holder.
    """

    version: int
    ciphertext: bytes
    public_key: bytes
    commitment: bytes
    timestamp: int
    prepared_at: int
    amount: Optional[int] = None
    randomness: Optional[bytes] = None

    @property
    def can_reprove(self) -> bool:
        return self.amount is not None and self.randomness is not None

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "ciphertext": self.ciphertext.hex(),
            "public_key": self.public_key.hex(),
            "commitment": self.commitment.hex(),
            "timestamp": self.timestamp,
            "prepared_at": self.prepared_at,
            "amount": self.amount,
            "randomness": self.randomness.hex() if self.randomness is not None else None,
        }


# =============================================================================
# Keys
# =============================================================================


def generate_keypair(seed: Optional[bytes] = None) -> KeyPair:
    """
    Generate an X25519 keypair.

    Args:
        seed: Optional seed for deterministic generation (hashed to 32 bytes).
    """
    if seed is not None:
        private = X25519PrivateKey.from_private_bytes(hashlib.sha256(seed).digest())
    else:
        private = X25519PrivateKey.generate()
    return KeyPair(public_key=_public_bytes(private), secret_key=_private_bytes(private))


def generate_randomness() -> bytes:
    """Fresh 32 bytes of encryption randomness (the ephemeral secret)."""
    return os.urandom(KEY_SIZE)


def _public_bytes(private: X25519PrivateKey) -> bytes:
    return private.public_key().public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )


def _private_bytes(private: X25519PrivateKey) -> bytes:
    return private.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _check_key(key: bytes, name: str) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise ValidationError(f"{name} must be {KEY_SIZE} bytes")


def _derive(shared: bytes, ephemeral_public: bytes, recipient_public: bytes) -> Tuple[bytes, bytes]:
    """HKDF the ECDH secret into a ChaCha20 key and nonce."""
    okm = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE + NONCE_SIZE,
        salt=ephemeral_public + recipient_public,
        info=b"ghostscore-encryption",
    ).derive(shared)
    return okm[:KEY_SIZE], okm[KEY_SIZE:]


def _seal(plaintext: bytes, recipient_public: bytes, aad: bytes, randomness: Optional[bytes]) -> bytes:
    if randomness is not None:
        _check_key(randomness, "randomness")
        ephemeral = X25519PrivateKey.from_private_bytes(bytes(randomness))
    else:
        ephemeral = X25519PrivateKey.generate()

    ephemeral_public = _public_bytes(ephemeral)
    shared = ephemeral.exchange(X25519PublicKey.from_public_bytes(bytes(recipient_public)))
    key, nonce = _derive(shared, ephemeral_public, bytes(recipient_public))
    return ephemeral_public + ChaCha20Poly1305(key).encrypt(nonce, plaintext, aad)


def _open(sealed: bytes, secret_key: bytes, recipient_public: bytes, aad: bytes) -> bytes:
    if len(sealed) < KEY_SIZE + 16:
        raise TamperEvidenceError("Ciphertext is truncated")

    ephemeral_public, body = sealed[:KEY_SIZE], sealed[KEY_SIZE:]
    private = X25519PrivateKey.from_private_bytes(bytes(secret_key))
    try:
        shared = private.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
    except ValueError as e:
        raise TamperEvidenceError(f"Invalid ephemeral key: {e}")
    key, nonce = _derive(shared, ephemeral_public, bytes(recipient_public))
    try:
        return ChaCha20Poly1305(key).decrypt(nonce, body, aad)
    except InvalidTag:
        raise TamperEvidenceError("Ciphertext failed authentication")


def _tamper(message: str) -> TamperEvidenceError:
    logger.warning(f"Tamper evidence: {message}")
    get_metrics().record_tamper_event()
    return TamperEvidenceError(message)


def _check_version(version: int) -> None:
    if version not in SUPPORTED_VERSIONS:
        raise ValidationError(f"Unsupported encryption version: {version}")


# =============================================================================
# Commitments
# =============================================================================


def create_commitment(amount: int, public_key: bytes) -> bytes:
    """SHA-256 over the 8-byte little-endian amount followed by the public key."""
    _check_amount(amount)
    return hashlib.sha256(amount.to_bytes(8, "little") + bytes(public_key)).digest()


def create_data_commitment(data: bytes, public_key: bytes) -> bytes:
    return hashlib.sha256(bytes(data) + bytes(public_key)).digest()


def verify_commitment(encrypted: EncryptedAmount, amount: int) -> bool:
    """Check a claimed amount against the record's commitment."""
    try:
        expected = create_commitment(amount, encrypted.public_key)
    except ValidationError:
        return False
    return hmac.compare_digest(expected, encrypted.commitment)


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer")
    if amount < 0 or amount > MAX_AMOUNT:
        raise ValidationError(f"Amount must be in [0, {MAX_AMOUNT}]")


# =============================================================================
# Amounts
# =============================================================================


def encrypt_amount(
    amount: int,
    recipient_public_key: bytes,
    randomness: Optional[bytes] = None,
    timestamp: Optional[int] = None,
) -> EncryptedAmount:
    """
    Encrypt an amount to a recipient.

    Args:
        amount: Integer in [0, 2^64 - 1].
        recipient_public_key: 32-byte X25519 public key.
        randomness: Optional 32-byte ephemeral secret. Keep it (see
            prepare_for_zk_migration) if the record must be re-provable.
        timestamp: Override for the record timestamp.

    Raises:
        ValidationError: On an out-of-range amount or malformed key.
    """
    _check_amount(amount)
    _check_key(recipient_public_key, "recipient_public_key")

    public_key = bytes(recipient_public_key)
    ciphertext = _seal(
        amount.to_bytes(8, "little"), public_key, _AMOUNT_CONTEXT + public_key, randomness
    )

    return EncryptedAmount(
        ciphertext=ciphertext,
        public_key=public_key,
        commitment=create_commitment(amount, public_key),
        timestamp=timestamp if timestamp is not None else int(time.time()),
        version=ENCRYPTION_VERSION,
    )


def decrypt_amount(encrypted: EncryptedAmount, secret_key: bytes) -> int:
    """
    Decrypt an amount and verify its commitment.

    Raises:
        TamperEvidenceError: If the ciphertext fails authentication or the
            recovered amount does not match the stored commitment.
        ValidationError: On an unsupported version or malformed key.
    """
    _check_version(encrypted.version)
    _check_key(secret_key, "secret_key")

    try:
        plaintext = _open(
            encrypted.ciphertext,
            secret_key,
            encrypted.public_key,
            _AMOUNT_CONTEXT + bytes(encrypted.public_key),
        )
    except TamperEvidenceError as e:
        raise _tamper(e.message)

    if len(plaintext) != 8:
        raise _tamper("Decrypted amount has unexpected length")

    amount = int.from_bytes(plaintext, "little")
    if not verify_commitment(encrypted, amount):
        raise _tamper("Commitment does not match decrypted amount")

    return amount


# =============================================================================
# Arbitrary data
# =============================================================================


def _chunk(data: bytes, size: int = CHUNK_SIZE) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def _chunk_aad(public_key: bytes, index: int, count: int) -> bytes:
    return _DATA_CONTEXT + public_key + struct.pack("<II", index, count)


def encrypt_data(data: bytes, recipient_public_key: bytes) -> EncryptedData:
    """
    Encrypt arbitrary bytes in CHUNK_SIZE chunks.

    Each chunk is sealed independently with its index and the chunk count
    bound as associated data, so dropped, duplicated or reordered chunks
    fail to decrypt.
    """
    _check_key(recipient_public_key, "recipient_public_key")
    public_key = bytes(recipient_public_key)
    data = bytes(data)

    chunks = _chunk(data)
    frames = []
    for index, chunk in enumerate(chunks):
        sealed = _seal(chunk, public_key, _chunk_aad(public_key, index, len(chunks)), None)
        frames.append(_FRAME_HEADER.pack(index, len(sealed)) + sealed)

    return EncryptedData(
        ciphertext=b"".join(frames),
        public_key=public_key,
        commitment=create_data_commitment(data, public_key),
        chunk_count=len(chunks),
        total_length=len(data),
        timestamp=int(time.time()),
    )


def _read_frames(ciphertext: bytes) -> List[Tuple[int, bytes]]:
    frames = []
    offset = 0
    while offset < len(ciphertext):
        if offset + _FRAME_HEADER.size > len(ciphertext):
            raise TamperEvidenceError("Truncated frame header")
        index, length = _FRAME_HEADER.unpack_from(ciphertext, offset)
        offset += _FRAME_HEADER.size
        if offset + length > len(ciphertext):
            raise TamperEvidenceError("Truncated frame body")
        frames.append((index, ciphertext[offset:offset + length]))
        offset += length
    return frames


def decrypt_data(encrypted: EncryptedData, secret_key: bytes) -> bytes:
    """
    Decrypt chunked data, concatenating every chunk in index order.

    Raises:
        TamperEvidenceError: On missing/duplicated chunks, failed chunk
            authentication, or a commitment mismatch.
    """
    _check_version(encrypted.version)
    _check_key(secret_key, "secret_key")
    public_key = bytes(encrypted.public_key)

    try:
        frames = sorted(_read_frames(encrypted.ciphertext), key=lambda f: f[0])
        if [index for index, _ in frames] != list(range(encrypted.chunk_count)):
            raise TamperEvidenceError("Chunk indices are not contiguous")

        parts = [
            _open(sealed, secret_key, public_key, _chunk_aad(public_key, index, encrypted.chunk_count))
            for index, sealed in frames
        ]
    except TamperEvidenceError as e:
        raise _tamper(e.message)

    data = b"".join(parts)
    if len(data) != encrypted.total_length:
        raise _tamper("Decrypted length does not match record")
    if not hmac.compare_digest(create_data_commitment(data, public_key), encrypted.commitment):
        raise _tamper("Commitment does not match decrypted data")

    return data


# =============================================================================
# Migration toward a proof system
# =============================================================================


def prepare_for_zk_migration(
    encrypted: EncryptedAmount,
    amount: Optional[int] = None,
    randomness: Optional[bytes] = None,
) -> ZkMigrationData:
    """
    Bundle a confidential record with the values a future prover needs.

    Raises:
        ValidationError: If a supplied amount does not match the commitment.
    """
    _check_version(encrypted.version)
    if amount is not None and not verify_commitment(encrypted, amount):
        raise ValidationError("Amount does not match the record commitment")
    if randomness is not None:
        _check_key(randomness, "randomness")

    return ZkMigrationData(
        version=encrypted.version,
        ciphertext=encrypted.ciphertext,
        public_key=encrypted.public_key,
        commitment=encrypted.commitment,
        timestamp=encrypted.timestamp,
        prepared_at=int(time.time()),
        amount=amount,
        randomness=bytes(randomness) if randomness is not None else None,
    )


def verify_migration_bundle(bundle: ZkMigrationData) -> bool:
    """
    Re-check a migration bundle.

    With an amount, the commitment must match. With amount and randomness,
    re-encryption must reproduce the stored ciphertext exactly.
    """
    if bundle.version not in SUPPORTED_VERSIONS:
        return False
    if bundle.amount is None:
        return bundle.timestamp > 0

    try:
        expected = create_commitment(bundle.amount, bundle.public_key)
    except ValidationError:
        return False
    if not hmac.compare_digest(expected, bundle.commitment):
        return False

    if bundle.randomness is not None:
        public_key = bytes(bundle.public_key)
        resealed = _seal(
            bundle.amount.to_bytes(8, "little"),
            public_key,
            _AMOUNT_CONTEXT + public_key,
            bundle.randomness,
        )
        return hmac.compare_digest(resealed, bundle.ciphertext)

    return True
