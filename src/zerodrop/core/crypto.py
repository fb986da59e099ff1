"""Chunked file encryption for ZeroDrop.

This module provides:
- Per-chunk nonce derivation from a single 96-bit base IV
- Authenticated encryption of each chunk using AES-256-GCM
- Whole-file encrypt/decrypt with optional thread-pool parallelism

Every chunk is sealed under the file key with the base IV whose last byte
is XORed with ``index % 256``. Chunk 0 and chunk 256 therefore share a
nonce: files above 256 chunks (1.25 GiB) reuse nonces under one key. The
derivation is kept as-is because stored objects depend on it.
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from zerodrop.core.chunking import CHUNK_SIZE, chunk_bytes, split_ciphertext
from zerodrop.core.keys import FileKey

logger = logging.getLogger(__name__)

# AES-GCM constants
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)
NONCE_CYCLE = 256  # Distinct per-chunk nonces before the derivation wraps

T = TypeVar("T")
R = TypeVar("R")


class AuthenticationError(Exception):
    """Raised when a chunk fails tag verification (corrupted file or wrong key)."""


@dataclass
class EncryptedPayload:
    """Result of encrypting a whole file."""

    ciphertext: bytes
    iv: bytes
    chunk_count: int
    original_size: int

    @property
    def size(self) -> int:
        """Return the ciphertext size in bytes."""
        return len(self.ciphertext)


def generate_iv() -> bytes:
    """Generate a random 96-bit base IV.

    Returns:
        12 bytes from the OS CSPRNG.
    """
    return os.urandom(NONCE_SIZE)


def derive_chunk_nonce(iv: bytes, index: int) -> bytes:
    """Derive the effective nonce of chunk ``index`` from the base IV.

    Args:
        iv: 12-byte base IV.
        index: 0-based chunk index.

    Returns:
        The base IV with its last byte XORed with ``index % 256``.
    """
    _check_iv(iv)
    if index < 0:
        raise ValueError(f"Chunk index must be non-negative, got {index}")
    nonce = bytearray(iv)
    nonce[-1] ^= index % NONCE_CYCLE
    return bytes(nonce)


def encrypt_chunk(data: bytes, key: FileKey, nonce: bytes) -> bytes:
    """Encrypt one chunk using AES-256-GCM.

    Args:
        data: Plaintext chunk.
        key: File key.
        nonce: 12-byte effective nonce for this chunk.

    Returns:
        ciphertext || auth_tag (16 bytes)
    """
    return AESGCM(key.raw).encrypt(nonce, data, None)


def decrypt_chunk(encrypted: bytes, key: FileKey, nonce: bytes) -> bytes:
    """Decrypt one chunk encrypted with encrypt_chunk.

    Args:
        encrypted: ciphertext || auth_tag (16 bytes)
        key: File key.
        nonce: 12-byte effective nonce for this chunk.

    Returns:
        Decrypted plaintext chunk.

    Raises:
        AuthenticationError: If authentication fails (wrong key or tampered data).
    """
    try:
        return AESGCM(key.raw).decrypt(nonce, encrypted, None)
    except InvalidTag as e:
        raise AuthenticationError("File corrupted or wrong key") from e


def encrypt_file(
    plaintext: bytes,
    key: FileKey,
    *,
    iv: bytes | None = None,
    chunk_size: int = CHUNK_SIZE,
    workers: int = 1,
) -> EncryptedPayload:
    """Encrypt a whole file chunk by chunk.

    Args:
        plaintext: File contents.
        key: File key.
        iv: Base IV (a fresh random one is generated when omitted).
        chunk_size: Plaintext chunk size.
        workers: Number of threads used for chunk encryption.

    Returns:
        EncryptedPayload with concatenated chunk ciphertexts.
    """
    if iv is None:
        iv = generate_iv()
    _check_iv(iv)

    chunks = list(chunk_bytes(plaintext, chunk_size))
    if len(chunks) > NONCE_CYCLE:
        logger.warning(
            "File has %d chunks: per-chunk nonces repeat every %d chunks",
            len(chunks),
            NONCE_CYCLE,
        )

    def seal(chunk_index: int) -> bytes:
        chunk = chunks[chunk_index]
        return encrypt_chunk(chunk.data, key, derive_chunk_nonce(iv, chunk.index))

    sealed = _map_ordered(seal, range(len(chunks)), workers)
    logger.debug("Encrypted %d bytes into %d chunks", len(plaintext), len(chunks))

    return EncryptedPayload(
        ciphertext=b"".join(sealed),
        iv=iv,
        chunk_count=len(chunks),
        original_size=len(plaintext),
    )


def decrypt_file(
    ciphertext: bytes,
    iv: bytes,
    key: FileKey,
    chunk_count: int = 1,
    *,
    chunk_size: int = CHUNK_SIZE,
    workers: int = 1,
) -> bytes:
    """Decrypt a file produced by encrypt_file.

    A chunk count of 1 decrypts the whole object in a single operation
    under the base IV, which also covers objects uploaded unchunked.

    Args:
        ciphertext: Concatenated chunk ciphertexts.
        iv: 12-byte base IV.
        key: File key.
        chunk_count: Number of chunks recorded at upload time.
        chunk_size: Plaintext chunk size used at encryption time.
        workers: Number of threads used for chunk decryption.

    Returns:
        The original plaintext.

    Raises:
        AuthenticationError: If any chunk fails verification. No partial
            plaintext is returned.
    """
    _check_iv(iv)

    if chunk_count == 1:
        return decrypt_chunk(ciphertext, key, iv)

    try:
        parts = split_ciphertext(ciphertext, chunk_count, chunk_size)
    except ValueError as e:
        raise AuthenticationError("File corrupted or wrong key") from e

    def open_chunk(chunk_index: int) -> bytes:
        return decrypt_chunk(parts[chunk_index], key, derive_chunk_nonce(iv, chunk_index))

    opened = _map_ordered(open_chunk, range(chunk_count), workers)
    return b"".join(opened)


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Reads the file in blocks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(8192), b""):
            hasher.update(block)
    return hasher.hexdigest()


def _check_iv(iv: bytes) -> None:
    if len(iv) != NONCE_SIZE:
        raise ValueError(f"Invalid IV: must be {NONCE_SIZE} bytes, got {len(iv)}")


def _map_ordered(func: Callable[[T], R], items: Iterable[T], workers: int) -> list[R]:
    """Apply func to items, optionally on a thread pool, keeping input order."""
    if workers <= 1:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(func, items))
