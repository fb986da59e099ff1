"""Fixed-size chunking for ZeroDrop.

This module provides:
- Fixed 5 MiB chunking of plaintext before encryption
- Chunk count computation for a plaintext size
- Recovery of ciphertext chunk boundaries at decrypt time
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

# Chunk size configuration (in bytes)
CHUNK_SIZE = 5 * 1024 * 1024  # 5 MiB

# AES-GCM authentication tag appended to every encrypted chunk
TAG_SIZE = 16


@dataclass
class Chunk:
    """Represents a plaintext chunk with its position in the file."""

    index: int
    offset: int
    data: bytes

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return len(self.data)


def count_chunks(size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Return the number of chunks a plaintext of ``size`` bytes splits into.

    An empty plaintext still counts as one (zero-length) chunk.

    Args:
        size: Plaintext size in bytes.
        chunk_size: Chunk size in bytes.

    Returns:
        Chunk count, always >= 1.
    """
    if size < 0:
        raise ValueError(f"Size must be non-negative, got {size}")
    return max(1, -(-size // chunk_size))


def chunk_bytes(data: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[Chunk]:
    """Split data into fixed-size chunks.

    The last chunk may be shorter. Empty data yields exactly one
    zero-length chunk so that every file has at least one encrypted chunk.

    Args:
        data: Raw bytes to chunk.
        chunk_size: Chunk size in bytes.

    Yields:
        Chunk objects with index, offset and data.
    """
    if chunk_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}")

    if not data:
        yield Chunk(index=0, offset=0, data=b"")
        return

    view = memoryview(data)
    for index, offset in enumerate(range(0, len(data), chunk_size)):
        yield Chunk(
            index=index,
            offset=offset,
            data=bytes(view[offset : offset + chunk_size]),
        )


def chunk_file(path: Path, chunk_size: int = CHUNK_SIZE) -> Iterator[Chunk]:
    """Split a file into fixed-size chunks, reading one chunk at a time.

    Args:
        path: Path to the file to chunk.
        chunk_size: Chunk size in bytes.

    Yields:
        Chunk objects with index, offset and data.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with open(path, "rb") as f:
        index = 0
        offset = 0
        for block in iter(lambda: f.read(chunk_size), b""):
            yield Chunk(index=index, offset=offset, data=block)
            index += 1
            offset += len(block)

    if index == 0:
        yield Chunk(index=0, offset=0, data=b"")


def chunk_boundaries(
    total_length: int,
    chunk_count: int,
    chunk_size: int = CHUNK_SIZE,
) -> list[tuple[int, int]]:
    """Compute (start, end) offsets of each encrypted chunk in a ciphertext.

    Every chunk but the last is exactly ``chunk_size + TAG_SIZE`` bytes;
    the last one takes the remainder and must still hold a full tag.

    Args:
        total_length: Length of the concatenated ciphertext.
        chunk_count: Number of chunks recorded at upload time.
        chunk_size: Plaintext chunk size used at encryption time.

    Returns:
        List of (start, end) offsets, one per chunk.

    Raises:
        ValueError: If the length is inconsistent with ``chunk_count``.
    """
    if chunk_count < 1:
        raise ValueError(f"Chunk count must be >= 1, got {chunk_count}")

    stride = chunk_size + TAG_SIZE
    last_start = (chunk_count - 1) * stride
    last_length = total_length - last_start
    if last_length < TAG_SIZE or last_length > stride:
        raise ValueError(
            f"Ciphertext of {total_length} bytes cannot hold {chunk_count} chunks"
        )

    bounds = [(i * stride, (i + 1) * stride) for i in range(chunk_count - 1)]
    bounds.append((last_start, total_length))
    return bounds


def split_ciphertext(
    ciphertext: bytes,
    chunk_count: int,
    chunk_size: int = CHUNK_SIZE,
) -> list[bytes]:
    """Split a concatenated ciphertext back into its encrypted chunks.

    Args:
        ciphertext: Concatenated encrypted chunks (each with its tag).
        chunk_count: Number of chunks recorded at upload time.
        chunk_size: Plaintext chunk size used at encryption time.

    Returns:
        Encrypted chunks in order.
    """
    view = memoryview(ciphertext)
    return [
        bytes(view[start:end])
        for start, end in chunk_boundaries(len(ciphertext), chunk_count, chunk_size)
    ]
