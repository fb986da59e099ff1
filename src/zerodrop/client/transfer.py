"""Encrypted object transfers against capability URLs.

This module provides:
- TransferClient: uploads ciphertext + IV and downloads them back
- ProgressReporter: progress callback guard
- send_file / receive_link / receive_share: end-to-end helpers that add
  key generation, encryption and key delivery on top of TransferClient

The server and the blob store only ever see ciphertext, the IV and
non-secret metadata. Keys travel in link fragments or share records.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import TYPE_CHECKING

import httpx

from zerodrop.client.api import APIError, FileMetadata, NotFoundError, ShareInfo
from zerodrop.core.crypto import NONCE_SIZE, EncryptedPayload, decrypt_file, encrypt_file
from zerodrop.core.keys import (
    FileKey,
    build_share_link,
    export_portable,
    generate_key,
    import_portable,
    parse_share_link,
)

if TYPE_CHECKING:
    from zerodrop.client.api import ZeroDropClient

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[float], None]


class TransferError(Exception):
    """Base exception for transfer errors."""

    def __init__(self, message: str, file_id: str) -> None:
        super().__init__(message)
        self.file_id = file_id


class PartialUploadError(TransferError):
    """Ciphertext was stored but the IV was not; the object is unusable."""

    def __init__(self, file_id: str) -> None:
        super().__init__(f"Ciphertext of {file_id} uploaded but storing its IV failed", file_id)


class IncompleteObjectError(TransferError):
    """Object metadata exists but its IV is missing or invalid."""

    def __init__(self, file_id: str, reason: str = "IV is missing") -> None:
        super().__init__(f"Object {file_id} is incomplete: {reason}", file_id)


class ProgressReporter:
    """Wraps a progress callback.

    Fractions are clamped to [0, 1] and never go backwards. Once closed,
    the reporter drops every further update.
    """

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._last = 0.0
        self._closed = False

    @property
    def last(self) -> float:
        """Last fraction delivered."""
        return self._last

    def update(self, fraction: float) -> None:
        """Deliver a fraction to the callback."""
        if self._callback is None or self._closed:
            return
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction < self._last:
            return
        self._last = fraction
        self._callback(fraction)

    def close(self) -> None:
        """Stop delivering updates."""
        self._closed = True

    def __enter__(self) -> ProgressReporter:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


@dataclass
class DownloadedObject:
    """Ciphertext, IV and metadata of a downloaded object."""

    ciphertext: bytes
    iv: bytes
    metadata: FileMetadata

    def decrypt(self, key: FileKey, workers: int = 1) -> bytes:
        """Decrypt the object.

        Raises:
            AuthenticationError: If the key is wrong or the object was altered.
        """
        return decrypt_file(self.ciphertext, self.iv, key, self.metadata.chunks, workers=workers)


def _strip_query(url: str) -> str:
    """Drop the query string (capability signature) from a URL."""
    return url.split("?", 1)[0]


class TransferClient:
    """Moves encrypted objects between this device and the blob store."""

    def __init__(self, api: ZeroDropClient, stream_chunk_size: int = STREAM_CHUNK_SIZE) -> None:
        """Initialize the transfer client.

        Args:
            api: HTTP client for the ZeroDrop server.
            stream_chunk_size: Bytes per streamed body piece (progress granularity).
        """
        self._api = api
        self._stream_chunk_size = stream_chunk_size

    @property
    def api(self) -> ZeroDropClient:
        """The underlying API client."""
        return self._api

    def upload(
        self,
        payload: EncryptedPayload,
        file_name: str,
        progress: ProgressCallback | None = None,
    ) -> str:
        """Upload an encrypted payload.

        The ciphertext goes to a write capability, then the IV is stored
        through the API. The two steps are independent: when the second
        fails the object exists but cannot be decrypted.

        Args:
            payload: Output of encrypt_file.
            file_name: Original file name recorded as metadata.
            progress: Optional callback receiving fractions in [0, 1].

        Returns:
            The generated file ID.

        Raises:
            PartialUploadError: If the IV could not be stored.
            httpx.HTTPError: If the ciphertext transfer failed.
        """
        with ProgressReporter(progress) as reporter:
            ticket = self._api.request_upload(
                file_name=file_name,
                file_size=payload.size,
                original_size=payload.original_size,
                chunks=payload.chunk_count,
            )

            try:
                self._put(ticket.upload_url, ticket.upload_headers, payload.ciphertext, reporter)
            except httpx.HTTPError as e:
                e.add_note(f"uploading ciphertext of {ticket.file_id} to {_strip_query(ticket.upload_url)}")
                raise

            try:
                self._api.upload_iv(ticket.file_id, payload.iv)
            except (APIError, httpx.HTTPError) as e:
                logger.warning("IV upload failed for %s: %s", ticket.file_id, e)
                raise PartialUploadError(ticket.file_id) from e

            reporter.update(1.0)

        logger.info(
            "Uploaded %s (%d bytes, %d chunks)",
            ticket.file_id,
            payload.size,
            payload.chunk_count,
        )
        return ticket.file_id

    def download(
        self,
        file_id: str,
        progress: ProgressCallback | None = None,
    ) -> DownloadedObject:
        """Download an encrypted object by ID.

        Args:
            file_id: Object identifier.
            progress: Optional callback receiving fractions in [0, 1].

        Returns:
            DownloadedObject with ciphertext, IV and metadata.

        Raises:
            NotFoundError: If the object does not exist or has expired.
            IncompleteObjectError: If the IV is missing or malformed.
            httpx.HTTPError: If the ciphertext transfer failed.
        """
        with ProgressReporter(progress) as reporter:
            metadata = self._api.get_metadata(file_id)

            try:
                iv = self._api.get_iv(file_id)
            except NotFoundError as e:
                raise IncompleteObjectError(file_id) from e
            if len(iv) != NONCE_SIZE:
                raise IncompleteObjectError(file_id, f"IV has {len(iv)} bytes")

            try:
                ciphertext = self._get(metadata.download_url, metadata.file_size, reporter)
            except httpx.HTTPError as e:
                e.add_note(f"downloading ciphertext of {file_id} from {_strip_query(metadata.download_url)}")
                raise

            reporter.update(1.0)

        logger.info("Downloaded %s (%d bytes, %d chunks)", file_id, len(ciphertext), metadata.chunks)
        return DownloadedObject(ciphertext=ciphertext, iv=iv, metadata=metadata)

    def _put(
        self,
        url: str,
        extra_headers: dict[str, str],
        data: bytes,
        reporter: ProgressReporter,
    ) -> None:
        total = len(data)
        step = self._stream_chunk_size

        def body() -> Iterator[bytes]:
            view = memoryview(data)
            for start in range(0, total, step):
                piece = bytes(view[start : start + step])
                yield piece
                reporter.update((start + len(piece)) / total)

        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Length": str(total),
            **extra_headers,
        }
        response = self._api.http.put(url, content=body(), headers=headers)
        response.raise_for_status()

    def _get(self, url: str, expected_size: int, reporter: ProgressReporter) -> bytes:
        buffer = bytearray()
        with self._api.http.stream("GET", url) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length") or expected_size)
            for part in response.iter_bytes(chunk_size=self._stream_chunk_size):
                buffer += part
                if total:
                    reporter.update(len(buffer) / total)
        return bytes(buffer)


# === End-to-end helpers ===


@dataclass
class SendResult:
    """Outcome of send_file."""

    file_id: str
    link: str
    share: ShareInfo | None = None


@dataclass
class ReceivedFile:
    """Outcome of receive_link / receive_share."""

    path: Path
    metadata: FileMetadata


def send_file(
    transfer: TransferClient,
    path: Path,
    *,
    link_base: str | None = None,
    recipient_id: str | None = None,
    progress: ProgressCallback | None = None,
    workers: int = 1,
) -> SendResult:
    """Encrypt a file under a fresh key, upload it and deliver the key.

    Without a recipient the key only lives in the returned link fragment.
    With one, the portable key is also stored in a share record that only
    the paired recipient can list.

    Args:
        transfer: Transfer client.
        path: File to send.
        link_base: Base URL of download links (defaults to the server URL).
        recipient_id: Paired user to share with (connection flow).
        progress: Optional upload progress callback.
        workers: Threads used for chunk encryption.

    Returns:
        SendResult with file ID, link and share record.
    """
    key = generate_key()
    plaintext = path.read_bytes()
    payload = encrypt_file(plaintext, key, workers=workers)
    file_id = transfer.upload(payload, path.name, progress=progress)

    share = None
    if recipient_id:
        share = transfer.api.create_share(
            file_id=file_id,
            recipient_id=recipient_id,
            file_name=path.name,
            file_size=payload.original_size,
            encryption_key=export_portable(key),
        )

    link = build_share_link(link_base or transfer.api.server_url, file_id, key)
    return SendResult(file_id=file_id, link=link, share=share)


def _output_path(output: Path | None, file_name: str) -> Path:
    safe_name = PurePath(file_name.replace("\\", "/")).name or "download.bin"
    if output is None:
        return Path.cwd() / safe_name
    if output.is_dir():
        return output / safe_name
    return output


def _save(downloaded: DownloadedObject, key: FileKey, output: Path | None, workers: int) -> ReceivedFile:
    plaintext = downloaded.decrypt(key, workers=workers)
    target = _output_path(output, downloaded.metadata.file_name)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(plaintext)
    return ReceivedFile(path=target, metadata=downloaded.metadata)


def receive_link(
    transfer: TransferClient,
    link: str,
    output: Path | None = None,
    progress: ProgressCallback | None = None,
    workers: int = 1,
) -> ReceivedFile:
    """Download and decrypt the file behind a share link.

    Raises:
        KeyFormatError: If the link carries no valid key.
        AuthenticationError: If decryption fails.
    """
    file_id, key = parse_share_link(link)
    downloaded = transfer.download(file_id, progress=progress)
    return _save(downloaded, key, output, workers)


def receive_share(
    transfer: TransferClient,
    share: ShareInfo,
    output: Path | None = None,
    progress: ProgressCallback | None = None,
    workers: int = 1,
) -> ReceivedFile:
    """Download and decrypt a file shared with the acting user.

    The share is flagged as downloaded once the file is written.
    """
    key = import_portable(share.encryption_key)
    downloaded = transfer.download(share.file_id, progress=progress)
    received = _save(downloaded, key, output, workers)
    transfer.api.mark_downloaded(share.id)
    return received
