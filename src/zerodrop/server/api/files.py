"""Encrypted object API routes.

These routes are anonymous: the anonymous flow hands out nothing but a
link, so uploaders and downloaders hold no account. The server only ever
sees ciphertext, the IV and non-secret metadata.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import UTC, datetime
from pathlib import PurePosixPath
from urllib.parse import quote, unquote

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from zerodrop.core.crypto import NONCE_SIZE
from zerodrop.server.api.deps import get_settings, get_storage
from zerodrop.server.schemas import FileMetadataResponse, UploadRequest, UploadResponse
from zerodrop.server.settings import ServerSettings
from zerodrop.server.storage import BlobNotFoundError, BlobStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

_FILE_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def generate_file_id() -> str:
    """Generate an opaque 128-bit file identifier (hex)."""
    return secrets.token_hex(16)


def safe_file_name(name: str) -> str:
    """Reduce a client-supplied file name to a single safe path segment."""
    base = PurePosixPath(name.replace("\\", "/")).name
    cleaned = "".join(c if c.isalnum() or c in "-_. " else "_" for c in base).strip(" .")
    return cleaned or "download.bin"


def object_prefix(file_id: str) -> str:
    """Prefix under which the ciphertext of ``file_id`` is stored."""
    return f"encrypted/{file_id}/file/"


def iv_path(file_id: str) -> str:
    """Path of the IV side-object of ``file_id``."""
    return f"encrypted/{file_id}/iv"


def _check_file_id(file_id: str) -> None:
    if not _FILE_ID_RE.match(file_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found or expired",
        )


@router.post("/upload", response_model=UploadResponse)
def request_upload(
    request: UploadRequest,
    storage: BlobStorage = Depends(get_storage),
    settings: ServerSettings = Depends(get_settings),
) -> UploadResponse:
    """Issue a write capability for a new encrypted object."""
    file_id = generate_file_id()
    path = object_prefix(file_id) + safe_file_name(request.fileName)
    capability = storage.issue_write_capability(
        path,
        ttl=settings.file_ttl,
        metadata={
            "fileId": file_id,
            "originalName": quote(request.fileName),
            "originalSize": str(request.originalSize),
            "chunks": str(request.chunks),
            "uploadedAt": datetime.now(UTC).isoformat(),
        },
    )
    logger.info(
        "Issued upload capability for %s (%d bytes, %d chunks)",
        file_id,
        request.fileSize,
        request.chunks,
    )
    return UploadResponse(fileId=file_id, uploadUrl=capability.url, uploadHeaders=capability.headers)


@router.put("/{file_id}/iv")
async def upload_iv(
    file_id: str,
    request: Request,
    storage: BlobStorage = Depends(get_storage),
    settings: ServerSettings = Depends(get_settings),
) -> dict[str, bool]:
    """Store the IV of an uploaded object.

    The IV is accepted once, and only after the ciphertext is in place.
    """
    _check_file_id(file_id)
    data = await request.body()
    if len(data) != NONCE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"IV must be {NONCE_SIZE} bytes, got {len(data)}",
        )
    if not storage.list_by_prefix(object_prefix(file_id)):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found or expired",
        )
    if storage.exists(iv_path(file_id)):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="IV already stored",
        )
    storage.put(iv_path(file_id), data, ttl=settings.file_ttl, metadata={"fileId": file_id})
    return {"success": True}


@router.get("/{file_id}/iv")
def download_iv(
    file_id: str,
    storage: BlobStorage = Depends(get_storage),
) -> Response:
    """Return the IV of an object."""
    _check_file_id(file_id)
    try:
        data = storage.get(iv_path(file_id))
    except BlobNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="IV not found",
        ) from e
    return Response(content=data, media_type="application/octet-stream")


@router.get("/{file_id}/metadata", response_model=FileMetadataResponse)
def get_metadata(
    file_id: str,
    storage: BlobStorage = Depends(get_storage),
) -> FileMetadataResponse:
    """Return object metadata and a read capability for the ciphertext."""
    _check_file_id(file_id)
    blobs = storage.list_by_prefix(object_prefix(file_id))
    if not blobs:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found or expired",
        )

    blob = blobs[0]
    metadata = blob.metadata
    return FileMetadataResponse(
        fileId=file_id,
        fileName=unquote(metadata.get("originalName") or "download.bin"),
        fileSize=blob.size,
        originalSize=int(metadata.get("originalSize") or blob.size),
        chunks=int(metadata.get("chunks") or 1),
        uploadedAt=metadata.get("uploadedAt") or datetime.now(UTC).isoformat(),
        downloadUrl=storage.issue_read_capability(blob.path),
    )
