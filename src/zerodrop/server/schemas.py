"""Pydantic schemas for API request/response models.

Field names follow the wire format (camelCase) that clients and share
links depend on.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from zerodrop.server.database import as_utc
from zerodrop.server.models import FileShare, Pairing, User

# === User schemas ===


class UserRegisterRequest(BaseModel):
    """Request body for user registration."""

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)


class UserResponse(BaseModel):
    """Public user data."""

    id: str
    name: str
    email: str


class UserRegisterResponse(BaseModel):
    """Response for user registration."""

    token: str
    user: UserResponse


# === File schemas ===


class UploadRequest(BaseModel):
    """Request body for a write capability."""

    fileName: str = Field(min_length=1)
    fileSize: int = Field(ge=0)
    originalSize: int = Field(ge=0)
    chunks: int = Field(ge=1)


class UploadResponse(BaseModel):
    """Write capability for a new encrypted object."""

    fileId: str
    uploadUrl: str
    uploadHeaders: dict[str, str] = {}


class FileMetadataResponse(BaseModel):
    """Object metadata returned to a downloader."""

    fileId: str
    fileName: str
    fileSize: int
    originalSize: int
    chunks: int
    uploadedAt: str
    downloadUrl: str


# === Pairing schemas ===


class PairingCodeResponse(BaseModel):
    """A freshly issued pairing code."""

    code: str
    expiresAt: str


class RedeemRequest(BaseModel):
    """Request body for redeeming a pairing code."""

    code: str = Field(min_length=1, max_length=16)


class RedeemResponse(BaseModel):
    """Successful redemption."""

    success: bool
    userName: str
    pairingId: str


class PairingResponse(BaseModel):
    """One of the acting user's connections."""

    id: str
    connectedUser: UserResponse
    createdAt: str


class PairingStatusResponse(BaseModel):
    """Whether the acting user is paired with another user."""

    paired: bool


# === Share schemas ===


class ShareCreateRequest(BaseModel):
    """Request body for recording a file sent to a paired user."""

    fileId: str = Field(min_length=1)
    recipientId: str = Field(min_length=1)
    fileName: str = Field(min_length=1)
    fileSize: int = Field(ge=0)
    encryptionKey: str = Field(min_length=1)


class ShareResponse(BaseModel):
    """A share record as seen by its recipient."""

    id: str
    fileId: str
    sender: UserResponse | None
    fileName: str
    fileSize: int
    encryptionKey: str
    downloaded: bool
    createdAt: str
    downloadedAt: str | None


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Converters ===


def user_to_response(user: User) -> UserResponse:
    """Convert User to response model."""
    return UserResponse(id=user.id, name=user.name, email=user.email)


def pairing_to_response(pairing: Pairing) -> PairingResponse:
    """Convert Pairing (with connected_user loaded) to response model."""
    return PairingResponse(
        id=pairing.id,
        connectedUser=user_to_response(pairing.connected_user),
        createdAt=as_utc(pairing.created_at).isoformat(),
    )


def share_to_response(share: FileShare, include_sender: bool = True) -> ShareResponse:
    """Convert FileShare to response model."""
    return ShareResponse(
        id=share.id,
        fileId=share.file_id,
        sender=user_to_response(share.sender) if include_sender else None,
        fileName=share.file_name,
        fileSize=share.file_size,
        encryptionKey=share.encryption_key,
        downloaded=share.downloaded,
        createdAt=as_utc(share.created_at).isoformat(),
        downloadedAt=as_utc(share.downloaded_at).isoformat() if share.downloaded_at else None,
    )
