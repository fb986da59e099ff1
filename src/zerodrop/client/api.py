"""HTTP client for the ZeroDrop server API.

This module provides:
- ZeroDropClient: HTTP client for communicating with the server
- Capability requests for encrypted objects and their IVs
- User, pairing and share record operations
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from zerodrop.core.config import ServerConfig

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationFailedError(APIError):
    """Authentication failed."""


class ForbiddenError(APIError):
    """The acting user may not perform this operation."""


class NotFoundError(APIError):
    """Resource not found."""


class ConflictError(APIError):
    """Resource already exists."""


@dataclass
class UserInfo:
    """Public user data from server."""

    id: str
    name: str
    email: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserInfo:
        """Create from API response dictionary."""
        return cls(id=data["id"], name=data["name"], email=data["email"])


@dataclass
class UploadTicket:
    """Write capability for a new encrypted object."""

    file_id: str
    upload_url: str
    upload_headers: dict[str, str] = field(default_factory=dict)


@dataclass
class FileMetadata:
    """Encrypted object metadata from server."""

    file_id: str
    file_name: str
    file_size: int
    original_size: int
    chunks: int
    uploaded_at: datetime
    download_url: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileMetadata:
        """Create from API response dictionary."""
        return cls(
            file_id=data["fileId"],
            file_name=data["fileName"],
            file_size=data["fileSize"],
            original_size=data["originalSize"],
            chunks=data["chunks"],
            uploaded_at=datetime.fromisoformat(data["uploadedAt"]),
            download_url=data["downloadUrl"],
        )


@dataclass
class PairingCodeInfo:
    """A pairing code issued to the acting user."""

    code: str
    expires_at: datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PairingCodeInfo:
        """Create from API response dictionary."""
        return cls(code=data["code"], expires_at=datetime.fromisoformat(data["expiresAt"]))


@dataclass
class Connection:
    """One of the acting user's pairings."""

    id: str
    user: UserInfo
    created_at: datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        """Create from API response dictionary."""
        return cls(
            id=data["id"],
            user=UserInfo.from_dict(data["connectedUser"]),
            created_at=datetime.fromisoformat(data["createdAt"]),
        )


@dataclass
class ShareInfo:
    """A share record from server."""

    id: str
    file_id: str
    file_name: str
    file_size: int
    encryption_key: str
    downloaded: bool
    created_at: datetime
    sender: UserInfo | None = None
    downloaded_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShareInfo:
        """Create from API response dictionary."""
        return cls(
            id=data["id"],
            file_id=data["fileId"],
            file_name=data["fileName"],
            file_size=data["fileSize"],
            encryption_key=data["encryptionKey"],
            downloaded=data["downloaded"],
            created_at=datetime.fromisoformat(data["createdAt"]),
            sender=UserInfo.from_dict(data["sender"]) if data.get("sender") else None,
            downloaded_at=(
                datetime.fromisoformat(data["downloadedAt"])
                if data.get("downloadedAt")
                else None
            ),
        )


def _detail(response: httpx.Response, default: str) -> str:
    try:
        detail = response.json().get("detail", default)
    except ValueError:
        return default
    return str(detail)


class ZeroDropClient:
    """HTTP client for the ZeroDrop server API.

    Requests to the server carry the bearer token when one is configured.
    Requests to capability URLs never do: the URL itself is the credential.
    """

    def __init__(
        self,
        config: ServerConfig,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server URL, token and network settings.
            http_client: Optional preconfigured httpx client (owned by the caller).
        """
        self._config = config
        self._server_url = config.server_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=config.timeout,
            verify=config.verify_ssl,
        )

    @property
    def server_url(self) -> str:
        """Base URL of the server."""
        return self._server_url

    @property
    def http(self) -> httpx.Client:
        """Underlying httpx client, used for capability URL transfers."""
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ZeroDropClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _url(self, path: str) -> str:
        return f"{self._server_url}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._config.headers, **kwargs.pop("headers", {})}
        response = self._client.request(method, self._url(path), headers=headers, **kwargs)
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationFailedError(_detail(response, "Invalid or expired token"), 401)
        if response.status_code == 403:
            raise ForbiddenError(_detail(response, "Forbidden"), 403)
        if response.status_code == 404:
            raise NotFoundError(_detail(response, "Resource not found"), 404)
        if response.status_code == 409:
            raise ConflictError(_detail(response, "Conflict"), 409)
        if response.status_code >= 400:
            raise APIError(_detail(response, "Unknown error"), response.status_code)
        return response

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get(self._url("/health"))
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === User operations ===

    def register_user(self, name: str, email: str) -> tuple[str, UserInfo]:
        """Register a new user.

        Args:
            name: Display name.
            email: Email address.

        Returns:
            Tuple of (bearer token, user).

        Raises:
            ConflictError: If the email is already registered.
        """
        response = self._request("POST", "/api/users/register", json={"name": name, "email": email})
        data = response.json()
        return data["token"], UserInfo.from_dict(data["user"])

    def get_me(self) -> UserInfo:
        """Return the authenticated user."""
        return UserInfo.from_dict(self._request("GET", "/api/users/me").json())

    def get_user(self, user_id: str) -> UserInfo:
        """Resolve a user's public profile."""
        return UserInfo.from_dict(self._request("GET", f"/api/users/{user_id}").json())

    # === Encrypted object operations ===

    def request_upload(
        self,
        file_name: str,
        file_size: int,
        original_size: int,
        chunks: int,
    ) -> UploadTicket:
        """Request a write capability for a new encrypted object.

        Args:
            file_name: Original file name.
            file_size: Ciphertext length in bytes.
            original_size: Plaintext length in bytes.
            chunks: Number of encrypted chunks.

        Returns:
            UploadTicket with the new file ID and capability URL.
        """
        response = self._request(
            "POST",
            "/api/files/upload",
            json={
                "fileName": file_name,
                "fileSize": file_size,
                "originalSize": original_size,
                "chunks": chunks,
            },
        )
        data = response.json()
        return UploadTicket(
            file_id=data["fileId"],
            upload_url=data["uploadUrl"],
            upload_headers=dict(data.get("uploadHeaders") or {}),
        )

    def upload_iv(self, file_id: str, iv: bytes) -> None:
        """Store the IV of an uploaded object."""
        self._request(
            "PUT",
            f"/api/files/{file_id}/iv",
            content=iv,
            headers={"Content-Type": "application/octet-stream"},
        )

    def get_iv(self, file_id: str) -> bytes:
        """Fetch the IV of an object.

        Raises:
            NotFoundError: If no IV is stored.
        """
        return self._request("GET", f"/api/files/{file_id}/iv").content

    def get_metadata(self, file_id: str) -> FileMetadata:
        """Fetch object metadata and a read capability.

        Raises:
            NotFoundError: If the object is absent or expired.
        """
        return FileMetadata.from_dict(self._request("GET", f"/api/files/{file_id}/metadata").json())

    # === Pairing operations ===

    def create_pairing_code(self) -> PairingCodeInfo:
        """Issue a pairing code for the authenticated user."""
        return PairingCodeInfo.from_dict(self._request("POST", "/api/pairing/codes").json())

    def redeem_code(self, code: str) -> tuple[str, str]:
        """Redeem another user's pairing code.

        Returns:
            Tuple of (pairing ID, code owner's name).

        Raises:
            NotFoundError: Invalid or expired code.
            APIError: Self-pairing (400).
            ConflictError: Already connected.
        """
        data = self._request("POST", "/api/pairing/redeem", json={"code": code}).json()
        return data["pairingId"], data["userName"]

    def list_pairings(self) -> list[Connection]:
        """List the authenticated user's connections."""
        return [Connection.from_dict(p) for p in self._request("GET", "/api/pairings").json()]

    def is_paired(self, user_id: str) -> bool:
        """Check whether the authenticated user is paired with ``user_id``."""
        return bool(self._request("GET", f"/api/pairings/status/{user_id}").json()["paired"])

    def remove_pairing(self, pairing_id: str) -> None:
        """Remove a connection in both directions.

        Raises:
            ForbiddenError: If the pairing is not the user's.
        """
        self._request("DELETE", f"/api/pairings/{pairing_id}")

    # === Share operations ===

    def create_share(
        self,
        file_id: str,
        recipient_id: str,
        file_name: str,
        file_size: int,
        encryption_key: str,
    ) -> ShareInfo:
        """Record a file sent to a paired user.

        Raises:
            ForbiddenError: If the users are not paired.
        """
        response = self._request(
            "POST",
            "/api/shares",
            json={
                "fileId": file_id,
                "recipientId": recipient_id,
                "fileName": file_name,
                "fileSize": file_size,
                "encryptionKey": encryption_key,
            },
        )
        return ShareInfo.from_dict(response.json())

    def list_shares(self) -> list[ShareInfo]:
        """List files shared with the authenticated user, newest first."""
        return [ShareInfo.from_dict(s) for s in self._request("GET", "/api/shares").json()]

    def mark_downloaded(self, share_id: str) -> ShareInfo:
        """Flag a share as downloaded."""
        return ShareInfo.from_dict(self._request("POST", f"/api/shares/{share_id}/downloaded").json())
