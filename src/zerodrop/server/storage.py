"""Blob storage abstraction for encrypted objects.

This module provides:
- Abstract interface for an untrusted blob store reachable through
  capability URLs (time-boxed, single-object read/write URLs)
- LocalFSStorage for development/testing, with HMAC-signed URLs served by
  the ZeroDrop server itself
- S3Storage for production (OVH, AWS, MinIO), with presigned URLs

Objects carry arbitrary string metadata and an expiry. Expired objects are
hidden from listings and removed by purge_expired().
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import quote, urlencode

if TYPE_CHECKING:
    from typing import Any

# Capability URLs stay valid for this long unless the object expires sooner
DEFAULT_URL_TTL = timedelta(hours=1)

EXPIRES_AT_KEY = "expiresAt"


class BlobNotFoundError(Exception):
    """Raised when an object is not found (or has expired) in storage."""


class BlobExistsError(Exception):
    """Raised when a write would replace an object that is already stored."""


@dataclass
class WriteCapability:
    """A time-boxed URL allowing one object to be written.

    Attributes:
        url: Target of the HTTP PUT.
        headers: Headers the uploader must send with the PUT.
    """

    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class BlobObject:
    """A stored object as seen by listings."""

    path: str
    size: int
    metadata: dict[str, str]
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the object's TTL has elapsed."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))


def _normalize_path(path: str) -> str:
    """Validate an object path and return its canonical form."""
    parts = PurePosixPath(path.strip("/")).parts
    if not parts or any(p in ("..", ".") for p in parts):
        raise ValueError(f"Invalid object path: {path!r}")
    return "/".join(parts)


def _parse_expiry(metadata: dict[str, str]) -> datetime | None:
    value = metadata.get(EXPIRES_AT_KEY)
    if not value:
        return None
    expires_at = datetime.fromisoformat(value)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return expires_at


class BlobStorage(ABC):
    """Abstract interface for encrypted object storage."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where objects are stored."""

    @abstractmethod
    def issue_write_capability(
        self,
        path: str,
        ttl: timedelta,
        metadata: dict[str, str],
    ) -> WriteCapability:
        """Issue a URL through which one object may be uploaded.

        Args:
            path: Object path.
            ttl: Lifetime of the object once written.
            metadata: String metadata stored alongside the object.

        Returns:
            WriteCapability for a single HTTP PUT.
        """

    @abstractmethod
    def issue_read_capability(self, path: str) -> str:
        """Issue a URL through which one object may be downloaded.

        Args:
            path: Object path.

        Returns:
            URL for a single HTTP GET.
        """

    @abstractmethod
    def list_by_prefix(self, prefix: str) -> list[BlobObject]:
        """List unexpired objects whose path starts with ``prefix``."""

    @abstractmethod
    def put(
        self,
        path: str,
        data: bytes,
        ttl: timedelta,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Store an object directly (server-side write).

        Args:
            path: Object path.
            data: Object bytes.
            ttl: Lifetime of the object.
            metadata: Optional string metadata.
        """

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Retrieve an object.

        Raises:
            BlobNotFoundError: If the object doesn't exist or has expired.
        """

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check if an unexpired object exists."""

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete an object.

        Returns:
            True if the object was deleted, False if it didn't exist.
        """

    @abstractmethod
    def purge_expired(self) -> int:
        """Delete every expired object.

        Returns:
            Number of objects deleted.
        """

    @staticmethod
    def expiry_metadata(ttl: timedelta, metadata: dict[str, str] | None) -> dict[str, str]:
        """Return metadata with the object's expiry timestamp added."""
        merged = dict(metadata or {})
        merged[EXPIRES_AT_KEY] = (datetime.now(UTC) + ttl).isoformat()
        return merged


class CapabilitySigner:
    """Signs and verifies capability URLs with HMAC-SHA256."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def _message(self, op: str, path: str, expires: int) -> bytes:
        return f"{op}:{path}:{expires}".encode()

    def sign(self, op: str, path: str, expires: int) -> str:
        """Return the hex signature for an operation on a path."""
        return hmac.new(self._secret_key, self._message(op, path, expires), hashlib.sha256).hexdigest()

    def verify(self, op: str, path: str, expires: int, signature: str) -> bool:
        """Check a signature and that it has not expired."""
        if expires < int(datetime.now(UTC).timestamp()):
            return False
        return hmac.compare_digest(self.sign(op, path, expires), signature)


class LocalFSStorage(BlobStorage):
    """Local filesystem storage for development and testing.

    Object bytes live under ``objects/`` and a JSON sidecar with metadata
    under ``meta/``. Capability URLs point back at the ZeroDrop server's
    ``/blobs`` routes and are signed with HMAC.
    """

    def __init__(
        self,
        base_path: Path | str,
        public_url: str = "http://localhost:8000",
        signing_secret: str | None = None,
        url_ttl: timedelta = DEFAULT_URL_TTL,
    ) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for object storage.
            public_url: Base URL under which the server exposes ``/blobs``.
            signing_secret: HMAC key for capability URLs (random if omitted).
            url_ttl: Validity of issued capability URLs.
        """
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._public_url = public_url.rstrip("/")
        self._signer = CapabilitySigner(signing_secret or secrets.token_hex(32))
        self._url_ttl = url_ttl

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    def _object_path(self, path: str) -> Path:
        target = (self._base_path / "objects" / _normalize_path(path)).resolve()
        if not target.is_relative_to(self._base_path):
            raise ValueError(f"Invalid object path: {path!r}")
        return target

    def _meta_path(self, path: str) -> Path:
        target = (self._base_path / "meta" / f"{_normalize_path(path)}.json").resolve()
        if not target.is_relative_to(self._base_path):
            raise ValueError(f"Invalid object path: {path!r}")
        return target

    def _read_metadata(self, path: str) -> dict[str, str]:
        meta_path = self._meta_path(path)
        if not meta_path.exists():
            return {}
        return dict(json.loads(meta_path.read_text(encoding="utf-8")))

    def _write_metadata(self, path: str, metadata: dict[str, str]) -> None:
        meta_path = self._meta_path(path)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(json.dumps(metadata), encoding="utf-8")

    def _signed_url(self, op: str, path: str) -> str:
        path = _normalize_path(path)
        expires = int((datetime.now(UTC) + self._url_ttl).timestamp())
        query = urlencode({"op": op, "expires": expires, "sig": self._signer.sign(op, path, expires)})
        return f"{self._public_url}/blobs/{quote(path)}?{query}"

    def verify_capability(self, op: str, path: str, expires: int, signature: str) -> bool:
        """Verify a capability URL presented to the ``/blobs`` routes."""
        try:
            path = _normalize_path(path)
        except ValueError:
            return False
        return self._signer.verify(op, path, expires, signature)

    def issue_write_capability(
        self,
        path: str,
        ttl: timedelta,
        metadata: dict[str, str],
    ) -> WriteCapability:
        """Record pending metadata and return a signed PUT URL."""
        self._write_metadata(path, self.expiry_metadata(ttl, metadata))
        return WriteCapability(url=self._signed_url("put", path))

    def issue_read_capability(self, path: str) -> str:
        """Return a signed GET URL."""
        return self._signed_url("get", path)

    def stage_write(self, path: str) -> Path:
        """Return a scratch file into which a capability PUT body is streamed.

        Raises:
            BlobNotFoundError: If no capability was issued for the path.
            BlobExistsError: If the object was already written.
        """
        if not self._meta_path(path).exists():
            raise BlobNotFoundError(f"No pending upload: {path}")
        if self._object_path(path).is_file():
            raise BlobExistsError(f"Object already written: {path}")
        incoming = self._base_path / "incoming"
        incoming.mkdir(parents=True, exist_ok=True)
        return incoming / secrets.token_hex(16)

    def complete_write(self, path: str, staged: Path) -> None:
        """Move a staged body into place; a stored object is never replaced.

        Raises:
            BlobExistsError: If the object was written in the meantime.
        """
        target = self._object_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            # link() fails if the target exists, so concurrent PUTs race safely
            os.link(staged, target)
        except FileExistsError as e:
            raise BlobExistsError(f"Object already written: {path}") from e
        finally:
            staged.unlink(missing_ok=True)

    def _to_blob(self, path: str) -> BlobObject | None:
        target = self._object_path(path)
        if not target.is_file():
            return None
        metadata = self._read_metadata(path)
        return BlobObject(
            path=_normalize_path(path),
            size=target.stat().st_size,
            metadata=metadata,
            expires_at=_parse_expiry(metadata),
        )

    def _all_objects(self) -> list[BlobObject]:
        root = self._base_path / "objects"
        if not root.exists():
            return []
        blobs = []
        for file in sorted(root.rglob("*")):
            if file.is_file():
                blob = self._to_blob(file.relative_to(root).as_posix())
                if blob is not None:
                    blobs.append(blob)
        return blobs

    def list_by_prefix(self, prefix: str) -> list[BlobObject]:
        """List unexpired objects under a prefix."""
        now = datetime.now(UTC)
        return [
            blob
            for blob in self._all_objects()
            if blob.path.startswith(prefix) and not blob.is_expired(now)
        ]

    def put(
        self,
        path: str,
        data: bytes,
        ttl: timedelta,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Store an object."""
        self._write_metadata(path, self.expiry_metadata(ttl, metadata))
        target = self._object_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def get(self, path: str) -> bytes:
        """Retrieve an object."""
        blob = self._to_blob(path)
        if blob is None or blob.is_expired():
            raise BlobNotFoundError(f"Object not found: {path}")
        return self._object_path(path).read_bytes()

    def exists(self, path: str) -> bool:
        """Check if an object exists."""
        blob = self._to_blob(path)
        return blob is not None and not blob.is_expired()

    def delete(self, path: str) -> bool:
        """Delete an object and its metadata."""
        target = self._object_path(path)
        meta_path = self._meta_path(path)
        existed = target.exists()
        target.unlink(missing_ok=True)
        meta_path.unlink(missing_ok=True)
        return existed

    def purge_expired(self) -> int:
        """Delete expired objects."""
        now = datetime.now(UTC)
        deleted = 0
        for blob in self._all_objects():
            if blob.is_expired(now) and self.delete(blob.path):
                deleted += 1
        return deleted


class S3Storage(BlobStorage):
    """S3-compatible storage for production (OVH, AWS, MinIO, etc.).

    The expiry is carried in object metadata; a bucket lifecycle rule is
    expected to delete expired objects, purge_expired() covers buckets
    without one.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
        url_ttl: timedelta = DEFAULT_URL_TTL,
    ) -> None:
        """Initialize S3 storage.

        Args:
            bucket: S3 bucket name.
            endpoint_url: Custom endpoint URL (for OVH, MinIO, etc.).
            access_key: AWS access key ID.
            secret_key: AWS secret access key.
            region: AWS region (default: us-east-1).
            url_ttl: Validity of presigned URLs.
        """
        import boto3

        self._bucket = bucket
        self._endpoint_url = endpoint_url
        self._url_ttl = url_ttl
        self._client: Any = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    @property
    def location(self) -> str:
        """Return the S3 bucket location."""
        if self._endpoint_url:
            return f"S3: {self._endpoint_url}/{self._bucket}"
        return f"S3: s3://{self._bucket}"

    def issue_write_capability(
        self,
        path: str,
        ttl: timedelta,
        metadata: dict[str, str],
    ) -> WriteCapability:
        """Return a presigned PUT URL; metadata travels as signed headers."""
        key = _normalize_path(path)
        meta = self.expiry_metadata(ttl, metadata)
        url = self._client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": self._bucket,
                "Key": key,
                "Metadata": meta,
                "ContentType": "application/octet-stream",
            },
            ExpiresIn=int(self._url_ttl.total_seconds()),
        )
        headers = {f"x-amz-meta-{k.lower()}": v for k, v in meta.items()}
        headers["Content-Type"] = "application/octet-stream"
        return WriteCapability(url=url, headers=headers)

    def issue_read_capability(self, path: str) -> str:
        """Return a presigned GET URL."""
        return str(
            self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": _normalize_path(path)},
                ExpiresIn=int(self._url_ttl.total_seconds()),
            )
        )

    def _head(self, key: str) -> BlobObject | None:
        from botocore.exceptions import ClientError

        try:
            response = self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                return None
            raise
        # S3 lowercases user metadata keys
        metadata = {
            _restore_key(k): v for k, v in response.get("Metadata", {}).items()
        }
        return BlobObject(
            path=key,
            size=int(response["ContentLength"]),
            metadata=metadata,
            expires_at=_parse_expiry(metadata),
        )

    def _keys(self, prefix: str) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def list_by_prefix(self, prefix: str) -> list[BlobObject]:
        """List unexpired objects under a prefix."""
        now = datetime.now(UTC)
        blobs = []
        for key in self._keys(prefix):
            blob = self._head(key)
            if blob is not None and not blob.is_expired(now):
                blobs.append(blob)
        return blobs

    def put(
        self,
        path: str,
        data: bytes,
        ttl: timedelta,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Store an object."""
        self._client.put_object(
            Bucket=self._bucket,
            Key=_normalize_path(path),
            Body=data,
            Metadata=self.expiry_metadata(ttl, metadata),
        )

    def get(self, path: str) -> bytes:
        """Retrieve an object."""
        from botocore.exceptions import ClientError

        key = _normalize_path(path)
        blob = self._head(key)
        if blob is None or blob.is_expired():
            raise BlobNotFoundError(f"Object not found: {path}")
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            body: bytes = response["Body"].read()
            return body
        except ClientError as e:
            if e.response["Error"]["Code"] == "NoSuchKey":
                raise BlobNotFoundError(f"Object not found: {path}") from e
            raise

    def exists(self, path: str) -> bool:
        """Check if an object exists."""
        blob = self._head(_normalize_path(path))
        return blob is not None and not blob.is_expired()

    def delete(self, path: str) -> bool:
        """Delete an object."""
        key = _normalize_path(path)
        if self._head(key) is None:
            return False
        self._client.delete_object(Bucket=self._bucket, Key=key)
        return True

    def purge_expired(self) -> int:
        """Delete expired objects."""
        now = datetime.now(UTC)
        deleted = 0
        for key in self._keys(""):
            blob = self._head(key)
            if blob is not None and blob.is_expired(now):
                self._client.delete_object(Bucket=self._bucket, Key=key)
                deleted += 1
        return deleted


_METADATA_KEYS = ("fileId", "originalName", "originalSize", "chunks", "uploadedAt", EXPIRES_AT_KEY)


def _restore_key(key: str) -> str:
    """Map a lowercased S3 metadata key back to its camelCase name."""
    for known in _METADATA_KEYS:
        if known.lower() == key:
            return known
    return key


def create_storage(config: dict[str, str | None]) -> BlobStorage:
    """Factory function to create storage from configuration.

    Args:
        config: Storage configuration dict with keys:
            - type: "local" or "s3"
            - For local: local_path, public_url, signing_secret
            - For S3: bucket, endpoint_url, access_key, secret_key, region

    Returns:
        Configured BlobStorage instance.

    Raises:
        ValueError: If storage type is unknown.
    """
    storage_type = config.get("type", "local")

    if storage_type == "local":
        return LocalFSStorage(
            config.get("local_path") or "./storage",
            public_url=config.get("public_url") or "http://localhost:8000",
            signing_secret=config.get("signing_secret"),
        )

    if storage_type == "s3":
        bucket = config.get("bucket")
        if not bucket:
            raise ValueError("S3 storage requires 'bucket' configuration")
        return S3Storage(
            bucket=bucket,
            endpoint_url=config.get("endpoint_url"),
            access_key=config.get("access_key"),
            secret_key=config.get("secret_key"),
            region=config.get("region") or "us-east-1",
        )

    raise ValueError(f"Unknown storage type: {storage_type}")
