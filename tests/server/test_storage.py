"""Tests for blob storage implementations."""

from collections.abc import Generator
from datetime import timedelta
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest

from zerodrop.server.storage import (
    BlobExistsError,
    BlobNotFoundError,
    BlobStorage,
    CapabilitySigner,
    LocalFSStorage,
    S3Storage,
    create_storage,
)

TTL = timedelta(hours=24)
EXPIRED = timedelta(seconds=-1)


def capability_params(url: str) -> tuple[str, str, int, str]:
    """Split a local capability URL into (path, op, expires, sig)."""
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    path = parts.path.removeprefix("/blobs/")
    return path, query["op"][0], int(query["expires"][0]), query["sig"][0]


class TestCapabilitySigner:
    """Tests for HMAC capability signatures."""

    def test_roundtrip(self) -> None:
        """A fresh signature verifies."""
        signer = CapabilitySigner("secret")
        sig = signer.sign("get", "a/b", 4_000_000_000)
        assert signer.verify("get", "a/b", 4_000_000_000, sig)

    def test_rejects_other_op(self) -> None:
        """A GET signature does not authorize a PUT."""
        signer = CapabilitySigner("secret")
        sig = signer.sign("get", "a/b", 4_000_000_000)
        assert not signer.verify("put", "a/b", 4_000_000_000, sig)

    def test_rejects_expired(self) -> None:
        """Signatures past their expiry are rejected."""
        signer = CapabilitySigner("secret")
        sig = signer.sign("get", "a/b", 1000)
        assert not signer.verify("get", "a/b", 1000, sig)

    def test_rejects_other_key(self) -> None:
        """Signatures from a different secret are rejected."""
        sig = CapabilitySigner("one").sign("get", "a/b", 4_000_000_000)
        assert not CapabilitySigner("two").verify("get", "a/b", 4_000_000_000, sig)


class TestLocalFSStorage:
    """Tests for LocalFSStorage implementation."""

    @pytest.fixture
    def storage(self, tmp_path: Path) -> LocalFSStorage:
        """Create a LocalFSStorage instance for testing."""
        return LocalFSStorage(tmp_path / "blobs", public_url="http://testserver/", signing_secret="s3cret")

    def test_put_and_get(self, storage: LocalFSStorage) -> None:
        """get() should return the stored data."""
        storage.put("encrypted/abc/iv", b"0123456789ab", TTL)
        assert storage.get("encrypted/abc/iv") == b"0123456789ab"
        assert storage.exists("encrypted/abc/iv")

    def test_get_raises_on_missing(self, storage: LocalFSStorage) -> None:
        """get() should raise BlobNotFoundError for missing objects."""
        with pytest.raises(BlobNotFoundError, match="Object not found"):
            storage.get("encrypted/missing/iv")

    def test_expired_object_is_hidden(self, storage: LocalFSStorage) -> None:
        """Objects past their TTL cannot be read or listed."""
        storage.put("encrypted/old/iv", b"x" * 12, EXPIRED)
        assert storage.exists("encrypted/old/iv") is False
        assert storage.list_by_prefix("encrypted/old/") == []
        with pytest.raises(BlobNotFoundError):
            storage.get("encrypted/old/iv")

    def test_list_by_prefix(self, storage: LocalFSStorage) -> None:
        """Listings return objects under the prefix with their metadata."""
        storage.put("encrypted/one/file/a.txt", b"aaaa", TTL, {"fileId": "one"})
        storage.put("encrypted/two/file/b.txt", b"bb", TTL, {"fileId": "two"})

        blobs = storage.list_by_prefix("encrypted/one/file/")

        assert [b.path for b in blobs] == ["encrypted/one/file/a.txt"]
        assert blobs[0].size == 4
        assert blobs[0].metadata["fileId"] == "one"
        assert "expiresAt" in blobs[0].metadata

    def test_delete(self, storage: LocalFSStorage) -> None:
        """delete() removes the object and reports whether it existed."""
        storage.put("encrypted/abc/iv", b"data", TTL)
        assert storage.delete("encrypted/abc/iv") is True
        assert storage.exists("encrypted/abc/iv") is False
        assert storage.delete("encrypted/abc/iv") is False

    def test_purge_expired(self, storage: LocalFSStorage) -> None:
        """purge_expired() deletes only expired objects."""
        storage.put("encrypted/old/iv", b"old", EXPIRED)
        storage.put("encrypted/new/iv", b"new", TTL)

        assert storage.purge_expired() == 1
        assert storage.exists("encrypted/new/iv")
        assert storage.purge_expired() == 0

    @pytest.mark.parametrize("path", ["../escape", "a/../../b", "", "/"])
    def test_rejects_bad_paths(self, storage: LocalFSStorage, path: str) -> None:
        """Paths escaping the storage root are rejected."""
        with pytest.raises(ValueError, match="Invalid object path"):
            storage.put(path, b"data", TTL)

    def test_write_capability_url(self, storage: LocalFSStorage) -> None:
        """Write capabilities point at the server's /blobs route."""
        capability = storage.issue_write_capability("encrypted/abc/file/a.txt", TTL, {"fileId": "abc"})

        assert capability.url.startswith("http://testserver/blobs/encrypted/abc/file/a.txt?")
        path, op, expires, sig = capability_params(capability.url)
        assert op == "put"
        assert storage.verify_capability("put", path, expires, sig)
        assert not storage.verify_capability("get", path, expires, sig)

    def test_stage_write_requires_capability(self, storage: LocalFSStorage) -> None:
        """Bodies are accepted only for paths with an issued capability."""
        with pytest.raises(BlobNotFoundError):
            storage.stage_write("encrypted/abc/file/a.txt")

        storage.issue_write_capability("encrypted/abc/file/a.txt", TTL, {"fileId": "abc"})
        staged = storage.stage_write("encrypted/abc/file/a.txt")
        staged.write_bytes(b"data")
        storage.complete_write("encrypted/abc/file/a.txt", staged)

        assert not staged.exists()
        blobs = storage.list_by_prefix("encrypted/abc/file/")
        assert len(blobs) == 1
        assert blobs[0].metadata["fileId"] == "abc"
        assert storage.get("encrypted/abc/file/a.txt") == b"data"

    def test_written_object_cannot_be_replaced(self, storage: LocalFSStorage) -> None:
        """A second write to the same path is refused and the first body kept."""
        path = "encrypted/abc/file/a.txt"
        storage.issue_write_capability(path, TTL, {"fileId": "abc"})
        first = storage.stage_write(path)
        second = storage.stage_write(path)
        first.write_bytes(b"original")
        second.write_bytes(b"evil")

        storage.complete_write(path, first)
        with pytest.raises(BlobExistsError):
            storage.complete_write(path, second)
        with pytest.raises(BlobExistsError):
            storage.stage_write(path)

        assert not second.exists()
        assert storage.get(path) == b"original"

    def test_read_capability_verifies(self, storage: LocalFSStorage) -> None:
        """Read capabilities verify for GET only."""
        url = storage.issue_read_capability("encrypted/abc/file/a.txt")
        path, op, expires, sig = capability_params(url)
        assert op == "get"
        assert storage.verify_capability("get", path, expires, sig)
        assert not storage.verify_capability("get", "encrypted/other/file/a.txt", expires, sig)

    def test_verify_rejects_bad_path(self, storage: LocalFSStorage) -> None:
        """Malformed paths never verify."""
        assert storage.verify_capability("get", "../x", 4_000_000_000, "0" * 64) is False

    def test_location(self, storage: LocalFSStorage) -> None:
        """location describes the base directory."""
        assert storage.location.startswith("Local filesystem: ")


class TestS3Storage:
    """Tests for S3Storage using moto mock."""

    @pytest.fixture
    def storage(self) -> Generator[S3Storage, None, None]:
        """Set up moto mock for S3."""
        import boto3
        from moto import mock_aws

        with mock_aws():
            client = boto3.client("s3", region_name="us-east-1")
            client.create_bucket(Bucket="zerodrop-test")
            yield S3Storage(
                bucket="zerodrop-test",
                access_key="testing",
                secret_key="testing",
                region="us-east-1",
            )

    def test_put_and_get(self, storage: S3Storage) -> None:
        """Objects can be stored and retrieved."""
        storage.put("encrypted/abc/iv", b"0123456789ab", TTL)
        assert storage.get("encrypted/abc/iv") == b"0123456789ab"
        assert storage.exists("encrypted/abc/iv")

    def test_get_raises_on_missing(self, storage: S3Storage) -> None:
        """get() raises BlobNotFoundError for missing objects."""
        with pytest.raises(BlobNotFoundError):
            storage.get("encrypted/missing/iv")

    def test_access_errors_propagate(self, storage: S3Storage) -> None:
        """Only a missing key reads as not found; other S3 errors surface."""
        from unittest.mock import patch

        from botocore.exceptions import ClientError

        storage.put("encrypted/abc/file/a.txt", b"cipher", TTL)
        denied = ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadObject")

        with patch.object(storage._client, "head_object", side_effect=denied):
            with pytest.raises(ClientError):
                storage.get("encrypted/abc/file/a.txt")
            with pytest.raises(ClientError):
                storage.list_by_prefix("encrypted/abc/file/")

    def test_metadata_keys_restored(self, storage: S3Storage) -> None:
        """camelCase metadata keys survive S3's lowercasing."""
        storage.put(
            "encrypted/abc/file/a.txt",
            b"cipher",
            TTL,
            {"fileId": "abc", "originalName": "a.txt", "chunks": "1"},
        )

        [blob] = storage.list_by_prefix("encrypted/abc/file/")

        assert blob.size == 6
        assert blob.metadata["fileId"] == "abc"
        assert blob.metadata["originalName"] == "a.txt"
        assert blob.metadata["chunks"] == "1"
        assert blob.expires_at is not None

    def test_expired_object_is_hidden(self, storage: S3Storage) -> None:
        """Expired objects are invisible and purged."""
        storage.put("encrypted/old/iv", b"old", EXPIRED)
        storage.put("encrypted/new/iv", b"new", TTL)

        assert storage.exists("encrypted/old/iv") is False
        assert storage.list_by_prefix("encrypted/") == storage.list_by_prefix("encrypted/new/")
        assert storage.purge_expired() == 1
        assert storage.exists("encrypted/new/iv")

    def test_delete(self, storage: S3Storage) -> None:
        """delete() reports whether the object existed."""
        storage.put("encrypted/abc/iv", b"data", TTL)
        assert storage.delete("encrypted/abc/iv") is True
        assert storage.delete("encrypted/abc/iv") is False

    def test_write_capability(self, storage: S3Storage) -> None:
        """Presigned PUT URLs carry the metadata as required headers."""
        capability = storage.issue_write_capability("encrypted/abc/file/a.txt", TTL, {"fileId": "abc"})

        assert "zerodrop-test" in capability.url
        assert "encrypted/abc/file/a.txt" in capability.url
        assert capability.headers["x-amz-meta-fileid"] == "abc"
        assert "x-amz-meta-expiresat" in capability.headers
        assert capability.headers["Content-Type"] == "application/octet-stream"

    def test_read_capability(self, storage: S3Storage) -> None:
        """Presigned GET URLs name the object."""
        url = storage.issue_read_capability("encrypted/abc/file/a.txt")
        assert "encrypted/abc/file/a.txt" in url

    def test_location(self, storage: S3Storage) -> None:
        """location names the bucket."""
        assert storage.location == "S3: s3://zerodrop-test"


class TestCreateStorage:
    """Tests for create_storage factory function."""

    def test_create_local_storage(self, tmp_path: Path) -> None:
        """Should create LocalFSStorage for type=local."""
        storage = create_storage(
            {"type": "local", "local_path": str(tmp_path / "blobs"), "public_url": "http://example.com"}
        )
        assert isinstance(storage, LocalFSStorage)
        assert storage.issue_read_capability("a/b").startswith("http://example.com/blobs/a/b?")

    def test_default_type_is_local(self, tmp_path: Path) -> None:
        """Missing type defaults to local."""
        assert isinstance(create_storage({"local_path": str(tmp_path)}), LocalFSStorage)

    def test_create_s3_storage(self) -> None:
        """Should create S3Storage for type=s3."""
        from moto import mock_aws

        with mock_aws():
            storage = create_storage({"type": "s3", "bucket": "zerodrop-test", "region": "us-east-1"})
            assert isinstance(storage, S3Storage)

    def test_create_s3_requires_bucket(self) -> None:
        """S3 without bucket should raise ValueError."""
        with pytest.raises(ValueError, match="bucket"):
            create_storage({"type": "s3"})

    def test_unknown_type_raises(self) -> None:
        """Unknown storage type should raise ValueError."""
        with pytest.raises(ValueError, match="Unknown storage type"):
            create_storage({"type": "ftp"})

    def test_cannot_instantiate_abstract(self) -> None:
        """BlobStorage is abstract."""
        with pytest.raises(TypeError):
            BlobStorage()  # type: ignore[abstract]
