"""Server configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

FILE_TTL_HOURS = 24


def _build_storage_config(public_url: str) -> dict[str, str | None]:
    """Build storage configuration from environment variables."""
    # S3 storage if bucket is configured
    s3_bucket = os.environ.get("ZERODROP_S3_BUCKET")
    if s3_bucket:
        return {
            "type": "s3",
            "bucket": s3_bucket,
            "endpoint_url": os.environ.get("ZERODROP_S3_ENDPOINT"),
            "access_key": os.environ.get("ZERODROP_S3_ACCESS_KEY"),
            "secret_key": os.environ.get("ZERODROP_S3_SECRET_KEY"),
            "region": os.environ.get("ZERODROP_S3_REGION", "us-east-1"),
        }

    # Local storage (default)
    return {
        "type": "local",
        "local_path": os.environ.get("ZERODROP_STORAGE_PATH", "storage"),
        "public_url": public_url,
        "signing_secret": os.environ.get("ZERODROP_SIGNING_SECRET"),
    }


@dataclass
class ServerSettings:
    """Settings for a ZeroDrop server.

    Attributes:
        db_path: SQLite database file.
        log_path: Server log file.
        public_url: Base URL clients use to reach the server.
        file_ttl: Lifetime of uploaded objects.
        purge_interval_minutes: How often expired objects are purged.
        storage: Storage configuration passed to create_storage().
    """

    db_path: Path = Path("zerodrop.db")
    log_path: Path = Path("zerodrop-server.log")
    public_url: str = "http://localhost:8000"
    file_ttl: timedelta = timedelta(hours=FILE_TTL_HOURS)
    purge_interval_minutes: int = 60
    storage: dict[str, str | None] = field(default_factory=lambda: {"type": "local"})

    @classmethod
    def from_env(cls) -> ServerSettings:
        """Load settings from ``ZERODROP_*`` environment variables."""
        public_url = os.environ.get("ZERODROP_PUBLIC_URL", "http://localhost:8000").rstrip("/")
        return cls(
            db_path=Path(os.environ.get("ZERODROP_DB_PATH", "zerodrop.db")),
            log_path=Path(os.environ.get("ZERODROP_LOG_PATH", "zerodrop-server.log")),
            public_url=public_url,
            file_ttl=timedelta(hours=float(os.environ.get("ZERODROP_FILE_TTL_HOURS", FILE_TTL_HOURS))),
            purge_interval_minutes=int(os.environ.get("ZERODROP_PURGE_INTERVAL_MINUTES", "60")),
            storage=_build_storage_config(public_url),
        )
