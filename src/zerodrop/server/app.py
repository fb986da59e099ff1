"""FastAPI application for the ZeroDrop server.

This module creates and configures the FastAPI application with:
- Anonymous API for write/read capabilities, IVs and object metadata
- Authenticated API for users, pairing and share records
- Capability routes backing local blob storage

Usage:
    uvicorn zerodrop.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from zerodrop import __version__
from zerodrop.server.api.router import router as api_router
from zerodrop.server.database import Database
from zerodrop.server.pairing import PairingService
from zerodrop.server.scheduler import ExpiryScheduler
from zerodrop.server.settings import ServerSettings
from zerodrop.server.storage import BlobStorage, create_storage

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for zerodrop
    root_logger = logging.getLogger("zerodrop")
    root_logger.setLevel(logging.INFO)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(
    db: Database,
    storage: BlobStorage | None = None,
    settings: ServerSettings | None = None,
    scheduler: ExpiryScheduler | None = None,
    pairing: PairingService | None = None,
) -> FastAPI:
    """Create FastAPI application with custom database and storage.

    Tests pass isolated databases and storage; ``app_factory`` wires the
    production configuration.

    Args:
        db: Database instance.
        storage: Optional BlobStorage instance.
        settings: Server settings (defaults when omitted).
        scheduler: Optional expiry scheduler run for the app's lifetime.
        pairing: Pairing service (built on ``db`` when omitted).

    Returns:
        Configured FastAPI application.
    """
    settings = settings or ServerSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Startup
        db_path = getattr(db, "_db_path", "in-memory")
        logger.info("=" * 60)
        logger.info("ZeroDrop Server Starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db_path)
        if storage:
            logger.info("  Storage:  %s", storage.location)
        else:
            logger.info("  Storage:  None (storage disabled)")
        logger.info("  URL:      %s", settings.public_url)
        logger.info("  File TTL: %s", settings.file_ttl)
        logger.info("  Logs:     %s", settings.log_path.absolute())
        logger.info("=" * 60)
        if scheduler is not None:
            scheduler.start()

        yield

        # Shutdown
        if scheduler is not None:
            scheduler.stop()
        logger.info("ZeroDrop Server shutting down")

    application = FastAPI(
        title="ZeroDrop Server",
        description="Zero-Knowledge Encrypted File Transfer Server",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.storage = storage
    application.state.settings = settings
    application.state.pairing = pairing or PairingService(db)

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    settings = ServerSettings.from_env()
    setup_logging(settings.log_path)
    db = Database(settings.db_path)
    storage = create_storage(settings.storage)
    return create_app(
        db=db,
        storage=storage,
        settings=settings,
        scheduler=ExpiryScheduler(storage, db, settings.purge_interval_minutes),
    )
