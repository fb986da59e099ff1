"""Scheduler for automatic maintenance tasks.

This module provides:
- Periodic purge of expired encrypted objects from blob storage
- Periodic cleanup of used and expired pairing codes
- Manual purge function for CLI usage
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from zerodrop.server.database import Database
    from zerodrop.server.storage import BlobStorage

logger = logging.getLogger(__name__)


def purge_expired_blobs(storage: BlobStorage | None) -> int:
    """Delete every blob whose expiry has passed.

    Args:
        storage: Blob storage instance (may be None).

    Returns:
        Number of objects deleted.
    """
    if storage is None:
        return 0

    deleted = storage.purge_expired()
    if deleted > 0:
        logger.info("Expiry purge completed: %d objects removed from %s", deleted, storage.location)
    else:
        logger.debug("Expiry purge: no expired objects in %s", storage.location)
    return deleted


class ExpiryScheduler:
    """Scheduler for automatic maintenance tasks.

    Runs every ``interval_minutes``:
    - Expired blob purge
    - Stale pairing code cleanup (when a database is given)
    """

    def __init__(
        self,
        storage: BlobStorage | None,
        db: Database | None = None,
        interval_minutes: int = 60,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage: Blob storage instance.
            db: Database whose stale pairing codes are cleaned up.
            interval_minutes: Minutes between runs.
        """
        self._storage = storage
        self._db = db
        self._interval_minutes = interval_minutes
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        """Whether the scheduler is started."""
        return self._scheduler is not None

    def _purge_job(self) -> None:
        """Job function for scheduled blob purge."""
        logger.info("Starting scheduled expiry purge")
        try:
            purge_expired_blobs(self._storage)
        except Exception:
            logger.exception("Error during scheduled expiry purge")

    def _cleanup_codes_job(self) -> None:
        """Job function for scheduled pairing code cleanup."""
        if self._db is None:
            return
        try:
            deleted = self._db.cleanup_expired_pairing_codes()
            if deleted > 0:
                logger.info("Pairing code cleanup: %d stale codes deleted", deleted)
        except Exception:
            logger.exception("Error during scheduled pairing code cleanup")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._purge_job,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id="expiry_purge",
            name="Expired object purge",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._cleanup_codes_job,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id="pairing_code_cleanup",
            name="Stale pairing code cleanup",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info("Expiry scheduler started (every %d minutes)", self._interval_minutes)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Expiry scheduler stopped")

    def run_now(self) -> int:
        """Run the expiry purge immediately (manual trigger).

        Returns:
            Number of objects deleted.
        """
        return purge_expired_blobs(self._storage)
