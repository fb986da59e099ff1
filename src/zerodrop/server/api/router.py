"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from zerodrop.server.api import blobs, files, health, pairing, shares, users

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(users.router)
router.include_router(files.router)
router.include_router(blobs.router)
router.include_router(pairing.router)
router.include_router(shares.router)
