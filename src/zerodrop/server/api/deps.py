"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from zerodrop.server.database import Database
from zerodrop.server.pairing import PairingService
from zerodrop.server.settings import ServerSettings
from zerodrop.server.storage import BlobStorage

# Security scheme
security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_storage(request: Request) -> BlobStorage:
    """Get blob storage from app state."""
    storage: BlobStorage | None = request.app.state.storage
    if storage is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Blob storage not configured",
        )
    return storage


def get_settings(request: Request) -> ServerSettings:
    """Get server settings from app state."""
    settings: ServerSettings = request.app.state.settings
    return settings


def get_pairing_service(request: Request) -> PairingService:
    """Get the pairing service from app state."""
    service: PairingService = request.app.state.pairing
    return service


def get_current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """Validate bearer token and return the acting user's ID."""
    db = get_db(request)
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = db.validate_token(credentials.credentials)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token.user_id
