"""User registration and lookup API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError

from zerodrop.server.api.deps import get_current_user_id, get_db
from zerodrop.server.database import Database
from zerodrop.server.schemas import (
    UserRegisterRequest,
    UserRegisterResponse,
    UserResponse,
    user_to_response,
)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post(
    "/register",
    response_model=UserRegisterResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_user(
    request: UserRegisterRequest,
    db: Database = Depends(get_db),
) -> UserRegisterResponse:
    """Register a new user and return a bearer token."""
    email = request.email.strip().lower()
    try:
        user = db.create_user(request.name.strip(), email)
    except IntegrityError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Email '{email}' is already registered",
        ) from e

    raw_token, _ = db.create_token(user.id)
    return UserRegisterResponse(token=raw_token, user=user_to_response(user))


@router.get("/me", response_model=UserResponse)
def get_me(
    db: Database = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> UserResponse:
    """Return the authenticated user."""
    user = db.get_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return user_to_response(user)


@router.get("/{target_id}", response_model=UserResponse)
def get_user(
    target_id: str,
    db: Database = Depends(get_db),
    _user_id: str = Depends(get_current_user_id),
) -> UserResponse:
    """Resolve another user's public profile."""
    user = db.get_user(target_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {target_id} not found",
        )
    return user_to_response(user)
