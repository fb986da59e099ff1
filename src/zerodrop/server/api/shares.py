"""Share record API routes (connection flow)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from zerodrop.server.api.deps import get_current_user_id, get_db
from zerodrop.server.database import Database, NotPairedError, UnauthorizedError
from zerodrop.server.schemas import ShareCreateRequest, ShareResponse, share_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shares", tags=["shares"])


@router.post("", response_model=ShareResponse, status_code=status.HTTP_201_CREATED)
def create_share(
    request: ShareCreateRequest,
    db: Database = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> ShareResponse:
    """Record a file sent to a paired user."""
    try:
        share = db.create_share(
            file_id=request.fileId,
            sender_id=user_id,
            recipient_id=request.recipientId,
            file_name=request.fileName,
            file_size=request.fileSize,
            encryption_key=request.encryptionKey,
        )
    except NotPairedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e

    logger.info("User %s shared file %s with %s", user_id, share.file_id, share.recipient_id)
    return share_to_response(share, include_sender=False)


@router.get("", response_model=list[ShareResponse])
def list_shares(
    db: Database = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> list[ShareResponse]:
    """List files shared with the acting user, newest first."""
    return [share_to_response(s) for s in db.list_shares_for_recipient(user_id)]


@router.post("/{share_id}/downloaded", response_model=ShareResponse)
def mark_downloaded(
    share_id: str,
    db: Database = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> ShareResponse:
    """Flag a share as downloaded by its recipient."""
    try:
        share = db.mark_share_downloaded(share_id, user_id)
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e
    return share_to_response(share, include_sender=False)
