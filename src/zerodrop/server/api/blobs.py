"""Capability URL routes for local blob storage.

S3 deployments never hit these routes: presigned URLs point at the bucket.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from zerodrop.server.api.deps import get_storage
from zerodrop.server.storage import BlobExistsError, BlobNotFoundError, BlobStorage, LocalFSStorage

router = APIRouter(prefix="/blobs", tags=["blobs"])


def _authorize(
    storage: BlobStorage, expected_op: str, op: str, path: str, expires: int, sig: str
) -> LocalFSStorage:
    if not isinstance(storage, LocalFSStorage):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if op != expected_op or not storage.verify_capability(op, path, expires, sig):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired capability",
        )
    return storage


@router.put("/{path:path}")
async def write_blob(
    path: str,
    request: Request,
    op: str = Query(...),
    expires: int = Query(...),
    sig: str = Query(...),
    storage: BlobStorage = Depends(get_storage),
) -> Response:
    """Stream an object to disk through a write capability.

    Each capability writes its object once; later PUTs get 409.
    """
    local = _authorize(storage, "put", op, path, expires, sig)
    try:
        staged = local.stage_write(path)
    except BlobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except BlobExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    try:
        with staged.open("wb") as f:
            async for chunk in request.stream():
                f.write(chunk)
        local.complete_write(path, staged)
    except BlobExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    finally:
        staged.unlink(missing_ok=True)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/{path:path}")
def read_blob(
    path: str,
    op: str = Query(...),
    expires: int = Query(...),
    sig: str = Query(...),
    storage: BlobStorage = Depends(get_storage),
) -> Response:
    """Return an object through a read capability."""
    local = _authorize(storage, "get", op, path, expires, sig)
    try:
        data = local.get(path)
    except BlobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found or expired") from e
    return Response(content=data, media_type="application/octet-stream")
