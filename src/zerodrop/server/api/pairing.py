"""Pairing API routes.

A user issues a short-lived code and reads it out of band; the other user
redeems it, which connects both in one step.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from zerodrop.server.api.deps import get_current_user_id, get_pairing_service
from zerodrop.server.database import UnauthorizedError, as_utc
from zerodrop.server.pairing import (
    AlreadyPairedError,
    CodeNotFoundError,
    PairingService,
    SelfPairingError,
)
from zerodrop.server.schemas import (
    PairingCodeResponse,
    PairingResponse,
    PairingStatusResponse,
    RedeemRequest,
    RedeemResponse,
    pairing_to_response,
)

router = APIRouter(tags=["pairing"])


@router.post(
    "/api/pairing/codes",
    response_model=PairingCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_code(
    service: PairingService = Depends(get_pairing_service),
    user_id: str = Depends(get_current_user_id),
) -> PairingCodeResponse:
    """Issue a pairing code for the acting user."""
    pairing_code = service.issue_code(user_id)
    return PairingCodeResponse(
        code=pairing_code.code,
        expiresAt=as_utc(pairing_code.expires_at).isoformat(),
    )


@router.post("/api/pairing/redeem", response_model=RedeemResponse)
def redeem_code(
    request: RedeemRequest,
    service: PairingService = Depends(get_pairing_service),
    user_id: str = Depends(get_current_user_id),
) -> RedeemResponse:
    """Redeem a pairing code issued by another user."""
    try:
        result = service.redeem(request.code, user_id)
    except CodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except SelfPairingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except AlreadyPairedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return RedeemResponse(success=True, userName=result.user_name, pairingId=result.pairing.id)


@router.get("/api/pairings", response_model=list[PairingResponse])
def list_pairings(
    service: PairingService = Depends(get_pairing_service),
    user_id: str = Depends(get_current_user_id),
) -> list[PairingResponse]:
    """List the acting user's connections."""
    return [pairing_to_response(p) for p in service.list_pairings(user_id)]


@router.get("/api/pairings/status/{other_user_id}", response_model=PairingStatusResponse)
def pairing_status(
    other_user_id: str,
    service: PairingService = Depends(get_pairing_service),
    user_id: str = Depends(get_current_user_id),
) -> PairingStatusResponse:
    """Check whether the acting user is paired with another user."""
    return PairingStatusResponse(paired=service.is_paired(user_id, other_user_id))


@router.delete("/api/pairings/{pairing_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_pairing(
    pairing_id: str,
    service: PairingService = Depends(get_pairing_service),
    user_id: str = Depends(get_current_user_id),
) -> Response:
    """Remove a connection in both directions."""
    try:
        service.remove(pairing_id, user_id)
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
