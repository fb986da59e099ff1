"""Pairing protocol for ZeroDrop.

This module provides:
- PairingService: issues, redeems and removes pairing codes and pairings

A code moves from issued to consumed on successful redemption, or is
treated as expired once its 5-minute window has elapsed. Expiry is checked
lazily at redemption time; nothing sweeps codes in the background.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from zerodrop.server.database import (
    AlreadyPairedError,
    CodeNotFoundError,
    PairingError,
    SelfPairingError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from zerodrop.server.database import Database
    from zerodrop.server.models import Pairing, PairingCode

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=5)
CODE_DIGITS = 6

__all__ = [
    "CODE_TTL",
    "AlreadyPairedError",
    "CodeNotFoundError",
    "PairingError",
    "PairingService",
    "RedeemResult",
    "SelfPairingError",
    "UnauthorizedError",
    "generate_code",
]


def generate_code() -> str:
    """Generate a uniformly random 6-digit numeric code (000000-999999)."""
    return f"{secrets.randbelow(10**CODE_DIGITS):0{CODE_DIGITS}d}"


@dataclass
class RedeemResult:
    """Outcome of a successful redemption."""

    pairing: Pairing
    user_id: str
    user_name: str


class PairingService:
    """Issues and redeems pairing codes on behalf of an acting user.

    Every operation takes the acting user's ID explicitly.
    """

    def __init__(
        self,
        db: Database,
        clock: Callable[[], datetime] | None = None,
        code_ttl: timedelta = CODE_TTL,
    ) -> None:
        """Initialize the service.

        Args:
            db: Database holding codes and pairings.
            clock: Returns the current aware datetime (injectable for tests).
            code_ttl: Validity window of issued codes.
        """
        self._db = db
        self._clock = clock or (lambda: datetime.now(UTC))
        self._code_ttl = code_ttl

    def issue_code(self, owner_id: str) -> PairingCode:
        """Issue a new pairing code for ``owner_id``.

        Codes of different owners may collide; redemption resolves the
        collision by picking the most recent valid code.

        Args:
            owner_id: Acting user.

        Returns:
            The stored PairingCode.
        """
        pairing_code = self._db.create_pairing_code(
            owner_id=owner_id,
            code=generate_code(),
            expires_in=self._code_ttl,
            now=self._clock(),
        )
        logger.info("Issued pairing code for user %s (expires %s)", owner_id, pairing_code.expires_at)
        return pairing_code

    def redeem(self, code: str, requester_id: str) -> RedeemResult:
        """Redeem a code, pairing the requester with the code owner.

        Args:
            code: Code entered by the requester.
            requester_id: Acting user.

        Returns:
            RedeemResult with the requester's pairing row and the owner's name.

        Raises:
            CodeNotFoundError: No unused, unexpired code matches.
            SelfPairingError: The requester owns the code.
            AlreadyPairedError: The users are already paired.
        """
        code = code.strip()
        try:
            pairing, owner = self._db.redeem_pairing_code(code, requester_id, now=self._clock())
        except PairingError as e:
            logger.info("Pairing redemption by %s rejected: %s", requester_id, e)
            raise

        logger.info("Paired users %s and %s", requester_id, owner.id)
        return RedeemResult(pairing=pairing, user_id=owner.id, user_name=owner.name)

    def remove(self, pairing_id: str, requester_id: str) -> None:
        """Remove a pairing in both directions.

        Raises:
            UnauthorizedError: If the requester does not own the pairing row.
        """
        self._db.remove_pairing(pairing_id, requester_id)
        logger.info("User %s removed pairing %s", requester_id, pairing_id)

    def is_paired(self, user_id: str, other_user_id: str) -> bool:
        """Check whether two users are paired."""
        return self._db.is_paired(user_id, other_user_id)

    def list_pairings(self, user_id: str) -> list[Pairing]:
        """List the acting user's pairings."""
        return self._db.list_pairings(user_id)
