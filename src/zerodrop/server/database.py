"""Server database using SQLAlchemy with SQLite.

This module provides:
- User registration and token-based authentication
- Pairing codes and their atomic redemption
- Bidirectional pairings
- File share records
"""

from __future__ import annotations

import hashlib
import secrets
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import and_, create_engine, delete, event, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from zerodrop.server.models import Base, FileShare, Pairing, PairingCode, Token, User

if TYPE_CHECKING:
    from sqlalchemy import Engine


def hash_token(token: str) -> str:
    """Hash a token using SHA-256.

    Args:
        token: Raw token string.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    return hashlib.sha256(token.encode()).hexdigest()


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (SQLite hands back naive values)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class PairingError(Exception):
    """Base exception for rejected pairing redemptions."""


class CodeNotFoundError(PairingError):
    """No unused, unexpired pairing code matches."""


class SelfPairingError(PairingError):
    """The code owner tried to redeem their own code."""


class AlreadyPairedError(PairingError):
    """The two users are already paired."""


class UnauthorizedError(Exception):
    """The acting user may not perform this operation."""


class NotPairedError(Exception):
    """Sender and recipient of a share are not paired."""


class Database:
    """SQLAlchemy database for users, pairings and share records.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        # Foreign keys are a per-connection setting in SQLite
        @event.listens_for(self._engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # Enable WAL mode
        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        # Serializes code redemption within this process
        self._redeem_lock = threading.Lock()

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === User operations ===

    def create_user(self, name: str, email: str) -> User:
        """Register a new user.

        Args:
            name: Display name.
            email: Unique email address.

        Returns:
            Created User object.

        Raises:
            IntegrityError: If email already exists.
        """
        with self._session() as session:
            user = User(name=name, email=email)
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user

    def get_user(self, user_id: str) -> User | None:
        """Get a user by ID.

        Args:
            user_id: User ID.

        Returns:
            User if found, None otherwise.
        """
        with self._session() as session:
            user = session.get(User, user_id)
            if user:
                session.expunge(user)
            return user

    def get_user_by_email(self, email: str) -> User | None:
        """Get a user by email address."""
        with self._session() as session:
            stmt = select(User).where(User.email == email)
            user = session.execute(stmt).scalar_one_or_none()
            if user:
                session.expunge(user)
            return user

    # === Token operations ===

    def create_token(
        self,
        user_id: str,
        expires_in: timedelta | None = None,
    ) -> tuple[str, Token]:
        """Create a new authentication token.

        Args:
            user_id: User ID to associate with token.
            expires_in: Optional expiration duration.

        Returns:
            Tuple of (raw_token, Token object).
        """
        raw_token = "zd_" + secrets.token_urlsafe(32)
        token_hash = hash_token(raw_token)
        now = datetime.now(UTC)
        expires_at = (now + expires_in) if expires_in else None

        with self._session() as session:
            token = Token(
                user_id=user_id,
                token_hash=token_hash,
                created_at=now,
                expires_at=expires_at,
            )
            session.add(token)
            session.commit()
            session.refresh(token)
            session.expunge(token)
            return raw_token, token

    def validate_token(self, raw_token: str) -> Token | None:
        """Validate a token and return it if valid.

        Args:
            raw_token: Raw token string.

        Returns:
            Token if valid, None otherwise.
        """
        token_hash = hash_token(raw_token)
        with self._session() as session:
            stmt = select(Token).where(Token.token_hash == token_hash, Token.revoked == False)  # noqa: E712
            token = session.execute(stmt).scalar_one_or_none()

            if token is None:
                return None

            if token.expires_at and as_utc(token.expires_at) < datetime.now(UTC):
                return None

            session.expunge(token)
            return token

    def revoke_token(self, token_id: int) -> None:
        """Revoke a token.

        Args:
            token_id: Token ID to revoke.
        """
        with self._session() as session:
            token = session.get(Token, token_id)
            if token:
                token.revoked = True
                session.commit()

    # === Pairing code operations ===

    def create_pairing_code(
        self,
        owner_id: str,
        code: str,
        expires_in: timedelta,
        now: datetime | None = None,
    ) -> PairingCode:
        """Store a pairing code for a user.

        Args:
            owner_id: User the code pairs with.
            code: 6-digit numeric code.
            expires_in: Validity window.
            now: Creation time (defaults to the current time).

        Returns:
            Created PairingCode object.
        """
        now = now or datetime.now(UTC)
        with self._session() as session:
            pairing_code = PairingCode(
                code=code,
                owner_id=owner_id,
                created_at=now,
                expires_at=now + expires_in,
            )
            session.add(pairing_code)
            session.commit()
            session.refresh(pairing_code)
            session.expunge(pairing_code)
            return pairing_code

    def redeem_pairing_code(
        self,
        code: str,
        requester_id: str,
        now: datetime | None = None,
    ) -> tuple[Pairing, User]:
        """Redeem a pairing code in a single unit of work.

        Looks up the most recent unused, unexpired code, rejects self-pairing
        and existing pairings, then marks the code used and creates both
        directed pairing rows. Either all of it commits or none of it does.

        Args:
            code: Code entered by the requester.
            requester_id: User redeeming the code.
            now: Redemption time (defaults to the current time).

        Returns:
            Tuple of (requester's pairing row, code owner).

        Raises:
            CodeNotFoundError: If no valid code matches.
            SelfPairingError: If the requester owns the code.
            AlreadyPairedError: If the users are already paired.
        """
        now = now or datetime.now(UTC)

        with self._redeem_lock, self._session() as session:
            stmt = (
                select(PairingCode)
                .options(joinedload(PairingCode.owner))
                .where(PairingCode.code == code, PairingCode.used == False)  # noqa: E712
                .order_by(PairingCode.created_at.desc(), PairingCode.id.desc())
            )
            candidates = session.execute(stmt).scalars().all()
            pairing_code = next(
                (c for c in candidates if as_utc(c.expires_at) > now),
                None,
            )
            if pairing_code is None:
                raise CodeNotFoundError("Invalid or expired code")

            owner = pairing_code.owner
            if owner.id == requester_id:
                raise SelfPairingError("You cannot connect with yourself")

            if self._find_edge(session, requester_id, owner.id) is not None:
                raise AlreadyPairedError("You are already connected with this user")

            # Claim the code; a concurrent redeemer in another process loses here
            claimed = session.execute(
                update(PairingCode)
                .where(PairingCode.id == pairing_code.id, PairingCode.used == False)  # noqa: E712
                .values(used=True)
            )
            if claimed.rowcount != 1:
                raise CodeNotFoundError("Invalid or expired code")

            forward = Pairing(user_id=requester_id, connected_user_id=owner.id, created_at=now)
            backward = Pairing(user_id=owner.id, connected_user_id=requester_id, created_at=now)
            session.add_all([forward, backward])
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise AlreadyPairedError("You are already connected with this user") from e

            session.refresh(forward)
            session.refresh(owner)
            session.expunge(forward)
            session.expunge(owner)
            return forward, owner

    def get_pairing_code(self, code_id: int) -> PairingCode | None:
        """Get a pairing code by ID."""
        with self._session() as session:
            pairing_code = session.get(PairingCode, code_id)
            if pairing_code:
                session.expunge(pairing_code)
            return pairing_code

    def cleanup_expired_pairing_codes(self, now: datetime | None = None) -> int:
        """Delete all expired or used pairing codes.

        Returns:
            Number of codes deleted.
        """
        now = now or datetime.now(UTC)
        with self._session() as session:
            codes = list(session.execute(select(PairingCode)).scalars().all())
            stale = [c for c in codes if c.used or as_utc(c.expires_at) <= now]
            for pairing_code in stale:
                session.delete(pairing_code)
            session.commit()
            return len(stale)

    # === Pairing operations ===

    @staticmethod
    def _find_edge(session: Session, user_a: str, user_b: str) -> Pairing | None:
        """Find a pairing row between two users in either direction."""
        stmt = select(Pairing).where(
            or_(
                and_(Pairing.user_id == user_a, Pairing.connected_user_id == user_b),
                and_(Pairing.user_id == user_b, Pairing.connected_user_id == user_a),
            )
        )
        return session.execute(stmt).scalars().first()

    def get_pairing(self, pairing_id: str) -> Pairing | None:
        """Get a pairing row by ID."""
        with self._session() as session:
            pairing = session.get(Pairing, pairing_id)
            if pairing:
                session.expunge(pairing)
            return pairing

    def list_pairings(self, user_id: str) -> list[Pairing]:
        """List a user's pairings with the connected user loaded.

        Args:
            user_id: User whose connections to list.

        Returns:
            Pairing rows owned by the user, oldest first.
        """
        with self._session() as session:
            stmt = (
                select(Pairing)
                .options(joinedload(Pairing.connected_user))
                .where(Pairing.user_id == user_id)
                .order_by(Pairing.created_at)
            )
            pairings = list(session.execute(stmt).scalars().unique().all())
            for pairing in pairings:
                session.expunge(pairing)
            return pairings

    def is_paired(self, user_id: str, other_user_id: str) -> bool:
        """Check whether ``user_id`` has a pairing row towards ``other_user_id``."""
        with self._session() as session:
            stmt = select(Pairing.id).where(
                Pairing.user_id == user_id,
                Pairing.connected_user_id == other_user_id,
            )
            return session.execute(stmt).first() is not None

    def remove_pairing(self, pairing_id: str, requester_id: str) -> None:
        """Delete a pairing in both directions.

        Args:
            pairing_id: ID of the requester's pairing row.
            requester_id: Acting user.

        Raises:
            UnauthorizedError: If the row does not exist or is not the requester's.
        """
        with self._session() as session:
            pairing = session.get(Pairing, pairing_id)
            if pairing is None or pairing.user_id != requester_id:
                raise UnauthorizedError("Unauthorized")

            session.execute(
                delete(Pairing).where(
                    Pairing.user_id == pairing.connected_user_id,
                    Pairing.connected_user_id == pairing.user_id,
                )
            )
            session.delete(pairing)
            session.commit()

    # === File share operations ===

    def create_share(
        self,
        file_id: str,
        sender_id: str,
        recipient_id: str,
        file_name: str,
        file_size: int,
        encryption_key: str,
    ) -> FileShare:
        """Record a file sent to a paired recipient.

        Args:
            file_id: Identifier of the stored ciphertext.
            sender_id: Acting user.
            recipient_id: Paired user receiving the file.
            file_name: Original file name.
            file_size: Original file size in bytes.
            encryption_key: Portable key string, opaque to the server.

        Returns:
            Created FileShare object.

        Raises:
            NotPairedError: If sender and recipient are not paired.
        """
        with self._session() as session:
            stmt = select(Pairing.id).where(
                Pairing.user_id == sender_id,
                Pairing.connected_user_id == recipient_id,
            )
            if session.execute(stmt).first() is None:
                raise NotPairedError("You are not connected with this user")

            share = FileShare(
                file_id=file_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
                file_name=file_name,
                file_size=file_size,
                encryption_key=encryption_key,
            )
            session.add(share)
            session.commit()
            session.refresh(share)
            session.expunge(share)
            return share

    def get_share(self, share_id: str) -> FileShare | None:
        """Get a share record by ID, with the sender loaded."""
        with self._session() as session:
            stmt = (
                select(FileShare)
                .options(joinedload(FileShare.sender))
                .where(FileShare.id == share_id)
            )
            share = session.execute(stmt).scalar_one_or_none()
            if share:
                session.expunge(share)
            return share

    def list_shares_for_recipient(self, recipient_id: str) -> list[FileShare]:
        """List files shared with a user, newest first.

        Args:
            recipient_id: Receiving user.

        Returns:
            FileShare rows with the sender loaded.
        """
        with self._session() as session:
            stmt = (
                select(FileShare)
                .options(joinedload(FileShare.sender))
                .where(FileShare.recipient_id == recipient_id)
                .order_by(FileShare.created_at.desc())
            )
            shares = list(session.execute(stmt).scalars().unique().all())
            for share in shares:
                session.expunge(share)
            return shares

    def mark_share_downloaded(self, share_id: str, requester_id: str) -> FileShare:
        """Flag a share as downloaded by its recipient.

        Args:
            share_id: Share record ID.
            requester_id: Acting user.

        Returns:
            Updated FileShare. A repeat call keeps the first timestamp.

        Raises:
            UnauthorizedError: If the share does not exist or the requester
                is not its recipient.
        """
        with self._session() as session:
            share = session.get(FileShare, share_id)
            if share is None or share.recipient_id != requester_id:
                raise UnauthorizedError("Unauthorized")

            if not share.downloaded:
                share.downloaded = True
                share.downloaded_at = datetime.now(UTC)
                session.commit()
            session.refresh(share)
            session.expunge(share)
            return share
