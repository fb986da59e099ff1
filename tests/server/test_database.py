"""Tests for database module - users, tokens, pairings and share records."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from zerodrop.server.database import (
    AlreadyPairedError,
    CodeNotFoundError,
    Database,
    NotPairedError,
    SelfPairingError,
    UnauthorizedError,
    as_utc,
    hash_token,
)
from zerodrop.server.models import User


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def alice(db: Database) -> User:
    """A registered user."""
    return db.create_user("Alice", "alice@example.com")


@pytest.fixture
def bob(db: Database) -> User:
    """Another registered user."""
    return db.create_user("Bob", "bob@example.com")


def pair_users(db: Database, owner: User, requester: User) -> str:
    """Pair two users through a code and return the requester's pairing ID."""
    db.create_pairing_code(owner.id, "123456", timedelta(minutes=5))
    pairing, _ = db.redeem_pairing_code("123456", requester.id)
    return pairing.id


class TestDatabaseInit:
    """Tests for database initialization."""

    def test_creates_database_file(self, tmp_path: Path) -> None:
        """Should create the SQLite file and parent directories."""
        db_path = tmp_path / "nested" / "zerodrop.db"
        database = Database(db_path)
        assert db_path.exists()
        database.close()


class TestUserOperations:
    """Tests for the identity store."""

    def test_create_user(self, db: Database) -> None:
        """Should create a user with an opaque ID."""
        user = db.create_user("Alice", "alice@example.com")
        assert len(user.id) == 32
        assert user.name == "Alice"

    def test_get_user(self, db: Database, alice: User) -> None:
        """Should resolve a user by ID and by email."""
        assert db.get_user(alice.id).email == "alice@example.com"  # type: ignore[union-attr]
        assert db.get_user_by_email("alice@example.com").id == alice.id  # type: ignore[union-attr]
        assert db.get_user("missing") is None

    def test_email_unique(self, db: Database, alice: User) -> None:
        """Emails should be unique."""
        with pytest.raises(IntegrityError):
            db.create_user("Other Alice", "alice@example.com")


class TestTokenOperations:
    """Tests for token management."""

    def test_create_token(self, db: Database, alice: User) -> None:
        """Should create a hashed token for a user."""
        raw_token, token = db.create_token(alice.id)
        assert raw_token.startswith("zd_")
        assert token.user_id == alice.id
        assert token.token_hash == hash_token(raw_token)

    def test_validate_token(self, db: Database, alice: User) -> None:
        """Should validate a correct token."""
        raw_token, _ = db.create_token(alice.id)
        validated = db.validate_token(raw_token)
        assert validated is not None
        assert validated.user_id == alice.id

    def test_invalid_token_returns_none(self, db: Database) -> None:
        """Invalid token should return None."""
        assert db.validate_token("invalid_token") is None

    def test_expired_token_returns_none(self, db: Database, alice: User) -> None:
        """Expired token should return None."""
        raw_token, _ = db.create_token(alice.id, expires_in=timedelta(seconds=-1))
        assert db.validate_token(raw_token) is None

    def test_revoke_token(self, db: Database, alice: User) -> None:
        """Should revoke a token."""
        raw_token, token = db.create_token(alice.id)
        db.revoke_token(token.id)
        assert db.validate_token(raw_token) is None


class TestPairingCodeRedemption:
    """Tests for the redemption unit of work."""

    def test_redeem_creates_both_rows(self, db: Database, alice: User, bob: User) -> None:
        """A successful redemption creates one row per direction."""
        db.create_pairing_code(alice.id, "482913", timedelta(minutes=5))
        forward, owner = db.redeem_pairing_code("482913", bob.id)

        assert owner.id == alice.id
        assert owner.name == "Alice"
        assert forward.user_id == bob.id
        assert forward.connected_user_id == alice.id
        assert db.is_paired(alice.id, bob.id)
        assert db.is_paired(bob.id, alice.id)

    def test_code_marked_used(self, db: Database, alice: User, bob: User) -> None:
        """A redeemed code cannot be redeemed again."""
        code = db.create_pairing_code(alice.id, "111111", timedelta(minutes=5))
        db.redeem_pairing_code("111111", bob.id)

        stored = db.get_pairing_code(code.id)
        assert stored is not None
        assert stored.used is True

        carol = db.create_user("Carol", "carol@example.com")
        with pytest.raises(CodeNotFoundError):
            db.redeem_pairing_code("111111", carol.id)

    def test_unknown_code(self, db: Database, bob: User) -> None:
        """Unknown codes are rejected."""
        with pytest.raises(CodeNotFoundError, match="Invalid or expired code"):
            db.redeem_pairing_code("000000", bob.id)

    def test_expired_code(self, db: Database, alice: User, bob: User) -> None:
        """Codes past their expiry are rejected."""
        t0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        db.create_pairing_code(alice.id, "222222", timedelta(minutes=5), now=t0)
        with pytest.raises(CodeNotFoundError):
            db.redeem_pairing_code("222222", bob.id, now=t0 + timedelta(minutes=6))
        assert not db.is_paired(alice.id, bob.id)

    def test_self_pairing(self, db: Database, alice: User) -> None:
        """The owner cannot redeem their own code."""
        db.create_pairing_code(alice.id, "333333", timedelta(minutes=5))
        with pytest.raises(SelfPairingError, match="cannot connect with yourself"):
            db.redeem_pairing_code("333333", alice.id)

    def test_self_pairing_leaves_code_unused(self, db: Database, alice: User, bob: User) -> None:
        """A rejected redemption has no effect on the code."""
        db.create_pairing_code(alice.id, "333333", timedelta(minutes=5))
        with pytest.raises(SelfPairingError):
            db.redeem_pairing_code("333333", alice.id)
        db.redeem_pairing_code("333333", bob.id)
        assert db.is_paired(alice.id, bob.id)

    def test_already_paired_either_direction(self, db: Database, alice: User, bob: User) -> None:
        """Redeeming a code from an existing connection is rejected."""
        pair_users(db, alice, bob)
        db.create_pairing_code(bob.id, "444444", timedelta(minutes=5))
        with pytest.raises(AlreadyPairedError, match="already connected"):
            db.redeem_pairing_code("444444", alice.id)

    def test_most_recent_code_wins(self, db: Database, alice: User, bob: User) -> None:
        """Colliding codes of different owners resolve to the most recent."""
        carol = db.create_user("Carol", "carol@example.com")
        t0 = datetime.now(UTC)
        db.create_pairing_code(alice.id, "555555", timedelta(minutes=5), now=t0)
        db.create_pairing_code(carol.id, "555555", timedelta(minutes=5), now=t0 + timedelta(seconds=30))

        _, owner = db.redeem_pairing_code("555555", bob.id, now=t0 + timedelta(minutes=1))
        assert owner.id == carol.id

    def test_cleanup_expired_codes(self, db: Database, alice: User, bob: User) -> None:
        """Used and expired codes are deleted; valid ones survive."""
        now = datetime.now(UTC)
        db.create_pairing_code(alice.id, "100000", timedelta(minutes=-1), now=now)
        db.create_pairing_code(alice.id, "200000", timedelta(minutes=5), now=now)
        valid = db.create_pairing_code(alice.id, "300000", timedelta(minutes=5), now=now)
        db.redeem_pairing_code("200000", bob.id)

        assert db.cleanup_expired_pairing_codes() == 2
        assert db.get_pairing_code(valid.id) is not None


class TestPairingOperations:
    """Tests for listing and removing pairings."""

    def test_list_pairings(self, db: Database, alice: User, bob: User) -> None:
        """Each side lists the other with name and email."""
        pair_users(db, alice, bob)

        alice_pairings = db.list_pairings(alice.id)
        assert len(alice_pairings) == 1
        assert alice_pairings[0].connected_user.email == "bob@example.com"

        bob_pairings = db.list_pairings(bob.id)
        assert bob_pairings[0].connected_user.name == "Alice"

    def test_remove_deletes_both_rows(self, db: Database, alice: User, bob: User) -> None:
        """Removing a pairing deletes both directions."""
        pairing_id = pair_users(db, alice, bob)
        db.remove_pairing(pairing_id, bob.id)

        assert not db.is_paired(alice.id, bob.id)
        assert not db.is_paired(bob.id, alice.id)
        assert db.list_pairings(alice.id) == []

    def test_remove_by_other_user_rejected(self, db: Database, alice: User, bob: User) -> None:
        """Only the owner of the row may remove it."""
        pairing_id = pair_users(db, alice, bob)
        with pytest.raises(UnauthorizedError):
            db.remove_pairing(pairing_id, alice.id)
        assert db.is_paired(alice.id, bob.id)

    def test_remove_unknown_rejected(self, db: Database, alice: User) -> None:
        """Unknown pairing IDs are rejected the same way."""
        with pytest.raises(UnauthorizedError):
            db.remove_pairing("missing", alice.id)


class TestShareOperations:
    """Tests for share records."""

    def test_create_share_requires_pairing(self, db: Database, alice: User, bob: User) -> None:
        """Unpaired users cannot share."""
        with pytest.raises(NotPairedError):
            db.create_share("f" * 32, alice.id, bob.id, "a.txt", 10, "key")

    def test_create_and_list(self, db: Database, alice: User, bob: User) -> None:
        """The recipient lists shares with the sender attached."""
        pair_users(db, alice, bob)
        share = db.create_share("f" * 32, alice.id, bob.id, "a.txt", 10, "portable-key")
        assert share.downloaded is False

        shares = db.list_shares_for_recipient(bob.id)
        assert [s.id for s in shares] == [share.id]
        assert shares[0].sender.name == "Alice"
        assert shares[0].encryption_key == "portable-key"
        assert db.list_shares_for_recipient(alice.id) == []

    def test_list_newest_first(self, db: Database, alice: User, bob: User) -> None:
        """Shares are listed newest first."""
        pair_users(db, alice, bob)
        first = db.create_share("a" * 32, alice.id, bob.id, "first.txt", 1, "k1")
        second = db.create_share("b" * 32, alice.id, bob.id, "second.txt", 1, "k2")
        assert [s.id for s in db.list_shares_for_recipient(bob.id)] == [second.id, first.id]

    def test_mark_downloaded(self, db: Database, alice: User, bob: User) -> None:
        """The recipient can flag a share as downloaded."""
        pair_users(db, alice, bob)
        share = db.create_share("f" * 32, alice.id, bob.id, "a.txt", 10, "key")

        updated = db.mark_share_downloaded(share.id, bob.id)
        assert updated.downloaded is True
        assert updated.downloaded_at is not None
        assert as_utc(updated.downloaded_at) <= datetime.now(UTC)

    def test_mark_downloaded_twice_keeps_first_timestamp(self, db: Database, alice: User, bob: User) -> None:
        """A share is flagged once; later calls leave it unchanged."""
        pair_users(db, alice, bob)
        share = db.create_share("f" * 32, alice.id, bob.id, "a.txt", 10, "key")

        first = db.mark_share_downloaded(share.id, bob.id)
        second = db.mark_share_downloaded(share.id, bob.id)

        assert second.downloaded is True
        assert second.downloaded_at == first.downloaded_at

    def test_mark_downloaded_by_sender_rejected(self, db: Database, alice: User, bob: User) -> None:
        """Only the recipient can flag a share."""
        pair_users(db, alice, bob)
        share = db.create_share("f" * 32, alice.id, bob.id, "a.txt", 10, "key")
        with pytest.raises(UnauthorizedError):
            db.mark_share_downloaded(share.id, alice.id)
