"""SQLite relational store for credits, profiles, and emoji records.

Three small repositories share one :class:`Database` handle:

- :class:`CreditLedger` — the credit check-and-decrement guard, plus balance
  lookup and the optional refund.
- :class:`ProfileRepository` — idempotent profile creation on first sign-in.
- :class:`EmojiRepository` — insert, fetch, list, and like-increment for
  generated emojis.

Every operation opens its own connection and closes it when done, so the
handle can be shared across threads and request handlers without any
in-process locking.  Writes that must be atomic run inside
``BEGIN IMMEDIATE`` transactions, which take SQLite's write lock up front:
two connections racing on the same profile row serialize at the database,
and the second one observes the first one's committed balance.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from emojiforge.core.errors import (
    EmojiNotFound,
    InsufficientCredit,
    RecordWriteFailed,
    UserNotFound,
)

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _returned_row(cursor: sqlite3.Cursor) -> sqlite3.Row | None:
    """Return the single row of an ``UPDATE ... RETURNING`` statement.

    The statement is stepped to completion so the enclosing transaction can
    commit.
    """
    rows = cursor.fetchall()
    return rows[0] if rows else None


@dataclass(frozen=True)
class CreditDecrement:
    """Balance observed before and after a successful decrement."""

    before: int
    after: int


@dataclass(frozen=True)
class EmojiRecord:
    """A persisted, completed generation."""

    id: str
    prompt: str
    image_url: str
    storage_path: str
    creator_user_id: str
    likes: int
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> EmojiRecord:
        return cls(
            id=row["id"],
            prompt=row["prompt"],
            image_url=row["image_url"],
            storage_path=row["storage_path"],
            creator_user_id=row["creator_user_id"],
            likes=row["likes"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return asdict(self)


class Database:
    """Connection factory and schema owner for the SQLite store."""

    def __init__(self, db_path: Path, busy_timeout: float = 30.0):
        """Initialize the database and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds a connection waits for a locked database
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized database at {self.db_path}")

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield an autocommit connection that is closed on exit."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a write-locked transaction.

        The transaction commits when the block exits normally and rolls back
        if it raises.
        """
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    user_id TEXT PRIMARY KEY,
                    credits INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS emojis (
                    id TEXT PRIMARY KEY,
                    prompt TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    storage_path TEXT NOT NULL,
                    creator_user_id TEXT NOT NULL,
                    likes INTEGER NOT NULL DEFAULT 0 CHECK (likes >= 0),
                    created_at TEXT NOT NULL
                )
                """)

            # Listing is newest first, optionally scoped to one creator.
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_emojis_created_at
                ON emojis(created_at DESC)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_emojis_creator
                ON emojis(creator_user_id, created_at DESC)
                """)


class CreditLedger:
    """Per-user credit balances.

    The decrement is the only path that spends credits.  It is a single
    conditional ``UPDATE ... WHERE credits > 0`` executed under the write
    lock, so a balance can never be driven below zero no matter how many
    requests for the same user arrive at once.
    """

    def __init__(self, db: Database):
        self.db = db

    def decrement(self, user_id: str) -> CreditDecrement:
        """Spend exactly one credit.

        Args:
            user_id: Authenticated user identity

        Returns:
            The balance before and after the decrement

        Raises:
            UserNotFound: No profile exists for ``user_id``
            InsufficientCredit: The balance is zero; nothing was written
        """
        with self.db.transaction() as conn:
            row = _returned_row(
                conn.execute(
                    """
                    UPDATE profiles
                    SET credits = credits - 1, updated_at = ?
                    WHERE user_id = ? AND credits > 0
                    RETURNING credits
                    """,
                    (_utcnow(), user_id),
                )
            )

            if row is None:
                # Still under the write lock, so this read agrees with the
                # update that just matched nothing.
                existing = conn.execute(
                    "SELECT credits FROM profiles WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
                if existing is None:
                    raise UserNotFound(user_id)
                raise InsufficientCredit(user_id, existing["credits"])

        after = row["credits"]
        logger.info(f"Decremented credits for {user_id}: {after + 1} -> {after}")
        return CreditDecrement(before=after + 1, after=after)

    def refund(self, user_id: str) -> int:
        """Return one credit to the user and report the new balance."""
        with self.db.transaction() as conn:
            row = _returned_row(
                conn.execute(
                    """
                    UPDATE profiles
                    SET credits = credits + 1, updated_at = ?
                    WHERE user_id = ?
                    RETURNING credits
                    """,
                    (_utcnow(), user_id),
                )
            )
            if row is None:
                raise UserNotFound(user_id)

        logger.info(f"Refunded one credit to {user_id}, balance now {row['credits']}")
        return row["credits"]

    def balance(self, user_id: str) -> int:
        """Return the current balance.

        Raises:
            UserNotFound: No profile exists for ``user_id``
        """
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT credits FROM profiles WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            raise UserNotFound(user_id)
        return row["credits"]


class ProfileRepository:
    """Profiles keyed by the auth provider's user id."""

    def __init__(self, db: Database):
        self.db = db

    def ensure(self, user_id: str, credits: int) -> bool:
        """Create a profile with a starting balance unless one exists.

        Args:
            user_id: Authenticated user identity
            credits: Starting balance for a new profile

        Returns:
            True if a profile was created, False if it already existed
        """
        now = _utcnow()
        with self.db.connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO profiles (user_id, credits, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, credits, now, now),
            )
            was_inserted = cursor.rowcount > 0

        if was_inserted:
            logger.info(f"Created profile for {user_id} with {credits} credits")
        else:
            logger.debug(f"Profile already exists: {user_id}")
        return was_inserted


class EmojiRepository:
    """Generated emoji records."""

    _ORDER_BY = {
        "recent": "created_at DESC, rowid DESC",
        "likes": "likes DESC, created_at DESC, rowid DESC",
    }

    def __init__(self, db: Database):
        self.db = db

    def create(
        self,
        *,
        prompt: str,
        image_url: str,
        storage_path: str,
        creator_user_id: str,
    ) -> EmojiRecord:
        """Insert a new record with zero likes.

        Raises:
            RecordWriteFailed: The insert did not succeed
        """
        record = EmojiRecord(
            id=str(uuid.uuid4()),
            prompt=prompt,
            image_url=image_url,
            storage_path=storage_path,
            creator_user_id=creator_user_id,
            likes=0,
            created_at=_utcnow(),
        )
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO emojis
                        (id, prompt, image_url, storage_path, creator_user_id, likes, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.prompt,
                        record.image_url,
                        record.storage_path,
                        record.creator_user_id,
                        record.likes,
                        record.created_at,
                    ),
                )
        except sqlite3.Error as e:
            logger.error(f"Error inserting emoji {record.id}: {e}")
            raise RecordWriteFailed(f"Failed to save emoji: {e}") from e

        logger.info(f"Saved emoji {record.id} for {creator_user_id}")
        return record

    def get(self, emoji_id: str) -> EmojiRecord:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM emojis WHERE id = ?", (emoji_id,)).fetchone()
        if row is None:
            raise EmojiNotFound(emoji_id)
        return EmojiRecord.from_row(row)

    def count(self, creator_user_id: str | None = None) -> int:
        with self.db.connect() as conn:
            if creator_user_id:
                row = conn.execute(
                    "SELECT COUNT(*) FROM emojis WHERE creator_user_id = ?",
                    (creator_user_id,),
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM emojis").fetchone()
        return row[0]

    def list_emojis(
        self,
        *,
        limit: int,
        offset: int = 0,
        creator_user_id: str | None = None,
        sort: str = "recent",
    ) -> list[EmojiRecord]:
        """Return one page of records.

        Args:
            limit: Maximum number of records
            offset: Number of records to skip
            creator_user_id: Only return records by this creator
            sort: ``"recent"`` (newest first) or ``"likes"`` (most liked first)
        """
        order_by = self._ORDER_BY[sort]
        where = "WHERE creator_user_id = ?" if creator_user_id else ""
        params: tuple = (creator_user_id,) if creator_user_id else ()

        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM emojis {where} ORDER BY {order_by} LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        return [EmojiRecord.from_row(row) for row in rows]

    def increment_likes(self, emoji_id: str) -> int:
        """Add one like against the persisted count and return the new total.

        Raises:
            EmojiNotFound: No record with ``emoji_id`` exists
        """
        with self.db.transaction() as conn:
            row = _returned_row(
                conn.execute(
                    "UPDATE emojis SET likes = likes + 1 WHERE id = ? RETURNING likes",
                    (emoji_id,),
                )
            )
            if row is None:
                raise EmojiNotFound(emoji_id)
        return row["likes"]
