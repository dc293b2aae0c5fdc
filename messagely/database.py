"""SQLite-backed persistence for users and messages."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import ConflictError, StorageError, ValidationError
from .models import (
    Message,
    MessageDetail,
    MessageReceipt,
    ReceivedMessage,
    SentMessage,
    User,
    UserSummary,
)

logger = logging.getLogger("messagely.database")

SQLITE_MAX_INTEGER = 2**63 - 1


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _translate_integrity_error(exc: sqlite3.IntegrityError) -> Exception:
    text = str(exc).upper()
    if "UNIQUE" in text or "PRIMARY KEY" in text:
        return ConflictError("Username taken. Please pick another!")
    if "FOREIGN KEY" in text:
        return ValidationError("Invalid to_username")
    return ValidationError("Record violates a storage constraint")


class Database:
    """Simple wrapper around SQLite for persisting users and messages."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, committing on success and mapping SQLite failures."""

        conn = self._connect()
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise _translate_integrity_error(exc) from exc
        except sqlite3.DatabaseError as exc:
            logger.exception("Unexpected database failure against %s", self._path)
            raise StorageError() from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._transaction() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    username TEXT PRIMARY KEY,
                    password TEXT NOT NULL,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    phone TEXT NOT NULL,
                    join_at TEXT NOT NULL,
                    last_login_at TEXT
                );

                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    from_username TEXT NOT NULL REFERENCES users(username),
                    to_username TEXT NOT NULL REFERENCES users(username),
                    body TEXT NOT NULL CHECK (length(body) > 0),
                    sent_at TEXT NOT NULL,
                    read_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_messages_from_username ON messages(from_username);
                CREATE INDEX IF NOT EXISTS idx_messages_to_username ON messages(to_username);
                """
            )

    # ------------------------------------------------------------------
    # Credential store
    # ------------------------------------------------------------------
    def create_user(
        self,
        username: str,
        password_hash: str,
        *,
        first_name: str,
        last_name: str,
        phone: str,
    ) -> User:
        """Insert a user whose password has already been hashed."""

        now = _current_timestamp()
        serialized = _serialize_datetime(now)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (username, password, first_name, last_name, phone, join_at, last_login_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (username, password_hash, first_name, last_name, phone, serialized, serialized),
            )

        return User(
            username=username,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            joined_at=now,
            last_login_at=now,
        )

    def get_user(self, username: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT username, first_name, last_name, phone, join_at, last_login_at
                  FROM users
                 WHERE username = ?
                """,
                (username,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_password_hash(self, username: str) -> Optional[str]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT password FROM users WHERE username = ?",
                (username,),
            ).fetchone()
        if row is None:
            return None
        return str(row["password"])

    def update_login_timestamp(self, username: str) -> bool:
        """Set ``last_login_at`` to now. Returns ``False`` for unknown users."""

        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE users SET last_login_at = ? WHERE username = ?",
                (_serialize_datetime(_current_timestamp()), username),
            )
            return cursor.rowcount > 0

    def list_users(self) -> List[UserSummary]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT username, first_name, last_name, phone FROM users ORDER BY username"
            ).fetchall()
        return [self._row_to_summary(row) for row in rows]

    # ------------------------------------------------------------------
    # Message store
    # ------------------------------------------------------------------
    def create_message(self, from_username: str, to_username: str, body: str) -> Message:
        sent_at = _current_timestamp()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO messages (from_username, to_username, body, sent_at)
                VALUES (?, ?, ?, ?)
                """,
                (from_username, to_username, body, _serialize_datetime(sent_at)),
            )
            message_id = int(cursor.lastrowid)

        return Message(
            id=message_id,
            from_username=from_username,
            to_username=to_username,
            body=body,
            sent_at=sent_at,
            read_at=None,
        )

    def get_message(self, message_id: int) -> Optional[MessageDetail]:
        """Return the message joined with sender and recipient profiles."""

        if not 0 < message_id <= SQLITE_MAX_INTEGER:
            return None
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT m.id,
                       m.body,
                       m.sent_at,
                       m.read_at,
                       f.username AS from_username,
                       f.first_name AS from_first_name,
                       f.last_name AS from_last_name,
                       f.phone AS from_phone,
                       t.username AS to_username,
                       t.first_name AS to_first_name,
                       t.last_name AS to_last_name,
                       t.phone AS to_phone
                  FROM messages AS m
                  JOIN users AS f ON m.from_username = f.username
                  JOIN users AS t ON m.to_username = t.username
                 WHERE m.id = ?
                """,
                (message_id,),
            ).fetchone()
        if row is None:
            return None

        return MessageDetail(
            id=int(row["id"]),
            body=str(row["body"]),
            sent_at=_parse_datetime(row["sent_at"]),
            read_at=_parse_datetime(row["read_at"]),
            from_user=self._row_to_summary(row, prefix="from_"),
            to_user=self._row_to_summary(row, prefix="to_"),
        )

    def mark_message_read(self, message_id: int) -> Optional[MessageReceipt]:
        if not 0 < message_id <= SQLITE_MAX_INTEGER:
            return None
        read_at = _current_timestamp()
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE messages SET read_at = ? WHERE id = ?",
                (_serialize_datetime(read_at), message_id),
            )
            if cursor.rowcount == 0:
                return None
        return MessageReceipt(id=message_id, read_at=read_at)

    def messages_from(self, username: str) -> List[SentMessage]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT m.id, m.body, m.sent_at, m.read_at,
                       t.username, t.first_name, t.last_name, t.phone
                  FROM messages AS m
                  JOIN users AS t ON m.to_username = t.username
                 WHERE m.from_username = ?
                 ORDER BY m.id
                """,
                (username,),
            ).fetchall()
        return [
            SentMessage(
                id=int(row["id"]),
                body=str(row["body"]),
                sent_at=_parse_datetime(row["sent_at"]),
                read_at=_parse_datetime(row["read_at"]),
                to_user=self._row_to_summary(row),
            )
            for row in rows
        ]

    def messages_to(self, username: str) -> List[ReceivedMessage]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT m.id, m.body, m.sent_at, m.read_at,
                       f.username, f.first_name, f.last_name, f.phone
                  FROM messages AS m
                  JOIN users AS f ON m.from_username = f.username
                 WHERE m.to_username = ?
                 ORDER BY m.id
                """,
                (username,),
            ).fetchall()
        return [
            ReceivedMessage(
                id=int(row["id"]),
                body=str(row["body"]),
                sent_at=_parse_datetime(row["sent_at"]),
                read_at=_parse_datetime(row["read_at"]),
                from_user=self._row_to_summary(row),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            username=str(row["username"]),
            first_name=str(row["first_name"]),
            last_name=str(row["last_name"]),
            phone=str(row["phone"]),
            joined_at=_parse_datetime(str(row["join_at"])),
            last_login_at=_parse_datetime(row["last_login_at"]),
        )

    def _row_to_summary(self, row: sqlite3.Row, *, prefix: str = "") -> UserSummary:
        return UserSummary(
            username=str(row[f"{prefix}username"]),
            first_name=str(row[f"{prefix}first_name"]),
            last_name=str(row[f"{prefix}last_name"]),
            phone=str(row[f"{prefix}phone"]),
        )


__all__ = ["Database"]
