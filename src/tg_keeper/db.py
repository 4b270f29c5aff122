"""SQLite persistence for the append-only event log."""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from log_utils import get_logger

from .helpers import message_chat_id, message_date

log = get_logger().bind(module=__name__)


class StorageError(Exception):
    """Database write or schema failure; never retried."""


class CorruptChatError(StorageError):
    """A persisted chat snapshot could not be decoded."""


class EventType(str, enum.Enum):
    NEW = "message_new"
    EDITED = "message_edited"
    DELETED = "message_deleted"


@dataclass(frozen=True)
class EventRecord:
    id: int
    chat_id: int | None
    message_id: int
    date: int | None
    type: EventType
    serialized: bytes | None
    media_rel_path: str | None


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        chat_id INTEGER,
        message_id INTEGER NOT NULL,
        date INTEGER,
        type TEXT NOT NULL,
        serialized BLOB,
        media_rel_path TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chats (
        chat_id INTEGER PRIMARY KEY,
        serialized BLOB NOT NULL
    )
    """,
]

SQL_INSERT_EVENT = (
    "INSERT INTO events (chat_id, message_id, date, type, serialized, media_rel_path) "
    "VALUES (?, ?, ?, ?, ?, ?)"
)


def open_database(path: str | Path) -> sqlite3.Connection:
    """Open the archive database, creating parent directories."""

    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    try:
        return sqlite3.connect(str(path))
    except sqlite3.Error as exc:
        raise StorageError(f"Failed to open database {path}") from exc


class EventStore:
    """Append-only log of message lifecycle events.

    Rows are only ever inserted.  Deletions of a batch of ids commit together
    so a partially recorded deletion is never visible.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def initialize(self) -> None:
        """Create the ``events`` and ``chats`` tables if they are missing."""

        try:
            with self.conn:
                for statement in SCHEMA:
                    self.conn.execute(statement)
        except sqlite3.Error as exc:
            raise StorageError("Failed to create tables") from exc
        log.debug("Schema ready")

    def record_new_or_edited(
        self, msg, is_edited: bool, media_rel_path: str | None = None
    ) -> None:
        """Store the serialized ``msg`` as a new or edited event."""

        chat_id = message_chat_id(msg)
        if chat_id is None:
            raise StorageError(f"Message {msg.id} has no chat id")
        event_type = EventType.EDITED if is_edited else EventType.NEW
        try:
            with self.conn:
                self.conn.execute(
                    SQL_INSERT_EVENT,
                    (
                        chat_id,
                        msg.id,
                        message_date(msg),
                        event_type.value,
                        bytes(msg),
                        media_rel_path,
                    ),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save message {msg.id}") from exc
        log.debug("Recorded event", type=event_type.value, chat_id=chat_id, id=msg.id)

    def record_deleted(self, message_ids, chat_id: int | None = None) -> None:
        """Store one deletion event per id in a single transaction.

        Telegram only names the owning chat for channel deletions, so
        ``chat_id`` stays ``None`` for private chats and small groups.
        """

        ids = list(message_ids)
        try:
            with self.conn:
                for message_id in ids:
                    self.conn.execute(
                        SQL_INSERT_EVENT,
                        (chat_id, message_id, None, EventType.DELETED.value, None, None),
                    )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save deletion of {ids}") from exc
        log.debug("Recorded deletions", chat_id=chat_id, count=len(ids))

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def recent(self, limit: int) -> list[EventRecord]:
        """Return the last ``limit`` events in arrival order."""

        rows = self.conn.execute(
            "SELECT id, chat_id, message_id, date, type, serialized, media_rel_path "
            "FROM events ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            EventRecord(r[0], r[1], r[2], r[3], EventType(r[4]), r[5], r[6])
            for r in reversed(rows)
        ]
