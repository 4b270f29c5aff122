"""In-memory chat metadata cache backed by the ``chats`` table."""

from __future__ import annotations

import enum
import sqlite3
from typing import Callable, Iterable

from log_utils import get_logger

from .db import CorruptChatError, StorageError

log = get_logger().bind(module=__name__)


class ChatKind(enum.IntEnum):
    USER = 0
    GROUP = 1
    CHANNEL = 2


_KIND_BY_TYPE = {
    "User": ChatKind.USER,
    "UserEmpty": ChatKind.USER,
    "Chat": ChatKind.GROUP,
    "ChatEmpty": ChatKind.GROUP,
    "ChatForbidden": ChatKind.GROUP,
    "Channel": ChatKind.CHANNEL,
    "ChannelForbidden": ChatKind.CHANNEL,
}


def chat_kind(chat) -> ChatKind:
    try:
        return _KIND_BY_TYPE[type(chat).__name__]
    except KeyError:
        raise ValueError(f"Not a chat: {type(chat).__name__}") from None


def serialize_chat(chat) -> bytes:
    """Return the kind byte followed by the TL serialization of ``chat``."""

    return bytes([chat_kind(chat)]) + bytes(chat)


def deserialize_chat(data: bytes):
    """Decode bytes written by :func:`serialize_chat`."""

    if not data:
        raise CorruptChatError("Empty chat snapshot")
    try:
        kind = ChatKind(data[0])
    except ValueError:
        raise CorruptChatError(f"Unknown chat kind byte {data[0]}") from None

    from telethon.extensions import BinaryReader

    try:
        chat = BinaryReader(data[1:]).tgread_object()
    except Exception as exc:
        raise CorruptChatError(f"Failed to decode {kind.name} snapshot") from exc
    if _KIND_BY_TYPE.get(type(chat).__name__) is not kind:
        raise CorruptChatError(
            f"Snapshot tagged {kind.name} decoded to {type(chat).__name__}"
        )
    return chat


class ChatCache:
    """Latest known snapshot of every chat seen in the update stream.

    A chat is written back only when its serialized bytes change, so the
    same entity repeated on every update costs one comparison.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        decode: Callable[[bytes], object] = deserialize_chat,
    ) -> None:
        self.conn = conn
        self.decode = decode
        self._chats: dict[int, tuple[object, bytes]] = {}

    def __len__(self) -> int:
        return len(self._chats)

    def load(self) -> None:
        """Read every persisted chat; any undecodable row is fatal."""

        try:
            rows = self.conn.execute("SELECT chat_id, serialized FROM chats").fetchall()
        except sqlite3.Error as exc:
            raise StorageError("Failed to load chats") from exc
        for chat_id, serialized in rows:
            serialized = bytes(serialized)
            try:
                chat = self.decode(serialized)
            except CorruptChatError:
                log.error("Corrupt chat snapshot", chat_id=chat_id)
                raise
            self._chats[chat_id] = (chat, serialized)
        log.info("Loaded chats from database", count=len(self._chats))

    def merge(self, chats: Iterable) -> dict[int, object]:
        """Store changed ``chats`` and return the full id -> chat mapping."""

        updated = 0
        for chat in chats:
            chat_id = chat.id
            serialized = serialize_chat(chat)
            cached = self._chats.get(chat_id)
            if cached is not None and cached[1] == serialized:
                continue
            log.debug("Updating chat", chat_id=chat_id)
            self._chats[chat_id] = (chat, serialized)
            try:
                with self.conn:
                    self.conn.execute(
                        "INSERT OR REPLACE INTO chats (chat_id, serialized) VALUES (?, ?)",
                        (chat_id, serialized),
                    )
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to update chat {chat_id}") from exc
            updated += 1
        if updated:
            log.info("Updated chats in cache", count=updated)
        return {chat_id: chat for chat_id, (chat, _) in self._chats.items()}
