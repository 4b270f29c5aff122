"""Accessors for raw Telethon TL objects used across :mod:`tg_keeper`.

Raw updates carry plain TL objects, so these helpers read the peer, date and
display fields directly instead of going through Telethon's custom wrappers.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime

from log_utils import get_logger

from . import PROGRESS_INTERVAL

log = get_logger().bind(module=__name__)

_PEER_ID_FIELDS = {
    "PeerUser": "user_id",
    "PeerChat": "chat_id",
    "PeerChannel": "channel_id",
}


def peer_chat_id(peer) -> int | None:
    """Return the raw (unmarked) id behind ``peer``."""

    field = _PEER_ID_FIELDS.get(type(peer).__name__)
    if field is None:
        return None
    return getattr(peer, field)


def message_chat_id(msg) -> int | None:
    """Return the chat id owning ``msg``; ``MessageEmpty`` may have none."""

    return peer_chat_id(getattr(msg, "peer_id", None))


def message_date(msg) -> int | None:
    """Return the message date as unix seconds."""

    date = getattr(msg, "date", None)
    if date is None:
        return None
    if isinstance(date, datetime):
        return int(date.timestamp())
    return int(date)


def chat_display_name(chat) -> str | None:
    """Return a human readable name for a user, group or channel."""

    if chat is None:
        return None
    title = getattr(chat, "title", None)
    if title:
        return title
    name = " ".join(
        p for p in [getattr(chat, "first_name", None), getattr(chat, "last_name", None)] if p
    )
    return name or getattr(chat, "username", None)


def describe_media(media) -> str:
    """Turn ``MessageMediaGeoLive`` into ``geo live``."""

    name = type(media).__name__
    if name.startswith("MessageMedia"):
        name = name[len("MessageMedia"):]
    return re.sub(r"(?<!^)(?=[A-Z])", " ", name).lower() or "media"


def describe_message(msg, chats: dict) -> str:
    """Return a one-line summary like ``Alice (#42): hello ...``."""

    chat_id = message_chat_id(msg)
    if chat_id is None:
        return "[Unknown chat]: <no message data>"

    kind = type(msg).__name__
    if kind == "Message":
        text = getattr(msg, "message", "") or ""
        media = getattr(msg, "media", None)
        if text.strip():
            body = text
        elif media is not None:
            body = f"<{describe_media(media)}>"
        else:
            body = "<empty message>"
    elif kind == "MessageService":
        body = f"<service: {type(getattr(msg, 'action', None)).__name__}>"
    else:
        body = "<empty>"

    name = chat_display_name(chats.get(chat_id)) or "<no name>"
    lines = body.strip().splitlines()
    first = lines[0].strip() if lines else "<no message>"
    if len(lines) > 1:
        first += " ..."
    return f"{name} (#{chat_id}): {first}"


def progress_logger(rel_path: str):
    """Return a progress callback that logs received bytes."""

    last = 0.0

    def cb(received: int, total: int) -> None:
        nonlocal last
        now = asyncio.get_running_loop().time()
        if now - last >= PROGRESS_INTERVAL:
            last = now
            log.info("Downloading", path=rel_path, received=received, total=total)

    return cb
