"""The single consumer of the raw update stream."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from log_utils import get_logger

from . import CHECKPOINT_INTERVAL, IDLE_WARN_AFTER
from .chats import ChatCache
from .db import EventStore
from .helpers import describe_message
from .media import MediaDispatcher

log = get_logger().bind(module=__name__)

NEW_MESSAGE = {"UpdateNewMessage", "UpdateNewChannelMessage"}
EDITED_MESSAGE = {"UpdateEditMessage", "UpdateEditChannelMessage"}


class UpdateStream:
    """Queue of raw updates fed by a Telethon ``events.Raw`` handler.

    Telethon attaches the users and chats that came with an update as
    ``update._entities``; they are queued alongside the update.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()

    async def push(self, update) -> None:
        entities = getattr(update, "_entities", None) or {}
        self._queue.put_nowait((update, entities))

    async def next(self):
        """Wait for the next ``(update, entities)`` pair."""
        return await self._queue.get()


def telethon_session_saver(client) -> Callable[[], Awaitable[None]]:
    """Return a coroutine function that persists the whole client session.

    ``session.save()`` alone only commits the SQLite file; the update state
    (pts, qts, seq and per-channel pts) and the entity cache are written into
    the session by ``_save_states_and_entities``, which Telethon otherwise
    runs on disconnect only.  Without it a crash replays history on restart.
    """

    async def save() -> None:
        await client._save_states_and_entities()
        client.session.save()

    return save


class SessionCheckpoint:
    """Save the session every ``interval`` seconds and on demand."""

    def __init__(
        self,
        save: Callable[[], Awaitable[None]],
        interval: float = CHECKPOINT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._save = save
        self.interval = interval
        self.clock = clock
        self.last = clock()

    def remaining(self) -> float:
        return max(0.0, self.interval - (self.clock() - self.last))

    def due(self) -> bool:
        return self.remaining() <= 0

    async def save(self) -> None:
        await self._save()
        self.last = self.clock()
        log.debug("Saved session")


class UpdateLoop:
    """Pull updates one at a time and record them in arrival order.

    The wait for the next update is the only await; everything else runs
    synchronously so two updates are never processed concurrently.
    """

    def __init__(
        self,
        stream: UpdateStream,
        chats: ChatCache,
        events: EventStore,
        media: MediaDispatcher,
        checkpoint: SessionCheckpoint,
        interrupted: asyncio.Event,
    ) -> None:
        self.stream = stream
        self.chats = chats
        self.events = events
        self.media = media
        self.checkpoint = checkpoint
        self.interrupted = interrupted
        self.last_update = checkpoint.clock()

    async def run(self) -> None:
        log.info("Watching for updates")
        while not self.interrupted.is_set():
            try:
                update, entities = await asyncio.wait_for(
                    self.stream.next(), timeout=self.checkpoint.remaining()
                )
            except asyncio.TimeoutError:
                pass
            else:
                self.last_update = self.checkpoint.clock()
                self.handle(update, entities)

            if self.checkpoint.due():
                await self.checkpoint.save()
                self._check_idle()

    def handle(self, update, entities: dict) -> None:
        """Merge the chats that came with ``update`` and record it."""

        chats = self.chats.merge(entities.values())
        kind = type(update).__name__
        if kind in NEW_MESSAGE:
            log.info("New message", summary=describe_message(update.message, chats))
            self._record(update.message, is_edited=False)
        elif kind in EDITED_MESSAGE:
            log.info("Message edited", summary=describe_message(update.message, chats))
            self._record(update.message, is_edited=True)
        elif kind == "UpdateDeleteMessages":
            log.info("Messages deleted", ids=list(update.messages))
            self.events.record_deleted(update.messages)
        elif kind == "UpdateDeleteChannelMessages":
            log.info(
                "Messages deleted", chat_id=update.channel_id, ids=list(update.messages)
            )
            self.events.record_deleted(update.messages, chat_id=update.channel_id)
        else:
            log.debug("Unhandled raw update", update=kind)

    def _record(self, msg, is_edited: bool) -> None:
        # Edits fetch the media again; the file is overwritten in place.
        paths = self.media.dispatch(msg)
        self.events.record_new_or_edited(
            msg, is_edited, paths.media_rel_path if paths else None
        )

    def _check_idle(self) -> None:
        idle = self.checkpoint.clock() - self.last_update
        if idle >= IDLE_WARN_AFTER:
            log.warning("No updates received recently", idle=int(idle))
        else:
            log.debug("Heartbeat", idle=int(idle))
