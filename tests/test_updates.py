import asyncio
import sqlite3

import pytest

from keeper_test_utils import (
    Channel,
    FakeClock,
    FakeDownloader,
    MessageActionChatJoinedByLink,
    MessageEmpty,
    MessageMediaGeoLive,
    MessageMediaPhoto,
    MessageService,
    PeerChannel,
    PeerUser,
    Photo,
    SessionSaves,
    UpdateDeleteChannelMessages,
    UpdateDeleteMessages,
    UpdateEditMessage,
    UpdateNewChannelMessage,
    UpdateNewMessage,
    UpdateUserTyping,
    User,
    drain,
    make_message,
)

from tg_keeper.chats import ChatCache
from tg_keeper.db import EventStore, open_database
from tg_keeper.helpers import describe_message
from tg_keeper.media import MediaDispatcher
from tg_keeper.updates import (
    SessionCheckpoint,
    UpdateLoop,
    UpdateStream,
    telethon_session_saver,
)


def _loop(tmp_path, stream=None, checkpoint=None, download=None):
    conn = open_database(tmp_path / "tg-keeper.sqlite")
    store = EventStore(conn)
    store.initialize()
    return UpdateLoop(
        stream or UpdateStream(),
        ChatCache(conn),
        store,
        MediaDispatcher(download or FakeDownloader(), tmp_path / "media"),
        checkpoint or SessionCheckpoint(SessionSaves()),
        asyncio.Event(),
    )


def _events(loop):
    return loop.events.conn.execute(
        "SELECT chat_id, message_id, type, media_rel_path FROM events ORDER BY id"
    ).fetchall()


def test_new_photo_message_end_to_end(tmp_path):
    async def run():
        download = FakeDownloader()
        loop = _loop(tmp_path, download=download)
        photo = Photo(id=1)
        msg = make_message(1001, 42, media=MessageMediaPhoto(photo=photo))

        loop.handle(UpdateNewMessage(message=msg), {42: User(id=42, first_name="Alice")})

        assert _events(loop) == [(42, 1001, "message_new", "chat_42/1001.jpg")]
        assert loop.media.pending == 1
        await drain(loop.media)
        assert download.calls == [(photo, tmp_path / "media" / "chat_42" / "1001.jpg", None)]

    asyncio.run(run())


def test_edit_and_delete_updates(tmp_path):
    async def run():
        loop = _loop(tmp_path)
        loop.handle(UpdateEditMessage(message=make_message(5, 42, text="fixed")), {})
        loop.handle(UpdateDeleteMessages(messages=[5, 6]), {})
        loop.handle(UpdateDeleteChannelMessages(channel_id=900, messages=[1]), {})

        assert _events(loop) == [
            (42, 5, "message_edited", None),
            (None, 5, "message_deleted", None),
            (None, 6, "message_deleted", None),
            (900, 1, "message_deleted", None),
        ]

    asyncio.run(run())


def test_channel_messages_are_recorded(tmp_path):
    async def run():
        loop = _loop(tmp_path)
        msg = make_message(3, 900, text="post", peer=PeerChannel)
        loop.handle(UpdateNewChannelMessage(message=msg), {900: Channel(id=900, title="News")})
        assert _events(loop) == [(900, 3, "message_new", None)]

    asyncio.run(run())


def test_unknown_updates_are_ignored_but_chats_merged(tmp_path):
    async def run():
        loop = _loop(tmp_path)
        loop.handle(UpdateUserTyping(user_id=42), {42: User(id=42, first_name="Alice")})
        assert _events(loop) == []
        rows = loop.chats.conn.execute("SELECT chat_id FROM chats").fetchall()
        assert rows == [(42,)]

    asyncio.run(run())


def test_run_processes_updates_in_arrival_order(tmp_path):
    async def run():
        stream = UpdateStream()
        loop = _loop(tmp_path, stream=stream)
        for mid in (3, 1, 2):
            await stream.push(UpdateNewMessage(message=make_message(mid, 42, text="x")))

        task = asyncio.create_task(loop.run())
        while len(_events(loop)) < 3:
            await asyncio.sleep(0)
        loop.interrupted.set()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert [e[1] for e in _events(loop)] == [3, 1, 2]

    asyncio.run(run())


def test_stream_queues_entities_attached_by_telethon():
    async def run():
        stream = UpdateStream()
        update = UpdateUserTyping(user_id=1)
        update._entities = {1: User(id=1)}
        await stream.push(update)
        await stream.push(UpdateUserTyping(user_id=2))

        first = await stream.next()
        second = await stream.next()
        assert first == (update, update._entities)
        assert second[1] == {}

    asyncio.run(run())


def test_checkpoint_saves_without_updates(tmp_path):
    async def run():
        saves = SessionSaves()
        checkpoint = SessionCheckpoint(saves, interval=0.01)
        loop = _loop(tmp_path, checkpoint=checkpoint)

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.1)
        loop.interrupted.set()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert len(saves) >= 2

    asyncio.run(run())


def test_checkpoint_interval():
    clock = FakeClock(100.0)
    saves = SessionSaves(clock)
    checkpoint = SessionCheckpoint(saves, interval=30, clock=clock)

    assert checkpoint.remaining() == 30
    clock.now = 120.0
    assert not checkpoint.due()
    clock.now = 130.0
    assert checkpoint.due()
    asyncio.run(checkpoint.save())
    assert saves == [130.0]
    assert checkpoint.remaining() == 30


def test_session_saver_writes_update_state_before_commit():
    calls = []

    class Session:
        def save(self):
            calls.append("commit")

    class Client:
        session = Session()

        async def _save_states_and_entities(self):
            calls.append("states")

    asyncio.run(telethon_session_saver(Client())())

    assert calls == ["states", "commit"]


def test_checkpoint_persists_telethon_update_state(tmp_path):
    pytest.importorskip("telethon")
    from telethon import TelegramClient
    from telethon._updates import SessionState

    session_file = tmp_path / "keeper.session"

    async def run():
        client = TelegramClient(str(session_file), 1, "hash")
        client._message_box.load(
            SessionState(0, 0, False, 500, 7, 1714521600, 3, 0), []
        )
        try:
            await SessionCheckpoint(telethon_session_saver(client)).save()
        finally:
            client.session.close()

    asyncio.run(run())

    conn = sqlite3.connect(session_file)
    try:
        rows = conn.execute("SELECT id, pts, qts, seq FROM update_state").fetchall()
    finally:
        conn.close()
    assert rows == [(0, 500, 7, 3)]


def test_describe_message():
    chats = {42: User(id=42, first_name="Alice", last_name="Smith"), 900: Channel(id=900, title="News")}

    assert describe_message(make_message(1, 42, text="hello\nworld"), chats) == "Alice Smith (#42): hello ..."
    assert describe_message(make_message(1, 900, text="  hi  ", peer=PeerChannel), chats) == "News (#900): hi"
    assert describe_message(make_message(1, 7, media=MessageMediaGeoLive(geo=None)), chats) == "<no name> (#7): <geo live>"
    assert describe_message(make_message(1, 42), chats) == "Alice Smith (#42): <empty message>"

    service = MessageService(id=2, peer_id=PeerUser(user_id=42), action=MessageActionChatJoinedByLink())
    assert describe_message(service, chats) == "Alice Smith (#42): <service: MessageActionChatJoinedByLink>"
    assert describe_message(MessageEmpty(id=3, peer_id=PeerUser(user_id=42)), chats) == "Alice Smith (#42): <empty>"
    assert describe_message(MessageEmpty(id=3, peer_id=None), chats) == "[Unknown chat]: <no message data>"
