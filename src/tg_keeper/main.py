"""Command line entry point: log in and archive updates until interrupted."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

from telethon import TelegramClient, events

from config_utils import load_config, require
from log_utils import get_logger, install_excepthook

from . import (
    DATA_DIR,
    DB_FILE,
    MEDIA_SUBDIR,
    RECONNECT_DELAY,
    SESSION_FILE,
    __version__,
)
from .chats import ChatCache
from .db import EventStore, open_database
from .helpers import chat_display_name
from .media import MediaDispatcher, telethon_downloader
from .shutdown import Supervisor
from .updates import (
    SessionCheckpoint,
    UpdateLoop,
    UpdateStream,
    telethon_session_saver,
)

log = get_logger().bind(script=__file__)
install_excepthook(log)

REQUIRED_SETTINGS = ("TG_API_ID", "TG_API_HASH", "TG_PHONE")


def _format_event(event) -> str:
    date = (
        datetime.fromtimestamp(event.date, timezone.utc).isoformat()
        if event.date is not None
        else "-"
    )
    chat = event.chat_id if event.chat_id is not None else "-"
    media = event.media_rel_path or ""
    return f"{event.id}\t{event.type.value}\t{chat}\t{event.message_id}\t{date}\t{media}"


def build_client(cfg, session_path: Path) -> TelegramClient:
    client = TelegramClient(
        str(session_path),
        require(cfg, "TG_API_ID"),
        require(cfg, "TG_API_HASH"),
        sequential_updates=True,
        catch_up=True,
        connection_retries=-1,
        retry_delay=RECONNECT_DELAY,
        app_version=__version__,
    )
    dc = getattr(cfg, "TG_DC", None)
    if dc:
        dc_id, address, port = dc
        client.session.set_dc(dc_id, address, port)
        log.info("Using fixed datacenter", dc=dc_id, address=address, port=port)
    return client


async def main(argv: list[str] | None = None) -> int:
    """Run the archiver CLI and return the exit status."""

    parser = argparse.ArgumentParser(description="Archive Telegram updates")
    parser.add_argument("--data-dir", help="override DATA_DIR from config.py")
    parser.add_argument(
        "--tail", type=int, metavar="N", help="print the last N events and exit"
    )
    args = parser.parse_args(argv)

    log.info("Starting tg-keeper", version=__version__)
    cfg = load_config(required=() if args.tail is not None else REQUIRED_SETTINGS)
    data_dir = Path(args.data_dir or getattr(cfg, "DATA_DIR", None) or DATA_DIR)
    media_dir = data_dir / MEDIA_SUBDIR
    media_dir.mkdir(parents=True, exist_ok=True)

    conn = open_database(data_dir / DB_FILE)
    try:
        store = EventStore(conn)
        store.initialize()
        if args.tail is not None:
            for event in store.recent(args.tail):
                print(_format_event(event))
            return 0
        log.info("Opened event log", events=store.count())

        chats = ChatCache(conn)
        chats.load()

        client = build_client(cfg, data_dir / SESSION_FILE)
        await client.start(
            phone=require(cfg, "TG_PHONE"),
            password=getattr(cfg, "TG_2FA_PASSWORD", None),
        )
        try:
            me = await client.get_me()
            log.info("Logged in", name=chat_display_name(me) or "<unnamed>")
            save_session = telethon_session_saver(client)
            await save_session()

            stream = UpdateStream()
            client.add_event_handler(stream.push, events.Raw)
            checkpoint = SessionCheckpoint(save_session)
            interrupted = asyncio.Event()
            update_loop = UpdateLoop(
                stream,
                chats,
                store,
                MediaDispatcher(telethon_downloader(client), media_dir),
                checkpoint,
                interrupted,
            )
            supervisor = Supervisor(update_loop, checkpoint, interrupted)
            supervisor.install_signal_handlers()
            return await supervisor.run()
        finally:
            await client.disconnect()
    finally:
        conn.close()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
