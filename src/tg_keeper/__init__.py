"""Archive a Telegram account's live update stream.

New, edited and deleted messages are appended to an SQLite event log, chat
metadata is cached in the same database and attached media is fetched to
``<data>/media/chat_<chat_id>/``.
"""

from __future__ import annotations

from pathlib import Path

__version__ = "0.1.0"

# Layout under the data root:
#   <data>/tg-keeper.sqlite          events + chats tables
#   <data>/tg-keeper.session         Telethon session (update state, auth key)
#   <data>/media/chat_<id>/<msg>.<ext>
DATA_DIR = Path("data")
MEDIA_SUBDIR = "media"
DB_FILE = "tg-keeper.sqlite"
SESSION_FILE = "tg-keeper.session"

# Seconds between session checkpoints while listening.
CHECKPOINT_INTERVAL = 30
# Seconds between progress messages for a single download.
PROGRESS_INTERVAL = 5
# Telethon waits this long between reconnection attempts, forever.
RECONNECT_DELAY = 5 * 60
# Warn when no update arrived for this long.
IDLE_WARN_AFTER = 300
