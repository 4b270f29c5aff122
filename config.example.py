"""Example configuration for tg-keeper.

Copy this file to ``config.py`` and replace the placeholder values with your
own credentials.  Secrets should never be committed to the repository.
"""

# Telethon client credentials.  ``TG_API_ID`` and ``TG_API_HASH`` identify the
# application (create them at https://my.telegram.org).  ``TG_PHONE`` is the
# account being archived; the login code is asked for on the first run only,
# afterwards the session file under ``DATA_DIR`` keeps you logged in.
TG_API_ID = 123456
TG_API_HASH = "0123456789abcdef0123456789abcdef"
TG_PHONE = "+10000000000"

# Cloud password, only needed when two-step verification is enabled.
TG_2FA_PASSWORD = None

# Optional fixed datacenter as ``(dc_id, "ip", port)``.  Leave as ``None`` to
# let Telethon pick the server stored in the session.
TG_DC = None
# TG_DC = (2, "149.154.167.50", 443)

# Where the event database, session file and downloaded media live.
DATA_DIR = "data"

# Default log verbosity. Use "DEBUG", "INFO" or "ERROR".
LOG_LEVEL = "INFO"
