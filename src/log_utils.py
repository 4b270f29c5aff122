"""Structured logging shared by every ``tg_keeper`` module."""

import logging
import os
import sys
from importlib import import_module, util
from pathlib import Path

import structlog

LOGFILE = os.getenv("LOG_FILE", "tg-keeper.log")
# Keep a module-level flag so we don't reconfigure logging on repeated calls.
_logger_initialized = False
_logger = None


def _extract_tb_lineno(tb):
    """Return the last line number from a traceback."""
    while tb and tb.tb_next:
        tb = tb.tb_next
    return tb.tb_lineno if tb else None


def _add_exc_line(_, __, event_dict):
    """Attach ``line`` from traceback to structured log events."""
    exc_info = event_dict.get("exc_info")
    tb = None
    if isinstance(exc_info, tuple):
        tb = exc_info[2]
    elif exc_info:
        tb = sys.exc_info()[2]
    if tb:
        event_dict.setdefault("line", _extract_tb_lineno(tb))
    return event_dict


def _configured_level() -> str:
    """Return ``LOG_LEVEL`` from the environment or ``config.py``."""
    level_name = os.getenv("LOG_LEVEL")
    if level_name:
        return level_name
    try:
        cfg = import_module("config")
    except ModuleNotFoundError:
        # Same lookup as config_utils, which can't be used before logging is up.
        repo_root = Path(__file__).resolve().parent.parent
        path = next(
            (p for p in (Path.cwd() / "config.py", repo_root / "config.py") if p.is_file()),
            None,
        )
        if path is None:
            return "INFO"
        spec = util.spec_from_file_location("config", path)
        cfg = util.module_from_spec(spec)
        spec.loader.exec_module(cfg)
        sys.modules["config"] = cfg
    return getattr(cfg, "LOG_LEVEL", None) or "INFO"


def init_logger(truncate=False):
    """Initialize the structlog logger.

    Everything at or above ``LOG_LEVEL`` goes to stderr; warnings and errors
    are also appended to ``LOGFILE`` so a long-running archiver leaves a
    trail of failed downloads behind.  ``LOG_LEVEL`` accepts ``DEBUG``,
    ``INFO`` or ``ERROR`` and defaults to ``INFO``.
    """
    global _logger_initialized, _logger
    if _logger_initialized:
        return _logger

    level = getattr(logging, _configured_level().upper(), logging.INFO)
    file_handler = logging.FileHandler(LOGFILE, mode="w" if truncate else "a")
    file_handler.setLevel(max(logging.WARNING, level))
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    logging.basicConfig(
        handlers=[file_handler, stream_handler],
        level=level,
        format="%(message)s",
        force=True,
    )
    # Telethon is chatty at INFO about reconnects and update gaps.
    logging.getLogger("telethon").setLevel(max(logging.WARNING, level))
    structlog.configure(
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            _add_exc_line,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
    )
    _logger = structlog.get_logger()
    _logger_initialized = True
    return _logger


def get_logger():
    """Return the singleton logger instance."""
    return init_logger()


def install_excepthook(logger):
    """Redirect uncaught exceptions to ``logger.exception``."""
    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.exception(
            "Uncaught exception",
            line=_extract_tb_lineno(exc_traceback),
            exc_info=(exc_type, exc_value, exc_traceback),
        )
    sys.excepthook = handle_exception
