"""Utility to load the user configuration."""

from importlib import import_module, util
from pathlib import Path
import sys

from log_utils import get_logger

log = get_logger().bind(module=__name__)


def _config_paths():
    """Places a ``config.py`` may live: the working directory, then the checkout."""

    yield Path.cwd() / "config.py"
    yield Path(__file__).resolve().parent.parent / "config.py"


def _load_from_file(path: Path):
    spec = util.spec_from_file_location("config", path)
    module = util.module_from_spec(spec)
    spec.loader.exec_module(module)
    sys.modules["config"] = module
    log.debug("Loaded config from file", path=str(path))
    return module


def load_config(required=()):
    """Return the ``config`` module with every ``required`` setting present.

    The installed ``tg-keeper`` script does not have the working directory on
    ``sys.path``, so an unimportable ``config`` is looked up by file name in
    the directory the archiver was started from and next to
    ``config.example.py``.  Exits with a hint when neither exists or a
    required setting is empty.
    """

    try:
        cfg = import_module("config")
    except ModuleNotFoundError as exc:
        path = next((p for p in _config_paths() if p.is_file()), None)
        if path is None:
            log.error(
                "Missing config.py, copy config.example.py and fill in credentials"
            )
            raise SystemExit("Configuration file 'config.py' not found") from exc
        cfg = _load_from_file(path)

    for name in required:
        require(cfg, name)
    return cfg


def require(cfg, name: str):
    """Return ``cfg.<name>`` or exit naming the missing setting."""

    value = getattr(cfg, name, None)
    if value in (None, ""):
        log.error("Missing config value", key=name)
        raise SystemExit(f"{name} not found in config.py")
    return value
