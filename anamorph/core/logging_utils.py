"""
Logging setup for command-line runs.

Mapping and optimization are batch passes over every vertex. Per-vertex
problems (missed mirrors, degenerate planes) are reported through `log_once`
so one bad setup produces one log line plus a suppression count instead of
thousands of identical warnings.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from pathlib import Path
from typing import Optional

ENV_LOG_LEVEL = "ANAMORPH_LOG_LEVEL"
LOG_FILE_NAME = "anamorph.log"

FILE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s] %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

_seen_keys: Counter[str] = Counter()
_seen_lock = threading.Lock()


def default_log_dir() -> Path:
    """Per-user state directory for log files."""
    if os.name == "nt":
        root = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
        return Path(root or Path.home()) / "Anamorph" / "logs"

    state = os.environ.get("XDG_STATE_HOME")
    root = Path(state) if state else Path.home() / ".local" / "state"
    return root / "anamorph" / "logs"


def resolve_level(level: str | int) -> int:
    """Level name or number to a logging level; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    name = str(level).strip().upper()
    value = logging.getLevelName(name) if name else logging.INFO
    return value if isinstance(value, int) else logging.INFO


def _attached_log_file(root: logging.Logger) -> Optional[Path]:
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def setup_logging(
    *,
    log_level: str | int = "INFO",
    log_dir: Optional[str | Path] = None,
    filename: str = LOG_FILE_NAME,
    console: bool = False,
) -> Optional[Path]:
    """
    Attach a UTF-8 file handler to the root logger and return the log path.

    Calling it again once a file handler exists returns that handler's path.
    `ANAMORPH_LOG_LEVEL` overrides `log_level`. With `console=True` warnings
    and errors are echoed to stderr. Returns None when the log directory
    cannot be created or opened.
    """
    root = logging.getLogger()
    existing = _attached_log_file(root)
    if existing is not None:
        return existing

    level = resolve_level(os.environ.get(ENV_LOG_LEVEL) or log_level)
    root.setLevel(level)

    if console:
        echo = logging.StreamHandler()
        echo.setLevel(max(level, logging.WARNING))
        echo.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(echo)

    target_dir = default_log_dir() if log_dir is None else Path(log_dir)
    log_path = target_dir / filename
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        return None

    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATEFMT))
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    root.info("Logging to %s at %s", log_path, logging.getLevelName(level))
    return log_path


def log_once(
    logger: logging.Logger,
    key: str,
    level: int,
    msg: str,
    *args,
    exc_info: bool | BaseException | None = None,
) -> bool:
    """
    Emit `msg` the first time `key` is seen; later calls only bump a counter.

    Returns True when the record was emitted.
    """
    with _seen_lock:
        _seen_keys[key] += 1
        first = _seen_keys[key] == 1
    if first:
        logger.log(level, msg, *args, exc_info=exc_info)
    return first


def suppressed_count(key: str) -> int:
    """How many `log_once` calls for `key` were swallowed."""
    with _seen_lock:
        return max(_seen_keys.get(key, 0) - 1, 0)


def reset_log_once() -> None:
    with _seen_lock:
        _seen_keys.clear()
