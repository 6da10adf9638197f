"""Logging configuration for the copydesk runtime.

Records go to a rotating file under ``~/.copydesk/logs`` (or
``COPYDESK_LOG_DIR``) and, optionally, to stderr. Stdout is left alone because
the command line prints JSON there.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["LOG_FORMAT", "setup_logging", "get_log_path"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LOG_FILENAME = "copydesk.log"
_DEFAULT_LOG_DIR = Path.home() / ".copydesk" / "logs"

# Transport and client libraries log every request at INFO/DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_configured = False
_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path | None:
    """Install root handlers once; returns the log file, or ``None`` if it could not be opened.

    An unwritable log directory does not stop the program: logging continues
    on stderr and the problem is reported there.
    """

    global _configured, _log_path
    if _configured and not force:
        return _log_path

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = []
    log_path: Path | None = _resolve_log_dir(log_dir) / _LOG_FILENAME
    file_error: OSError | None = None
    try:
        handlers.append(_file_handler(log_path, max_bytes=max_bytes, backup_count=backup_count))
    except OSError as exc:
        file_error = exc
        log_path = None
        console = True

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        handlers.append(stream_handler)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_third_party(level)

    _configured = True
    _log_path = log_path
    if file_error is not None:
        logging.getLogger(__name__).warning("Log file unavailable, logging to stderr only: %s", file_error)
    return log_path


def get_log_path() -> Path | None:
    """Return the active log file, if logging was configured with one."""

    return _log_path


def _file_handler(path: Path, *, max_bytes: int, backup_count: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )


def _quiet_third_party(level: int) -> None:
    floor = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    chosen = log_dir or os.environ.get("COPYDESK_LOG_DIR") or _DEFAULT_LOG_DIR
    return Path(chosen).expanduser()
