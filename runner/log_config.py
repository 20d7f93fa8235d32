"""Logging configuration for the update runner.

Every record is written as one line::

    2026-10-17T05:51:00Z -- [INFO] Found 3 update(s)

to stderr and, when a log path is given, appended to a UTF-8 log file.
Repeated calls replace the handlers installed by a previous call instead of
stacking new ones.
"""

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s -- [%(levelname)s] %(message)s"

_HANDLER_TAG = "_patchrunner_handler"


class UtcIsoFormatter(logging.Formatter):
    """Formatter stamping records with an ISO-8601 UTC timestamp."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ")


def configure_logging(
    log_path: Optional[Union[str, Path]] = None, level: int = logging.INFO
) -> Optional[Path]:
    """Install the stderr handler and, optionally, the log file handler.

    Parent directories of ``log_path`` are created. Returns the log file path
    or None when logging to stderr only.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    formatter = UtcIsoFormatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    setattr(stream_handler, _HANDLER_TAG, True)
    root.addHandler(stream_handler)

    resolved: Optional[Path] = None
    if log_path:
        resolved = Path(log_path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(resolved, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_TAG, True)
        root.addHandler(file_handler)

    root.setLevel(level)
    return resolved


def flush_logs():
    """Flush all logging handlers & stdio so lines reach the log immediately."""
    for h in logging.getLogger().handlers:
        h.flush()
        stream = getattr(h, "stream", None)
        if isinstance(h, logging.FileHandler) and stream is not None:
            try:
                os.fsync(stream.fileno())
            except (OSError, ValueError):
                pass
    for stream in (sys.stderr, sys.stdout):
        try:
            stream.flush()
        except (OSError, ValueError):
            pass
