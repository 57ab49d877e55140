from __future__ import annotations

import enum
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

MAX_BYTES = 5 * 1024 * 1024
_lock = threading.Lock()


class Event(str, enum.Enum):
    SENT = "SENT"
    CHANGED = "CHANGED"
    ISSUE_FAILED = "FAIL issue"
    CHANGE_FAILED = "FAIL change"


def events_path() -> str:
    base_dir = os.environ.get("PWCH_DATA_DIR") or os.path.join(os.getcwd(), "data")
    os.makedirs(base_dir, exist_ok=True)
    return os.path.join(base_dir, "events.log")


def _one_line(value: object) -> str:
    return " ".join(str(value).split())


def format_event(
    kind: Event,
    address: str,
    *,
    err: Optional[object] = None,
    at: Optional[datetime] = None,
) -> str:
    stamp = (at or datetime.now(timezone.utc)).isoformat()
    line = f"{stamp} {kind.value} {_one_line(address) or '-'}"
    if err is not None:
        line += f" err={_one_line(err)}"
    return line


def _rotate(path: str) -> None:
    try:
        size = os.path.getsize(path)
    except FileNotFoundError:
        return
    if size >= MAX_BYTES:
        os.replace(path, path + ".1")


def append_event(kind: Event, address: str, *, err: Optional[object] = None) -> None:
    """Record a link issuance or password change outcome. Never raises."""
    line = format_event(kind, address, err=err)
    with _lock:
        try:
            path = events_path()
            _rotate(path)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning("cannot write event log: %s", e)
