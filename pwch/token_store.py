from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ROUTE_NAME = "changePassword"


def build_access_string(
    *,
    token: str,
    username: str,
    domain: str,
    route: str = ROUTE_NAME,
) -> str:
    return f"{route}?token={token}&username={username}&domain={domain}"


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class TokenStore:
    def __init__(
        self,
        *,
        valid_for: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.valid_for = float(valid_for)
        self._clock = clock
        # access-string -> issue time (epoch seconds); not persisted.
        self._tokens: dict[str, float] = {}
        self._lock = _ReadWriteLock()

    def insert(self, key: str, issued_at: Optional[float] = None) -> None:
        ts = self._clock() if issued_at is None else float(issued_at)
        self._lock.acquire_write()
        try:
            self._tokens[key] = ts
        finally:
            self._lock.release_write()

    def lookup(self, key: str) -> bool:
        self._lock.acquire_read()
        try:
            return key in self._tokens
        finally:
            self._lock.release_read()

    def delete(self, key: str) -> None:
        self._lock.acquire_write()
        try:
            self._tokens.pop(key, None)
        finally:
            self._lock.release_write()

    def claim(self, key: str) -> Optional[float]:
        """Remove ``key`` and return its issue time, or None if absent."""
        self._lock.acquire_write()
        try:
            return self._tokens.pop(key, None)
        finally:
            self._lock.release_write()

    def restore(self, key: str, issued_at: float) -> None:
        # A newer entry inserted meanwhile wins.
        self._lock.acquire_write()
        try:
            self._tokens.setdefault(key, float(issued_at))
        finally:
            self._lock.release_write()

    def sweep(
        self,
        now: Optional[float] = None,
        valid_for: Optional[float] = None,
    ) -> list[str]:
        now_ts = self._clock() if now is None else float(now)
        window = self.valid_for if valid_for is None else float(valid_for)
        self._lock.acquire_write()
        try:
            expired = [
                k for k, issued in self._tokens.items() if now_ts - issued > window
            ]
            for k in expired:
                del self._tokens[k]
        finally:
            self._lock.release_write()
        for k in expired:
            logger.info("Deleted expired route %s", _redact(k))
        return expired

    def __len__(self) -> int:
        self._lock.acquire_read()
        try:
            return len(self._tokens)
        finally:
            self._lock.release_read()


def _redact(key: str) -> str:
    # Keep the account part, hide the secret.
    head, sep, rest = key.partition("token=")
    if not sep:
        return key
    _, amp, tail = rest.partition("&")
    return f"{head}{sep}***{amp}{tail}"


class TokenSweeper(threading.Thread):
    def __init__(self, store: TokenStore, *, interval: float = 30.0) -> None:
        super().__init__(name="pwch-token-sweeper", daemon=True)
        self._store = store
        self._interval = float(interval)
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._store.sweep()
            except Exception:
                logger.exception("token sweep failed")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        if self.is_alive():
            self.join(timeout)
