from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class RateLimitResult:
    ok: bool
    retry_after_seconds: int
    taken_at: Optional[float] = None
    previous: Optional[float] = None


class CooldownRateLimiter:
    def __init__(
        self,
        *,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = float(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        # Starts out running: nothing goes out right after a restart.
        self._last = clock()

    def try_acquire(self) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            elapsed = now - self._last
            if elapsed < self._window:
                retry_after = int(max(1.0, self._window - elapsed))
                return RateLimitResult(ok=False, retry_after_seconds=retry_after)
            previous, self._last = self._last, now
            return RateLimitResult(
                ok=True,
                retry_after_seconds=0,
                taken_at=now,
                previous=previous,
            )

    def release(self, result: RateLimitResult) -> None:
        # Only undo our own slot; a later acquire keeps its own.
        if not result.ok or result.previous is None:
            return
        with self._lock:
            if self._last == result.taken_at:
                self._last = result.previous
