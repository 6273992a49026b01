"""In-memory per-client rate limiting for rating submissions."""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from prompt_gallery.logger import get_logger

log = get_logger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_WINDOW_SECONDS = 3600.0

RATING_LIMIT = 20
RATING_WINDOW_SECONDS = 3600.0


@dataclass
class _ClientWindow:
    count: int
    window_start: float


class RateLimiter:
    """Fixed-window limiter keyed by client identity.

    Each key gets ``limit`` admissions per ``window_seconds`` starting from its
    first request; the window restarts on the first request after it expires.
    Safe to share between threads.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit if limit > 0 else DEFAULT_LIMIT
        self.window_seconds = window_seconds if window_seconds > 0 else DEFAULT_WINDOW_SECONDS
        self._clock = clock
        self._windows: dict[str, _ClientWindow] = {}
        self._lock = threading.Lock()

    @classmethod
    def for_ratings(cls, limit: int = RATING_LIMIT) -> RateLimiter:
        return cls(limit=limit, window_seconds=RATING_WINDOW_SECONDS)

    def allow(self, key: str) -> tuple[bool, float]:
        """Admit or refuse one request for ``key``.

        Returns:
            ``(allowed, retry_after)`` where ``retry_after`` is the number of
            seconds until the key's window resets, or ``0.0`` when allowed.
        """
        with self._lock:
            now = self._clock()
            state = self._windows.get(key)

            if state is None or now > state.window_start + self.window_seconds:
                self._windows[key] = _ClientWindow(count=1, window_start=now)
                log.debug("rate_limit_allowed", key_hash=_hash_key(key), remaining=self.limit - 1)
                return True, 0.0

            if state.count >= self.limit:
                retry_after = state.window_start + self.window_seconds - now
                log.warning(
                    "rate_limit_denied",
                    key_hash=_hash_key(key),
                    count=state.count,
                    limit=self.limit,
                    retry_after=round(retry_after, 3),
                )
                return False, retry_after

            state.count += 1
            log.debug("rate_limit_allowed", key_hash=_hash_key(key), remaining=self.limit - state.count)
            return True, 0.0

    def remaining(self, key: str) -> int:
        with self._lock:
            state = self._windows.get(key)
            if state is None or self._clock() > state.window_start + self.window_seconds:
                return self.limit
            return max(0, self.limit - state.count)

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def reset_all(self) -> None:
        with self._lock:
            self._windows.clear()


def _hash_key(key: str) -> str:
    """Short hash so raw client addresses never reach the logs."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
