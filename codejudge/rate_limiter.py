"""In-memory sliding-window limiter for submission intake."""

from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional


class RateLimiter:
    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window = window_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    async def try_acquire(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window

        async with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True


_submission_limiter: Optional[RateLimiter] = None
_configured = False


def get_submission_rate_limiter() -> Optional[RateLimiter]:
    """Shared limiter for code submissions; None when SUBMISSION_RATE_LIMIT is unset or 0."""

    global _submission_limiter, _configured
    if _configured:
        return _submission_limiter

    try:
        limit = int(os.getenv("SUBMISSION_RATE_LIMIT", "0"))
        window = float(os.getenv("SUBMISSION_RATE_WINDOW", "60"))
    except ValueError:
        limit, window = 0, 60.0

    _submission_limiter = RateLimiter(limit=limit, window_seconds=window) if limit > 0 else None
    _configured = True
    return _submission_limiter


def reset_submission_rate_limiter() -> None:
    global _submission_limiter, _configured
    _submission_limiter = None
    _configured = False


__all__ = ["RateLimiter", "get_submission_rate_limiter", "reset_submission_rate_limiter"]
