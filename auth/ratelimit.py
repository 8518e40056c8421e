"""
auth/ratelimit.py -- Fixed-window rate limiter for the login endpoint.

Algorithm (per key):
  - No window yet, or the window has elapsed: start a new window with
    count=1 and allow.
  - Otherwise increment the count; deny when it exceeds max_requests,
    with retry_after = whole seconds left in the window (at least 1).

The limiter is a plain object with an explicit hit(key, now) call, so it
can be swapped for a shared backend (Redis, database) without touching the
route code. Windows live in process memory and are not shared between
workers.

FastAPI runs sync dependencies on a thread pool, so increments from two
requests can interleave. A threading.Lock makes read-increment-compare
atomic.

The general per-route throttling for the rest of the API is slowapi's job
(api/limiter.py). This module exists because login needs the exact window
semantics and the RATE_LIMIT_EXCEEDED body with retryAfter.

Layer rule: no imports from api/, policies/, or appsettings/.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Protocol, Union


@dataclass
class RateLimitWindow:
    count: int
    window_start: float


@dataclass(frozen=True)
class Allowed:
    remaining: int


@dataclass(frozen=True)
class Denied:
    retry_after: int


RateLimitResult = Union[Allowed, Denied]


class RateLimiter(Protocol):
    def hit(self, key: str, now: float) -> RateLimitResult: ...


class FixedWindowRateLimiter:
    """In-memory fixed-window counter.

    Usage:
        limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=900)
        result = limiter.hit("10.0.0.5", time.time())
        if isinstance(result, Denied):
            ...  # 429, Retry-After: result.retry_after
    """

    def __init__(self, max_requests: int, window_seconds: float) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now: float) -> RateLimitResult:
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.window_start >= self.window_seconds:
                self._windows[key] = RateLimitWindow(count=1, window_start=now)
                return Allowed(remaining=self.max_requests - 1)

            window.count += 1
            if window.count > self.max_requests:
                remaining_s = window.window_start + self.window_seconds - now
                return Denied(retry_after=max(1, math.ceil(remaining_s)))
            return Allowed(remaining=self.max_requests - window.count)

    def sweep(self, now: float) -> int:
        """Drop elapsed windows. Returns how many were removed."""
        with self._lock:
            stale = [k for k, w in self._windows.items() if now - w.window_start >= self.window_seconds]
            for k in stale:
                del self._windows[k]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)
