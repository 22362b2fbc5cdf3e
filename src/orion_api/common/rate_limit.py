"""Process-local sliding-window limits for the sign-in endpoints."""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RateLimit:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    retry_after: int = 0

    def headers(self) -> dict[str, str]:
        return {} if self.allowed else {"Retry-After": str(self.retry_after)}


class InMemoryRateLimiter:
    """Count attempts per key over the trailing window.

    State lives in this process only; behind several workers each keeps its
    own counters. Keys with no attempts left in the window are dropped at
    most once per window.
    """

    def __init__(self, *, limit: RateLimit) -> None:
        self._limit = limit
        self._attempts: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep: float | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def check(self, key: str, *, now: float | None = None) -> RateDecision:
        moment = time.monotonic() if now is None else now
        horizon = moment - self._limit.window_seconds
        with self._lock:
            self._sweep(moment, horizon)
            attempts = self._attempts.setdefault(key, deque())
            while attempts and attempts[0] <= horizon:
                attempts.popleft()
            if len(attempts) >= self._limit.max_requests:
                wait = attempts[0] + self._limit.window_seconds - moment
                return RateDecision(allowed=False, retry_after=max(1, math.ceil(wait)))
            attempts.append(moment)
            return RateDecision(allowed=True)

    def allow(self, key: str, *, now: float | None = None) -> bool:
        return self.check(key, now=now).allowed

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()
            self._last_sweep = None

    def _sweep(self, moment: float, horizon: float) -> None:
        if self._last_sweep is not None and moment - self._last_sweep < self._limit.window_seconds:
            return
        self._last_sweep = moment
        stale = [key for key, attempts in self._attempts.items() if not attempts or attempts[-1] <= horizon]
        for key in stale:
            del self._attempts[key]


__all__ = ["InMemoryRateLimiter", "RateDecision", "RateLimit"]
