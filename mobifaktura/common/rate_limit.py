"""
Fixed-window in-memory rate limiter.

Counters live in process memory, so limits are per worker.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from mobifaktura.core.exceptions import RateLimitError
from mobifaktura.logger_config import logger


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float


@dataclass
class _Window:
    count: int
    reset_at: float


class MemoryRateLimiter:
    def __init__(self, limit: int, window_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def hit(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            window = self._windows.get(identifier)
            if window is None or now >= window.reset_at:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[identifier] = window

            if window.count >= self.limit:
                return RateLimitResult(False, self.limit, 0, window.reset_at)

            window.count += 1
            return RateLimitResult(True, self.limit, self.limit - window.count, window.reset_at)

    def cleanup(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, window in self._windows.items() if now >= window.reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def retry_after(self, result: RateLimitResult) -> int:
        return max(1, int(result.reset - self._clock()) + 1)


auth_limiter = MemoryRateLimiter(limit=50)
write_limiter = MemoryRateLimiter(limit=100)
read_limiter = MemoryRateLimiter(limit=500)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def enforce(limiter: MemoryRateLimiter, identifier: str) -> RateLimitResult:
    result = limiter.hit(identifier)
    if not result.success:
        logger.warning(f"Rate limit exceeded for {identifier}")
        raise RateLimitError(
            "Too many requests. Please try again later.",
            retry_after=limiter.retry_after(result),
        )
    return result


def limit_by_ip(limiter: MemoryRateLimiter, scope: str):
    """Build a FastAPI dependency that limits requests per client IP."""
    def dependency(request: Request) -> Optional[RateLimitResult]:
        return enforce(limiter, f"{scope}:{client_ip(request)}")

    return dependency
