"""In-memory fixed-window rate limiting keyed by client IP.

Counters live in the process, so limits are per instance. That matches a
single-node deployment; there is no shared counter store.
"""
import threading
import time
from dataclasses import dataclass

from fastapi import Request

from asset_cdn.errors import CDNError, ErrorCode


def get_client_ip(request: Request) -> str:
    """
    Best-effort client IP extraction.

    Behind a proxy the first X-Forwarded-For hop is the client; otherwise
    fall back to the socket peer.
    """
    xff = (request.headers.get("x-forwarded-for") or "").strip()
    if xff:
        return xff.split(",")[0].strip() or "unknown"
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@dataclass(frozen=True)
class LimitResult:
    allowed: bool
    retry_after_seconds: int


class FixedWindowRateLimiter:
    def __init__(self, limit: int, window_seconds: int, clock=time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> LimitResult:
        """Count one request for `key` and say whether it is allowed."""
        now = self._clock()
        with self._lock:
            reset_at, count = self._counters.get(key, (now + self.window_seconds, 0))
            if now >= reset_at:
                reset_at, count = now + self.window_seconds, 0
            count += 1
            self._counters[key] = (reset_at, count)
            if len(self._counters) > 10_000:
                self._prune(now)
        allowed = count <= self.limit
        retry_after = 0 if allowed else max(1, int(reset_at - now))
        return LimitResult(allowed=allowed, retry_after_seconds=retry_after)

    def _prune(self, now: float) -> None:
        expired = [k for k, (reset_at, _) in self._counters.items() if now >= reset_at]
        for key in expired:
            del self._counters[key]

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


def rate_limited(scope: str):
    """Dependency factory: `Depends(rate_limited("upload"))`."""

    async def dependency(request: Request) -> None:
        limiter: FixedWindowRateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return
        result = limiter.hit(f"{scope}:{get_client_ip(request)}")
        if not result.allowed:
            raise CDNError(
                ErrorCode.RATE_LIMITED,
                headers={"Retry-After": str(result.retry_after_seconds)},
            )

    return dependency
