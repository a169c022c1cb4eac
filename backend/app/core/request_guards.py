"""
Request guards for the public donation endpoints.

- Trusted-origin check for state-changing requests
- In-memory fixed-window rate limiting per client

The rate limiter is process-local; with several workers each keeps its
own counts.
"""
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlsplit

from fastapi import HTTPException, Request, status

from app.core.config import settings

DEV_ORIGINS = {
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:3002",
    "http://127.0.0.1:3000",
}


def _origin_of(url: str) -> Optional[str]:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def allowed_origins(request: Request) -> set[str]:
    origins = {str(request.base_url).rstrip("/")}
    site_origin = _origin_of(settings.SITE_URL)
    if site_origin:
        origins.add(site_origin)
    if not settings.is_production:
        origins |= DEV_ORIGINS
    return origins


def request_origin(request: Request) -> Optional[str]:
    origin = request.headers.get("origin")
    if origin:
        return _origin_of(origin) or origin
    referer = request.headers.get("referer")
    if referer:
        return _origin_of(referer)
    return None


async def enforce_trusted_origin(request: Request) -> None:
    """Reject state-changing requests that do not come from our own pages."""
    origin = request_origin(request)
    if not origin or origin not in allowed_origins(request):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid request origin"
        )


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown-client"


@dataclass
class _Window:
    count: int
    started: float


class RateLimiter:
    """Fixed-window request counter keyed by client."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str) -> Optional[int]:
        """
        Count a request for `key`.

        Returns None when the request is allowed, otherwise the number of
        seconds until the window resets.
        """
        now = self._clock()
        self._evict(now)

        window = self._windows.get(key)
        if window is None or now - window.started >= self.window_seconds:
            self._windows[key] = _Window(count=1, started=now)
            return None

        if window.count >= self.max_requests:
            return max(1, int(window.started + self.window_seconds - now + 0.999))

        window.count += 1
        return None

    def _evict(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now - w.started >= self.window_seconds]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        self._windows.clear()


donation_rate_limiter = RateLimiter(
    max_requests=settings.DONATION_RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.DONATION_RATE_LIMIT_WINDOW_SECONDS,
)


async def donation_rate_limit(request: Request) -> None:
    """Limit donation creation and retries per client and endpoint."""
    key = f"{request.url.path}:{client_identifier(request)}"
    retry_after = donation_rate_limiter.hit(key)
    if retry_after is not None:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )
