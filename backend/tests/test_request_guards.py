"""
Tests for rate limiting and request metadata.
"""
import pytest
from httpx import AsyncClient
from starlette.requests import Request

from app.core.request_guards import RateLimiter
from app.services.donation_events import RequestMeta


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_request(headers: dict, client=("198.51.100.1", 5000)) -> Request:
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    })


class TestRateLimiter:

    def test_allows_up_to_limit(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60, clock=FakeClock())

        assert [limiter.hit("a") for _ in range(3)] == [None, None, None]
        assert limiter.hit("a") == 60

    def test_keys_are_independent(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        assert limiter.hit("a") is None
        assert limiter.hit("b") is None
        assert limiter.hit("a") is not None

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)

        limiter.hit("a")
        clock.now += 45
        assert limiter.hit("a") == 15
        clock.now += 15
        assert limiter.hit("a") is None

    def test_reset(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
        limiter.hit("a")

        limiter.reset()

        assert limiter.hit("a") is None


class TestRateLimitedEndpoints:

    @pytest.mark.asyncio
    async def test_retry_is_rate_limited(self, client: AsyncClient):
        for _ in range(5):
            response = await client.post("/api/v1/donations/retry", json={})
            assert response.status_code == 400

        response = await client.post("/api/v1/donations/retry", json={})

        assert response.status_code == 429
        assert int(response.headers["retry-after"]) > 0

    @pytest.mark.asyncio
    async def test_clients_are_counted_separately(self, client: AsyncClient):
        for _ in range(5):
            await client.post("/api/v1/donations/retry", json={}, headers={"X-Forwarded-For": "203.0.113.1"})

        limited = await client.post("/api/v1/donations/retry", json={}, headers={"X-Forwarded-For": "203.0.113.1"})
        other = await client.post("/api/v1/donations/retry", json={}, headers={"X-Forwarded-For": "203.0.113.2"})

        assert limited.status_code == 429
        assert other.status_code == 400

    @pytest.mark.asyncio
    async def test_webhook_is_not_rate_limited(self, client: AsyncClient):
        for _ in range(7):
            response = await client.post("/api/v1/donations/webhook", json={"status": "1"})
            assert response.status_code == 400


class TestRequestMeta:

    def test_forwarded_for_first_address(self):
        meta = RequestMeta.from_request(make_request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}))
        assert meta.ip_address == "203.0.113.9"

    def test_real_ip(self):
        meta = RequestMeta.from_request(make_request({"X-Real-IP": "203.0.113.10"}))
        assert meta.ip_address == "203.0.113.10"

    def test_client_address_fallback(self):
        meta = RequestMeta.from_request(make_request({}))
        assert meta.ip_address == "198.51.100.1"
        assert meta.user_agent is None

    def test_user_agent_truncated(self):
        meta = RequestMeta.from_request(make_request({"User-Agent": "x" * 600}))
        assert len(meta.user_agent) == 500
