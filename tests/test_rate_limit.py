"""Sliding-window rate limiter tests."""

from unittest.mock import MagicMock

import pytest

from shortener.rate_limit import SlidingWindowRateLimiter, get_client_ip


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(max_requests=5, window_seconds=60, clock=clock)


def test_allows_requests_within_limit(limiter: SlidingWindowRateLimiter) -> None:
    results = [limiter.check("1.1.1.1") for _ in range(5)]
    assert all(result.allowed for result in results)
    assert [result.remaining for result in results] == [4, 3, 2, 1, 0]


def test_blocks_requests_over_limit(limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
    for _ in range(5):
        limiter.check("1.1.1.1")
        clock.now += 1

    result = limiter.check("1.1.1.1")
    assert result.allowed is False
    assert result.remaining == 0
    # Oldest request was at t=1000, now is t=1005.
    assert result.retry_after == pytest.approx(55)


def test_tracks_clients_independently(limiter: SlidingWindowRateLimiter) -> None:
    for _ in range(5):
        limiter.check("1.1.1.1")
    assert limiter.check("1.1.1.1").allowed is False
    assert limiter.check("2.2.2.2").allowed is True


def test_window_slides(limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
    for _ in range(5):
        limiter.check("1.1.1.1")
    assert limiter.check("1.1.1.1").allowed is False

    clock.now += 60
    result = limiter.check("1.1.1.1")
    assert result.allowed is True
    assert result.remaining == 4


def test_rejected_requests_are_not_counted(limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
    limiter.check("1.1.1.1")
    clock.now += 30
    for _ in range(4):
        limiter.check("1.1.1.1")
    for _ in range(10):
        assert limiter.check("1.1.1.1").allowed is False

    # Only the first request has left the window.
    clock.now += 30
    assert limiter.check("1.1.1.1").allowed is True
    assert limiter.check("1.1.1.1").allowed is False


def test_prune_drops_idle_clients(limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
    limiter.check("1.1.1.1")
    limiter.check("2.2.2.2")
    clock.now += 61
    limiter.check("3.3.3.3")
    assert limiter.prune() == 2
    assert len(limiter) == 1


def _request(peer: str | None, forwarded: str | None = None) -> MagicMock:
    request = MagicMock()
    request.headers = {"x-forwarded-for": forwarded} if forwarded is not None else {}
    if peer is None:
        request.client = None
    else:
        request.client.host = peer
    return request


def test_get_client_ip_uses_peer_without_trusted_proxies() -> None:
    assert get_client_ip(_request("10.0.0.9")) == "10.0.0.9"
    assert get_client_ip(_request(None)) == "unknown"


def test_get_client_ip_ignores_forwarded_header_from_untrusted_peer() -> None:
    request = _request("198.51.100.4", "203.0.113.7")
    assert get_client_ip(request) == "198.51.100.4"
    assert get_client_ip(request, ["10.0.0.0/8"]) == "198.51.100.4"


def test_get_client_ip_honours_forwarded_header_from_trusted_proxy() -> None:
    request = _request("10.0.0.1", "203.0.113.7")
    assert get_client_ip(request, ["10.0.0.0/8"]) == "203.0.113.7"


def test_get_client_ip_skips_trusted_hops_from_the_right() -> None:
    # The client prepended a fake address; the proxy chain appended the real one.
    request = _request("10.0.0.1", "1.2.3.4, 203.0.113.7, 10.0.0.2")
    assert get_client_ip(request, ["10.0.0.0/8"]) == "203.0.113.7"


def test_get_client_ip_all_hops_trusted() -> None:
    request = _request("10.0.0.1", "10.0.0.3, 10.0.0.2")
    assert get_client_ip(request, ["10.0.0.0/8"]) == "10.0.0.3"

    assert get_client_ip(_request("10.0.0.1"), ["10.0.0.0/8"]) == "10.0.0.1"
