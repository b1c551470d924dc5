"""Sliding-window request throttling per client address."""

import ipaddress
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import lru_cache
from typing import Union

from fastapi import Request

__all__ = ["RateLimitResult", "SlidingWindowRateLimiter", "get_client_ip"]

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class SlidingWindowRateLimiter:
    """Allows at most ``max_requests`` per client within any ``window_seconds`` span.

    State lives in this instance only; every service process throttles on its own.
    Rejected requests are not recorded, so a client that keeps retrying is let back
    in as soon as its oldest accepted request leaves the window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        prune_every: int = 1000,
    ) -> None:
        assert max_requests > 0, f"max_requests must be positive, got {max_requests!r}"
        assert window_seconds > 0, f"window_seconds must be positive, got {window_seconds!r}"
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._prune_every = prune_every
        self._checks = 0
        self._requests: dict[str, deque[float]] = {}

    def check(self, client_id: str) -> RateLimitResult:
        self._checks += 1
        if self._checks % self._prune_every == 0:
            self.prune()

        now = self._clock()
        window_start = now - self.window_seconds
        requests = self._requests.setdefault(client_id, deque())
        while requests and requests[0] <= window_start:
            requests.popleft()

        if len(requests) >= self.max_requests:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                retry_after=requests[0] + self.window_seconds - now,
            )

        requests.append(now)
        return RateLimitResult(allowed=True, remaining=self.max_requests - len(requests))

    def prune(self) -> int:
        """Drop clients with no request inside the current window."""
        window_start = self._clock() - self.window_seconds
        idle = [client for client, requests in self._requests.items() if not requests or requests[-1] <= window_start]
        for client in idle:
            del self._requests[client]
        return len(idle)

    def __len__(self) -> int:
        return len(self._requests)


def get_client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """Return the address requests from this client are counted under.

    ``X-Forwarded-For`` is read only when the connecting peer is a trusted proxy.
    Hops are then walked from the right and the first untrusted one wins, so a
    client cannot pick its own identity by prepending addresses.
    """
    peer = request.client.host if request.client else "unknown"
    networks = _parse_networks(tuple(trusted_proxies))
    if not networks or not _is_trusted(peer, networks):
        return peer

    hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _is_trusted(hop, networks):
            return hop
    return hops[0] if hops else peer


@lru_cache(maxsize=32)
def _parse_networks(entries: tuple[str, ...]) -> tuple[IPNetwork, ...]:
    return tuple(ipaddress.ip_network(entry, strict=False) for entry in entries)


def _is_trusted(address: str, networks: tuple[IPNetwork, ...]) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(ip in network for network in networks)
