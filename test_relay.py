"""Tests for the upstream relay and its circuit breaker."""
import asyncio
import time

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as UpstreamServer

from dohGuard.relay import CircuitBreaker, CircuitState
from dohGuard.relay.upstream import UpstreamError, UpstreamResolver, UpstreamUnavailable

QUERY = bytes.fromhex("abcd01000001000000000000") + b"\x07example\x03com\x00\x00\x01\x00\x01"


def _upstream_app(seen: list, status: int = 200, cache_control: str = "max-age=300") -> web.Application:
    async def handler(request: web.Request) -> web.Response:
        seen.append({"headers": dict(request.headers), "body": await request.read()})
        headers = {"Cache-Control": cache_control} if cache_control else {}
        return web.Response(
            status=status,
            body=b"answer:" + await request.read(),
            content_type="application/dns-message",
            headers=headers,
        )

    app = web.Application()
    app.router.add_post("/dns-query", handler)
    return app


def test_forward_relays_message_unchanged():
    seen: list = []

    async def scenario():
        async with UpstreamServer(_upstream_app(seen)) as server:
            resolver = UpstreamResolver(str(server.make_url("/dns-query")), timeout_seconds=2)
            try:
                return await resolver.forward(QUERY, client_ip="198.51.100.7")
            finally:
                await resolver.close()

    answer = asyncio.run(scenario())

    assert answer.ok
    assert answer.status == 200
    assert answer.body == b"answer:" + QUERY
    assert answer.cache_control == "max-age=300"
    assert seen[0]["body"] == QUERY
    assert seen[0]["headers"]["Content-Type"] == "application/dns-message"
    assert seen[0]["headers"]["Accept"] == "application/dns-message"
    assert seen[0]["headers"]["X-Forwarded-For"] == "198.51.100.7"


def test_forward_without_client_ip_sends_no_forwarded_header():
    seen: list = []

    async def scenario():
        async with UpstreamServer(_upstream_app(seen, cache_control="")) as server:
            resolver = UpstreamResolver(str(server.make_url("/dns-query")), timeout_seconds=2)
            try:
                return await resolver.forward(QUERY)
            finally:
                await resolver.close()

    answer = asyncio.run(scenario())
    assert answer.cache_control is None
    assert "X-Forwarded-For" not in seen[0]["headers"]


def test_server_errors_trip_the_breaker():
    seen: list = []
    breaker = CircuitBreaker(name="test", failure_threshold=2, recovery_time=60)

    async def scenario():
        async with UpstreamServer(_upstream_app(seen, status=502)) as server:
            resolver = UpstreamResolver(str(server.make_url("/dns-query")), timeout_seconds=2, breaker=breaker)
            try:
                first = await resolver.forward(QUERY)
                second = await resolver.forward(QUERY)
                with pytest.raises(UpstreamUnavailable):
                    await resolver.forward(QUERY)
                return first, second
            finally:
                await resolver.close()

    first, second = asyncio.run(scenario())
    assert not first.ok and first.status == 502
    assert second.status == 502
    assert breaker.state == CircuitState.OPEN
    assert len(seen) == 2


def test_unreachable_upstream_raises_upstream_error():
    async def scenario():
        # Port 9 on localhost (discard) is closed on test machines
        resolver = UpstreamResolver("http://127.0.0.1:9/dns-query", timeout_seconds=2)
        try:
            await resolver.forward(QUERY)
        finally:
            await resolver.close()

    with pytest.raises(UpstreamError):
        asyncio.run(scenario())


def test_breaker_recovers_after_successful_trial():
    breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_time=0.01)
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert not breaker.allow_request()

    time.sleep(0.02)
    assert breaker.allow_request()
    assert breaker.state == CircuitState.HALF_OPEN
    # Only one trial request while half-open
    assert not breaker.allow_request()

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_stats()["failures"] == 0


def test_failed_trial_reopens_breaker():
    breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_time=0.01)
    breaker.record_failure()
    time.sleep(0.02)
    assert breaker.allow_request()
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN


def test_success_resets_consecutive_failures():
    breaker = CircuitBreaker(name="test", failure_threshold=2, recovery_time=60)
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.allow_request()

    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert not breaker.allow_request()
    assert breaker.get_stats()["state"] == "open"
