"""App-scoped blocklist and upstream resolver.

Both resources live on ``app.state``. The blocklist is loaded once at
startup and only read afterwards, so handlers share it without locks.
A blocklist that cannot be read aborts startup; the proxy never runs
with a silently empty list.
"""
from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, status

from dohGuard.config import ProxySettings
from dohGuard.filtering.blocklist import Blocklist, load_blocklist
from dohGuard.logging_config import get_logger
from dohGuard.relay import CircuitBreaker
from dohGuard.relay.upstream import UpstreamResolver

logger = get_logger("api")


async def init_resources(app: FastAPI) -> None:
    """Load the blocklist and create the upstream resolver."""
    settings: ProxySettings = app.state.settings

    if getattr(app.state, "blocklist", None) is None:
        if settings.blocklist.enabled:
            app.state.blocklist = load_blocklist(settings.blocklist.path)
        else:
            logger.warning("Blocklist disabled in config; every query will be relayed")
            app.state.blocklist = Blocklist()

    if getattr(app.state, "resolver", None) is None:
        upstream = settings.upstream
        app.state.resolver = UpstreamResolver(
            upstream.url,
            timeout_seconds=upstream.timeout_seconds,
            breaker=CircuitBreaker(
                name="upstream",
                failure_threshold=upstream.failure_threshold,
                recovery_time=upstream.recovery_time_seconds,
            ),
        )


async def close_resources(app: FastAPI) -> None:
    """Close shared resources."""
    resolver = getattr(app.state, "resolver", None)
    if resolver is not None:
        await resolver.close()
        app.state.resolver = None


def settings_dep(request: Request) -> ProxySettings:
    return request.app.state.settings


def blocklist_dep(request: Request) -> Blocklist:
    blocklist = getattr(request.app.state, "blocklist", None)
    if blocklist is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Blocklist not loaded")
    return blocklist


def resolver_dep(request: Request) -> UpstreamResolver:
    resolver = getattr(request.app.state, "resolver", None)
    if resolver is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Upstream resolver unavailable")
    return resolver
