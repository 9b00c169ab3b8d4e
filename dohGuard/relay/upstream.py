"""Pass-through client for the upstream DoH resolver."""
from __future__ import annotations

import asyncio
import time
from typing import Optional
from urllib.parse import urlsplit

import aiohttp
from pydantic import BaseModel

from dohGuard.logging_config import get_logger
from dohGuard.relay import CircuitBreaker

DNS_MESSAGE = "application/dns-message"


class UpstreamError(Exception):
    """The upstream could not be reached or did not answer in time."""


class UpstreamUnavailable(UpstreamError):
    """The circuit is open; the upstream was not contacted."""


class UpstreamAnswer(BaseModel):
    status: int
    reason: str = ""
    body: bytes = b""
    cache_control: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class UpstreamResolver:
    """POSTs raw DNS messages to one upstream DoH endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.breaker = breaker or CircuitBreaker(name=urlsplit(url).hostname or url)
        self.session: Optional[aiohttp.ClientSession] = None
        self.log = get_logger("relay", context={"upstream": url})

    async def _client(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def forward(self, message: bytes, client_ip: Optional[str] = None) -> UpstreamAnswer:
        """Relay ``message`` unchanged and return the upstream's answer."""
        if not self.breaker.allow_request():
            self.log.warning(
                "Upstream circuit open, refusing to relay",
                extra={"circuit": self.breaker.name, "outcome": "circuit_open"}
            )
            raise UpstreamUnavailable(f"Circuit '{self.breaker.name}' is open")

        headers = {"Content-Type": DNS_MESSAGE, "Accept": DNS_MESSAGE}
        if client_ip:
            headers["X-Forwarded-For"] = client_ip

        client = await self._client()
        start_time = time.time()
        try:
            async with client.post(self.url, data=message, headers=headers) as resp:
                body = await resp.read()
                answer = UpstreamAnswer(
                    status=resp.status,
                    reason=resp.reason or "",
                    body=body,
                    cache_control=resp.headers.get("Cache-Control"),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.breaker.record_failure()
            self.log.error(
                f"Upstream request failed: {exc!r}",
                extra={
                    "duration": round((time.time() - start_time) * 1000, 2),
                    "outcome": "error",
                    "error_type": type(exc).__name__,
                }
            )
            raise UpstreamError(str(exc) or type(exc).__name__) from exc

        if answer.status >= 500:
            self.breaker.record_failure()
        else:
            self.breaker.record_success()

        self.log.debug(
            "Upstream answered",
            extra={
                "status_code": answer.status,
                "message_size": len(answer.body),
                "duration": round((time.time() - start_time) * 1000, 2),
                "outcome": "success" if answer.ok else "error",
            }
        )
        return answer

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session is not None:
            await self.session.close()
            self.session = None
