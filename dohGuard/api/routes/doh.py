"""RFC 8484 endpoint: filter queries against the blocklist, relay the rest."""
from __future__ import annotations

import base64
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from dohGuard.api.models import error_response
from dohGuard.api.utils.state import blocklist_dep, resolver_dep, settings_dep
from dohGuard.config import ProxySettings
from dohGuard.filtering.blocklist import Blocklist
from dohGuard.filtering.wire import extract_domain
from dohGuard.logging_config import get_logger
from dohGuard.relay.upstream import DNS_MESSAGE, UpstreamError, UpstreamResolver, UpstreamUnavailable

logger = get_logger("api")
router = APIRouter(tags=["doh"])

DOH_PATH = "/dns-query"
INVALID_REQUEST = "Invalid DoH request"


def decode_dns_param(value: str) -> bytes:
    """Decode an unpadded base64url ``dns`` parameter.

    Raises ValueError on characters outside the base64url alphabet or an
    impossible length.
    """
    padded = value + "=" * (-len(value) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def _client_ip(request: Request) -> Optional[str]:
    return request.headers.get("cf-connecting-ip") or request.headers.get("x-forwarded-for")


async def answer_query(
    message: bytes,
    request: Request,
    blocklist: Blocklist,
    resolver: UpstreamResolver,
    settings: ProxySettings,
) -> Response:
    """Block or relay one decoded DNS message."""
    domain = extract_domain(message)
    if domain is None:
        # Unparseable queries are relayed rather than refused.
        logger.debug(
            "Could not extract query name; relaying unfiltered",
            extra={"message_size": len(message), "outcome": "unparsed"}
        )
    elif blocklist.is_blocked(domain):
        logger.info(
            f"Blocked query for {domain}",
            extra={"domain": domain, "outcome": "blocked"}
        )
        return error_response(403, f"Domain '{domain}' is blocked.")

    try:
        answer = await resolver.forward(message, client_ip=_client_ip(request))
    except UpstreamUnavailable:
        return error_response(503, "Upstream resolver unavailable")
    except UpstreamError as exc:
        return error_response(502, f"Upstream error: {exc}")

    if not answer.ok:
        logger.warning(
            f"Upstream returned HTTP {answer.status}",
            extra={"domain": domain, "status_code": answer.status, "reason": answer.reason, "outcome": "error"}
        )
        return error_response(answer.status, f"Upstream error: {answer.reason}")

    return Response(
        content=answer.body,
        status_code=200,
        media_type=DNS_MESSAGE,
        headers={"Cache-Control": answer.cache_control or settings.upstream.default_cache_control},
    )


@router.post(DOH_PATH)
async def doh_post(
    request: Request,
    blocklist: Blocklist = Depends(blocklist_dep),
    resolver: UpstreamResolver = Depends(resolver_dep),
    settings: ProxySettings = Depends(settings_dep),
):
    if request.headers.get("content-type") != DNS_MESSAGE:
        return error_response(400, INVALID_REQUEST)
    message = await request.body()
    return await answer_query(message, request, blocklist, resolver, settings)


@router.get(DOH_PATH)
async def doh_get(
    request: Request,
    dns: Optional[str] = Query(None),
    blocklist: Blocklist = Depends(blocklist_dep),
    resolver: UpstreamResolver = Depends(resolver_dep),
    settings: ProxySettings = Depends(settings_dep),
):
    if not dns:
        return error_response(400, "Missing dns parameter")
    try:
        message = decode_dns_param(dns)
    except ValueError:
        return error_response(400, "Invalid DNS parameter encoding")
    return await answer_query(message, request, blocklist, resolver, settings)


@router.api_route(DOH_PATH, methods=["PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"])
async def doh_unsupported():
    return error_response(400, INVALID_REQUEST)
