"""Forwarding relay restricted to the upstream feed API host."""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse

from ...monitoring.metrics import record_relay_request
from ...utils.config import get_settings
from ...utils.logging import setup_logger
from ..dependencies import get_upstream_client

logger = setup_logger(__name__, context={"component": "relay_api"})
router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}


def _error(message: str, status_code: int) -> JSONResponse:
    record_relay_request("relay", status_code)
    return JSONResponse(
        status_code=status_code,
        content={"error": message},
        headers={"Access-Control-Allow-Origin": "*"},
    )


@router.options("/{path:path}", include_in_schema=False)
async def preflight(path: str) -> Response:
    """Answer CORS preflight requests for every path."""

    return Response(status_code=status.HTTP_200_OK, headers=PREFLIGHT_HEADERS)


@router.get("/")
async def forward(
    url: str | None = Query(default=None),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Fetch ``url`` from the upstream API and return its body verbatim."""

    if not url:
        return _error("Missing url parameter", status.HTTP_400_BAD_REQUEST)

    try:
        host = httpx.URL(url).host
    except httpx.InvalidURL:
        host = ""
    if host != get_settings().relay_upstream_host:
        logger.warning("Rejected relay target host '%s'", host, extra={"status": "forbidden"})
        return _error("Only Tumblr API requests allowed", status.HTTP_403_FORBIDDEN)

    try:
        upstream = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        logger.error("Upstream request failed: %s", exc, extra={"status": "error"})
        return _error(str(exc) or exc.__class__.__name__, status.HTTP_500_INTERNAL_SERVER_ERROR)

    record_relay_request("relay", upstream.status_code)
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type="application/json",
        headers={**CORS_HEADERS, "Cache-Control": "public, max-age=60"},
    )
