"""Shared FastAPI dependencies."""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from typing import Any

import httpx
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..models.repository import load_document, save_document
from ..utils.config import get_settings

MEDIA_MAP_KEY = "media_map"

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class MediaMapStore:
    """The published stable-id map, kept as one document under a fixed key."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url

    def get(self) -> dict[str, Any] | None:
        value = load_document(MEDIA_MAP_KEY, None, database_url=self.database_url)
        return value if isinstance(value, dict) else None

    def put(self, media_map: dict[str, Any]) -> None:
        save_document(MEDIA_MAP_KEY, media_map, database_url=self.database_url)


async def require_upload_key(x_api_key: str | None = Security(api_key_header)) -> str:
    """Validate the upload key against the configured lookup secret."""

    configured = get_settings().lookup_secret
    if not configured or x_api_key is None or not secrets.compare_digest(x_api_key, configured):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing API key",
        )
    return x_api_key


def get_media_map_store() -> MediaMapStore | None:
    """Return the map store, or ``None`` when no lookup database is configured."""

    database_url = get_settings().lookup_database_url
    if not database_url:
        return None
    return MediaMapStore(database_url)


async def get_upstream_client() -> AsyncIterator[httpx.AsyncClient]:
    """Yield the HTTP client used to forward relay requests upstream."""

    settings = get_settings()
    async with httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        headers={"User-Agent": "feed-courier-relay/0.1", "Accept": "application/json"},
    ) as client:
        yield client
