"""Tumblr v2 API client with sequential relay fallback."""

from __future__ import annotations

import re
import time
from collections.abc import Sequence
from typing import Any
from urllib.parse import urlencode

import httpx
from cachetools import TTLCache

from ..exceptions import AuthError, FeedNotFoundError, FeedTransportError
from ..monitoring.metrics import record_relay_attempt
from ..schemas import PostPage
from ..utils.config import (
    MAX_POSTS_PER_REQUEST,
    GlobalSettings,
    get_service_configuration,
    get_settings,
)
from ..utils.logging import setup_logger
from .relays import Relay, RelayContext

logger = setup_logger(__name__, context={"component": "feed_client"})

_BLOG_NAME_PATTERNS = (
    re.compile(r"tumblr\.com/([^/?]+)", re.IGNORECASE),
    re.compile(r"([^/.]+)\.tumblr\.com", re.IGNORECASE),
    re.compile(r"^https?://([^/.]+)\.tumblr", re.IGNORECASE),
)


def extract_blog_name(value: str | None) -> str | None:
    """Return the lowercase blog handle from a name, ``@name``, or blog URL."""

    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    for pattern in _BLOG_NAME_PATTERNS:
        match = pattern.search(trimmed)
        if match and match.group(1):
            return match.group(1).lower()
    return trimmed.lstrip("@").lower() or None


class _RelayFailure(Exception):
    """A single relay attempt failed; the next candidate should be tried."""


class FeedClient:
    """Fetches blog info and posts through an ordered chain of relays.

    Candidates are tried one at a time: the user's custom relay first, then
    the public relays with the most recently successful one moved to the
    front. A candidate fails on a non-2xx status, an unparsable body, or an
    upstream ``meta.status`` other than 200. The first success is remembered
    in the injected :class:`RelayContext`.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        custom_relay: str | None = None,
        relays: Sequence[Relay] | None = None,
        context: RelayContext | None = None,
        settings: GlobalSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._api_key = api_key or self._settings.api_key
        self._custom_relay = custom_relay
        if relays is None:
            service_config = get_service_configuration(self._settings)
            relays = [Relay.from_definition(definition) for definition in service_config.relays]
        self._public_relays = list(relays)
        self._context = context or RelayContext()
        self._transport = transport
        self._blog_info_cache: TTLCache[str, dict[str, Any]] | None = None
        if self._settings.blog_info_cache_seconds > 0:
            self._blog_info_cache = TTLCache(
                maxsize=128, ttl=self._settings.blog_info_cache_seconds
            )

    @property
    def api_key(self) -> str | None:
        return self._api_key

    def set_api_key(self, api_key: str | None) -> None:
        self._api_key = api_key or None
        if self._blog_info_cache is not None:
            self._blog_info_cache.clear()

    def set_custom_relay(self, url: str | None) -> None:
        self._custom_relay = url or None

    @property
    def context(self) -> RelayContext:
        return self._context

    def candidate_relays(self) -> list[Relay]:
        """Return relays in the order the next request will try them."""

        candidates: list[Relay] = []
        if self._custom_relay:
            candidates.append(Relay.custom(self._custom_relay))
        if self._settings.enable_direct_relay:
            candidates.append(Relay.direct())
        candidates.extend(self._context.order(self._public_relays))
        return candidates

    def build_api_url(self, endpoint: str, params: dict[str, Any] | None = None) -> str:
        query: dict[str, Any] = {"api_key": self._api_key}
        for key, value in (params or {}).items():
            if value is None:
                continue
            query[key] = str(value).lower() if isinstance(value, bool) else value
        return f"{self._settings.api_base}{endpoint}?{urlencode(query)}"

    async def _request(self, endpoint: str, params: dict[str, Any], *, blog_name: str) -> dict[str, Any]:
        if not self._api_key:
            raise AuthError("Tumblr API key not configured.")

        target_url = self.build_api_url(endpoint, params)
        last_error: Exception | None = None

        async with httpx.AsyncClient(
            timeout=self._settings.request_timeout_seconds,
            transport=self._transport,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        ) as client:
            for relay in self.candidate_relays():
                started = time.perf_counter()
                try:
                    payload = await self._attempt(client, relay, target_url, blog_name)
                except _RelayFailure as exc:
                    last_error = exc
                    record_relay_attempt(relay.name, "failure")
                    logger.warning(
                        "Relay %s failed: %s",
                        relay.name,
                        exc,
                        extra={"status": "failure"},
                    )
                    continue

                record_relay_attempt(relay.name, "success")
                self._context.remember(relay.name)
                logger.debug(
                    "Relay %s succeeded",
                    relay.name,
                    extra={
                        "status": "success",
                        "duration_ms": int((time.perf_counter() - started) * 1000),
                    },
                )
                return payload

        raise FeedTransportError(
            "All relays failed. Configure a custom relay with 'config set-relay'. "
            f"Last error: {last_error}"
        )

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        relay: Relay,
        target_url: str,
        blog_name: str,
    ) -> dict[str, Any]:
        try:
            response = await client.get(relay.build(target_url))
        except httpx.TimeoutException as exc:
            raise _RelayFailure(f"timed out after {self._settings.request_timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise _RelayFailure(f"request failed: {exc}") from exc

        try:
            data = relay.parse(response.text)
        except ValueError as exc:
            if response.is_success:
                raise _RelayFailure("invalid JSON response") from exc
            data = None

        meta = data.get("meta") if isinstance(data, dict) else None
        meta_status = meta.get("status") if isinstance(meta, dict) else None
        meta_message = meta.get("msg") if isinstance(meta, dict) else None

        # The provider answered; another relay would get the same verdict.
        if meta_status == 404:
            raise FeedNotFoundError(blog_name, meta_message)
        if meta_status == 401:
            raise AuthError(f"Tumblr rejected the API key: {meta_message or 'Unauthorized'}")

        if not response.is_success:
            raise _RelayFailure(f"HTTP {response.status_code}: {response.text[:200]}")
        if not isinstance(data, dict):
            raise _RelayFailure("unexpected response shape")
        if meta_status is not None and meta_status != 200:
            raise _RelayFailure(meta_message or f"Tumblr API error {meta_status}")

        body = data.get("response")
        if not isinstance(body, dict):
            raise _RelayFailure("response body missing")
        return body

    async def get_blog_info(self, blog: str) -> dict[str, Any]:
        """Return blog metadata, raising :class:`FeedNotFoundError` for unknown blogs."""

        blog_name = extract_blog_name(blog)
        if not blog_name:
            raise FeedNotFoundError(str(blog), "invalid blog name")

        if self._blog_info_cache is not None and blog_name in self._blog_info_cache:
            return self._blog_info_cache[blog_name]

        payload = await self._request(f"/blog/{blog_name}.tumblr.com/info", {}, blog_name=blog_name)
        info = payload.get("blog") or {}
        if self._blog_info_cache is not None:
            self._blog_info_cache[blog_name] = info
        return info

    async def get_posts(
        self,
        blog: str,
        *,
        limit: int = MAX_POSTS_PER_REQUEST,
        offset: int = 0,
        before: int | None = None,
        post_type: str | None = None,
    ) -> PostPage:
        """Fetch one page of posts, newest first."""

        blog_name = extract_blog_name(blog)
        if not blog_name:
            raise FeedNotFoundError(str(blog), "invalid blog name")

        params: dict[str, Any] = {
            "limit": max(1, min(limit, MAX_POSTS_PER_REQUEST)),
            "offset": max(offset, 0),
            "reblog_info": True,
            "notes_info": True,
            "type": post_type,
            "before": before,
        }
        payload = await self._request(f"/blog/{blog_name}.tumblr.com/posts", params, blog_name=blog_name)
        posts = payload.get("posts") or []
        return PostPage(
            posts=[post for post in posts if isinstance(post, dict)],
            total_posts=int(payload.get("total_posts") or 0),
            blog=payload.get("blog"),
        )
