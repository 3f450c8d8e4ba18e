"""Discord webhook delivery client."""

from __future__ import annotations

import time
from typing import Any

import httpx

from ..exceptions import DeliveryError, InvalidSinkError, RateLimitedError
from ..formatting import (
    DEFAULT_COLOR,
    DEFAULT_USERNAME,
    build_gallery_followup,
    build_notification,
    build_post_message,
    build_video_followup,
)
from ..monitoring.metrics import record_delivery
from ..schemas import NormalizedItem, WebhookInfo, is_valid_webhook_url
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import setup_logger
from ..utils.retry import parse_retry_after
from .delivery_queue import DeliveryQueue

logger = setup_logger(__name__, context={"component": "webhook_client"})


class WebhookClient:
    """Renders items and posts them to Discord webhooks through a shared queue.

    Every message, including notices and follow-ups, is a separate queue job,
    so the minimum spacing applies across all connections in the process.
    """

    def __init__(
        self,
        queue: DeliveryQueue | None = None,
        *,
        username: str = DEFAULT_USERNAME,
        settings: GlobalSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.queue = queue or DeliveryQueue(self._settings.delivery_delay_seconds)
        self.username = username
        self._transport = transport

    @staticmethod
    def is_valid_webhook_url(url: str | None) -> bool:
        return is_valid_webhook_url(url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.request_timeout_seconds,
            transport=self._transport,
        )

    def _retry_after(self, response: httpx.Response) -> float:
        header_value = parse_retry_after(response.headers.get("Retry-After"))
        if header_value is not None:
            return header_value
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            try:
                return max(float(body["retry_after"]), 0.0)
            except (KeyError, TypeError, ValueError):
                pass
        return self._settings.default_retry_after_seconds

    async def send_message(self, webhook_url: str, message: dict[str, Any]) -> None:
        """POST one message immediately, bypassing the queue.

        Raises:
            InvalidSinkError: If ``webhook_url`` is malformed; no request is made
            RateLimitedError: On HTTP 429
            DeliveryError: On any other non-2xx status or transport failure
        """

        if not is_valid_webhook_url(webhook_url):
            raise InvalidSinkError(webhook_url)

        started = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.post(webhook_url, json=message)
        except httpx.TimeoutException as exc:
            record_delivery("error")
            raise DeliveryError(
                None,
                message=f"Webhook request timed out after {self._settings.request_timeout_seconds} seconds",
            ) from exc
        except httpx.HTTPError as exc:
            record_delivery("error")
            raise DeliveryError(None, message=f"Webhook request failed: {exc}") from exc

        if response.status_code == 429:
            retry_after = self._retry_after(response)
            record_delivery("rate_limited")
            logger.warning(
                "Webhook rate limited; retry after %ss",
                retry_after,
                extra={"status": "rate_limited"},
            )
            raise RateLimitedError(retry_after)

        if not response.is_success:
            record_delivery("error")
            raise DeliveryError(response.status_code, response.text)

        record_delivery("success")
        logger.debug(
            "Webhook message delivered",
            extra={
                "status": "success",
                "duration_ms": int((time.perf_counter() - started) * 1000),
            },
        )

    async def queue_message(self, webhook_url: str, message: dict[str, Any]) -> None:
        """Deliver one message through the shared queue."""

        await self.queue.submit(lambda: self.send_message(webhook_url, message))

    async def send_post(
        self,
        webhook_url: str,
        item: NormalizedItem,
        *,
        stable_id: str | None = None,
        hide_user_info: bool = True,
        blog_info: dict[str, Any] | None = None,
    ) -> None:
        message = build_post_message(
            item,
            stable_id=stable_id,
            hide_user_info=hide_user_info,
            username=self.username,
            blog_info=blog_info,
        )
        await self.queue_message(webhook_url, message)

    async def send_gallery_post(
        self,
        webhook_url: str,
        item: NormalizedItem,
        *,
        stable_id: str | None = None,
        hide_user_info: bool = True,
        blog_info: dict[str, Any] | None = None,
    ) -> None:
        """Send the primary embed, then the remaining images as a follow-up."""

        await self.send_post(
            webhook_url,
            item,
            stable_id=stable_id,
            hide_user_info=hide_user_info,
            blog_info=blog_info,
        )
        followup = build_gallery_followup(item, username=self.username)
        if followup is not None:
            await self.queue_message(webhook_url, followup)

    async def send_video_post(
        self,
        webhook_url: str,
        item: NormalizedItem,
        *,
        stable_id: str | None = None,
        hide_user_info: bool = True,
        blog_info: dict[str, Any] | None = None,
    ) -> None:
        """Send the embed without a video line, then the playable URL when disclosable."""

        message = build_post_message(
            item,
            stable_id=stable_id,
            hide_user_info=hide_user_info,
            username=self.username,
            blog_info=blog_info,
            include_video_line=False,
        )
        await self.queue_message(webhook_url, message)
        followup = build_video_followup(item, username=self.username)
        if followup is not None:
            await self.queue_message(webhook_url, followup)

    async def send_notification(
        self,
        webhook_url: str,
        title: str,
        description: str,
        color: int = DEFAULT_COLOR,
    ) -> None:
        message = build_notification(title, description, color=color, username=self.username)
        await self.queue_message(webhook_url, message)

    async def test_webhook(self, webhook_url: str) -> WebhookInfo:
        """Check that the webhook exists and return its name, channel and guild."""

        if not is_valid_webhook_url(webhook_url):
            raise InvalidSinkError(webhook_url)

        try:
            async with self._client() as client:
                response = await client.get(webhook_url)
        except httpx.HTTPError as exc:
            raise DeliveryError(None, message=f"Webhook test failed: {exc}") from exc

        if not response.is_success:
            raise DeliveryError(
                response.status_code,
                response.text,
                message=f"Webhook test failed: {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return WebhookInfo(
            valid=True,
            name=data.get("name"),
            channel_id=_as_str(data.get("channel_id")),
            guild_id=_as_str(data.get("guild_id")),
        )


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)
