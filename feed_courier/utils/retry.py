"""Retry helpers for paging the upstream feed API."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar, cast

from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ..exceptions import FeedTransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PageRetryPolicy(BaseModel):
    """How a paginator reacts to a failed page fetch."""

    model_config = ConfigDict(extra="forbid")

    max_consecutive_failures: int = Field(default=2, ge=1)
    retry_delay_seconds: float = Field(default=2.0, ge=0)

    @classmethod
    def from_settings(cls, settings: Any) -> PageRetryPolicy:
        return cls(
            max_consecutive_failures=settings.max_consecutive_page_failures,
            retry_delay_seconds=settings.page_retry_delay_seconds,
        )


async def fetch_page_with_retry(
    fetch: Callable[[], Awaitable[T]],
    *,
    policy: PageRetryPolicy,
    log: logging.Logger | logging.LoggerAdapter | None = None,
    on_failure: Callable[[BaseException], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Fetch one page, retrying transport failures after a fixed delay.

    Only :class:`FeedTransportError` is retried; authentication and not-found
    errors propagate on the first attempt. When every attempt fails the last
    transport error is re-raised so the caller can stop paginating.
    """

    logger_to_use = log or logger
    if isinstance(logger_to_use, logging.LoggerAdapter):
        sleep_logger = cast(logging.Logger, logger_to_use.logger)
    else:
        sleep_logger = logger_to_use

    def _before_sleep(retry_state: Any) -> None:
        outcome = retry_state.outcome
        if on_failure is not None and outcome is not None and outcome.failed:
            on_failure(outcome.exception())
        before_sleep_log(sleep_logger, logging.WARNING)(retry_state)

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.max_consecutive_failures),
        wait=wait_fixed(policy.retry_delay_seconds),
        retry=retry_if_exception_type(FeedTransportError),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            return await fetch()

    raise RuntimeError("Retry loop exited without producing a page")  # pragma: no cover


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in seconds or as an HTTP date."""

    if value is None:
        return None
    trimmed = value.strip()
    if trimmed == "":
        return None
    try:
        seconds = float(trimmed)
    except ValueError:
        seconds = None
    if seconds is not None:
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        parsed = parsedate_to_datetime(trimmed)
    except (TypeError, ValueError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    now = datetime.now(timezone.utc)
    delay = (parsed - now).total_seconds()
    return max(delay, 0.0)
