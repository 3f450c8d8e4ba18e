"""Pydantic schemas for feed-to-webhook connections."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

WEBHOOK_URL_PATTERN = re.compile(r"^https://discord\.com/api/webhooks/\d+/[\w-]+$", re.ASCII)

POST_TYPES: tuple[str, ...] = ("text", "photo", "quote", "link", "chat", "audio", "video", "answer")


def is_valid_webhook_url(url: str | None) -> bool:
    """Return True when ``url`` matches the Discord webhook URL grammar."""

    if not url:
        return False
    return WEBHOOK_URL_PATTERN.fullmatch(url) is not None


def _normalize_post_types(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        raise ValueError("post_types must be a list of post type names")
    result: list[str] = []
    for item in value:
        name = str(item).strip().lower()
        if not name:
            continue
        if name not in POST_TYPES:
            raise ValueError(f"Unknown post type '{name}'")
        if name not in result:
            result.append(name)
    return result


class Connection(BaseModel):
    """Binding between one Tumblr blog and one Discord webhook."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="Locally generated, immutable identifier")
    blog_name: str = Field(..., min_length=1, description="Normalized lowercase blog handle")
    blog_title: str | None = None
    name: str = Field(..., min_length=1, description="Display name")
    webhook_url: str
    post_types: list[str] = Field(default_factory=list, description="Enabled kinds; empty means all")
    enabled: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_sync: datetime | None = None
    synced_post_ids: list[str] = Field(default_factory=list)

    @field_validator("webhook_url")
    @classmethod
    def _validate_webhook_url(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_webhook_url(value):
            raise ValueError("Invalid Discord webhook URL format")
        return value

    @field_validator("post_types", mode="before")
    @classmethod
    def _coerce_post_types(cls, value: Any) -> list[str]:
        return _normalize_post_types(value)

    @field_validator("synced_post_ids", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> list[str]:
        if value is None:
            return []
        return [str(item) for item in value]

    @field_validator("blog_name")
    @classmethod
    def _lowercase_blog(cls, value: str) -> str:
        return value.strip().lower()

    def accepts_kind(self, *kinds: str | None) -> bool:
        """Return True when any of ``kinds`` passes this connection's kind filter."""

        if not self.post_types:
            return True
        return any(kind in self.post_types for kind in kinds if kind)


class ConnectionUpdate(BaseModel):
    """Explicit edits to an existing connection. ``None`` leaves a field unchanged."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    webhook_url: str | None = None
    post_types: list[str] | None = None
    enabled: bool | None = None

    @field_validator("post_types", mode="before")
    @classmethod
    def _coerce_post_types(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        return _normalize_post_types(value)
