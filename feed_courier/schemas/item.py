"""Schemas for fetched feed pages and normalized items."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PostPage(BaseModel):
    """One page of raw posts returned by the upstream posts endpoint."""

    posts: list[dict[str, Any]] = Field(default_factory=list)
    total_posts: int = 0
    blog: dict[str, Any] | None = None


class NormalizedItem(BaseModel):
    """A remote post reshaped for rendering. Built per pass and never persisted."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str = Field(..., description="Detected kind, may differ from the provider's")
    original_kind: str
    timestamp: int
    url: str | None = None
    blog_name: str | None = None
    title: str
    summary: str = ""
    images: list[str] = Field(default_factory=list)
    video: str | None = None
    note_count: int = 0
    tags: list[str] = Field(default_factory=list)
    is_reblog: bool = False


class HistoryItem(BaseModel):
    """A backfilled post annotated with its owning connection and ledger status."""

    connection_id: str
    connection_name: str
    webhook_url: str
    post: dict[str, Any]
    item: NormalizedItem
    synced: bool = False
    stable_id: str | None = None

    @property
    def timestamp(self) -> int:
        return self.item.timestamp
