"""Schemas for persisted application state documents."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import Severity
from .connection import Connection

EXPORT_FORMAT_VERSION = "1.0"


class AppSettings(BaseModel):
    """User-facing settings stored alongside connections."""

    model_config = ConfigDict(extra="ignore")

    auto_sync_enabled: bool = False
    sync_interval_minutes: int = Field(default=15, ge=1)
    hide_user_info: bool = True
    auto_publish_media_map: bool = False
    username: str = Field(default="Media Bot", min_length=1, max_length=80)


class ActivityEntry(BaseModel):
    """One line of the activity log, newest first."""

    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str
    text: str
    severity: Severity = "info"


class Stats(BaseModel):
    """Aggregate delivery counters."""

    total_synced: int = Field(default=0, ge=0)
    last_sync_time: datetime | None = None


class LookupRelayConfig(BaseModel):
    """Where and how to publish the stable-id map."""

    url: str
    api_key: str | None = None

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")


class ExportBundle(BaseModel):
    """Serialized snapshot of every state document plus a format version tag."""

    model_config = ConfigDict(extra="ignore")

    version: str = Field(..., min_length=1)
    exported_at: datetime | None = None
    api_key: str | None = None
    connections: list[Connection] | None = None
    settings: AppSettings | None = None
    activity: list[ActivityEntry] | None = None
    stats: Stats | None = None
    media_post_ids: dict[str, dict[str, str]] | None = None

    @field_validator("media_post_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            str(conn_id): {str(remote): str(stable) for remote, stable in (mapping or {}).items()}
            for conn_id, mapping in value.items()
        }
