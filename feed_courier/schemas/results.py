"""Result objects returned to callers of the sync engine."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ..exceptions import Severity
from .item import HistoryItem


class Outcome(BaseModel):
    """A short human-readable message plus a severity tag for the caller to render."""

    message: str
    severity: Severity = "info"


class SyncResult(Outcome):
    """Outcome of one incremental pass over a single connection."""

    connection_id: str
    connection_name: str | None = None
    delivered: int = 0
    failed: int = 0
    examined: int = 0
    partial: bool = False
    limit_reached: bool = False
    discarded: bool = False
    stopped_reason: str | None = None


class SyncAllResult(Outcome):
    """Aggregate outcome of a sequential pass over every enabled connection."""

    total_delivered: int = 0
    errors: int = 0
    results: list[SyncResult] = Field(default_factory=list)


class HistoryResult(Outcome):
    """Backfilled posts across one or more connections, newest first."""

    items: list[HistoryItem] = Field(default_factory=list)
    partial: bool = False
    limit_reached: bool = False
    errors: int = 0


class UploadResult(Outcome):
    """Outcome of delivering a selection of backfilled posts."""

    delivered: int = 0
    failed: int = 0
    skipped: int = 0


class WebhookInfo(BaseModel):
    """Details returned by a successful webhook reachability test."""

    valid: bool = True
    name: str | None = None
    channel_id: str | None = None
    guild_id: str | None = None
