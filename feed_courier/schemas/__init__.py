"""Schemas package initialization."""
from .connection import (
    POST_TYPES,
    WEBHOOK_URL_PATTERN,
    Connection,
    ConnectionUpdate,
    is_valid_webhook_url,
)
from .item import HistoryItem, NormalizedItem, PostPage
from .results import (
    HistoryResult,
    Outcome,
    SyncAllResult,
    SyncResult,
    UploadResult,
    WebhookInfo,
)
from .state import (
    EXPORT_FORMAT_VERSION,
    ActivityEntry,
    AppSettings,
    ExportBundle,
    LookupRelayConfig,
    Stats,
)

__all__ = [
    "EXPORT_FORMAT_VERSION",
    "POST_TYPES",
    "WEBHOOK_URL_PATTERN",
    "ActivityEntry",
    "AppSettings",
    "Connection",
    "ConnectionUpdate",
    "ExportBundle",
    "HistoryItem",
    "HistoryResult",
    "LookupRelayConfig",
    "NormalizedItem",
    "Outcome",
    "PostPage",
    "Stats",
    "SyncAllResult",
    "SyncResult",
    "UploadResult",
    "WebhookInfo",
    "is_valid_webhook_url",
]
