"""Typed access to the locally persisted state documents."""

from __future__ import annotations

import secrets
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConnectionNotFoundError, ImportValidationError, Severity
from .models.repository import delete_document, load_document, save_document
from .schemas import (
    EXPORT_FORMAT_VERSION,
    ActivityEntry,
    AppSettings,
    Connection,
    ExportBundle,
    LookupRelayConfig,
    Stats,
)

ACTIVITY_LOG_LIMIT = 100

CONNECTIONS_KEY = "connections"
SETTINGS_KEY = "settings"
ACTIVITY_KEY = "activity"
STATS_KEY = "stats"
MEDIA_POST_IDS_KEY = "media_post_ids"
API_KEY_KEY = "api_key"
CUSTOM_RELAY_KEY = "custom_relay"
RELAY_PREFERENCE_KEY = "relay_preference"
LOOKUP_RELAY_KEY = "lookup_relay"

ALL_KEYS = (
    CONNECTIONS_KEY,
    SETTINGS_KEY,
    ACTIVITY_KEY,
    STATS_KEY,
    MEDIA_POST_IDS_KEY,
    API_KEY_KEY,
    CUSTOM_RELAY_KEY,
    RELAY_PREFERENCE_KEY,
    LOOKUP_RELAY_KEY,
)


def generate_id() -> str:
    """Return a short opaque identifier: base-36 milliseconds plus random hex."""

    millis = int(time.time() * 1000)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    encoded = ""
    while millis:
        millis, remainder = divmod(millis, 36)
        encoded = digits[remainder] + encoded
    return f"{encoded or '0'}{secrets.token_hex(5)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocalStore:
    """Keyed JSON documents backed by the SQL state table.

    Every accessor reads and writes a whole document; there is no cross-key
    transaction. A single process owns the store.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url

    def _load(self, key: str, default: Any = None) -> Any:
        return load_document(key, default, database_url=self._database_url)

    def _save(self, key: str, value: Any) -> None:
        save_document(key, value, database_url=self._database_url)

    # Connections

    def list_connections(self) -> list[Connection]:
        raw = self._load(CONNECTIONS_KEY, [])
        return [Connection.model_validate(item) for item in raw]

    def save_connections(self, connections: Iterable[Connection]) -> None:
        self._save(CONNECTIONS_KEY, [conn.model_dump(mode="json") for conn in connections])

    def get_connection(self, connection_id: str) -> Connection | None:
        for connection in self.list_connections():
            if connection.id == connection_id:
                return connection
        return None

    def require_connection(self, connection_id: str) -> Connection:
        connection = self.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return connection

    def has_connection(self, connection_id: str) -> bool:
        return self.get_connection(connection_id) is not None

    def add_connection(self, connection: Connection) -> Connection:
        connections = self.list_connections()
        connections.append(connection)
        self.save_connections(connections)
        return connection

    def update_connection(self, connection_id: str, **changes: Any) -> Connection | None:
        """Apply ``changes`` to one connection, returning ``None`` if it no longer exists."""

        connections = self.list_connections()
        for index, connection in enumerate(connections):
            if connection.id == connection_id:
                merged = connection.model_dump()
                merged.update(changes)
                updated = Connection.model_validate(merged)
                connections[index] = updated
                self.save_connections(connections)
                return updated
        return None

    def delete_connection(self, connection_id: str) -> bool:
        connections = self.list_connections()
        remaining = [conn for conn in connections if conn.id != connection_id]
        if len(remaining) == len(connections):
            return False
        self.save_connections(remaining)
        return True

    # Settings

    def get_settings(self) -> AppSettings:
        return AppSettings.model_validate(self._load(SETTINGS_KEY, {}))

    def save_settings(self, settings: AppSettings) -> None:
        self._save(SETTINGS_KEY, settings.model_dump(mode="json"))

    def update_settings(self, **changes: Any) -> AppSettings:
        merged = self.get_settings().model_dump()
        merged.update(changes)
        settings = AppSettings.model_validate(merged)
        self.save_settings(settings)
        return settings

    # Activity log

    def list_activity(self) -> list[ActivityEntry]:
        return [ActivityEntry.model_validate(item) for item in self._load(ACTIVITY_KEY, [])]

    def add_activity(self, type_: str, text: str, severity: Severity = "info") -> ActivityEntry:
        entry = ActivityEntry(id=generate_id(), type=type_, text=text, severity=severity)
        log = self._load(ACTIVITY_KEY, [])
        log.insert(0, entry.model_dump(mode="json"))
        self._save(ACTIVITY_KEY, log[:ACTIVITY_LOG_LIMIT])
        return entry

    def clear_activity(self) -> None:
        self._save(ACTIVITY_KEY, [])

    # Stats

    def get_stats(self) -> Stats:
        return Stats.model_validate(self._load(STATS_KEY, {}))

    def increment_synced_count(self, count: int = 1) -> Stats:
        stats = self.get_stats()
        updated = Stats(total_synced=stats.total_synced + count, last_sync_time=utcnow())
        self._save(STATS_KEY, updated.model_dump(mode="json"))
        return updated

    # Stable-id map

    def get_media_post_ids(self) -> dict[str, dict[str, str]]:
        return self._load(MEDIA_POST_IDS_KEY, {})

    def save_media_post_ids(self, mapping: dict[str, dict[str, str]]) -> None:
        self._save(MEDIA_POST_IDS_KEY, mapping)

    # Credentials and relay configuration

    def get_api_key(self) -> str | None:
        return self._load(API_KEY_KEY) or None

    def set_api_key(self, api_key: str | None) -> None:
        if api_key:
            self._save(API_KEY_KEY, api_key)
        else:
            delete_document(API_KEY_KEY, database_url=self._database_url)

    def get_custom_relay(self) -> str | None:
        return self._load(CUSTOM_RELAY_KEY) or None

    def set_custom_relay(self, url: str | None) -> None:
        if url:
            self._save(CUSTOM_RELAY_KEY, url.strip())
        else:
            delete_document(CUSTOM_RELAY_KEY, database_url=self._database_url)

    def get_relay_preference(self) -> str | None:
        return self._load(RELAY_PREFERENCE_KEY) or None

    def set_relay_preference(self, name: str) -> None:
        self._save(RELAY_PREFERENCE_KEY, name)

    def get_lookup_relay(self) -> LookupRelayConfig | None:
        raw = self._load(LOOKUP_RELAY_KEY)
        if not raw:
            return None
        return LookupRelayConfig.model_validate(raw)

    def set_lookup_relay(self, config: LookupRelayConfig | None) -> None:
        if config is None:
            delete_document(LOOKUP_RELAY_KEY, database_url=self._database_url)
        else:
            self._save(LOOKUP_RELAY_KEY, config.model_dump(mode="json"))

    # Export / import

    def export_bundle(self) -> ExportBundle:
        return ExportBundle(
            version=EXPORT_FORMAT_VERSION,
            exported_at=utcnow(),
            api_key=self.get_api_key(),
            connections=self.list_connections(),
            settings=self.get_settings(),
            activity=self.list_activity(),
            stats=self.get_stats(),
            media_post_ids=self.get_media_post_ids(),
        )

    def import_bundle(self, data: Any) -> ExportBundle:
        """Validate ``data`` and apply every document it carries.

        Raises:
            ImportValidationError: If the version tag is missing or a document is malformed
        """

        if not isinstance(data, dict) or not data.get("version"):
            raise ImportValidationError("Invalid import data: missing format version")
        try:
            bundle = ExportBundle.model_validate(data)
        except PydanticValidationError as exc:
            raise ImportValidationError(f"Invalid import data: {exc}") from exc

        if bundle.api_key:
            self.set_api_key(bundle.api_key)
        if bundle.connections is not None:
            self.save_connections(bundle.connections)
        if bundle.settings is not None:
            self.save_settings(bundle.settings)
        if bundle.activity is not None:
            self._save(
                ACTIVITY_KEY,
                [entry.model_dump(mode="json") for entry in bundle.activity[:ACTIVITY_LOG_LIMIT]],
            )
        if bundle.stats is not None:
            self._save(STATS_KEY, bundle.stats.model_dump(mode="json"))
        if bundle.media_post_ids is not None:
            self.save_media_post_ids(bundle.media_post_ids)
        return bundle

    def clear_all(self) -> None:
        for key in ALL_KEYS:
            delete_document(key, database_url=self._database_url)
