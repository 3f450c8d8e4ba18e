"""Per-connection record of delivered items and their stable ids."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from .store import LocalStore, generate_id, utcnow

SYNCED_ID_LIMIT = 1000


class SyncLedger:
    """Tracks which remote items were delivered for each connection.

    Synced ids are kept per connection in insertion order and truncated to the
    most recent :data:`SYNCED_ID_LIMIT`. An item older than that window can be
    delivered again if it reappears in a later pagination window.

    Stable ids live in a separate ``{connection_id: {remote_id: stable_id}}``
    document. They are assigned lazily, never change once issued and are
    dropped together with their connection.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    def synced_ids(self, connection_id: str) -> list[str]:
        connection = self._store.get_connection(connection_id)
        return list(connection.synced_post_ids) if connection else []

    def is_synced(self, connection_id: str, remote_id: str | int) -> bool:
        return str(remote_id) in self.synced_ids(connection_id)

    def mark_synced(
        self, connection_id: str, remote_ids: Iterable[str | int], *, touch: bool = True
    ) -> bool:
        """Record ``remote_ids`` as delivered and, with ``touch``, stamp the connection's last sync.

        Returns ``False`` when the connection no longer exists.
        """

        connection = self._store.get_connection(connection_id)
        if connection is None:
            return False

        ids = list(connection.synced_post_ids)
        seen = set(ids)
        for remote_id in remote_ids:
            key = str(remote_id)
            if key not in seen:
                ids.append(key)
                seen.add(key)

        changes: dict[str, Any] = {"synced_post_ids": ids[-SYNCED_ID_LIMIT:]}
        if touch:
            changes["last_sync"] = utcnow()
        self._store.update_connection(connection_id, **changes)
        return True

    def clear_synced(self, connection_id: str) -> bool:
        return self._store.update_connection(connection_id, synced_post_ids=[]) is not None

    def get_stable_id(self, connection_id: str, remote_id: str | int) -> str | None:
        mapping = self._store.get_media_post_ids()
        return mapping.get(connection_id, {}).get(str(remote_id))

    def stable_id(self, connection_id: str, remote_id: str | int) -> str:
        """Return the stable id for the pair, issuing and persisting one on first use."""

        mapping = self._store.get_media_post_ids()
        per_connection = mapping.setdefault(connection_id, {})
        key = str(remote_id)
        existing = per_connection.get(key)
        if existing:
            return existing

        issued = generate_id()
        per_connection[key] = issued
        self._store.save_media_post_ids(mapping)
        return issued

    def drop_connection(self, connection_id: str) -> None:
        mapping = self._store.get_media_post_ids()
        if mapping.pop(connection_id, None) is not None:
            self._store.save_media_post_ids(mapping)

    def ensure_stable_ids(self) -> int:
        """Issue stable ids for synced items recorded before ids were tracked.

        Returns the number of ids issued.
        """

        mapping = self._store.get_media_post_ids()
        issued = 0
        for connection in self._store.list_connections():
            per_connection = mapping.setdefault(connection.id, {})
            for remote_id in connection.synced_post_ids:
                if remote_id not in per_connection:
                    per_connection[remote_id] = generate_id()
                    issued += 1
        if issued:
            self._store.save_media_post_ids(mapping)
        return issued

    def export_lookup_map(self) -> dict[str, dict[str, str]]:
        """Invert the stable-id map to ``{connection_id: {stable_id: remote_id}}``."""

        return {
            connection_id: {stable: remote for remote, stable in per_connection.items()}
            for connection_id, per_connection in self._store.get_media_post_ids().items()
        }
