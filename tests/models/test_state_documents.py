"""Tests for keyed state documents and engine caching."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from feed_courier.models import base as models_base
from feed_courier.models.base import session_scope
from feed_courier.models.repository import (
    StateDocumentRepository,
    delete_document,
    load_document,
    save_document,
)


def test_round_trip_and_default() -> None:
    """Stored documents are returned; absent keys yield the default."""

    assert load_document("settings", {"fresh": True}) == {"fresh": True}

    save_document("settings", {"username": "Bot"})
    save_document("settings", {"username": "Other"})

    assert load_document("settings") == {"username": "Other"}


def test_loaded_values_are_detached_copies() -> None:
    """Mutating a loaded document does not change the stored one."""

    save_document("activity", [{"text": "one"}])

    loaded = load_document("activity")
    loaded.append({"text": "two"})

    assert load_document("activity") == [{"text": "one"}]


def test_delete_document() -> None:
    """Deleting reports whether anything was removed."""

    save_document("api_key", "secret")

    assert delete_document("api_key") is True
    assert delete_document("api_key") is False
    assert load_document("api_key") is None


def test_repository_lists_keys() -> None:
    """Keys are listed in sorted order."""

    save_document("stats", {"total_synced": 1})
    save_document("connections", [])

    with session_scope() as session:
        keys = StateDocumentRepository(session).keys()

    assert keys == ["connections", "stats"]


def test_explicit_database_urls_are_isolated(tmp_path: Path) -> None:
    """Documents written to one database are invisible in another."""

    other_url = f"sqlite:///{tmp_path / 'other.sqlite'}"

    save_document("media_map", {"conn": {}}, database_url=other_url)

    assert load_document("media_map") is None
    assert load_document("media_map", database_url=other_url) == {"conn": {}}


def test_engine_is_cached_per_url(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Each URL gets one engine until the cache is reset."""

    created: list[str] = []
    real_create_engine = models_base._create_engine

    def _tracking_create_engine(url: str) -> Any:
        created.append(url)
        return real_create_engine(url)

    monkeypatch.setattr(models_base, "_create_engine", _tracking_create_engine)
    url = f"sqlite:///{tmp_path / 'cached.sqlite'}"

    first = models_base.get_engine(url)
    second = models_base.get_engine(url)
    models_base.reset_engine()
    third = models_base.get_engine(url)

    assert first is second
    assert third is not first
    assert created == [url, url]


def test_sqlite_engine_allows_cross_thread_use(monkeypatch: pytest.MonkeyPatch) -> None:
    """SQLite engines disable the same-thread check and skip pre-ping."""

    captured: dict[str, Any] = {}

    def _fake_create_engine(url: str, **kwargs: Any) -> Any:
        captured["url"] = url
        captured["kwargs"] = kwargs
        return object()

    monkeypatch.setattr(models_base, "create_engine", _fake_create_engine)

    models_base._create_engine("sqlite:///./state.db")

    assert captured["kwargs"]["connect_args"] == {"check_same_thread": False}
    assert captured["kwargs"]["pool_pre_ping"] is False
