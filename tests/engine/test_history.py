"""Tests for backfill, upload, bulk delete and stable-id publishing."""

from __future__ import annotations

import json
import time

import httpx
import pytest

from feed_courier.clients import LookupClient
from feed_courier.engine import BULK_DELETE_TITLE, SyncEngine
from feed_courier.exceptions import ConfigurationError, LookupRelayError
from feed_courier.formatting import BULK_DELETE_COLOR
from feed_courier.schemas import LookupRelayConfig
from feed_courier.utils.config import get_settings

DAY = 24 * 60 * 60


def _now() -> int:
    return int(time.time())


@pytest.fixture
def lookup_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def lookup_transport(lookup_requests) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        lookup_requests.append(request)
        if request.url.path == "/upload":
            return httpx.Response(200, json={"ok": True, "message": "Map saved"})
        if request.url.path == "/lookup":
            return httpx.Response(
                200,
                json={
                    "connectionId": request.url.params["connectionId"],
                    "mediaId": request.url.params["mediaId"],
                    "remoteItemId": "remote-99",
                },
            )
        return httpx.Response(404, json={"error": "not found"})

    return httpx.MockTransport(handler)


@pytest.fixture
def publishing_engine(store, feed_client, webhook_client, sleeper, lookup_transport) -> SyncEngine:
    return SyncEngine(
        store,
        feed_client,
        webhook_client,
        settings=get_settings(),
        lookup_client_factory=lambda config: LookupClient.from_config(config, transport=lookup_transport),
        sleep=sleeper,
    )


class TestFetchHistory:
    """Backfill walks every kind back to the cutoff."""

    @pytest.mark.asyncio
    async def test_collects_items_within_window(self, engine, services, connection_factory, post_factory):
        """Items newer than the cutoff are returned newest first."""

        now = _now()
        services.posts = [
            post_factory(3, now - DAY),
            post_factory(2, now - 3 * DAY),
            post_factory(1, now - 10 * DAY),
        ]
        connection = connection_factory()

        result = await engine.fetch_history(connection.id, days=7)

        assert result.severity == "success"
        assert result.message == "Found 2 posts"
        assert [history_item.item.id for history_item in result.items] == ["3", "2"]
        assert all(history_item.connection_id == connection.id for history_item in result.items)

    @pytest.mark.asyncio
    async def test_ignores_connection_kind_filter(self, engine, services, connection_factory, post_factory):
        """Backfill collects all kinds even for filtered connections."""

        now = _now()
        services.posts = [
            post_factory(2, now - 60, "text"),
            post_factory(1, now - 120, "quote", text="Words to live by"),
        ]
        connection = connection_factory(post_types=["photo"])

        result = await engine.fetch_history(connection.id, days=1)

        assert len(result.items) == 2

    @pytest.mark.asyncio
    async def test_marks_already_synced_items(self, engine, services, connection_factory, post_factory):
        """Each item carries its ledger status and existing stable id."""

        now = _now()
        services.posts = [post_factory(2, now - 60), post_factory(1, now - 120)]
        connection = connection_factory(synced_post_ids=["1"])
        issued = engine.ledger.stable_id(connection.id, "1")

        result = await engine.fetch_history(connection.id, days=1)

        by_id = {history_item.item.id: history_item for history_item in result.items}
        assert by_id["1"].synced is True
        assert by_id["1"].stable_id == issued
        assert by_id["2"].synced is False
        assert by_id["2"].stable_id is None

    @pytest.mark.asyncio
    async def test_empty_window_suggests_more_days(self, engine, services, connection_factory, post_factory):
        """No results produce a hint to widen the window."""

        services.posts = [post_factory(1, _now() - 30 * DAY)]
        connection = connection_factory()

        result = await engine.fetch_history(connection.id, days=7)

        assert result.items == []
        assert result.severity == "warning"
        assert result.message == "No posts found in the last 7 days. Try increasing the days."

    @pytest.mark.asyncio
    async def test_without_connection_uses_every_connection(
        self, engine, services, connection_factory, post_factory, other_webhook_url
    ):
        """Omitting the connection id includes disabled connections too."""

        services.blogs["otherblog"] = {"name": "otherblog", "title": "Other"}
        services.posts = [post_factory(1, _now() - 60)]
        connection_factory()
        connection_factory(
            blog_name="otherblog",
            name="Other",
            webhook_url=other_webhook_url,
            enabled=False,
        )

        result = await engine.fetch_history(days=1)

        assert {history_item.connection_name for history_item in result.items} == {"Test Blog", "Other"}

    @pytest.mark.asyncio
    async def test_continues_past_failing_connection(
        self, engine, services, store, connection_factory, post_factory
    ):
        """One unreachable feed is logged and the others are still collected."""

        services.posts = [post_factory(1, _now() - 60)]
        connection_factory(blog_name="vanished", name="Gone")
        connection_factory()

        result = await engine.fetch_history(days=1)

        assert result.errors == 1
        assert len(result.items) == 1
        entry = store.list_activity()[0]
        assert entry.type == "fetch_history_error"
        assert entry.text.startswith("Error fetching history for Gone:")

    @pytest.mark.asyncio
    async def test_backfill_limit_and_pacing(
        self, store, feed_client, webhook_client, services, sleeper, connection_factory, post_factory, monkeypatch
    ):
        """The backfill limit caps the walk and its page delay is awaited between pages."""

        monkeypatch.setenv("COURIER_BACKFILL_ITEM_LIMIT", "40")
        monkeypatch.setenv("COURIER_BACKFILL_PAGE_DELAY_SECONDS", "1")
        engine = SyncEngine(store, feed_client, webhook_client, settings=get_settings(reload=True), sleep=sleeper)

        now = _now()
        services.posts = [post_factory(1000 - index, now - 60 - index) for index in range(70)]
        connection = connection_factory()

        result = await engine.fetch_history(connection.id, days=1)

        assert result.limit_reached is True
        assert len(result.items) == 40
        assert services.page_requests == [0, 20]
        assert sleeper.calls.count(1.0) == 1

    @pytest.mark.asyncio
    async def test_repeated_fetch_failures_mark_partial(
        self, engine, services, connection_factory, post_factory
    ):
        """A page that keeps failing ends the walk with a partial result."""

        now = _now()
        services.posts = [post_factory(100 - index, now - 60 - index) for index in range(30)]
        services.page_failures = {20: 2}
        connection = connection_factory()

        result = await engine.fetch_history(connection.id, days=1)

        assert result.partial is True
        assert len(result.items) == 20
        assert result.severity == "warning"
        assert "stopped early" in result.message


class TestUploadHistory:
    """Delivering a selection of backfilled items."""

    @pytest.mark.asyncio
    async def test_uploads_oldest_first_and_marks_synced(
        self, engine, services, store, connection_factory, post_factory
    ):
        """Selected items are delivered chronologically and recorded in the ledger."""

        now = _now()
        services.posts = [
            post_factory(3, now - 60, title="Third entry"),
            post_factory(2, now - 120, title="Second entry"),
            post_factory(1, now - 180, title="First entry"),
        ]
        connection = connection_factory()
        history = await engine.fetch_history(connection.id, days=1)

        result = await engine.upload_history(history.items)

        assert result.delivered == 3
        assert result.message == "Uploaded 3 posts successfully"
        titles = [message["embeds"][0]["title"] for message in services.sent]
        assert titles == ["📝 First entry", "📝 Second entry", "📝 Third entry"]
        assert sorted(store.get_connection(connection.id).synced_post_ids) == ["1", "2", "3"]
        assert all(history_item.synced and history_item.stable_id for history_item in history.items)
        assert store.list_activity()[0].text == "Uploaded 3 historical posts"

    @pytest.mark.asyncio
    async def test_skips_items_already_synced(self, engine, services, connection_factory, post_factory):
        """Nothing is sent when every selected item was already delivered."""

        services.posts = [post_factory(1, _now() - 60)]
        connection = connection_factory(synced_post_ids=["1"])
        history = await engine.fetch_history(connection.id, days=1)

        result = await engine.upload_history(history.items)

        assert result.severity == "warning"
        assert result.message == "No new posts to upload"
        assert result.skipped == 1
        assert services.sent == []

    @pytest.mark.asyncio
    async def test_reports_failed_deliveries(self, engine, services, connection_factory, post_factory):
        """Rejected deliveries are counted and left unsynced."""

        now = _now()
        services.posts = [post_factory(2, now - 60), post_factory(1, now - 120)]
        services.webhook_statuses = [httpx.Response(500, text="nope")]
        connection = connection_factory()
        history = await engine.fetch_history(connection.id, days=1)

        result = await engine.upload_history(history.items)

        assert result.message == "Uploaded 1 posts, 1 failed"
        assert result.severity == "warning"
        assert [history_item.synced for history_item in history.items] == [True, False]


class TestRemoveAllPosts:
    """Bulk delete only clears local state and posts a notice."""

    @pytest.mark.asyncio
    async def test_sends_notice_and_clears_ledger(self, engine, services, store, connection_factory):
        """The notice is sent and both synced ids and stable ids are forgotten."""

        connection = connection_factory(synced_post_ids=["1", "2"])
        engine.ledger.stable_id(connection.id, "1")

        outcome = await engine.remove_all_posts(connection.id)

        assert outcome.severity == "success"
        assert "Manual deletion in Discord may be required" in outcome.message
        embed = services.sent[0]["embeds"][0]
        assert embed["title"] == BULK_DELETE_TITLE
        assert embed["color"] == BULK_DELETE_COLOR
        assert store.get_connection(connection.id).synced_post_ids == []
        assert engine.ledger.get_stable_id(connection.id, "1") is None
        assert store.list_activity()[0].type == "posts_removed"


class TestMediaMapPublishing:
    """Publishing and resolving stable ids through the lookup relay."""

    @pytest.mark.asyncio
    async def test_publish_requires_configured_relay(self, engine):
        """Publishing without a lookup relay is a configuration error."""

        with pytest.raises(ConfigurationError):
            await engine.publish_media_map()

    @pytest.mark.asyncio
    async def test_publish_sends_inverted_map(
        self, publishing_engine, store, connection_factory, lookup_requests
    ):
        """Stable ids are backfilled for legacy ledger entries and uploaded inverted."""

        store.set_lookup_relay(LookupRelayConfig(url="https://lookup.test/", api_key="secret"))
        connection = connection_factory(synced_post_ids=["42"])

        outcome = await publishing_engine.publish_media_map()

        assert outcome.message == "Map saved"
        stable_id = publishing_engine.ledger.get_stable_id(connection.id, "42")
        request = lookup_requests[0]
        assert str(request.url) == "https://lookup.test/upload"
        assert request.headers["X-API-Key"] == "secret"
        assert json.loads(request.content) == {"map": {connection.id: {stable_id: "42"}}}
        assert store.list_activity()[0].type == "media_map_published"

    @pytest.mark.asyncio
    async def test_resolve_prefers_local_map(self, publishing_engine, connection_factory, lookup_requests):
        """Known stable ids resolve without a network call."""

        connection = connection_factory()
        stable_id = publishing_engine.ledger.stable_id(connection.id, "42")

        assert await publishing_engine.resolve_media_id(connection.id, stable_id) == "42"
        assert lookup_requests == []

    @pytest.mark.asyncio
    async def test_resolve_falls_back_to_relay(self, publishing_engine, store, lookup_requests):
        """Unknown stable ids are looked up remotely."""

        store.set_lookup_relay(LookupRelayConfig(url="https://lookup.test"))

        assert await publishing_engine.resolve_media_id("conn", "media") == "remote-99"
        assert lookup_requests[0].url.params["mediaId"] == "media"

    @pytest.mark.asyncio
    async def test_resolve_without_relay_raises(self, engine):
        """With no relay configured an unknown id is an error."""

        with pytest.raises(LookupRelayError):
            await engine.resolve_media_id("conn", "media")
