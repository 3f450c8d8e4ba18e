"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from feed_courier.clients import DeliveryQueue, FeedClient, Relay, WebhookClient
from feed_courier.engine import SyncEngine
from feed_courier.models.base import reset_engine
from feed_courier.schemas import Connection
from feed_courier.store import LocalStore, generate_id
from feed_courier.utils.config import clear_settings_cache, get_settings

WEBHOOK_URL = "https://discord.com/api/webhooks/123456789/abc_DEF-123"
OTHER_WEBHOOK_URL = "https://discord.com/api/webhooks/987654321/xyz-789"
API_HOST = "api.tumblr.com"
TEST_RELAY = Relay(name="test-relay", template="https://relay.test/?url={url}")


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Point every test at its own SQLite file and remove pacing delays."""

    db_path = tmp_path_factory.mktemp("state-db") / "courier.sqlite"
    monkeypatch.setenv("COURIER_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("COURIER_FETCH_DELAY_SECONDS", "0")
    monkeypatch.setenv("COURIER_BACKFILL_PAGE_DELAY_SECONDS", "0")
    monkeypatch.setenv("COURIER_PAGE_RETRY_DELAY_SECONDS", "0")
    monkeypatch.setenv("COURIER_DELIVERY_DELAY_SECONDS", "0")
    for name in ("COURIER_API_KEY", "COURIER_LOOKUP_SECRET", "COURIER_LOOKUP_DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)

    clear_settings_cache()
    yield
    reset_engine()
    clear_settings_cache()


def make_post(post_id: int | str, timestamp: int, post_type: str = "text", **fields: Any) -> dict[str, Any]:
    """Build a minimal raw post as returned by the posts endpoint."""

    post: dict[str, Any] = {
        "id": int(post_id) if str(post_id).isdigit() else post_id,
        "id_string": str(post_id),
        "type": post_type,
        "timestamp": timestamp,
        "blog_name": "testblog",
        "post_url": f"https://testblog.tumblr.com/post/{post_id}",
        "note_count": 0,
        "tags": [],
    }
    post.update(fields)
    return post


@dataclass
class FakeServices:
    """In-memory upstream API, relay and webhook endpoints behind one MockTransport.

    ``posts`` is ordered newest first, like the real posts endpoint.
    ``page_failures`` maps an offset to how many times the relay should fail it.
    """

    posts: list[dict[str, Any]] = field(default_factory=list)
    blogs: dict[str, dict[str, Any]] = field(
        default_factory=lambda: {"testblog": {"name": "testblog", "title": "Test Blog"}}
    )
    page_failures: dict[int, int] = field(default_factory=dict)
    webhook_statuses: list[httpx.Response] = field(default_factory=list)
    sent: list[dict[str, Any]] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    page_requests: list[int] = field(default_factory=list)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "relay.test":
            return self._relay(httpx.URL(request.url.params["url"]))
        if request.url.host == "discord.com":
            return self._webhook(request)
        return httpx.Response(404, json={"error": "unknown host"})

    def _relay(self, target: httpx.URL) -> httpx.Response:
        if target.host != API_HOST:
            return httpx.Response(403, json={"error": "forbidden"})
        parts = target.path.strip("/").split("/")
        blog_name = parts[2].removesuffix(".tumblr.com")
        endpoint = parts[3]
        if blog_name not in self.blogs:
            return httpx.Response(
                404,
                json={"meta": {"status": 404, "msg": "Not Found"}, "response": []},
            )
        if endpoint == "info":
            return self._ok({"blog": self.blogs[blog_name]})

        offset = int(target.params.get("offset", "0"))
        limit = int(target.params.get("limit", "20"))
        self.page_requests.append(offset)
        remaining = self.page_failures.get(offset, 0)
        if remaining:
            self.page_failures[offset] = remaining - 1
            return httpx.Response(502, text="bad gateway")
        return self._ok(
            {
                "blog": self.blogs[blog_name],
                "posts": self.posts[offset : offset + limit],
                "total_posts": len(self.posts),
            }
        )

    @staticmethod
    def _ok(response: dict[str, Any]) -> httpx.Response:
        return httpx.Response(200, json={"meta": {"status": 200, "msg": "OK"}, "response": response})

    def _webhook(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(
                200,
                json={"name": "Courier", "channel_id": "111", "guild_id": "222"},
            )
        if self.webhook_statuses:
            response = self.webhook_statuses.pop(0)
            if not response.is_success:
                return response
        self.sent.append(json.loads(request.content))
        return httpx.Response(204)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


class SleepRecorder:
    """Awaitable stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def store() -> LocalStore:
    return LocalStore()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def feed_client(services: FakeServices) -> FeedClient:
    return FeedClient(
        "test-key",
        relays=[TEST_RELAY],
        settings=get_settings(),
        transport=services.transport,
    )


@pytest.fixture
def webhook_client(services: FakeServices) -> WebhookClient:
    return WebhookClient(DeliveryQueue(0), settings=get_settings(), transport=services.transport)


@pytest.fixture
def engine(
    store: LocalStore,
    feed_client: FeedClient,
    webhook_client: WebhookClient,
    sleeper: SleepRecorder,
) -> Iterator[SyncEngine]:
    yield SyncEngine(store, feed_client, webhook_client, settings=get_settings(), sleep=sleeper)


def add_connection(store: LocalStore, **overrides: Any) -> Connection:
    """Store a connection for ``testblog`` with sensible defaults."""

    data: dict[str, Any] = {
        "id": generate_id(),
        "blog_name": "testblog",
        "blog_title": "Test Blog",
        "name": "Test Blog",
        "webhook_url": WEBHOOK_URL,
        "post_types": [],
    }
    data.update(overrides)
    return store.add_connection(Connection(**data))


@pytest.fixture
def webhook_url() -> str:
    return WEBHOOK_URL


@pytest.fixture
def other_webhook_url() -> str:
    return OTHER_WEBHOOK_URL


@pytest.fixture
def post_factory():
    return make_post


@pytest.fixture
def connection_factory(store: LocalStore):
    def _factory(**overrides: Any) -> Connection:
        return add_connection(store, **overrides)

    return _factory
