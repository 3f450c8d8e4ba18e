"""Validated creation, editing and removal of connections."""

from __future__ import annotations

from collections.abc import Sequence

from .clients import FeedClient, WebhookClient, extract_blog_name
from .exceptions import ConnectionNotFoundError, FeedNotFoundError, InvalidSinkError
from .ledger import SyncLedger
from .schemas import Connection, ConnectionUpdate, WebhookInfo, is_valid_webhook_url
from .store import LocalStore, generate_id
from .utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "connections"})

DEFAULT_POST_TYPES: tuple[str, ...] = ("photo", "video", "text")


class ConnectionService:
    """Creates and edits connections after checking the feed and the webhook.

    Validation failures raise to the caller and nothing is saved.
    """

    def __init__(
        self,
        store: LocalStore,
        feed_client: FeedClient,
        webhook_client: WebhookClient,
        *,
        ledger: SyncLedger | None = None,
    ) -> None:
        self.store = store
        self.feed_client = feed_client
        self.webhook_client = webhook_client
        self.ledger = ledger or SyncLedger(store)

    async def _check_webhook(self, webhook_url: str) -> WebhookInfo:
        if not is_valid_webhook_url(webhook_url):
            raise InvalidSinkError(webhook_url)
        return await self.webhook_client.test_webhook(webhook_url)

    async def add_connection(
        self,
        blog: str,
        webhook_url: str,
        *,
        name: str | None = None,
        post_types: Sequence[str] | None = None,
        enabled: bool = True,
    ) -> Connection:
        """Validate the blog and webhook, then store a new connection.

        Raises:
            FeedNotFoundError: If the blog cannot be resolved
            InvalidSinkError: If the webhook URL is malformed
            DeliveryError: If the webhook does not answer the reachability test
        """

        webhook_url = (webhook_url or "").strip()
        if not is_valid_webhook_url(webhook_url):
            raise InvalidSinkError(webhook_url)

        blog_name = extract_blog_name(blog)
        if not blog_name:
            raise FeedNotFoundError(str(blog), "enter a Tumblr blog URL or username")

        info = await self.feed_client.get_blog_info(blog_name)
        await self._check_webhook(webhook_url)

        title = info.get("title") or blog_name
        connection = Connection(
            id=generate_id(),
            blog_name=blog_name,
            blog_title=title,
            name=(name or "").strip() or title,
            webhook_url=webhook_url,
            post_types=list(DEFAULT_POST_TYPES if post_types is None else post_types),
            enabled=enabled,
        )
        self.store.add_connection(connection)
        self.store.add_activity("connection_added", f"Added connection for {blog_name}", "success")
        logger.info(
            "Added connection for %s",
            blog_name,
            extra={"connection_id": connection.id, "status": "success"},
        )
        return connection

    async def update_connection(self, connection_id: str, update: ConnectionUpdate) -> Connection:
        """Apply ``update``; a changed webhook is validated before saving.

        The blog handle is fixed once a connection exists.
        """

        connection = self.store.require_connection(connection_id)
        changes = update.model_dump(exclude_none=True)
        if "name" in changes:
            changes["name"] = changes["name"].strip() or connection.blog_title or connection.blog_name
        if "webhook_url" in changes:
            changes["webhook_url"] = changes["webhook_url"].strip()
            if changes["webhook_url"] != connection.webhook_url:
                await self._check_webhook(changes["webhook_url"])
        if not changes:
            return connection

        updated = self.store.update_connection(connection_id, **changes)
        if updated is None:
            return self.store.require_connection(connection_id)
        self.store.add_activity("connection_updated", f"Updated connection for {connection.blog_name}")
        return updated

    def set_enabled(self, connection_id: str, enabled: bool) -> Connection:
        self.store.require_connection(connection_id)
        updated = self.store.update_connection(connection_id, enabled=enabled)
        if updated is None:
            raise ConnectionNotFoundError(connection_id)
        return updated

    def delete_connection(self, connection_id: str) -> Connection:
        """Remove the connection together with its ledger entries and stable ids."""

        connection = self.store.require_connection(connection_id)
        self.store.delete_connection(connection_id)
        self.ledger.drop_connection(connection_id)
        self.store.add_activity("connection_deleted", f"Deleted connection for {connection.blog_name}")
        logger.info(
            "Deleted connection for %s",
            connection.blog_name,
            extra={"connection_id": connection_id, "status": "success"},
        )
        return connection
