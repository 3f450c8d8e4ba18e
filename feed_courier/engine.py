"""Sync engine: fetches new feed items and delivers them to each connection's webhook."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from .clients import FeedClient, LookupClient, WebhookClient
from .exceptions import (
    ConfigurationError,
    FeedCourierError,
    FeedTransportError,
    InvalidSinkError,
    LookupRelayError,
    describe_error,
)
from .formatting import BULK_DELETE_COLOR
from .ledger import SyncLedger
from .monitoring.metrics import record_page_failure, record_sync_pass
from .normalizer import normalize_post
from .schemas import (
    AppSettings,
    Connection,
    HistoryItem,
    HistoryResult,
    LookupRelayConfig,
    NormalizedItem,
    Outcome,
    SyncAllResult,
    SyncResult,
    UploadResult,
)
from .store import LocalStore, utcnow
from .utils.config import GlobalSettings, get_settings
from .utils.logging import log_sync_pass, setup_logger
from .utils.retry import PageRetryPolicy, fetch_page_with_retry

logger = setup_logger(__name__, context={"component": "sync_engine"})

BULK_DELETE_TITLE = "Bulk Delete Triggered"
BULK_DELETE_DESCRIPTION = (
    "All posts from this blog will be considered deleted for sync purposes. "
    "Manual deletion in Discord may be required for old posts."
)

LookupClientFactory = Callable[[LookupRelayConfig], LookupClient]


@dataclass
class _Batch:
    """Items collected by one paginated walk of a feed, newest first."""

    entries: list[tuple[dict[str, Any], NormalizedItem]] = field(default_factory=list)
    examined: int = 0
    partial: bool = False
    limit_reached: bool = False
    stopped_reason: str = "exhausted"
    blog_info: dict[str, Any] | None = None


class SyncEngine:
    """
    Orchestrates incremental sync, backfill and upload for stored connections.

    The engine owns the connection records and the ledger while a pass runs.
    Passes are sequential: ``sync_all`` walks enabled connections one at a
    time and never interleaves two pipelines. Page-fetch and per-item delivery
    errors are converted into counters, log lines and one activity entry per
    pass; they do not escape ``sync_all``.
    """

    def __init__(
        self,
        store: LocalStore,
        feed_client: FeedClient,
        webhook_client: WebhookClient,
        *,
        ledger: SyncLedger | None = None,
        settings: GlobalSettings | None = None,
        lookup_client_factory: LookupClientFactory | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.feed_client = feed_client
        self.webhook_client = webhook_client
        self.ledger = ledger or SyncLedger(store)
        self._settings = settings or get_settings()
        self._lookup_client_factory = lookup_client_factory or LookupClient.from_config
        self._sleep = sleep

    # Pagination

    async def _collect(
        self,
        connection: Connection,
        *,
        cutoff: int,
        inclusive: bool,
        limit: int,
        page_delay: float,
        mode: str,
        apply_kind_filter: bool = False,
    ) -> _Batch:
        """Page through the feed from offset 0 until the cutoff, an empty page, or ``limit``.

        Items at or older than ``cutoff`` (strictly older when ``inclusive`` is
        false) end pagination. A page that still fails after the retry policy is
        exhausted ends pagination with ``partial`` set. With ``apply_kind_filter``
        only items accepted by the connection's kind filter are kept.
        """

        policy = PageRetryPolicy.from_settings(self._settings)
        batch = _Batch()
        offset = 0

        def _on_failure(exc: BaseException) -> None:
            record_page_failure(mode)
            logger.warning(
                "Page fetch at offset %d failed: %s",
                offset,
                exc,
                extra={"connection_id": connection.id, "mode": mode, "status": "retry"},
            )

        while True:
            if offset > 0 and page_delay > 0:
                await self._sleep(page_delay)

            try:
                page = await fetch_page_with_retry(
                    lambda offset=offset: self.feed_client.get_posts(
                        connection.blog_name,
                        limit=self._settings.page_size,
                        offset=offset,
                    ),
                    policy=policy,
                    log=logger,
                    on_failure=_on_failure,
                    sleep=self._sleep,
                )
            except FeedTransportError as exc:
                record_page_failure(mode)
                logger.warning(
                    "Stopping pagination after %d consecutive failures: %s",
                    policy.max_consecutive_failures,
                    exc,
                    extra={"connection_id": connection.id, "mode": mode, "status": "partial"},
                )
                batch.partial = True
                batch.stopped_reason = "fetch_errors"
                return batch

            if batch.blog_info is None and page.blog:
                batch.blog_info = page.blog
            if not page.posts:
                batch.stopped_reason = "exhausted"
                return batch

            for post in page.posts:
                timestamp = int(post.get("timestamp") or 0)
                if timestamp < cutoff or (inclusive and timestamp == cutoff):
                    batch.stopped_reason = "watermark"
                    return batch
                batch.examined += 1
                item = normalize_post(post)
                if not apply_kind_filter or connection.accepts_kind(item.original_kind, item.kind):
                    batch.entries.append((post, item))

            offset += len(page.posts)
            if offset >= limit:
                batch.limit_reached = True
                batch.stopped_reason = "limit"
                logger.info(
                    "Reached %d item limit",
                    limit,
                    extra={"connection_id": connection.id, "mode": mode, "status": "limit"},
                )
                return batch

    # Delivery

    async def _dispatch(
        self,
        webhook_url: str,
        item: NormalizedItem,
        *,
        stable_id: str,
        app_settings: AppSettings,
        blog_info: dict[str, Any] | None,
    ) -> None:
        kwargs = {
            "stable_id": stable_id,
            "hide_user_info": app_settings.hide_user_info,
            "blog_info": blog_info,
        }
        if item.video:
            await self.webhook_client.send_video_post(webhook_url, item, **kwargs)
        elif len(item.images) > 1:
            await self.webhook_client.send_gallery_post(webhook_url, item, **kwargs)
        else:
            await self.webhook_client.send_post(webhook_url, item, **kwargs)

    async def _deliver_item(
        self,
        connection: Connection,
        item: NormalizedItem,
        *,
        app_settings: AppSettings,
        blog_info: dict[str, Any] | None = None,
    ) -> bool:
        """Deliver one item. Returns False on a per-item failure.

        :class:`InvalidSinkError` propagates because it fails every item of
        the connection.
        """

        stable_id = self.ledger.stable_id(connection.id, item.id)
        try:
            await self._dispatch(
                connection.webhook_url,
                item,
                stable_id=stable_id,
                app_settings=app_settings,
                blog_info=blog_info,
            )
        except InvalidSinkError:
            raise
        except FeedCourierError as exc:
            logger.warning(
                "Failed to deliver item %s: %s",
                item.id,
                exc,
                extra={"connection_id": connection.id, "status": "failure"},
            )
            return False
        return True

    def _prepare_delivery(self) -> AppSettings:
        app_settings = self.store.get_settings()
        self.webhook_client.username = app_settings.username
        return app_settings

    # Incremental sync

    async def sync_connection(self, connection_id: str) -> SyncResult:
        """Run one incremental pass for ``connection_id``.

        Raises:
            ConnectionNotFoundError: If the connection does not exist
        """

        connection = self.store.require_connection(connection_id)
        return await self._sync(connection, standalone=True)

    async def _sync(self, connection: Connection, *, standalone: bool) -> SyncResult:
        if not connection.enabled:
            return SyncResult(
                connection_id=connection.id,
                connection_name=connection.name,
                message=f"Connection {connection.name} is disabled",
                severity="warning",
                stopped_reason="disabled",
            )

        mode = "incremental"
        started = time.perf_counter()
        watermark = connection.last_sync or utcnow() - timedelta(
            hours=self._settings.default_lookback_hours
        )
        app_settings = self._prepare_delivery()

        delivered = failed = 0
        try:
            batch = await self._collect(
                connection,
                cutoff=int(watermark.timestamp()),
                inclusive=True,
                limit=self._settings.incremental_item_limit,
                page_delay=self._settings.fetch_delay_seconds,
                mode=mode,
                apply_kind_filter=True,
            )

            pending = [
                item for _, item in batch.entries if not self.ledger.is_synced(connection.id, item.id)
            ]
            # Provider order is newest first; deliver oldest first.
            pending.reverse()
            pending.sort(key=lambda item: item.timestamp)

            for item in pending:
                if not self.store.has_connection(connection.id):
                    return self._discarded(connection, mode, started)
                if not await self._deliver_item(
                    connection, item, app_settings=app_settings, blog_info=batch.blog_info
                ):
                    failed += 1
                    continue
                if not self.ledger.mark_synced(connection.id, [item.id], touch=not batch.partial):
                    return self._discarded(connection, mode, started)
                delivered += 1
        except FeedCourierError as exc:
            return self._failed(connection, exc, mode, started, delivered, standalone)

        # Items past a failed page were never seen, so a partial pass keeps its
        # starting watermark and the ledger skips what was already delivered.
        last_sync = watermark if batch.partial else utcnow()
        if self.store.update_connection(connection.id, last_sync=last_sync) is None:
            return self._discarded(connection, mode, started)
        self.store.increment_synced_count(delivered)

        partial = batch.partial
        severity = "warning" if failed or partial else "success"
        message = f"Synced {delivered} posts from {connection.name}"
        notes = []
        if failed:
            notes.append(f"{failed} failed")
        if partial:
            notes.append("stopped early after repeated fetch errors")
        if batch.limit_reached:
            notes.append(f"stopped at the {self._settings.incremental_item_limit} item limit")
        if notes:
            message = f"{message} ({'; '.join(notes)})"

        duration = time.perf_counter() - started
        status = "partial" if partial else "success"
        log_sync_pass(
            logger,
            connection.id,
            mode,
            int(duration * 1000),
            status,
            delivered=delivered,
            failed=failed,
            examined=batch.examined,
            stopped=batch.stopped_reason,
        )
        record_sync_pass(mode, status, delivered, duration)

        if standalone:
            self.store.add_activity("sync_complete", message, severity)
            if delivered:
                await self._maybe_auto_publish()

        return SyncResult(
            connection_id=connection.id,
            connection_name=connection.name,
            message=message,
            severity=severity,
            delivered=delivered,
            failed=failed,
            examined=batch.examined,
            partial=partial,
            limit_reached=batch.limit_reached,
            stopped_reason=batch.stopped_reason,
        )

    def _discarded(self, connection: Connection, mode: str, started: float) -> SyncResult:
        duration = time.perf_counter() - started
        log_sync_pass(logger, connection.id, mode, int(duration * 1000), "discarded")
        record_sync_pass(mode, "discarded", 0, duration)
        return SyncResult(
            connection_id=connection.id,
            connection_name=connection.name,
            message=f"Connection {connection.name} was removed during sync; results discarded",
            severity="warning",
            discarded=True,
            stopped_reason="discarded",
        )

    def _failed(
        self,
        connection: Connection,
        exc: FeedCourierError,
        mode: str,
        started: float,
        delivered: int,
        standalone: bool,
    ) -> SyncResult:
        detail, _ = describe_error(exc)
        message = f"Error syncing {connection.name}: {detail}"
        duration = time.perf_counter() - started
        log_sync_pass(
            logger,
            connection.id,
            mode,
            int(duration * 1000),
            "error",
            error=exc.__class__.__name__,
            delivered=delivered,
        )
        record_sync_pass(mode, "error", delivered, duration)
        if delivered:
            self.store.increment_synced_count(delivered)
        if standalone:
            self.store.add_activity("sync_error", message, "error")
        return SyncResult(
            connection_id=connection.id,
            connection_name=connection.name,
            message=message,
            severity="error",
            delivered=delivered,
            stopped_reason="error",
        )

    async def sync_all(self) -> SyncAllResult:
        """Sync every enabled connection in turn and record one aggregate entry."""

        connections = [conn for conn in self.store.list_connections() if conn.enabled]
        if not connections:
            return SyncAllResult(message="No enabled connections to sync", severity="warning")

        results: list[SyncResult] = []
        total = errors = 0
        for connection in connections:
            try:
                result = await self._sync(connection, standalone=False)
            except Exception:
                errors += 1
                logger.exception(
                    "Unexpected error while syncing %s",
                    connection.name,
                    extra={"connection_id": connection.id, "status": "error"},
                )
                continue
            results.append(result)
            total += result.delivered
            if result.severity == "error":
                errors += 1

        severity = "warning" if errors else "success"
        message = f"Synced {total} posts from {len(connections)} connections"
        self.store.add_activity("sync_all_complete", message, severity)
        if total:
            await self._maybe_auto_publish()

        return SyncAllResult(
            message=message,
            severity=severity,
            total_delivered=total,
            errors=errors,
            results=results,
        )

    async def run_auto_sync(
        self,
        interval_minutes: float | None = None,
        *,
        iterations: int | None = None,
    ) -> None:
        """Call :meth:`sync_all` every ``interval_minutes`` until cancelled.

        ``iterations`` bounds the number of passes; ``None`` runs forever.
        """

        completed = 0
        while iterations is None or completed < iterations:
            if completed:
                interval = interval_minutes or self.store.get_settings().sync_interval_minutes
                await self._sleep(interval * 60)
            result = await self.sync_all()
            logger.info(result.message, extra={"mode": "auto", "status": result.severity})
            completed += 1

    # Backfill

    async def fetch_history(
        self,
        connection_id: str | None = None,
        days: int | None = None,
    ) -> HistoryResult:
        """Collect every post from the last ``days`` days, newest first.

        All kinds are collected regardless of the connection's filter. Each item
        carries its ledger status and, when already issued, its stable id.
        """

        days = days or self._settings.default_history_days
        if connection_id:
            connections = [self.store.require_connection(connection_id)]
        else:
            connections = self.store.list_connections()
        if not connections:
            return HistoryResult(message="No connections selected", severity="warning")

        cutoff = int((utcnow() - timedelta(days=days)).timestamp())
        mode = "backfill"
        items: list[HistoryItem] = []
        partial = limit_reached = False
        errors = 0

        for connection in connections:
            started = time.perf_counter()
            try:
                batch = await self._collect(
                    connection,
                    cutoff=cutoff,
                    inclusive=False,
                    limit=self._settings.backfill_item_limit,
                    page_delay=self._settings.backfill_page_delay_seconds,
                    mode=mode,
                )
            except FeedCourierError as exc:
                errors += 1
                detail, _ = describe_error(exc)
                self.store.add_activity(
                    "fetch_history_error",
                    f"Error fetching history for {connection.name}: {detail}",
                    "error",
                )
                duration = time.perf_counter() - started
                log_sync_pass(logger, connection.id, mode, int(duration * 1000), "error", error=str(exc))
                record_sync_pass(mode, "error", 0, duration)
                continue

            for post, item in batch.entries:
                items.append(
                    HistoryItem(
                        connection_id=connection.id,
                        connection_name=connection.name,
                        webhook_url=connection.webhook_url,
                        post=post,
                        item=item,
                        synced=self.ledger.is_synced(connection.id, item.id),
                        stable_id=self.ledger.get_stable_id(connection.id, item.id),
                    )
                )
            partial = partial or batch.partial
            limit_reached = limit_reached or batch.limit_reached

            duration = time.perf_counter() - started
            status = "partial" if batch.partial else "success"
            log_sync_pass(
                logger,
                connection.id,
                mode,
                int(duration * 1000),
                status,
                found=len(batch.entries),
                examined=batch.examined,
                stopped=batch.stopped_reason,
            )
            record_sync_pass(mode, status, 0, duration)

        items.sort(key=lambda history_item: history_item.timestamp, reverse=True)

        if items:
            message = f"Found {len(items)} posts"
        else:
            message = f"No posts found in the last {days} days. Try increasing the days."
        if partial:
            message = f"{message} (stopped early after repeated fetch errors)"
        severity = "warning" if partial or errors or not items else "success"
        return HistoryResult(
            message=message,
            severity=severity,
            items=items,
            partial=partial,
            limit_reached=limit_reached,
            errors=errors,
        )

    async def upload_history(self, items: Iterable[HistoryItem]) -> UploadResult:
        """Deliver the unsynced items among ``items``, oldest first."""

        selected = list(items)
        pending = [
            history_item
            for history_item in selected
            if not history_item.synced
            and not self.ledger.is_synced(history_item.connection_id, history_item.item.id)
        ]
        skipped = len(selected) - len(pending)
        if not pending:
            return UploadResult(message="No new posts to upload", severity="warning", skipped=skipped)

        pending.sort(key=lambda history_item: history_item.timestamp)
        app_settings = self._prepare_delivery()
        started = time.perf_counter()
        delivered = failed = 0

        for history_item in pending:
            connection = self.store.get_connection(history_item.connection_id)
            if connection is None:
                skipped += 1
                continue
            try:
                ok = await self._deliver_item(connection, history_item.item, app_settings=app_settings)
            except InvalidSinkError as exc:
                logger.warning(
                    "Skipping item %s: %s",
                    history_item.item.id,
                    exc,
                    extra={"connection_id": connection.id, "status": "failure"},
                )
                ok = False
            if not ok:
                failed += 1
                continue
            if self.ledger.mark_synced(connection.id, [history_item.item.id]):
                history_item.synced = True
                history_item.stable_id = self.ledger.get_stable_id(connection.id, history_item.item.id)
                delivered += 1

        duration = time.perf_counter() - started
        record_sync_pass("upload", "partial" if failed else "success", delivered, duration)

        if delivered:
            self.store.increment_synced_count(delivered)
            self.store.add_activity("history_upload", f"Uploaded {delivered} historical posts", "success")
            await self._maybe_auto_publish()

        if failed:
            message = f"Uploaded {delivered} posts, {failed} failed"
            severity = "warning"
        else:
            message = f"Uploaded {delivered} posts successfully"
            severity = "success"
        return UploadResult(
            message=message,
            severity=severity,
            delivered=delivered,
            failed=failed,
            skipped=skipped,
        )

    # Maintenance

    async def remove_all_posts(self, connection_id: str) -> Outcome:
        """Post a bulk-delete notice and forget what was delivered for the connection.

        Messages already in the channel are not deleted; only local sync state
        is cleared, so every item becomes eligible for delivery again.
        """

        connection = self.store.require_connection(connection_id)
        self._prepare_delivery()
        await self.webhook_client.send_notification(
            connection.webhook_url,
            BULK_DELETE_TITLE,
            BULK_DELETE_DESCRIPTION,
            color=BULK_DELETE_COLOR,
        )
        self.ledger.clear_synced(connection.id)
        self.ledger.drop_connection(connection.id)
        self.store.add_activity(
            "posts_removed",
            f"Cleared sync history for {connection.name}",
            "warning",
        )
        return Outcome(
            message="All posts removed from sync history. Manual deletion in Discord may be required.",
            severity="success",
        )

    async def publish_media_map(self) -> Outcome:
        """Publish the inverted stable-id map to the configured lookup relay.

        Raises:
            ConfigurationError: If no lookup relay is configured
            LookupRelayError: If the relay rejects the upload
        """

        config = self.store.get_lookup_relay()
        if config is None:
            raise ConfigurationError(
                "Lookup relay not configured. Use 'config set-lookup' to add one."
            )
        self.ledger.ensure_stable_ids()
        media_map = self.ledger.export_lookup_map()
        client = self._lookup_client_factory(config)
        message = await client.publish(media_map)
        self.store.add_activity("media_map_published", f"Published media map: {message}", "success")
        return Outcome(message=message, severity="success")

    async def _maybe_auto_publish(self) -> None:
        if not self.store.get_settings().auto_publish_media_map:
            return
        if self.store.get_lookup_relay() is None:
            return
        try:
            await self.publish_media_map()
        except LookupRelayError as exc:
            logger.warning("Auto-publish failed: %s", exc, extra={"status": "failure"})

    async def resolve_media_id(self, connection_id: str, media_id: str) -> str:
        """Return the remote item id behind a stable id, asking the lookup relay if unknown locally."""

        remote_id = self.ledger.export_lookup_map().get(connection_id, {}).get(media_id)
        if remote_id:
            return remote_id
        config = self.store.get_lookup_relay()
        if config is None:
            raise LookupRelayError("Media ID not found for connection")
        return await self._lookup_client_factory(config).lookup(connection_id, media_id)
