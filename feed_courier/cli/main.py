"""Command line interface for managing connections and running syncs."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import click
import httpx

from feed_courier.clients import (
    DeliveryQueue,
    FeedClient,
    LookupClient,
    StoredRelayContext,
    WebhookClient,
)
from feed_courier.connections import DEFAULT_POST_TYPES, ConnectionService
from feed_courier.engine import SyncEngine
from feed_courier.exceptions import FeedCourierError, describe_error
from feed_courier.schemas import POST_TYPES, LookupRelayConfig, Outcome
from feed_courier.store import LocalStore
from feed_courier.utils.config import get_settings
from feed_courier.utils.logging import configure_logging

T = TypeVar("T")

SEVERITY_ICONS = {"info": "ℹ️ ", "success": "✅", "warning": "⚠️ ", "error": "❌"}


@dataclass
class Runtime:
    """Services shared by every command of one CLI invocation."""

    store: LocalStore
    feed_client: FeedClient
    webhook_client: WebhookClient
    engine: SyncEngine
    connections: ConnectionService


def build_runtime(
    database_url: str | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    """Wire the store, clients and engine from settings and stored credentials."""

    settings = get_settings()
    store = LocalStore(database_url)
    feed_client = FeedClient(
        store.get_api_key() or settings.api_key,
        custom_relay=store.get_custom_relay(),
        context=StoredRelayContext(store),
        settings=settings,
        transport=transport,
    )
    webhook_client = WebhookClient(
        DeliveryQueue(settings.delivery_delay_seconds),
        username=store.get_settings().username,
        settings=settings,
        transport=transport,
    )
    engine = SyncEngine(
        store,
        feed_client,
        webhook_client,
        settings=settings,
        lookup_client_factory=lambda config: LookupClient.from_config(config, transport=transport),
    )
    engine.ledger.ensure_stable_ids()
    connections = ConnectionService(store, feed_client, webhook_client, ledger=engine.ledger)
    return Runtime(store, feed_client, webhook_client, engine, connections)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except FeedCourierError as exc:
        message, _ = describe_error(exc)
        raise click.ClickException(message) from exc


def _emit(outcome: Outcome) -> None:
    icon = SEVERITY_ICONS.get(outcome.severity, "")
    click.echo(f"{icon} {outcome.message}", err=outcome.severity == "error")
    if outcome.severity == "error":
        raise click.exceptions.Exit(1)


def _runtime(ctx: click.Context) -> Runtime:
    if ctx.obj is None:
        ctx.obj = build_runtime()
    return ctx.obj


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override COURIER_LOG_LEVEL for this invocation.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Republish Tumblr posts to Discord webhooks."""

    if log_level:
        configure_logging(log_level, force=True)


# Connections


@cli.group()
def connections() -> None:
    """Manage blog-to-webhook connections."""


@connections.command("add")
@click.argument("blog")
@click.argument("webhook_url")
@click.option("--name", default=None, help="Display name (defaults to the blog title)")
@click.option(
    "--type",
    "post_types",
    multiple=True,
    type=click.Choice(POST_TYPES),
    help=f"Post kind to deliver; repeatable (default: {', '.join(DEFAULT_POST_TYPES)})",
)
@click.option("--all-types", is_flag=True, help="Deliver every post kind")
@click.option("--disabled", is_flag=True, help="Create the connection disabled")
@click.pass_context
def add_connection(
    ctx: click.Context,
    blog: str,
    webhook_url: str,
    name: str | None,
    post_types: tuple[str, ...],
    all_types: bool,
    disabled: bool,
) -> None:
    """Validate BLOG and WEBHOOK_URL and save a new connection."""
    runtime = _runtime(ctx)
    types: list[str] | None = [] if all_types else (list(post_types) or None)
    connection = _run(
        runtime.connections.add_connection(
            blog,
            webhook_url,
            name=name,
            post_types=types,
            enabled=not disabled,
        )
    )
    click.echo(f"✅ Added connection {connection.id} for {connection.blog_name} ({connection.name})")


@connections.command("list")
@click.option("--json", "output_json", is_flag=True, help="Output connections as JSON")
@click.pass_context
def list_connections(ctx: click.Context, output_json: bool) -> None:
    """List stored connections."""
    store = _runtime(ctx).store
    items = store.list_connections()
    if output_json:
        click.echo(
            json.dumps(
                [conn.model_dump(mode="json", exclude={"synced_post_ids"}) for conn in items],
                indent=2,
            )
        )
        return
    if not items:
        click.echo("No connections yet. Add one with 'feed-courier connections add'.")
        return
    for conn in items:
        state = "enabled" if conn.enabled else "disabled"
        kinds = ", ".join(conn.post_types) or "all"
        last_sync = conn.last_sync.isoformat() if conn.last_sync else "never"
        click.echo(f"{conn.id}  {conn.name} [{conn.blog_name}] {state}")
        click.echo(f"    types: {kinds} | synced: {len(conn.synced_post_ids)} | last sync: {last_sync}")


@connections.command("remove")
@click.argument("connection_id")
@click.confirmation_option(prompt="Delete this connection and its sync history?")
@click.pass_context
def remove_connection(ctx: click.Context, connection_id: str) -> None:
    """Delete a connection together with its ledger and stable ids."""
    try:
        connection = _runtime(ctx).connections.delete_connection(connection_id)
    except FeedCourierError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"✅ Deleted connection for {connection.blog_name}")


def _set_enabled(ctx: click.Context, connection_id: str, enabled: bool) -> None:
    try:
        connection = _runtime(ctx).connections.set_enabled(connection_id, enabled)
    except FeedCourierError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"✅ {connection.name} {'enabled' if enabled else 'disabled'}")


@connections.command("enable")
@click.argument("connection_id")
@click.pass_context
def enable_connection(ctx: click.Context, connection_id: str) -> None:
    """Enable a connection."""
    _set_enabled(ctx, connection_id, True)


@connections.command("disable")
@click.argument("connection_id")
@click.pass_context
def disable_connection(ctx: click.Context, connection_id: str) -> None:
    """Disable a connection."""
    _set_enabled(ctx, connection_id, False)


# Sync


@cli.command()
@click.argument("connection_id", required=False)
@click.pass_context
def sync(ctx: click.Context, connection_id: str | None) -> None:
    """Deliver new posts for one connection, or for all when no id is given."""
    if connection_id is None:
        ctx.invoke(sync_all)
        return
    _emit(_run(_runtime(ctx).engine.sync_connection(connection_id)))


@cli.command("sync-all")
@click.pass_context
def sync_all(ctx: click.Context) -> None:
    """Deliver new posts for every enabled connection."""
    result = _run(_runtime(ctx).engine.sync_all())
    for item in result.results:
        click.echo(f"  {SEVERITY_ICONS.get(item.severity, '')} {item.message}")
    _emit(result)


@cli.command()
@click.option("--interval", type=float, default=None, help="Minutes between passes")
@click.option("--iterations", type=int, default=None, hidden=True)
@click.pass_context
def watch(ctx: click.Context, interval: float | None, iterations: int | None) -> None:
    """Run sync-all repeatedly until interrupted."""
    runtime = _runtime(ctx)
    minutes = interval or runtime.store.get_settings().sync_interval_minutes
    click.echo(f"Syncing every {minutes:g} minutes. Press Ctrl+C to stop.")
    try:
        _run(runtime.engine.run_auto_sync(minutes, iterations=iterations))
    except KeyboardInterrupt:
        click.echo("Stopped.")


# Backfill


@cli.command()
@click.option("--connection", "connection_id", default=None, help="Only this connection")
@click.option("--days", type=click.IntRange(min=1), default=None, help="How far back to look")
@click.option("--upload", is_flag=True, help="Deliver the unsynced posts that were found")
@click.option(
    "--post",
    "post_ids",
    multiple=True,
    help="Only upload these remote post ids; repeatable (implies --upload)",
)
@click.option("--json", "output_json", is_flag=True, help="Output found posts as JSON")
@click.pass_context
def history(
    ctx: click.Context,
    connection_id: str | None,
    days: int | None,
    upload: bool,
    post_ids: tuple[str, ...],
    output_json: bool,
) -> None:
    """Fetch posts from the last DAYS days and optionally deliver them."""
    engine = _runtime(ctx).engine
    result = _run(engine.fetch_history(connection_id, days))

    if output_json:
        click.echo(
            json.dumps(
                [
                    {
                        "connection_id": entry.connection_id,
                        "connection": entry.connection_name,
                        "id": entry.item.id,
                        "kind": entry.item.kind,
                        "timestamp": entry.item.timestamp,
                        "title": entry.item.title,
                        "synced": entry.synced,
                        "stable_id": entry.stable_id,
                    }
                    for entry in result.items
                ],
                indent=2,
            )
        )
    else:
        for entry in result.items:
            mark = "✓" if entry.synced else " "
            click.echo(
                f"[{mark}] {entry.item.id:<20} {entry.item.kind:<6} "
                f"{entry.connection_name}: {entry.item.title[:60]}"
            )
        _emit(result)

    if upload or post_ids:
        selected = [entry for entry in result.items if not post_ids or entry.item.id in post_ids]
        _emit(_run(engine.upload_history(selected)))


@cli.command("remove-posts")
@click.argument("connection_id")
@click.confirmation_option(
    prompt="Post a bulk-delete notice and forget every delivered post for this connection?"
)
@click.pass_context
def remove_posts(ctx: click.Context, connection_id: str) -> None:
    """Clear a connection's sync history (messages in Discord are not deleted)."""
    _emit(_run(_runtime(ctx).engine.remove_all_posts(connection_id)))


# Export / import


@cli.command("export")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path), required=False)
@click.pass_context
def export_state(ctx: click.Context, output: Path | None) -> None:
    """Write every stored document to OUTPUT (or stdout) as JSON."""
    bundle = _runtime(ctx).store.export_bundle()
    payload = json.dumps(bundle.model_dump(mode="json"), indent=2)
    if output is None:
        click.echo(payload)
        return
    output.write_text(payload, encoding="utf-8")
    click.echo(f"✅ Exported state to {output}")


@cli.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_state(ctx: click.Context, source: Path) -> None:
    """Replace stored documents with those in SOURCE."""
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise click.ClickException(f"Invalid JSON in {source}: {exc}") from exc
    try:
        bundle = _runtime(ctx).store.import_bundle(data)
    except FeedCourierError as exc:
        raise click.ClickException(str(exc)) from exc
    count = len(bundle.connections or [])
    click.echo(f"✅ Imported state (format {bundle.version}, {count} connections)")


# Configuration


@cli.group()
def config() -> None:
    """Store credentials, relays and preferences."""


@config.command("set-api-key")
@click.argument("api_key")
@click.pass_context
def set_api_key(ctx: click.Context, api_key: str) -> None:
    """Save the Tumblr API key."""
    runtime = _runtime(ctx)
    runtime.store.set_api_key(api_key.strip())
    runtime.feed_client.set_api_key(api_key.strip())
    click.echo("✅ API key saved")


@config.command("set-relay")
@click.argument("url", required=False)
@click.pass_context
def set_relay(ctx: click.Context, url: str | None) -> None:
    """Use a self-hosted relay at URL first; omit URL to remove it."""
    runtime = _runtime(ctx)
    runtime.store.set_custom_relay(url)
    runtime.feed_client.set_custom_relay(url)
    click.echo(f"✅ Custom relay set to {url}" if url else "✅ Custom relay removed")


@config.command("set-lookup")
@click.argument("url", required=False)
@click.option("--api-key", default=None, help="Upload key expected by the lookup relay")
@click.pass_context
def set_lookup(ctx: click.Context, url: str | None, api_key: str | None) -> None:
    """Publish stable ids to the lookup relay at URL; omit URL to remove it."""
    store = _runtime(ctx).store
    if not url:
        store.set_lookup_relay(None)
        click.echo("✅ Lookup relay removed")
        return
    store.set_lookup_relay(LookupRelayConfig(url=url, api_key=api_key))
    click.echo(f"✅ Lookup relay set to {url.rstrip('/')}")


@config.command("settings")
@click.option("--hide-user-info/--show-user-info", default=None, help="Strip blog identity from messages")
@click.option("--auto-publish/--no-auto-publish", default=None, help="Publish the media map after syncs")
@click.option("--auto-sync/--no-auto-sync", default=None, help="Remember the auto-sync preference")
@click.option("--interval", type=click.IntRange(min=1), default=None, help="Minutes between auto syncs")
@click.option("--username", default=None, help="Name shown on webhook messages")
@click.pass_context
def update_settings(
    ctx: click.Context,
    hide_user_info: bool | None,
    auto_publish: bool | None,
    auto_sync: bool | None,
    interval: int | None,
    username: str | None,
) -> None:
    """Show settings, changing any that are given."""
    store = _runtime(ctx).store
    changes: dict[str, Any] = {
        "hide_user_info": hide_user_info,
        "auto_publish_media_map": auto_publish,
        "auto_sync_enabled": auto_sync,
        "sync_interval_minutes": interval,
        "username": username,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    settings = store.update_settings(**changes) if changes else store.get_settings()
    for key, value in settings.model_dump().items():
        click.echo(f"{key}: {value}")


# Stable-id publishing


@cli.command("publish-map")
@click.pass_context
def publish_map(ctx: click.Context) -> None:
    """Upload the stable-id map to the lookup relay."""
    _emit(_run(_runtime(ctx).engine.publish_media_map()))


@cli.command()
@click.argument("connection_id")
@click.argument("media_id")
@click.pass_context
def lookup(ctx: click.Context, connection_id: str, media_id: str) -> None:
    """Resolve MEDIA_ID (a stable id) to its remote post id."""
    click.echo(_run(_runtime(ctx).engine.resolve_media_id(connection_id, media_id)))


# Activity


@cli.command()
@click.option("--limit", type=click.IntRange(min=1), default=20, help="Entries to show")
@click.option("--clear", is_flag=True, help="Delete the activity log")
@click.pass_context
def activity(ctx: click.Context, limit: int, clear: bool) -> None:
    """Show totals and the most recent activity entries."""
    store = _runtime(ctx).store
    if clear:
        store.clear_activity()
        click.echo("Activity log cleared")
        return
    stats = store.get_stats()
    last = stats.last_sync_time.isoformat() if stats.last_sync_time else "never"
    click.echo(f"Total synced: {stats.total_synced} | last sync: {last}")
    for entry in store.list_activity()[:limit]:
        icon = SEVERITY_ICONS.get(entry.severity, "")
        click.echo(f"{entry.timestamp:%Y-%m-%d %H:%M} {icon} {entry.text}")


if __name__ == "__main__":
    cli()
