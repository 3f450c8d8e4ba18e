"""Prometheus metrics definitions for Feed Courier."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

RELAY_ATTEMPTS = Counter(
    "courier_relay_attempts_total",
    "Upstream requests attempted through each relay, by outcome.",
    labelnames=("relay", "outcome"),
)

PAGE_FAILURES = Counter(
    "courier_page_failures_total",
    "Page fetches that failed after exhausting every relay.",
    labelnames=("mode",),
)

DELIVERIES = Counter(
    "courier_deliveries_total",
    "Webhook sends by outcome.",
    labelnames=("outcome",),
)

SYNC_PASSES = Counter(
    "courier_sync_passes_total",
    "Completed sync passes by mode and outcome.",
    labelnames=("mode", "outcome"),
)

ITEMS_DELIVERED = Counter(
    "courier_items_delivered_total",
    "Feed items delivered and recorded in the ledger.",
    labelnames=("mode",),
)

SYNC_DURATION = Histogram(
    "courier_sync_duration_seconds",
    "Distribution of sync pass durations in seconds.",
    labelnames=("mode",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)

RELAY_REQUESTS = Counter(
    "courier_relay_endpoint_requests_total",
    "Requests handled by the self-hosted relay endpoints.",
    labelnames=("endpoint", "status"),
)


def record_relay_attempt(relay: str, outcome: str) -> None:
    """Increment the relay attempts counter with the supplied labels."""

    RELAY_ATTEMPTS.labels(relay=relay, outcome=outcome).inc()


def record_page_failure(mode: str) -> None:
    PAGE_FAILURES.labels(mode=mode).inc()


def record_delivery(outcome: str) -> None:
    """Increment the webhook delivery counter (``success``, ``rate_limited``, ``error``)."""

    DELIVERIES.labels(outcome=outcome).inc()


def record_sync_pass(mode: str, outcome: str, delivered: int, duration_seconds: float) -> None:
    """
    Record the outcome of a finished sync pass.

    Args:
        mode: ``incremental``, ``backfill`` or ``upload``
        outcome: ``success``, ``partial``, ``discarded`` or ``error``
        delivered: Number of items delivered during the pass
        duration_seconds: Wall-clock duration of the pass
    """
    SYNC_PASSES.labels(mode=mode, outcome=outcome).inc()
    if delivered > 0:
        ITEMS_DELIVERED.labels(mode=mode).inc(delivered)
    SYNC_DURATION.labels(mode=mode).observe(max(duration_seconds, 0.0))


def record_relay_request(endpoint: str, status: int) -> None:
    RELAY_REQUESTS.labels(endpoint=endpoint, status=str(status)).inc()
