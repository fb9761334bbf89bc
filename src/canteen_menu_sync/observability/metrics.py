"""Custom metrics for the canteen menu sync service."""

from opentelemetry import metrics

meter = metrics.get_meter("canteen-menu-sync")

events_published_counter = meter.create_counter(
    name="menu_events_published_total",
    description="Total number of update events handed to the transport, by kind",
    unit="1",
)

broadcast_failure_counter = meter.create_counter(
    name="menu_broadcast_failure_total",
    description="Total number of events the transport failed to deliver, by kind",
    unit="1",
)

insufficient_stock_counter = meter.create_counter(
    name="menu_insufficient_stock_total",
    description="Total number of decrements rejected for insufficient stock",
    unit="1",
)

live_connections = meter.create_up_down_counter(
    name="menu_live_connections",
    description="Current number of registered realtime connections",
    unit="1",
)

bootstrap_duration_histogram = meter.create_histogram(
    name="menu_bootstrap_duration_seconds",
    description="Duration of full-menu reads served to clients",
    unit="s",
)


def record_event_published(kind: str) -> None:
    """Record an event handed to the transport.

    Args:
        kind: Event kind (e.g. "item-updated")
    """
    events_published_counter.add(1, {"kind": kind})


def record_broadcast_failure(kind: str) -> None:
    """Record an event the transport could not deliver.

    Args:
        kind: Event kind
    """
    broadcast_failure_counter.add(1, {"kind": kind})


def record_insufficient_stock(canteen_id: str) -> None:
    """Record a rejected decrement.

    Args:
        canteen_id: Canteen that owns the item
    """
    insufficient_stock_counter.add(1, {"canteen_id": canteen_id})


def record_connection_change(change: int) -> None:
    """Record connections opening (+1) or closing (-1).

    Args:
        change: Change in live connection count
    """
    live_connections.add(change)


def record_bootstrap_duration(canteen_id: str, duration_seconds: float) -> None:
    """Record how long a full-menu read took.

    Args:
        canteen_id: Canteen whose menu was read
        duration_seconds: Duration in seconds
    """
    bootstrap_duration_histogram.record(duration_seconds, {"canteen_id": canteen_id})
