"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: tuple[str, ...] = ()


TICKETS_CREATED = "tickets_created_total"
TICKET_EVENTS = "ticket_events_total"
TICKET_REJECTIONS = "ticket_event_rejections_total"
TICKET_WRITE_CONFLICTS = "ticket_write_conflicts_total"
TICKET_EVENT_DURATION = "ticket_event_duration_seconds"
SERVICE_LOG_FAILURES = "service_log_append_failures_total"
STOCK_TRANSFERS = "stock_transfers_total"
SHOP_SALES = "shop_sales_total"

DEFAULT_METRIC_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKETS_CREATED,
        metric_type="counter",
        description="Service tickets created, by initial status.",
        label_names=("status",),
    ),
    MetricDefinition(
        name=TICKET_EVENTS,
        metric_type="counter",
        description="Ticket workflow events applied successfully.",
        label_names=("event",),
    ),
    MetricDefinition(
        name=TICKET_REJECTIONS,
        metric_type="counter",
        description="Ticket workflow events rejected by the state machine.",
        label_names=("event", "reason"),
    ),
    MetricDefinition(
        name=TICKET_WRITE_CONFLICTS,
        metric_type="counter",
        description="Ticket writes retried because the row changed concurrently.",
    ),
    MetricDefinition(
        name=TICKET_EVENT_DURATION,
        metric_type="distribution",
        description="Time spent applying and persisting a ticket event.",
        label_names=("event",),
    ),
    MetricDefinition(
        name=SERVICE_LOG_FAILURES,
        metric_type="counter",
        description="Service log entries that could not be appended.",
    ),
    MetricDefinition(
        name=STOCK_TRANSFERS,
        metric_type="counter",
        description="Stock transfer line items booked.",
        label_names=("transaction_type", "source"),
    ),
    MetricDefinition(
        name=SHOP_SALES,
        metric_type="counter",
        description="Shop sales recorded.",
    ),
)
