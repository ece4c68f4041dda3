"""Process wide counters for ticket, stock and sales activity."""
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .registry import CounterMetric, DistributionMetric, MetricsRegistry, render_prometheus

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        target.declare(definition)
    return target


register_default_metrics()

__all__ = [
    "CounterMetric",
    "DistributionMetric",
    "MetricDefinition",
    "MetricsRegistry",
    "metrics_registry",
    "register_default_metrics",
    "render_prometheus",
]
