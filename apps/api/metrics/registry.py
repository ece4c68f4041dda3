"""In-process counters and distributions."""

from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Callable, Iterable, Iterator, Mapping, TypeVar

from .definitions import MetricDefinition

LabelValues = tuple[str, ...]


class Metric:
    """Shared label handling for concrete metric types."""

    kind = "untyped"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] | None = None) -> None:
        self.name = name
        self.description = description
        self.label_names: tuple[str, ...] = tuple(label_names or ())
        self._lock = Lock()

    def _key(self, labels: Mapping[str, str] | None) -> LabelValues:
        labels = labels or {}
        missing = [name for name in self.label_names if name not in labels]
        if missing:
            raise ValueError(f"Metric '{self.name}' is missing labels {missing}")
        extra = set(labels) - set(self.label_names)
        if extra:
            raise ValueError(f"Metric '{self.name}' does not accept labels {sorted(extra)}")
        return tuple(str(labels[name]) for name in self.label_names)

    def snapshot(self) -> dict[LabelValues, dict[str, float]]:  # pragma: no cover - interface
        raise NotImplementedError


class CounterMetric(Metric):
    kind = "counter"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] | None = None) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._values: dict[LabelValues, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, *, labels: Mapping[str, str] | None = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def snapshot(self) -> dict[LabelValues, dict[str, float]]:
        with self._lock:
            return {key: {"value": value} for key, value in self._values.items()}


@dataclass
class _Summary:
    count: int = 0
    total: float = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value


class DistributionMetric(Metric):
    kind = "summary"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] | None = None) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._values: dict[LabelValues, _Summary] = defaultdict(_Summary)

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key].observe(value)

    @contextmanager
    def time(self, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
        start = perf_counter()
        try:
            yield
        finally:
            self.observe(perf_counter() - start, labels=labels)

    def snapshot(self) -> dict[LabelValues, dict[str, float]]:
        with self._lock:
            return {key: {"count": float(s.count), "sum": s.total} for key, s in self._values.items()}


M = TypeVar("M", bound=Metric)


class MetricsRegistry:
    """Registry that holds metric instances by name."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str, kind: type[M], factory: Callable[[], M]) -> M:
        with self._lock:
            metric = self._metrics.setdefault(name, factory())
        if not isinstance(metric, kind):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def counter(self, name: str, *, description: str = "", label_names: Iterable[str] | None = None) -> CounterMetric:
        return self._get_or_create(
            name, CounterMetric, lambda: CounterMetric(name, description=description, label_names=label_names)
        )

    def distribution(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> DistributionMetric:
        return self._get_or_create(
            name, DistributionMetric, lambda: DistributionMetric(name, description=description, label_names=label_names)
        )

    def declare(self, definition: MetricDefinition) -> Metric:
        factories = {"counter": self.counter, "distribution": self.distribution}
        factory = factories.get(definition.metric_type)
        if factory is None:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
        return factory(definition.name, description=definition.description, label_names=definition.label_names)

    def metrics(self) -> tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())


def render_prometheus(registry: MetricsRegistry) -> str:
    """Render the registry in the Prometheus text exposition format."""

    lines: list[str] = []
    for metric in registry.metrics():
        lines.append(f"# HELP {metric.name} {metric.description}")
        lines.append(f"# TYPE {metric.name} {metric.kind}")
        for labels, values in metric.snapshot().items():
            label_text = ""
            if labels:
                pairs = ",".join(f'{name}="{value}"' for name, value in zip(metric.label_names, labels))
                label_text = "{" + pairs + "}"
            if "value" in values:
                lines.append(f"{metric.name}{label_text} {values['value']}")
            else:
                lines.append(f"{metric.name}_count{label_text} {values['count']}")
                lines.append(f"{metric.name}_sum{label_text} {values['sum']}")
    return "\n".join(lines) + "\n"
