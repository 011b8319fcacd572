"""In-process metrics for the synclayer core.

Lightweight counters and gauges (no prometheus_client dependency) that can
be rendered in Prometheus text format, plus a telemetry sink that turns
core events into metric updates.
"""

import logging
import threading
from typing import Any, Optional

from . import telemetry

logger = logging.getLogger(__name__)


def _format_labels(label_names: list[str], label_values: tuple) -> str:
    return ",".join(f'{name}="{value}"' for name, value in zip(label_names, label_values))


class _Metric:
    """Shared storage for labelled metric values."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        self.name = name
        self.description = description
        self._label_names = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: dict[str, Any]) -> tuple:
        return tuple(str(labels.get(name, "")) for name in self._label_names)

    def get(self, **labels) -> float:
        """Get the value for a label set (0 when never recorded)."""
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def get_all(self) -> dict[tuple, float]:
        with self._lock:
            return self._values.copy()

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]
        with self._lock:
            for label_values, value in sorted(self._values.items()):
                if label_values:
                    lines.append(
                        f"{self.name}{{{_format_labels(self._label_names, label_values)}}} {value}"
                    )
                else:
                    lines.append(f"{self.name} {value}")
        return "\n".join(lines)


class Counter(_Metric):
    """A counter metric that can only increase."""

    kind = "counter"

    def inc(self, value: float = 1.0, **labels) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value


class Gauge(_Metric):
    """A gauge metric that can be set to any value."""

    kind = "gauge"

    def set(self, value: float, **labels) -> None:
        with self._lock:
            self._values[self._key(labels)] = float(value)

    def inc(self, value: float = 1.0, **labels) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def dec(self, value: float = 1.0, **labels) -> None:
        self.inc(-value, **labels)


class SyncMetrics:
    """The metric set describing the resilience layer."""

    def __init__(self, prefix: str = "synclayer"):
        self.retries_total = Counter(
            f"{prefix}_retries_total",
            "Retries scheduled by the retry executor",
            labels=["code"],
        )
        self.retries_exhausted_total = Counter(
            f"{prefix}_retries_exhausted_total",
            "Operations that failed after exhausting retries",
            labels=["code"],
        )
        self.rate_limit_rejections_total = Counter(
            f"{prefix}_rate_limit_rejections_total",
            "Requests rejected by a rate limiter",
            labels=["limiter", "key"],
        )
        self.cache_fetch_total = Counter(
            f"{prefix}_cache_fetch_total",
            "Cache fetches by strategy and outcome",
            labels=["strategy", "outcome"],
        )
        self.cache_refresh_failures_total = Counter(
            f"{prefix}_cache_refresh_failures_total",
            "Background stale-while-revalidate refreshes that failed",
        )
        self.queue_operations_total = Counter(
            f"{prefix}_queue_operations_total",
            "Offline queue operation transitions",
            labels=["result"],
        )
        self.queue_permanent_failures_total = Counter(
            f"{prefix}_queue_permanent_failures_total",
            "Offline operations dropped after exhausting their attempts",
            labels=["resource_kind"],
        )
        self.queue_depth = Gauge(
            f"{prefix}_queue_depth",
            "Operations currently waiting in the offline queue",
        )

    def all(self) -> list[_Metric]:
        return [
            self.retries_total,
            self.retries_exhausted_total,
            self.rate_limit_rejections_total,
            self.cache_fetch_total,
            self.cache_refresh_failures_total,
            self.queue_operations_total,
            self.queue_permanent_failures_total,
            self.queue_depth,
        ]

    def generate(self) -> str:
        """Render all metrics in Prometheus text format."""
        return "\n\n".join(metric.to_prometheus() for metric in self.all())

    def reset(self) -> None:
        for metric in self.all():
            metric.reset()


class MetricsTelemetry:
    """Telemetry sink that updates SyncMetrics from core events."""

    def __init__(self, metrics: Optional[SyncMetrics] = None):
        self.metrics = metrics or SyncMetrics()

    def record_event(self, name: str, attributes: Optional[dict[str, Any]] = None) -> None:
        attrs = attributes or {}
        m = self.metrics

        if name == telemetry.RETRY_SCHEDULED:
            m.retries_total.inc(code=attrs.get("code", "unknown"))
        elif name == telemetry.RATE_LIMITED:
            m.rate_limit_rejections_total.inc(
                limiter=attrs.get("limiter", "default"), key=attrs.get("key", "default")
            )
        elif name == telemetry.CACHE_FETCH:
            m.cache_fetch_total.inc(
                strategy=attrs.get("strategy", ""), outcome=attrs.get("outcome", "")
            )
        elif name in (telemetry.QUEUE_ENQUEUED, telemetry.QUEUE_SUCCEEDED, telemetry.QUEUE_RETRY_PENDING):
            m.queue_operations_total.inc(result=name.split(".", 1)[1])

        if "queue_length" in attrs:
            m.queue_depth.set(attrs["queue_length"])

    def record_error(
        self,
        name: str,
        error: BaseException,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        attrs = attributes or {}
        m = self.metrics

        if name == telemetry.RETRY_EXHAUSTED:
            m.retries_exhausted_total.inc(code=getattr(error, "code", None) or "unknown")
        elif name == telemetry.CACHE_REFRESH_FAILED:
            m.cache_refresh_failures_total.inc()
        elif name == telemetry.QUEUE_PERMANENT_FAILURE:
            m.queue_permanent_failures_total.inc(resource_kind=attrs.get("resource_kind", ""))
            m.queue_operations_total.inc(result="permanent_failure")

        if "queue_length" in attrs:
            m.queue_depth.set(attrs["queue_length"])
