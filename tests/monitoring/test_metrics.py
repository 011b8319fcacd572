"""Tests for metrics collection."""

import pytest

from synclayer.errors import QueuePermanentFailure, TransientError
from synclayer.monitoring import telemetry
from synclayer.monitoring.metrics import Counter, Gauge, MetricsTelemetry, SyncMetrics
from synclayer.offline.queue import OperationType, QueuedOperation


class TestCounter:
    """Test Counter metric."""

    def test_increment(self):
        counter = Counter("test_counter", "Test counter")
        counter.inc()
        counter.inc(2.0)

        assert counter.get() == 3.0

    def test_increment_with_labels(self):
        counter = Counter("test_counter", "Test counter", labels=["code"])
        counter.inc(code="unavailable")
        counter.inc(code="unavailable")
        counter.inc(code="internal")

        assert counter.get(code="unavailable") == 2.0
        assert counter.get(code="internal") == 1.0
        assert counter.get(code="timeout") == 0.0

    def test_negative_increment_raises(self):
        with pytest.raises(ValueError):
            Counter("test_counter", "Test counter").inc(-1)

    def test_prometheus_format(self):
        counter = Counter("retries_total", "Retries", labels=["code"])
        counter.inc(code="unavailable")

        text = counter.to_prometheus()

        assert "# HELP retries_total Retries" in text
        assert "# TYPE retries_total counter" in text
        assert 'retries_total{code="unavailable"} 1.0' in text


class TestGauge:
    """Test Gauge metric."""

    def test_set_inc_dec(self):
        gauge = Gauge("depth", "Depth")
        gauge.set(5)
        gauge.inc()
        gauge.dec(3)

        assert gauge.get() == 3.0
        assert "depth 3.0" in gauge.to_prometheus()


class TestMetricsTelemetry:
    """Test event-to-metric mapping."""

    def test_retry_and_rate_limit_events(self):
        sink = MetricsTelemetry()
        sink.record_event(telemetry.RETRY_SCHEDULED, {"code": "unavailable"})
        sink.record_event(telemetry.RATE_LIMITED, {"limiter": "write", "key": "students"})
        sink.record_error(telemetry.RETRY_EXHAUSTED, TransientError("down"))

        m = sink.metrics
        assert m.retries_total.get(code="unavailable") == 1.0
        assert m.rate_limit_rejections_total.get(limiter="write", key="students") == 1.0
        assert m.retries_exhausted_total.get(code="unavailable") == 1.0

    def test_cache_events(self):
        sink = MetricsTelemetry()
        sink.record_event(telemetry.CACHE_FETCH, {"strategy": "CACHE_FIRST", "outcome": "hit"})
        sink.record_error(telemetry.CACHE_REFRESH_FAILED, TransientError("down"), {"key": "k"})

        assert sink.metrics.cache_fetch_total.get(strategy="CACHE_FIRST", outcome="hit") == 1.0
        assert sink.metrics.cache_refresh_failures_total.get() == 1.0

    def test_queue_events(self):
        sink = MetricsTelemetry()
        op = QueuedOperation(id="abc", kind=OperationType.CREATE, resource_kind="students", attempts=3)

        sink.record_event(telemetry.QUEUE_ENQUEUED, {"queue_length": 2})
        sink.record_event(telemetry.QUEUE_SUCCEEDED, {"queue_length": 1})
        sink.record_error(
            telemetry.QUEUE_PERMANENT_FAILURE,
            QueuePermanentFailure(op),
            {"resource_kind": "students", "queue_length": 0},
        )

        m = sink.metrics
        assert m.queue_operations_total.get(result="enqueued") == 1.0
        assert m.queue_operations_total.get(result="succeeded") == 1.0
        assert m.queue_operations_total.get(result="permanent_failure") == 1.0
        assert m.queue_permanent_failures_total.get(resource_kind="students") == 1.0
        assert m.queue_depth.get() == 0.0

    def test_generate_and_reset(self):
        metrics = SyncMetrics(prefix="app")
        metrics.retries_total.inc(code="internal")

        assert 'app_retries_total{code="internal"} 1.0' in metrics.generate()

        metrics.reset()
        assert metrics.retries_total.get(code="internal") == 0.0
