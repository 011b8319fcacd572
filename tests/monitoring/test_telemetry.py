"""Tests for telemetry sinks."""

import logging
import pytest
from unittest.mock import Mock

from synclayer.errors import TransientError
from synclayer.monitoring.telemetry import (
    BufferedTelemetry,
    CompositeTelemetry,
    LoggingTelemetry,
    NullTelemetry,
    TelemetryEventType,
    emit_error,
    emit_event,
)


class TestEmitHelpers:
    """Test fire-and-forget helpers."""

    def test_none_sink_ignored(self):
        emit_event(None, "cache.fetch", {"outcome": "hit"})
        emit_error(None, "retry.exhausted", TransientError("down"))

    def test_failing_sink_swallowed(self):
        """Test a raising sink never reaches the caller."""
        sink = Mock()
        sink.record_event.side_effect = RuntimeError("exporter down")
        sink.record_error.side_effect = RuntimeError("exporter down")

        emit_event(sink, "cache.fetch")
        emit_error(sink, "retry.exhausted", TransientError("down"))

        sink.record_event.assert_called_once_with("cache.fetch", {})

    def test_null_sink(self):
        NullTelemetry().record_event("x", {"a": 1})
        NullTelemetry().record_error("x", ValueError())


class TestBufferedTelemetry:
    """Test buffering, flushing and enablement."""

    def test_records_events_and_errors(self, clock):
        sink = BufferedTelemetry(clock=clock)

        sink.record_event("cache.fetch", {"outcome": "hit"})
        sink.record_error("retry.exhausted", TransientError("down", code="unavailable"), {"attempts": 4})

        events = sink.get_events()
        assert [e.type for e in events] == [TelemetryEventType.EVENT, TelemetryEventType.ERROR]
        assert events[0].timestamp == clock.now
        assert events[1].error_message == "down"
        assert events[1].error_code == "unavailable"
        assert events[1].to_dict()["attributes"] == {"attempts": 4}

    def test_auto_flush_when_full(self):
        transport = Mock()
        sink = BufferedTelemetry(transport=transport, buffer_size=3)

        for i in range(4):
            sink.record_event("e", {"i": i})

        transport.assert_called_once()
        assert [e.attributes["i"] for e in transport.call_args.args[0]] == [0, 1, 2]
        assert len(sink.get_events()) == 1

    def test_flush(self):
        transport = Mock()
        sink = BufferedTelemetry(transport=transport)
        sink.record_event("a")
        sink.record_event("b")

        assert sink.flush() == 2
        assert sink.flush() == 0
        assert sink.get_events() == []

    def test_transport_failure_logged(self, caplog):
        sink = BufferedTelemetry(transport=Mock(side_effect=ConnectionError("offline")))
        sink.record_event("a")

        with caplog.at_level(logging.ERROR):
            assert sink.flush() == 1

        assert "Failed to send 1 telemetry events" in caplog.text

    def test_disable(self):
        sink = BufferedTelemetry()
        sink.disable()
        sink.record_event("a")
        sink.record_error("b", ValueError())

        assert sink.enabled is False
        assert sink.get_events() == []

        sink.enable()
        sink.record_event("a")
        assert len(sink.get_events()) == 1

    def test_clear(self):
        sink = BufferedTelemetry()
        sink.record_event("a")
        sink.clear()
        assert sink.get_events() == []


class TestOtherSinks:
    """Test logging and composite sinks."""

    def test_logging_sink(self, caplog):
        sink = LoggingTelemetry(level=logging.INFO)

        with caplog.at_level(logging.INFO):
            sink.record_event("queue.enqueued", {"queue_length": 1})
            sink.record_error("queue.permanent_failure", ValueError("rejected"))

        assert "queue.enqueued" in caplog.text
        assert "queue.permanent_failure" in caplog.text

    def test_composite_fans_out_despite_failures(self):
        broken = Mock()
        broken.record_event.side_effect = RuntimeError("boom")
        healthy = BufferedTelemetry()
        sink = CompositeTelemetry(broken, healthy)

        sink.record_event("a", {"x": 1})
        sink.record_error("b", ValueError("v"))

        assert [e.name for e in healthy.get_events()] == ["a", "b"]

    def test_from_settings(self):
        settings = Mock(telemetry_buffer_size=7, telemetry_enabled=False)

        sink = BufferedTelemetry.from_settings(settings)

        assert sink.buffer_size == 7
        assert sink.enabled is False
