"""Monitoring module for synclayer.

This module provides:
- Fire-and-forget telemetry sinks
- In-process metrics fed from telemetry events
"""

from .metrics import Counter, Gauge, MetricsTelemetry, SyncMetrics
from .telemetry import (
    BufferedTelemetry,
    CompositeTelemetry,
    LoggingTelemetry,
    NullTelemetry,
    TelemetryEvent,
    TelemetrySink,
    emit_error,
    emit_event,
)

__all__ = [
    "TelemetrySink",
    "TelemetryEvent",
    "NullTelemetry",
    "LoggingTelemetry",
    "BufferedTelemetry",
    "CompositeTelemetry",
    "emit_event",
    "emit_error",
    "Counter",
    "Gauge",
    "SyncMetrics",
    "MetricsTelemetry",
]
