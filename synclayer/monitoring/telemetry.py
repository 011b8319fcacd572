"""Telemetry sinks for synclayer.

The core reports retries, rate-limit rejections, cache strategy outcomes
and permanent queue failures to a sink. Sinks are fire-and-forget: the
core never depends on their result, and a failing sink never breaks a
caller (see emit_event / emit_error).
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


# Event names emitted by the core
RETRY_SCHEDULED = "retry.scheduled"
RETRY_EXHAUSTED = "retry.exhausted"
RATE_LIMITED = "rate_limit.rejected"
CACHE_FETCH = "cache.fetch"
CACHE_REFRESH_FAILED = "cache.refresh_failed"
CACHE_PERSIST_FAILED = "cache.persist_failed"
QUEUE_ENQUEUED = "queue.enqueued"
QUEUE_SUCCEEDED = "queue.succeeded"
QUEUE_RETRY_PENDING = "queue.retry_pending"
QUEUE_PERMANENT_FAILURE = "queue.permanent_failure"
QUEUE_DRAINED = "queue.drained"


class TelemetrySink(Protocol):
    """Interface every telemetry sink implements."""

    def record_event(self, name: str, attributes: Optional[dict[str, Any]] = None) -> None: ...

    def record_error(
        self,
        name: str,
        error: BaseException,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None: ...


def emit_event(
    sink: Optional[TelemetrySink],
    name: str,
    attributes: Optional[dict[str, Any]] = None,
) -> None:
    """Send an event to a sink, ignoring sink failures."""
    if sink is None:
        return
    try:
        sink.record_event(name, attributes or {})
    except Exception as e:
        logger.debug(f"Telemetry sink failed on event {name}: {e}")


def emit_error(
    sink: Optional[TelemetrySink],
    name: str,
    error: BaseException,
    attributes: Optional[dict[str, Any]] = None,
) -> None:
    """Send an error to a sink, ignoring sink failures."""
    if sink is None:
        return
    try:
        sink.record_error(name, error, attributes or {})
    except Exception as e:
        logger.debug(f"Telemetry sink failed on error {name}: {e}")


class NullTelemetry:
    """Sink that discards everything."""

    def record_event(self, name: str, attributes: Optional[dict[str, Any]] = None) -> None:
        pass

    def record_error(
        self,
        name: str,
        error: BaseException,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        pass


class LoggingTelemetry:
    """Sink that writes events to a logger."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def record_event(self, name: str, attributes: Optional[dict[str, Any]] = None) -> None:
        self.log.log(self.level, f"[telemetry] {name} {attributes or {}}")

    def record_error(
        self,
        name: str,
        error: BaseException,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        self.log.warning(f"[telemetry] {name}: {error!r} {attributes or {}}")


class TelemetryEventType(str, Enum):
    """Kinds of buffered telemetry events."""

    EVENT = "event"
    ERROR = "error"


@dataclass
class TelemetryEvent:
    """A buffered telemetry record."""

    type: TelemetryEventType
    name: str
    timestamp: float
    attributes: dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "timestamp": self.timestamp,
            "attributes": self.attributes,
            "error_message": self.error_message,
            "error_code": self.error_code,
        }


class BufferedTelemetry:
    """Sink that buffers events and flushes them to a transport in batches.

    Usage:
        sink = BufferedTelemetry(transport=send_batch, buffer_size=50)
        sink.record_event("cache.fetch", {"outcome": "hit"})
        sink.flush()
    """

    def __init__(
        self,
        transport: Optional[Callable[[list[TelemetryEvent]], None]] = None,
        buffer_size: int = 100,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize buffered sink.

        Args:
            transport: Called with each flushed batch. Batches are dropped when None.
            buffer_size: Flush automatically once this many events are buffered
            enabled: Whether events are recorded at all
            clock: Timestamp source
        """
        self.transport = transport
        self.buffer_size = buffer_size
        self._enabled = enabled
        self._clock = clock
        self._events: list[TelemetryEvent] = []

    @classmethod
    def from_settings(
        cls,
        settings,
        transport: Optional[Callable[[list[TelemetryEvent]], None]] = None,
    ) -> "BufferedTelemetry":
        return cls(
            transport=transport,
            buffer_size=settings.telemetry_buffer_size,
            enabled=settings.telemetry_enabled,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def record_event(self, name: str, attributes: Optional[dict[str, Any]] = None) -> None:
        if not self._enabled:
            return
        self._add(
            TelemetryEvent(
                type=TelemetryEventType.EVENT,
                name=name,
                timestamp=self._clock(),
                attributes=dict(attributes or {}),
            )
        )

    def record_error(
        self,
        name: str,
        error: BaseException,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        if not self._enabled:
            return
        self._add(
            TelemetryEvent(
                type=TelemetryEventType.ERROR,
                name=name,
                timestamp=self._clock(),
                attributes=dict(attributes or {}),
                error_message=str(error),
                error_code=getattr(error, "code", None),
            )
        )

    def _add(self, event: TelemetryEvent) -> None:
        self._events.append(event)
        if len(self._events) >= self.buffer_size:
            self.flush()

    def flush(self) -> int:
        """Send buffered events to the transport.

        Returns:
            Number of events flushed
        """
        if not self._events:
            return 0

        batch = self._events
        self._events = []

        if self.transport is not None:
            try:
                self.transport(batch)
            except Exception as e:
                logger.error(f"Failed to send {len(batch)} telemetry events: {e}")
        return len(batch)

    def get_events(self) -> list[TelemetryEvent]:
        """Get buffered events."""
        return list(self._events)

    def clear(self) -> None:
        self._events = []


class CompositeTelemetry:
    """Fans out to several sinks."""

    def __init__(self, *sinks: TelemetrySink):
        self.sinks = list(sinks)

    def record_event(self, name: str, attributes: Optional[dict[str, Any]] = None) -> None:
        for sink in self.sinks:
            emit_event(sink, name, attributes)

    def record_error(
        self,
        name: str,
        error: BaseException,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        for sink in self.sinks:
            emit_error(sink, name, error, attributes)
