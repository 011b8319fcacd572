"""Offline write queue and connectivity signals."""

from .connectivity import ConnectivitySignal, ManualConnectivity, PollingConnectivity
from .queue import DrainResult, OfflineQueue, OperationType, QueuedOperation

__all__ = [
    "ConnectivitySignal",
    "ManualConnectivity",
    "PollingConnectivity",
    "OperationType",
    "QueuedOperation",
    "DrainResult",
    "OfflineQueue",
]
