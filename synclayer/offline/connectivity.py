"""Connectivity signals consumed by the offline queue.

Provides:
- ManualConnectivity: the host app pushes online/offline transitions
- PollingConnectivity: periodically probes and publishes transitions
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivitySignal(Protocol):
    """Subscribe/poll interface yielding online transitions."""

    async def is_online(self) -> bool: ...

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]: ...


class _ListenerMixin:
    """Listener bookkeeping shared by the signal implementations."""

    def _init_listeners(self) -> None:
        self._listeners: list[ConnectivityListener] = []

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener called with the new state on every transition.

        Returns:
            Callable that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, online: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")


class ManualConnectivity(_ListenerMixin):
    """Connectivity state set explicitly by the host.

    Usage:
        connectivity = ManualConnectivity(online=False)
        queue = OfflineQueue(store, executor, connectivity)
        connectivity.set_online(True)  # triggers a drain
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._init_listeners()

    @property
    def online(self) -> bool:
        return self._online

    async def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Update the state, notifying listeners only on a transition."""
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self._notify(online)


class PollingConnectivity(_ListenerMixin):
    """Connectivity derived from periodically awaiting a probe.

    Usage:
        async def probe():
            return await http.head(HEALTH_URL) is not None

        connectivity = PollingConnectivity(probe, interval_seconds=5)
        connectivity.start()
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        interval_seconds: float = 5.0,
        initial: bool = False,
    ):
        """Initialize polling signal.

        Args:
            probe: Coroutine function returning True when the backend is reachable
            interval_seconds: Seconds between probes
            initial: State assumed before the first probe
        """
        self.probe = probe
        self.interval_seconds = interval_seconds
        self._online = initial
        self._task: Optional[asyncio.Task] = None
        self._init_listeners()

    @classmethod
    def from_settings(cls, probe: Callable[[], Awaitable[bool]], settings) -> "PollingConnectivity":
        return cls(probe, interval_seconds=settings.connectivity_poll_interval)

    async def check(self) -> bool:
        """Probe once and publish a transition if the state changed."""
        try:
            online = bool(await self.probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        if online != self._online:
            self._online = online
            logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
            self._notify(online)
        return online

    async def is_online(self) -> bool:
        return await self.check()

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"Polling connectivity every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
