"""Online/offline transitions for the sync engine."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from core.logs import get_logger
from core.settings import CONNECTIVITY


Probe = Callable[[], Awaitable[bool]]
TransitionListener = Callable[[bool], Awaitable[Any]]


async def tcp_probe(
    host: str = CONNECTIVITY.probe_host,
    port: int = CONNECTIVITY.probe_port,
    timeout: float = CONNECTIVITY.probe_timeout_sec,
) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class ConnectivityMonitor:
    """Polls ``probe`` and reports transitions; hosts with their own signal call :meth:`set_online`."""

    def __init__(
        self,
        probe: Probe,
        *,
        interval_sec: float = CONNECTIVITY.interval_sec,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.probe = probe
        self.interval_sec = interval_sec
        self._sleep = sleep
        self._online: Optional[bool] = None
        self._listeners: List[TransitionListener] = []
        self._task: Optional[asyncio.Task] = None
        self.logger = get_logger("connectivity")

    @property
    def online(self) -> Optional[bool]:
        return self._online

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    async def check(self) -> bool:
        try:
            online = bool(await self.probe())
        except Exception as exc:
            self.logger.warning("Connectivity probe failed: %s", exc)
            online = False
        await self.set_online(online)
        return online

    async def set_online(self, online: bool) -> None:
        previous = self._online
        self._online = online
        if previous is None or previous == online:
            return
        self.logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                await listener(online)
            except Exception as exc:
                self.logger.error("Connectivity listener failed: %s", exc)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return

        async def _loop():
            while True:
                await self._sleep(self.interval_sec)
                await self.check()

        self._task = asyncio.ensure_future(_loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


__all__ = ["ConnectivityMonitor", "tcp_probe"]
