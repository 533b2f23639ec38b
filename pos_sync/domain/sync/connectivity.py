# pos_sync/domain/sync/connectivity.py
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from pos_sync.domain.entities.schemas import utcnow

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]
TransitionListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Online/offline state fed by platform signals and an optional probe.

    Listeners fire once per actual change; repeating the current state is
    a no-op.
    """

    def __init__(self, probe: Optional[Probe] = None, poll_interval: float = 0.0, initial: bool = False):
        self._probe = probe
        self._poll_interval = poll_interval
        self._online = initial
        self._listeners: List[TransitionListener] = []
        self._task: Optional[asyncio.Task] = None
        self.last_change: Optional[datetime] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: TransitionListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def set_online(self, online: bool) -> bool:
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        self.last_change = utcnow()
        logger.info("connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)
        return True

    async def check(self) -> bool:
        if self._probe is None:
            return self._online
        try:
            online = await self._probe()
        except Exception:
            logger.exception("connectivity probe failed")
            online = False
        self.set_online(online)
        return online

    async def start(self) -> None:
        if self._probe is None or self._poll_interval <= 0 or self._task is not None:
            return
        self._task = asyncio.create_task(self._poll())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _poll(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self._poll_interval)
