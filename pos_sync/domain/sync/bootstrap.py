# pos_sync/domain/sync/bootstrap.py
import logging
from typing import Optional

from pos_sync.core.config import Settings
from pos_sync.db.base import create_session_factory, init_models
from pos_sync.domain.sync.cache import LocalCacheStore
from pos_sync.domain.sync.connectivity import ConnectivityMonitor
from pos_sync.domain.sync.engine import SyncEngine
from pos_sync.domain.sync.outbox import OutboxQueue
from pos_sync.domain.sync.remote import RemoteApi

logger = logging.getLogger(__name__)


class SyncRuntime:
    """Owns the database engine, remote client, monitor and sync engine."""

    def __init__(self, db_engine, remote, monitor: ConnectivityMonitor, engine: SyncEngine):
        self.db_engine = db_engine
        self.remote = remote
        self.monitor = monitor
        self.engine = engine

    async def close(self) -> None:
        await self.monitor.stop()
        await self.engine.close()
        close = getattr(self.remote, "close", None)
        if close is not None:
            await close()
        await self.db_engine.dispose()
        logger.info("sync runtime stopped")


async def start_sync_runtime(settings: Settings, remote=None) -> SyncRuntime:
    db_engine, session_factory = create_session_factory(settings.DB_URL)
    await init_models(db_engine)

    if remote is None:
        remote = RemoteApi(
            settings.REMOTE_BASE_URL,
            timeout=settings.REMOTE_TIMEOUT,
            api_key=settings.REMOTE_API_KEY,
        )
    monitor = ConnectivityMonitor(
        probe=remote.health_check,
        poll_interval=settings.CONNECTIVITY_POLL_INTERVAL,
        initial=settings.START_ONLINE,
    )
    engine = SyncEngine(
        LocalCacheStore(session_factory),
        OutboxQueue(session_factory),
        remote,
        monitor,
        session_factory,
        remote_timeout=settings.REMOTE_TIMEOUT,
    )
    await engine.load()
    await monitor.start()

    logger.info(
        "sync runtime started (online=%s, pending=%d)",
        monitor.is_online,
        engine.pending_count(),
    )
    return SyncRuntime(db_engine, remote, monitor, engine)
