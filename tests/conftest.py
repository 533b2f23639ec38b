import asyncio
import itertools

import pytest

from pos_sync.core.errors import RemoteError
from pos_sync.db.base import create_session_factory, init_models
from pos_sync.domain.sync.cache import LocalCacheStore
from pos_sync.domain.sync.connectivity import ConnectivityMonitor
from pos_sync.domain.sync.engine import SyncEngine
from pos_sync.domain.sync.outbox import OutboxQueue


class FakeRemote:
    """In-memory stand-in for the remote POS API."""

    def __init__(self):
        self.store = {}
        self.calls = []
        self.ids = (f"srv-{n}" for n in itertools.count(1))
        self.fail = set()
        self.hang = set()
        self.gates = {}
        self.healthy = True

    def seed(self, kind, entity):
        self.store.setdefault(kind, {})[entity["id"]] = dict(entity)

    def gate(self, op, kind):
        """Hold `op` calls for `kind` until the returned event is set."""
        event = asyncio.Event()
        self.gates[(op, kind)] = event
        return event

    async def _maybe_fail(self, op, kind):
        self.calls.append((op, kind))
        index = len(self.calls) - 1
        if (op, kind) in self.gates:
            await self.gates[(op, kind)].wait()
        if (op, kind) in self.hang:
            await asyncio.Event().wait()
        if (op, kind) in self.fail:
            raise RemoteError(f"{op} {kind.value} rejected", status_code=500)
        return index

    async def health_check(self):
        return self.healthy

    async def create(self, kind, payload):
        index = await self._maybe_fail("create", kind)
        entity = {k: v for k, v in payload.items() if k != "id"}
        entity["id"] = next(self.ids)
        self.store.setdefault(kind, {})[entity["id"]] = entity
        self.calls[index] = ("create", kind, payload["id"], entity["id"])
        return dict(entity)

    async def update(self, kind, entity_id, patch):
        index = await self._maybe_fail("update", kind)
        self.calls[index] = ("update", kind, entity_id, dict(patch))
        current = self.store.get(kind, {}).get(entity_id)
        if current is None:
            raise RemoteError(f"{kind.value} {entity_id} not found", status_code=404)
        current.update(patch)
        return dict(current)

    async def delete(self, kind, entity_id):
        index = await self._maybe_fail("delete", kind)
        self.calls[index] = ("delete", kind, entity_id)
        self.store.get(kind, {}).pop(entity_id, None)
        return True

    async def list(self, kind, scope_id):
        await self._maybe_fail("list", kind)
        return [dict(e) for e in self.store.get(kind, {}).values() if e.get("company_id") == scope_id]


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'pos_sync.db'}"


@pytest.fixture
async def session_factory(db_url):
    engine, factory = create_session_factory(db_url)
    await init_models(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initial=False)


@pytest.fixture
async def cache(session_factory):
    store = LocalCacheStore(session_factory)
    await store.load()
    return store


@pytest.fixture
async def outbox(session_factory):
    queue = OutboxQueue(session_factory)
    await queue.load()
    return queue


@pytest.fixture
async def engine(cache, outbox, remote, monitor, session_factory):
    sync = SyncEngine(cache, outbox, remote, monitor, session_factory, remote_timeout=0.2)
    yield sync
    await sync.close()
