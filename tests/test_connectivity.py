import asyncio

from pos_sync.domain.entities.schemas import EntityKind
from pos_sync.domain.sync.connectivity import ConnectivityMonitor


def test_listeners_fire_once_per_change():
    monitor = ConnectivityMonitor(initial=False)
    seen = []
    monitor.subscribe(seen.append)

    assert monitor.set_online(True)
    assert not monitor.set_online(True)
    assert monitor.set_online(False)
    assert not monitor.set_online(False)

    assert seen == [True, False]
    assert monitor.last_change is not None


def test_unsubscribe_stops_notifications():
    monitor = ConnectivityMonitor()
    seen = []
    unsubscribe = monitor.subscribe(seen.append)
    unsubscribe()

    monitor.set_online(True)
    assert seen == []


async def test_probe_failure_counts_as_offline():
    async def broken_probe():
        raise OSError("network unreachable")

    monitor = ConnectivityMonitor(probe=broken_probe, initial=True)

    assert await monitor.check() is False
    assert not monitor.is_online


async def test_polling_picks_up_reachability(remote):
    monitor = ConnectivityMonitor(probe=remote.health_check, poll_interval=0.01)
    await monitor.start()
    try:
        for _ in range(100):
            if monitor.is_online:
                break
            await asyncio.sleep(0.01)
        assert monitor.is_online

        remote.healthy = False
        for _ in range(100):
            if not monitor.is_online:
                break
            await asyncio.sleep(0.01)
        assert not monitor.is_online
    finally:
        await monitor.stop()


async def test_flapping_starts_a_single_replay(engine, remote, monitor):
    await engine.create_product("c1", {"name": "Tea", "price": 50})

    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(True)
    await engine.wait_idle()

    creates = [c for c in remote.calls if c[0] == "create"]
    assert len(creates) == 1
    assert engine.pending_count() == 0
    assert [p.id for p in engine.get_cached(EntityKind.PRODUCT, "c1")] == ["srv-1"]


async def test_going_offline_does_not_replay(engine, remote, monitor):
    await engine.create_product("c1", {"name": "Tea", "price": 50})

    monitor.set_online(False)
    await engine.wait_idle()

    assert remote.calls == []
    assert engine.pending_count() == 1
