"""Tests for lease acquisition, renewal and release."""

import asyncio
from datetime import timedelta

from casefleet.models import WorkItem
from casefleet.services.lease import AcquireOutcome, LeaseLockManager

from .conftest import NOW


async def test_acquire_free_item(session, make_item):
    item = await make_item()

    result = await LeaseLockManager(session).acquire(item.id, "w1", now=NOW)

    assert result.outcome is AcquireOutcome.ACQUIRED
    assert result.acquired
    assert result.lease.worker_id == "w1"
    assert result.lease.expires_at == NOW + timedelta(minutes=5)


async def test_live_lease_is_contended(session, make_item):
    item = await make_item()
    manager = LeaseLockManager(session)
    await manager.acquire(item.id, "w1", now=NOW)

    result = await manager.acquire(item.id, "w2", now=NOW + timedelta(minutes=1))

    assert result.outcome is AcquireOutcome.CONTENDED
    assert not result.acquired
    assert result.lease is None
    stored = await session.get(WorkItem, item.id, populate_existing=True)
    assert stored.lease_worker_id == "w1"


async def test_expired_lease_is_reclaimed_by_another_worker(session, make_item):
    item = await make_item()
    manager = LeaseLockManager(session)
    await manager.acquire(item.id, "w1", ttl=timedelta(minutes=5), now=NOW)

    result = await manager.acquire(item.id, "w2", now=NOW + timedelta(minutes=10))

    assert result.outcome is AcquireOutcome.RECLAIMED
    assert result.lease.worker_id == "w2"
    stored = await session.get(WorkItem, item.id, populate_existing=True)
    assert stored.lease_worker_id == "w2"


async def test_exactly_one_of_concurrent_acquires_wins(session_factory, make_item):
    item = await make_item()

    async def attempt(worker_id: str):
        async with session_factory() as db:
            return await LeaseLockManager(db).acquire(item.id, worker_id, now=NOW)

    results = await asyncio.gather(*(attempt(f"w{i}") for i in range(8)))

    winners = [r for r in results if r.acquired]
    assert len(winners) == 1
    assert sum(r.outcome is AcquireOutcome.CONTENDED for r in results) == 7

    async with session_factory() as db:
        stored = await db.get(WorkItem, item.id)
    assert stored.lease_worker_id == winners[0].lease.worker_id


async def test_release_only_by_owner(session, make_item):
    item = await make_item()
    manager = LeaseLockManager(session)
    await manager.acquire(item.id, "w1", now=NOW)

    assert await manager.release(item.id, "w2") is False
    assert await manager.release(item.id, "w1") is True

    stored = await session.get(WorkItem, item.id, populate_existing=True)
    assert stored.lease is None


async def test_renew_extends_owned_lease(session, make_item):
    item = await make_item()
    manager = LeaseLockManager(session)
    await manager.acquire(item.id, "w1", now=NOW)

    assert await manager.renew(item.id, "w1", now=NOW + timedelta(minutes=4)) is True
    assert await manager.renew(item.id, "w2", now=NOW + timedelta(minutes=4)) is False

    stored = await session.get(WorkItem, item.id, populate_existing=True)
    assert stored.lease.expires_at == NOW + timedelta(minutes=9)


async def test_release_all_drops_every_lease_of_worker(session, make_item):
    items = [await make_item() for _ in range(3)]
    manager = LeaseLockManager(session)
    for item in items[:2]:
        await manager.acquire(item.id, "w1", now=NOW)
    await manager.acquire(items[2].id, "w2", now=NOW)

    assert await manager.release_all("w1") == 2

    stored = await session.get(WorkItem, items[2].id, populate_existing=True)
    assert stored.lease_worker_id == "w2"
