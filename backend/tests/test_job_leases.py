from datetime import datetime, timedelta, timezone

import pytest

from signaldesk.domain.ops.leases import acquire_lease, get_lease, release_lease

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


async def _acquire(async_session_maker, holder: str, *, now: datetime = NOW, ttl: int = 600) -> bool:
    async with async_session_maker() as session:
        return await acquire_lease(session, "entity-trends", holder, ttl_seconds=ttl, now=now)


@pytest.mark.anyio
async def test_only_one_holder_at_a_time(async_session_maker):
    assert await _acquire(async_session_maker, "runner-a") is True
    assert await _acquire(async_session_maker, "runner-b", now=NOW + timedelta(minutes=5)) is False

    async with async_session_maker() as session:
        lease = await get_lease(session, "entity-trends")
    assert lease.holder == "runner-a"


@pytest.mark.anyio
async def test_holder_can_renew(async_session_maker):
    assert await _acquire(async_session_maker, "runner-a") is True
    assert await _acquire(async_session_maker, "runner-a", now=NOW + timedelta(minutes=5)) is True

    async with async_session_maker() as session:
        lease = await get_lease(session, "entity-trends")
    assert lease.expires_at.replace(tzinfo=timezone.utc) == NOW + timedelta(minutes=15)


@pytest.mark.anyio
async def test_expired_lease_is_taken_over(async_session_maker):
    assert await _acquire(async_session_maker, "runner-a", ttl=60) is True
    assert await _acquire(async_session_maker, "runner-b", now=NOW + timedelta(seconds=61)) is True

    async with async_session_maker() as session:
        lease = await get_lease(session, "entity-trends")
    assert lease.holder == "runner-b"


@pytest.mark.anyio
async def test_release_only_by_holder(async_session_maker):
    await _acquire(async_session_maker, "runner-a")

    async with async_session_maker() as session:
        assert await release_lease(session, "entity-trends", "runner-b") is False
        assert await release_lease(session, "entity-trends", "runner-a") is True
        assert await get_lease(session, "entity-trends") is None

    assert await _acquire(async_session_maker, "runner-b") is True
