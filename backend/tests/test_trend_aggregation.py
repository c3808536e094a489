import itertools
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from signaldesk.domain.errors import TransientStoreError
from signaldesk.domain.mentions.db_models import Mention
from signaldesk.domain.trends import service as trends_service
from signaldesk.domain.trends.db_models import EntityTrend, EntityTrendSnapshot
from signaldesk.shared.batch import RunBudget

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _mentions(name: str, hours_ago: list[float], *, entity_type: str = "topic", sentiment=None) -> list[Mention]:
    return [
        Mention(
            entity_name=name,
            entity_key=" ".join(name.split()).casefold(),
            entity_type=entity_type,
            source_type="news",
            source_id=f"{name}-{uuid.uuid4()}",
            mentioned_at=NOW - timedelta(hours=hours),
            sentiment=sentiment,
        )
        for hours in hours_ago
    ]


async def _seed(async_session_maker, mentions: list[Mention]) -> None:
    async with async_session_maker() as session:
        session.add_all(mentions)
        await session.commit()


async def _trend(async_session_maker, key: str) -> EntityTrend | None:
    async with async_session_maker() as session:
        return (
            await session.execute(sa.select(EntityTrend).where(EntityTrend.entity_key == key))
        ).scalar_one_or_none()


@pytest.mark.anyio
async def test_aggregation_matches_worked_example(async_session_maker):
    recent = [2 + i * 0.1 for i in range(20)]
    earlier = [7 + i * 0.4 for i in range(39)]
    await _seed(async_session_maker, _mentions("Gaza", recent + earlier))

    async with async_session_maker() as session:
        summary = await trends_service.aggregate_trends(session, now=NOW)

    assert summary.processed == 1
    assert summary.counters["created"] == 1
    trend = await _trend(async_session_maker, "gaza")
    assert trend.entity_name == "Gaza"
    assert (trend.mentions_1h, trend.mentions_6h, trend.mentions_24h) == (0, 20, 59)
    assert trend.velocity == pytest.approx(35.59)
    assert trend.is_trending is True


@pytest.mark.anyio
async def test_spellings_of_one_entity_share_a_trend(async_session_maker):
    await _seed(
        async_session_maker,
        _mentions("Gaza", [1, 2]) + _mentions("gaza", [3]) + _mentions("GAZA ", [4]),
    )

    async with async_session_maker() as session:
        await trends_service.aggregate_trends(session, now=NOW)
        count = (await session.execute(sa.select(sa.func.count()).select_from(EntityTrend))).scalar_one()

    assert count == 1
    trend = await _trend(async_session_maker, "gaza")
    assert trend.mentions_24h == 4
    assert trend.entity_name == "Gaza"


@pytest.mark.anyio
async def test_rerun_without_new_mentions_is_idempotent(async_session_maker):
    await _seed(async_session_maker, _mentions("UNRWA", [1, 2, 3], entity_type="organization"))

    async with async_session_maker() as session:
        await trends_service.aggregate_trends(session, now=NOW)
    first = await _trend(async_session_maker, "unrwa")

    async with async_session_maker() as session:
        summary = await trends_service.aggregate_trends(session, now=NOW + timedelta(minutes=5))

    second = await _trend(async_session_maker, "unrwa")
    assert summary.counters == {"unchanged": 1}
    assert second.values_changed_at == first.values_changed_at
    assert second.mentions_24h == first.mentions_24h == 3
    assert second.momentum == 0.0


@pytest.mark.anyio
async def test_older_run_never_overwrites_newer_values(async_session_maker):
    await _seed(async_session_maker, _mentions("Gaza", [1, 2, 3]))

    async with async_session_maker() as session:
        await trends_service.aggregate_trends(session, now=NOW)
    async with async_session_maker() as session:
        summary = await trends_service.aggregate_trends(session, now=NOW - timedelta(minutes=30))

    assert summary.skipped == 1
    assert summary.counters["stale"] == 1
    trend = await _trend(async_session_maker, "gaza")
    assert trend.calculated_at.replace(tzinfo=timezone.utc) == NOW


@pytest.mark.anyio
async def test_new_mentions_update_values_and_momentum(async_session_maker):
    await _seed(async_session_maker, _mentions("Gaza", [10, 12, 14, 16]))
    async with async_session_maker() as session:
        await trends_service.aggregate_trends(session, now=NOW)
    before = await _trend(async_session_maker, "gaza")

    await _seed(async_session_maker, _mentions("Gaza", [0.2, 0.3, 0.4]))
    async with async_session_maker() as session:
        summary = await trends_service.aggregate_trends(session, now=NOW + timedelta(minutes=1))

    after = await _trend(async_session_maker, "gaza")
    assert summary.counters == {"updated": 1}
    assert after.mentions_1h == 3
    assert after.momentum == pytest.approx(round(after.velocity - before.velocity, 2))


@pytest.mark.anyio
async def test_snapshots_keep_one_row_per_hour(async_session_maker):
    await _seed(async_session_maker, _mentions("Gaza", [1, 2, 3]))

    for minutes in (0, 10, 70):
        async with async_session_maker() as session:
            await trends_service.aggregate_trends(session, now=NOW + timedelta(minutes=minutes))

    async with async_session_maker() as session:
        buckets = (
            await session.execute(sa.select(EntityTrendSnapshot.bucket_start).order_by(EntityTrendSnapshot.bucket_start))
        ).scalars().all()
    assert [bucket.replace(tzinfo=timezone.utc) for bucket in buckets] == [NOW, NOW + timedelta(hours=1)]


@pytest.mark.anyio
async def test_budget_stops_between_entities_and_next_run_resumes(async_session_maker):
    await _seed(
        async_session_maker,
        _mentions("Gaza", [1]) + _mentions("UNRWA", [2]) + _mentions("Rafah", [3]),
    )

    async with async_session_maker() as session:
        budget = RunBudget(2.5, clock=itertools.count().__next__)
        summary = await trends_service.aggregate_trends(session, now=NOW, budget=budget)

    assert summary.processed == 2
    assert summary.budget_exhausted is True
    assert summary.status == "partial"

    async with async_session_maker() as session:
        resumed = await trends_service.aggregate_trends(session, now=NOW, batch_size=1)
    assert resumed.counters == {"created": 1}

    async with async_session_maker() as session:
        count = (await session.execute(sa.select(sa.func.count()).select_from(EntityTrend))).scalar_one()
    assert count == 3


@pytest.mark.anyio
async def test_store_outage_defers_the_run(async_session_maker, monkeypatch):
    calls = []

    async def _unavailable(*args, **kwargs):
        calls.append(1)
        raise TransientStoreError("database is locked")

    monkeypatch.setattr(trends_service, "_load_batch", _unavailable)

    async with async_session_maker() as session:
        summary = await trends_service.aggregate_trends(session, now=NOW)

    assert len(calls) == 3
    assert summary.deferred == 1
    assert summary.status == "deferred"
    assert summary.counters == {"batch_deferred": 1}


@pytest.mark.anyio
async def test_unchanged_rerun_resets_momentum(async_session_maker):
    await _seed(async_session_maker, _mentions("Gaza", [10, 12, 14, 16]))
    async with async_session_maker() as session:
        await trends_service.aggregate_trends(session, now=NOW)
    await _seed(async_session_maker, _mentions("Gaza", [0.2, 0.3, 0.4]))
    async with async_session_maker() as session:
        await trends_service.aggregate_trends(session, now=NOW + timedelta(minutes=1))
    accelerated = await _trend(async_session_maker, "gaza")
    assert accelerated.momentum != 0.0

    async with async_session_maker() as session:
        summary = await trends_service.aggregate_trends(session, now=NOW + timedelta(minutes=2))

    steady = await _trend(async_session_maker, "gaza")
    assert summary.counters == {"unchanged": 1}
    assert steady.velocity == accelerated.velocity
    assert steady.momentum == 0.0


@pytest.mark.anyio
async def test_idle_entity_is_demoted_once(async_session_maker):
    await _seed(async_session_maker, _mentions("Rafah", [0.5, 1, 1.5, 2, 2.5, 3]))
    async with async_session_maker() as session:
        await trends_service.aggregate_trends(session, now=NOW)
    assert (await _trend(async_session_maker, "rafah")).is_trending is True

    async with async_session_maker() as session:
        first = await trends_service.aggregate_trends(session, now=NOW + timedelta(days=2))
        second = await trends_service.aggregate_trends(session, now=NOW + timedelta(days=2, minutes=5))

    assert first.counters == {"demoted": 1}
    assert second.counters == {}
    trend = await _trend(async_session_maker, "rafah")
    assert trend.is_trending is False
    assert trend.mentions_24h == 0
    assert trend.mentions_7d == 6
    assert trend.last_seen_at.replace(tzinfo=timezone.utc) == NOW - timedelta(minutes=30)
