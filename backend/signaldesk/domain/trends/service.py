from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.mentions.db_models import Mention
from signaldesk.domain.trends import engine
from signaldesk.domain.trends.db_models import EntityTrend, EntityTrendSnapshot
from signaldesk.infra.db import ensure_utc
from signaldesk.settings import settings
from signaldesk.shared.batch import RunBudget, RunSummary, process_item
from signaldesk.shared.retry import TRANSIENT_ERRORS, retry_with_backoff

logger = logging.getLogger(__name__)

JOB_NAME = "trends"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class _EntityBatchItem:
    entity_key: str
    entity_type: str
    last_seen_at: datetime
    calculated_at: datetime | None
    points: list[engine.MentionPoint]


async def _load_batch(session: AsyncSession, now: datetime, batch_size: int) -> list[_EntityBatchItem]:
    recent_stmt = (
        sa.select(Mention.entity_key, Mention.entity_type, sa.func.max(Mention.mentioned_at))
        .where(
            Mention.mentioned_at > now - engine.WINDOW_24H,
            Mention.mentioned_at <= now,
        )
        .group_by(Mention.entity_key, Mention.entity_type)
    )
    recent_rows = (await session.execute(recent_stmt)).all()
    if not recent_rows:
        return []

    last_seen = {(key, entity_type): ensure_utc(latest) for key, entity_type, latest in recent_rows}
    entity_keys = sorted({key for key, _ in last_seen})
    trend_rows = (
        await session.execute(
            sa.select(EntityTrend.entity_key, EntityTrend.entity_type, EntityTrend.calculated_at).where(
                EntityTrend.entity_key.in_(entity_keys)
            )
        )
    ).all()
    calculated = {(row[0], row[1]): ensure_utc(row[2]) for row in trend_rows}

    # Least recently calculated first so successive bounded runs cover the backlog.
    ordered = sorted(
        last_seen,
        key=lambda key: (calculated.get(key) or _EPOCH, -last_seen[key].timestamp(), key),
    )[:batch_size]
    selected = set(ordered)

    mention_rows = (
        await session.execute(
            sa.select(
                Mention.entity_key,
                Mention.entity_type,
                Mention.entity_name,
                Mention.mentioned_at,
                Mention.sentiment,
            ).where(
                Mention.entity_key.in_(sorted({key for key, _ in selected})),
                Mention.mentioned_at > now - engine.WINDOW_7D,
                Mention.mentioned_at <= now,
            )
        )
    ).all()
    points: dict[tuple[str, str], list[engine.MentionPoint]] = defaultdict(list)
    for key_value, entity_type, name, mentioned_at, sentiment in mention_rows:
        key = (key_value, entity_type)
        if key not in selected:
            continue
        points[key].append(
            engine.MentionPoint(entity_name=name, mentioned_at=ensure_utc(mentioned_at), sentiment=sentiment)
        )

    return [
        _EntityBatchItem(
            entity_key=key[0],
            entity_type=key[1],
            last_seen_at=last_seen[key],
            calculated_at=calculated.get(key),
            points=points.get(key, []),
        )
        for key in ordered
    ]


def _stats_from_row(trend: EntityTrend) -> engine.TrendStats:
    return engine.TrendStats(
        entity_name=trend.entity_name,
        mentions_1h=trend.mentions_1h,
        mentions_6h=trend.mentions_6h,
        mentions_24h=trend.mentions_24h,
        mentions_7d=trend.mentions_7d,
        velocity=trend.velocity,
        is_trending=trend.is_trending,
        sentiment_avg=trend.sentiment_avg,
        sentiment_change=trend.sentiment_change,
        first_seen_at=ensure_utc(trend.first_seen_at),
        last_seen_at=ensure_utc(trend.last_seen_at),
    )


def _apply_stats(trend: EntityTrend, stats: engine.TrendStats) -> None:
    trend.entity_name = stats.entity_name
    trend.mentions_1h = stats.mentions_1h
    trend.mentions_6h = stats.mentions_6h
    trend.mentions_24h = stats.mentions_24h
    trend.mentions_7d = stats.mentions_7d
    trend.velocity = stats.velocity
    trend.is_trending = stats.is_trending
    trend.sentiment_avg = stats.sentiment_avg
    trend.sentiment_change = stats.sentiment_change
    trend.first_seen_at = stats.first_seen_at
    trend.last_seen_at = stats.last_seen_at


async def upsert_trend(
    session: AsyncSession,
    *,
    entity_key_value: str,
    entity_type: str,
    stats: engine.TrendStats,
    now: datetime,
) -> str:
    """Write ``stats`` for one entity; returns ``created``, ``updated``, ``unchanged`` or ``stale``.

    Values are only rewritten when the window counts or sentiment moved, and a run
    whose ``now`` is older than the stored ``calculated_at`` leaves the row alone.
    """

    trend = (
        await session.execute(
            sa.select(EntityTrend).where(
                EntityTrend.entity_key == entity_key_value,
                EntityTrend.entity_type == entity_type,
            )
        )
    ).scalar_one_or_none()

    if trend is None:
        trend = EntityTrend(entity_key=entity_key_value, entity_type=entity_type, momentum=0.0)
        _apply_stats(trend, stats)
        trend.values_changed_at = now
        trend.calculated_at = now
        session.add(trend)
        return "created"

    if ensure_utc(trend.calculated_at) > now:
        return "stale"

    outcome = "unchanged"
    if not stats.same_values(_stats_from_row(trend)):
        trend.momentum = round(stats.velocity - trend.velocity, 2)
        _apply_stats(trend, stats)
        trend.values_changed_at = now
        outcome = "updated"
    else:
        trend.momentum = 0.0
        if stats.last_seen_at != ensure_utc(trend.last_seen_at):
            trend.last_seen_at = stats.last_seen_at
    trend.calculated_at = now
    return outcome


async def demote_idle_trends(session: AsyncSession, now: datetime) -> int:
    """Zero the short windows of trends with no mention in the last 24h.

    Idle entities drop out of the aggregation batch, so without this their rows
    would keep reporting the last trending state forever.
    """

    result = await session.execute(
        sa.update(EntityTrend)
        .where(
            EntityTrend.last_seen_at <= now - engine.WINDOW_24H,
            EntityTrend.calculated_at <= now,
            sa.or_(EntityTrend.is_trending.is_(True), EntityTrend.mentions_24h > 0),
        )
        .values(
            mentions_1h=0,
            mentions_6h=0,
            mentions_24h=0,
            velocity=0.0,
            momentum=0.0,
            is_trending=False,
            sentiment_change=None,
            values_changed_at=now,
            calculated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount or 0


async def upsert_snapshot(
    session: AsyncSession,
    *,
    entity_key_value: str,
    entity_type: str,
    stats: engine.TrendStats,
    now: datetime,
) -> None:
    bucket = engine.hour_bucket(now)
    snapshot = (
        await session.execute(
            sa.select(EntityTrendSnapshot).where(
                EntityTrendSnapshot.entity_key == entity_key_value,
                EntityTrendSnapshot.entity_type == entity_type,
                EntityTrendSnapshot.bucket_start == bucket,
            )
        )
    ).scalar_one_or_none()
    if snapshot is None:
        snapshot = EntityTrendSnapshot(entity_key=entity_key_value, entity_type=entity_type, bucket_start=bucket)
        session.add(snapshot)
    elif ensure_utc(snapshot.recorded_at) > now:
        return
    snapshot.velocity = stats.velocity
    snapshot.mentions_1h = stats.mentions_1h
    snapshot.mentions_6h = stats.mentions_6h
    snapshot.mentions_24h = stats.mentions_24h
    snapshot.sentiment_avg = stats.sentiment_avg
    snapshot.recorded_at = now


async def aggregate_trends(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    budget: RunBudget | None = None,
) -> RunSummary:
    now = ensure_utc(now) if now else datetime.now(tz=timezone.utc)
    batch_size = batch_size or settings.trend_batch_size
    budget = budget or RunBudget.unlimited()
    summary = RunSummary()

    try:
        batch = await retry_with_backoff(
            lambda: _load_batch(session, now, batch_size),
            name="trend_batch_fetch",
            on_retry=session.rollback,
        )
    except TRANSIENT_ERRORS:
        summary.deferred += 1
        summary.bump("batch_deferred")
        return summary

    for item in batch:
        if budget.expired():
            summary.budget_exhausted = True
            break

        async def _work(item: _EntityBatchItem = item) -> str | None:
            stats = engine.compute_window_stats(item.points, now)
            outcome = await upsert_trend(
                session,
                entity_key_value=item.entity_key,
                entity_type=item.entity_type,
                stats=stats,
                now=now,
            )
            if outcome == "stale":
                await session.rollback()
                summary.bump("stale")
                return "skipped"
            await upsert_snapshot(
                session,
                entity_key_value=item.entity_key,
                entity_type=item.entity_type,
                stats=stats,
                now=now,
            )
            await session.commit()
            summary.bump(outcome)
            return None

        await process_item(
            session,
            summary,
            job=JOB_NAME,
            item={"entity_key": item.entity_key, "entity_type": item.entity_type},
            work=_work,
        )

    demoted = await demote_idle_trends(session, now)
    if demoted:
        summary.bump("demoted", demoted)

    logger.info("trend_batch_complete", extra={"extra": {"now": now.isoformat(), **summary.as_dict()}})
    return summary


async def list_trends(
    session: AsyncSession, *, is_trending: bool | None = None, limit: int = 100
) -> list[EntityTrend]:
    stmt = sa.select(EntityTrend)
    if is_trending is not None:
        stmt = stmt.where(EntityTrend.is_trending.is_(is_trending))
    stmt = stmt.order_by(
        EntityTrend.is_trending.desc(),
        EntityTrend.momentum.desc(),
        EntityTrend.velocity.desc(),
        EntityTrend.entity_key,
    ).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
