from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.anomalies import engine
from signaldesk.domain.anomalies.db_models import EntityAnomaly
from signaldesk.domain.errors import DataQualityError
from signaldesk.domain.mentions.db_models import Mention
from signaldesk.domain.trends.db_models import EntityTrend, EntityTrendSnapshot
from signaldesk.domain.trends.engine import WINDOW_7D, WINDOW_24H, hour_bucket
from signaldesk.infra.db import ensure_utc
from signaldesk.infra.metrics import metrics
from signaldesk.settings import settings
from signaldesk.shared.batch import RunBudget, RunSummary, process_item
from signaldesk.shared.retry import TRANSIENT_ERRORS, retry_with_backoff

logger = logging.getLogger(__name__)

JOB_NAME = "anomalies"


@dataclass(frozen=True)
class TrendRef:
    entity_key: str
    entity_name: str
    entity_type: str


def _thresholds(*, volume_floor: float | None) -> engine.Thresholds:
    return engine.Thresholds(
        z_threshold=settings.anomaly_z_threshold,
        critical_z=settings.anomaly_critical_z,
        record_z=settings.anomaly_record_z,
        volume_floor=volume_floor,
    )


async def _load_candidates(session: AsyncSession, now: datetime, batch_size: int) -> list[EntityTrend]:
    stmt = (
        sa.select(EntityTrend)
        .where(EntityTrend.last_seen_at > now - WINDOW_24H)
        .order_by(EntityTrend.is_trending.desc(), EntityTrend.velocity.desc(), EntityTrend.entity_key)
        .limit(batch_size)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def _daily_mentions(
    session: AsyncSession, trend: TrendRef, now: datetime, days: int
) -> tuple[list[int], list[float], int, float | None]:
    """Per-day counts and sentiment averages for the ``days`` full days before the current 24h."""

    rows = (
        await session.execute(
            sa.select(Mention.mentioned_at, Mention.sentiment).where(
                Mention.entity_key == trend.entity_key,
                Mention.entity_type == trend.entity_type,
                Mention.mentioned_at > now - WINDOW_24H * (days + 1),
                Mention.mentioned_at <= now,
            )
        )
    ).all()
    counts = [0] * (days + 1)
    sentiments: dict[int, list[float]] = defaultdict(list)
    for mentioned_at, sentiment in rows:
        age = now - ensure_utc(mentioned_at)
        day = int(age // WINDOW_24H)
        if day < 0 or day > days:
            continue
        counts[day] += 1
        if sentiment is not None:
            sentiments[day].append(sentiment)

    current_sentiment = None
    if sentiments.get(0):
        current_sentiment = sum(sentiments[0]) / len(sentiments[0])
    daily_sentiment = [
        sum(sentiments[day]) / len(sentiments[day]) for day in range(1, days + 1) if sentiments.get(day)
    ]
    return counts[1:], daily_sentiment, counts[0], current_sentiment


async def _velocity_history(session: AsyncSession, trend: TrendRef, now: datetime) -> list[float]:
    rows = await session.execute(
        sa.select(EntityTrendSnapshot.velocity).where(
            EntityTrendSnapshot.entity_key == trend.entity_key,
            EntityTrendSnapshot.entity_type == trend.entity_type,
            EntityTrendSnapshot.bucket_start >= now - WINDOW_7D,
            EntityTrendSnapshot.bucket_start < hour_bucket(now),
        )
    )
    return [float(value) for value in rows.scalars().all()]


def evaluate_entity(
    *,
    daily_counts: list[int],
    current_count: int,
    daily_sentiment: list[float],
    current_sentiment: float | None,
    velocity_history: list[float],
    current_velocity: float,
) -> tuple[list[engine.AnomalyResult], list[str]]:
    """Run the three detectors; returns results plus the names of detectors lacking a baseline."""

    results: list[engine.AnomalyResult] = []
    insufficient: list[str] = []
    min_points = settings.anomaly_min_baseline_points

    if current_count >= settings.anomaly_min_current_mentions:
        results.append(
            engine.evaluate(
                engine.AnomalyType.MENTION_SPIKE,
                float(current_count),
                [float(count) for count in daily_counts],
                _thresholds(volume_floor=settings.anomaly_volume_floor),
            )
        )

    if len(velocity_history) >= min_points:
        results.append(
            engine.evaluate(
                engine.AnomalyType.VELOCITY_SPIKE,
                current_velocity,
                velocity_history,
                _thresholds(volume_floor=None),
            )
        )
    else:
        insufficient.append(engine.AnomalyType.VELOCITY_SPIKE.value)

    if current_sentiment is not None and len(daily_sentiment) >= min_points:
        results.append(
            engine.evaluate(
                engine.AnomalyType.SENTIMENT_SHIFT,
                current_sentiment,
                daily_sentiment,
                _thresholds(volume_floor=None),
            )
        )
    else:
        insufficient.append(engine.AnomalyType.SENTIMENT_SHIFT.value)

    return results, insufficient


async def upsert_anomaly(
    session: AsyncSession,
    *,
    trend: TrendRef,
    result: engine.AnomalyResult,
    now: datetime,
) -> str:
    """One row per entity, anomaly type and day; a later, weaker reading never downgrades it."""

    detected_day = now.date()
    existing = (
        await session.execute(
            sa.select(EntityAnomaly).where(
                EntityAnomaly.entity_key == trend.entity_key,
                EntityAnomaly.entity_type == trend.entity_type,
                EntityAnomaly.anomaly_type == result.anomaly_type.value,
                EntityAnomaly.detected_day == detected_day,
            )
        )
    ).scalar_one_or_none()

    if existing is not None:
        stored_rank = engine.SEVERITY_RANK.get(engine.Severity(existing.severity), 0)
        if engine.SEVERITY_RANK[result.severity] < stored_rank:
            return "kept"
        anomaly = existing
        action = "updated"
    else:
        anomaly = EntityAnomaly(
            entity_key=trend.entity_key,
            entity_type=trend.entity_type,
            anomaly_type=result.anomaly_type.value,
            detected_day=detected_day,
            detected_at=now,
        )
        session.add(anomaly)
        action = "created"

    anomaly.entity_name = trend.entity_name
    anomaly.severity = result.severity.value
    anomaly.z_score = result.z_score
    anomaly.current_value = round(result.current_value, 4)
    anomaly.baseline_value = round(result.baseline.mean, 4)
    anomaly.baseline_stddev = round(result.baseline.stddev, 4)
    anomaly.baseline_points = result.baseline.points
    anomaly.is_surfaced = result.is_surfaced
    return action


async def detect_anomalies(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    budget: RunBudget | None = None,
) -> RunSummary:
    now = ensure_utc(now) if now else datetime.now(tz=timezone.utc)
    batch_size = batch_size or settings.trend_batch_size
    budget = budget or RunBudget.unlimited()
    days = settings.anomaly_baseline_days
    summary = RunSummary()

    try:
        trends = await retry_with_backoff(
            lambda: _load_candidates(session, now, batch_size),
            name="anomaly_batch_fetch",
            on_retry=session.rollback,
        )
    except TRANSIENT_ERRORS:
        summary.deferred += 1
        summary.bump("batch_deferred")
        return summary

    # Plain copies: a rolled-back item expires every ORM instance in the session.
    items = [
        {
            "trend": TrendRef(
                entity_key=trend.entity_key,
                entity_name=trend.entity_name,
                entity_type=trend.entity_type,
            ),
            "entity_key": trend.entity_key,
            "entity_type": trend.entity_type,
            "velocity": trend.velocity,
        }
        for trend in trends
    ]

    for item in items:
        if budget.expired():
            summary.budget_exhausted = True
            break

        async def _work(item: dict = item) -> str | None:
            trend = item["trend"]
            daily_counts, daily_sentiment, current_count, current_sentiment = await _daily_mentions(
                session, trend, now, days
            )
            velocity_history = await _velocity_history(session, trend, now)
            results, insufficient = evaluate_entity(
                daily_counts=daily_counts,
                current_count=current_count,
                daily_sentiment=daily_sentiment,
                current_sentiment=current_sentiment,
                velocity_history=velocity_history,
                current_velocity=item["velocity"],
            )
            if not results:
                raise DataQualityError("insufficient baseline for every detector")
            if insufficient:
                summary.bump("insufficient_baseline", len(insufficient))

            written: list[tuple[engine.AnomalyResult, str]] = []
            for result in results:
                if not result.is_anomalous:
                    continue
                action = await upsert_anomaly(session, trend=trend, result=result, now=now)
                written.append((result, action))
            await session.commit()

            for result, action in written:
                if action == "kept":
                    continue
                summary.bump("surfaced" if result.is_surfaced else "recorded")
                metrics.record_anomaly(result.anomaly_type.value, result.severity.value)
                logger.info(
                    "anomaly_detected",
                    extra={
                        "extra": {
                            "entity_key": item["entity_key"],
                            "entity_type": item["entity_type"],
                            "anomaly_type": result.anomaly_type.value,
                            "severity": result.severity.value,
                            "z_score": result.z_score,
                            "current_value": result.current_value,
                            "baseline_value": round(result.baseline.mean, 4),
                            "action": action,
                        }
                    },
                )
            return None

        await process_item(
            session,
            summary,
            job=JOB_NAME,
            item={"entity_key": item["entity_key"], "entity_type": item["entity_type"]},
            work=_work,
        )

    logger.info("anomaly_batch_complete", extra={"extra": {"now": now.isoformat(), **summary.as_dict()}})
    return summary


async def list_anomalies(
    session: AsyncSession,
    *,
    surfaced: bool | None = None,
    since: datetime | None = None,
    limit: int = 100,
) -> list[EntityAnomaly]:
    stmt = sa.select(EntityAnomaly)
    if surfaced is not None:
        stmt = stmt.where(EntityAnomaly.is_surfaced.is_(surfaced))
    if since is not None:
        stmt = stmt.where(EntityAnomaly.updated_at >= since)
    stmt = stmt.order_by(EntityAnomaly.detected_at.desc(), EntityAnomaly.entity_key).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def surfaced_anomalies_since(
    session: AsyncSession, since: datetime
) -> dict[tuple[str, str], list[EntityAnomaly]]:
    rows = await session.execute(
        sa.select(EntityAnomaly).where(
            EntityAnomaly.is_surfaced.is_(True),
            EntityAnomaly.detected_at >= since,
        )
    )
    grouped: dict[tuple[str, str], list[EntityAnomaly]] = defaultdict(list)
    for anomaly in rows.scalars().all():
        grouped[(anomaly.entity_key, anomaly.entity_type)].append(anomaly)
    return grouped
