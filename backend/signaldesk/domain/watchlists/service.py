from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.anomalies.service import surfaced_anomalies_since
from signaldesk.domain.errors import DataQualityError, DomainError, NotFoundError
from signaldesk.domain.mentions.db_models import Mention
from signaldesk.domain.mentions.service import entity_key, normalize_entity_name
from signaldesk.domain.trends.db_models import EntityTrend
from signaldesk.domain.trends.engine import WINDOW_24H
from signaldesk.domain.watchlists import matching, schemas, scoring
from signaldesk.domain.watchlists.db_models import (
    ALERT_STATUSES,
    AlertStatus,
    EntityAlert,
    Organization,
    WatchlistEntry,
)
from signaldesk.infra.db import ensure_utc
from signaldesk.infra.metrics import metrics
from signaldesk.settings import settings
from signaldesk.shared.batch import RunBudget, RunSummary, process_item
from signaldesk.shared.retry import TRANSIENT_ERRORS, retry_with_backoff

logger = logging.getLogger(__name__)

JOB_NAME = "watchlists"
SAMPLE_SOURCE_LIMIT = 3


@dataclass(frozen=True)
class EntryRef:
    entry_id: uuid.UUID
    org_id: uuid.UUID
    entity_name: object
    entity_type: object
    aliases: object
    alert_threshold: object
    sentiment_alert: bool


@dataclass
class OrgBatch:
    org_id: uuid.UUID
    focus_topics: tuple[str, ...]
    entries: list[EntryRef] = field(default_factory=list)


def _entry_terms(entry: EntryRef) -> list[str]:
    """Match terms for an entry; raises DataQualityError for rows the matcher cannot use."""

    if not isinstance(entry.entity_name, str) or not normalize_entity_name(entry.entity_name):
        raise DataQualityError("watchlist entry has no entity name")
    if entry.aliases is not None and (
        not isinstance(entry.aliases, list) or not all(isinstance(alias, str) for alias in entry.aliases)
    ):
        raise DataQualityError("watchlist aliases must be a list of strings")
    if entry.entity_type is not None and not isinstance(entry.entity_type, str):
        raise DataQualityError("watchlist entity type must be a string")
    threshold = entry.alert_threshold
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold <= 100:
        raise DataQualityError("alert threshold must be a number between 0 and 100")
    return matching.match_terms(entry.entity_name, entry.aliases)


def _focus_topics(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(topic for topic in value if isinstance(topic, str) and topic.strip())


async def _load_entries(session: AsyncSession, batch_size: int) -> list[OrgBatch]:
    never_evaluated = sa.case((WatchlistEntry.last_evaluated_at.is_(None), 0), else_=1)
    stmt = (
        sa.select(WatchlistEntry, Organization.focus_topics)
        .join(Organization, Organization.org_id == WatchlistEntry.org_id)
        .where(WatchlistEntry.is_active.is_(True), Organization.is_active.is_(True))
        .order_by(
            never_evaluated,
            WatchlistEntry.last_evaluated_at,
            WatchlistEntry.created_at,
            WatchlistEntry.entry_id,
        )
        .limit(batch_size)
    )
    rows = (await session.execute(stmt)).all()
    batches: dict[uuid.UUID, OrgBatch] = {}
    for entry, focus_topics in rows:
        batch = batches.get(entry.org_id)
        if batch is None:
            batch = batches[entry.org_id] = OrgBatch(org_id=entry.org_id, focus_topics=_focus_topics(focus_topics))
        batch.entries.append(
            EntryRef(
                entry_id=entry.entry_id,
                org_id=entry.org_id,
                entity_name=entry.entity_name,
                entity_type=entry.entity_type,
                aliases=entry.aliases,
                alert_threshold=entry.alert_threshold,
                sentiment_alert=bool(entry.sentiment_alert),
            )
        )
    return list(batches.values())


async def load_candidates(session: AsyncSession, now: datetime, limit: int) -> list[matching.Candidate]:
    """Trending entities plus entities with a surfaced anomaly, both seen in the last 24h."""

    anomalies = await surfaced_anomalies_since(session, now - WINDOW_24H)
    conditions = [EntityTrend.is_trending.is_(True)]
    if anomalies:
        conditions.append(EntityTrend.entity_key.in_(sorted({key for key, _ in anomalies})))
    stmt = (
        sa.select(EntityTrend)
        .where(EntityTrend.last_seen_at > now - WINDOW_24H, sa.or_(*conditions))
        .order_by(EntityTrend.momentum.desc(), EntityTrend.velocity.desc(), EntityTrend.entity_key)
        .limit(limit)
    )
    candidates: list[matching.Candidate] = []
    for trend in (await session.execute(stmt)).scalars().all():
        found = anomalies.get((trend.entity_key, trend.entity_type), [])
        if not trend.is_trending and not found:
            continue
        candidates.append(
            matching.Candidate(
                entity_key=trend.entity_key,
                entity_name=trend.entity_name,
                entity_type=trend.entity_type,
                velocity=trend.velocity,
                momentum=trend.momentum,
                mentions_6h=trend.mentions_6h,
                mentions_24h=trend.mentions_24h,
                sentiment_change=trend.sentiment_change,
                last_seen_at=ensure_utc(trend.last_seen_at),
                is_trending=trend.is_trending,
                anomalies=tuple((anomaly.anomaly_type, anomaly.severity) for anomaly in found),
            )
        )
    return candidates


async def response_counts(
    session: AsyncSession, org_id: uuid.UUID, entity_type: str, now: datetime
) -> tuple[int, int]:
    """Read and dismissed alert counts for one org and entity type inside the response window."""

    since = now - timedelta(days=settings.alert_response_window_days)
    rows = await session.execute(
        sa.select(EntityAlert.status, sa.func.count())
        .where(
            EntityAlert.org_id == org_id,
            EntityAlert.entity_type == entity_type,
            EntityAlert.created_at >= since,
            EntityAlert.status.in_([AlertStatus.READ, AlertStatus.DISMISSED]),
        )
        .group_by(EntityAlert.status)
    )
    counts = {status: count for status, count in rows.all()}
    return counts.get(AlertStatus.READ, 0), counts.get(AlertStatus.DISMISSED, 0)


async def sample_sources(
    session: AsyncSession, candidate: matching.Candidate, now: datetime
) -> list[dict[str, str | None]]:
    rows = await session.execute(
        sa.select(Mention.source_type, Mention.source_title, Mention.source_url, Mention.mentioned_at)
        .where(
            Mention.entity_key == candidate.entity_key,
            Mention.entity_type == candidate.entity_type,
            Mention.mentioned_at <= now,
        )
        .order_by(Mention.mentioned_at.desc(), Mention.mention_id)
        .limit(SAMPLE_SOURCE_LIMIT)
    )
    return [
        {
            "source_type": source_type,
            "title": title,
            "url": url,
            "mentioned_at": ensure_utc(mentioned_at).isoformat(),
        }
        for source_type, title, url, mentioned_at in rows.all()
    ]


async def upsert_alert(
    session: AsyncSession,
    *,
    org_id: uuid.UUID,
    entry_id: uuid.UUID,
    entity_name: str,
    match: matching.Match,
    score: scoring.ActionableScore,
    alert_type: scoring.AlertType,
    sources: list[dict],
    now: datetime,
) -> tuple[EntityAlert, str]:
    """One alert per org, entity and day; repeats refresh the details and keep the reader's status."""

    alert_day = now.date()
    alert_key = entity_key(entity_name)
    alert = (
        await session.execute(
            sa.select(EntityAlert).where(
                EntityAlert.org_id == org_id,
                EntityAlert.entity_key == alert_key,
                EntityAlert.alert_day == alert_day,
            )
        )
    ).scalar_one_or_none()
    action = "updated"
    if alert is None:
        alert = EntityAlert(
            org_id=org_id,
            entity_name=entity_name,
            entity_key=alert_key,
            alert_day=alert_day,
            status=AlertStatus.UNREAD,
            created_at=now,
        )
        session.add(alert)
        action = "created"

    candidate = match.candidate
    alert.watchlist_entry_id = entry_id
    alert.entity_type = candidate.entity_type
    alert.matched_entity = candidate.entity_name
    alert.match_type = match.match_type.value
    alert.match_score = match.score
    alert.alert_type = alert_type.value
    alert.actionable_score = score.total
    alert.severity = scoring.severity_for_score(score.total)
    alert.score_breakdown = score.breakdown()
    alert.velocity = candidate.velocity
    alert.current_mentions = candidate.mentions_24h
    alert.sample_sources = sources
    alert.suggested_action = scoring.suggested_action(alert_type)
    alert.updated_at = now
    await session.flush()
    return alert, action


async def match_watchlists(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    budget: RunBudget | None = None,
) -> RunSummary:
    now = ensure_utc(now) if now else datetime.now(tz=timezone.utc)
    batch_size = batch_size or settings.watchlist_batch_size
    budget = budget or RunBudget.unlimited()
    summary = RunSummary()

    async def _fetch() -> tuple[list[OrgBatch], list[matching.Candidate]]:
        batches = await _load_entries(session, batch_size)
        candidates = await load_candidates(session, now, settings.watchlist_candidate_limit)
        return batches, candidates

    try:
        batches, candidates = await retry_with_backoff(
            _fetch, name="watchlist_batch_fetch", on_retry=session.rollback
        )
    except TRANSIENT_ERRORS:
        summary.deferred += 1
        summary.bump("batch_deferred")
        return summary

    response_cache: dict[tuple[uuid.UUID, str], tuple[int, int]] = {}

    for batch in batches:
        if budget.expired():
            summary.budget_exhausted = True
            break

        async def _work(batch: OrgBatch = batch) -> str | None:
            counts: dict[str, int] = defaultdict(int)
            upserted: list[tuple[EntityAlert, str]] = []

            for entry in batch.entries:
                try:
                    terms = _entry_terms(entry)
                except DataQualityError as exc:
                    counts["entries_skipped"] += 1
                    logger.warning(
                        "watchlist_entry_skipped",
                        extra={
                            "extra": {
                                "org_id": str(batch.org_id),
                                "entry_id": str(entry.entry_id),
                                "reason": str(exc),
                            }
                        },
                    )
                    continue

                counts["entries_evaluated"] += 1
                pool = candidates
                if entry.entity_type:
                    pool = [c for c in candidates if c.entity_type == entry.entity_type.strip().lower()]
                match = matching.match_entry(terms, pool)
                if match is None:
                    counts["no_match"] += 1
                    continue

                cache_key = (batch.org_id, match.candidate.entity_type)
                if cache_key not in response_cache:
                    response_cache[cache_key] = await response_counts(
                        session, batch.org_id, match.candidate.entity_type, now
                    )
                read, dismissed = response_cache[cache_key]

                entity_name = normalize_entity_name(entry.entity_name)
                score = scoring.score_candidate(
                    match=match,
                    entry_name=entity_name,
                    focus_topics=batch.focus_topics,
                    now=now,
                    read=read,
                    dismissed=dismissed,
                )
                if score.total <= float(entry.alert_threshold):
                    counts["below_threshold"] += 1
                    continue

                alert_type = scoring.choose_alert_type(match.candidate, sentiment_alert=entry.sentiment_alert)
                sources = await sample_sources(session, match.candidate, now)
                alert, action = await upsert_alert(
                    session,
                    org_id=batch.org_id,
                    entry_id=entry.entry_id,
                    entity_name=entity_name,
                    match=match,
                    score=score,
                    alert_type=alert_type,
                    sources=sources,
                    now=now,
                )
                upserted.append((alert, action))

            await session.execute(
                sa.update(WatchlistEntry)
                .where(WatchlistEntry.entry_id.in_([entry.entry_id for entry in batch.entries]))
                .values(last_evaluated_at=now)
            )
            await session.commit()

            for name, count in counts.items():
                summary.bump(name, count)
            for alert, action in upserted:
                summary.bump(f"alerts_{action}")
                metrics.record_alert(alert.alert_type, action)
                logger.info(
                    "alert_upserted",
                    extra={
                        "extra": {
                            "org_id": str(alert.org_id),
                            "entity_name": alert.entity_name,
                            "matched_entity": alert.matched_entity,
                            "match_type": alert.match_type,
                            "alert_type": alert.alert_type,
                            "severity": alert.severity,
                            "actionable_score": alert.actionable_score,
                            "action": action,
                        }
                    },
                )
            return None

        await process_item(
            session,
            summary,
            job=JOB_NAME,
            item={"org_id": str(batch.org_id), "entries": len(batch.entries)},
            work=_work,
        )

    logger.info("watchlist_batch_complete", extra={"extra": {"now": now.isoformat(), **summary.as_dict()}})
    return summary


def _clean_list(values: list[str]) -> list[str]:
    cleaned: list[str] = []
    for value in values:
        item = normalize_entity_name(value)
        if item and item.casefold() not in {existing.casefold() for existing in cleaned}:
            cleaned.append(item)
    return cleaned


async def get_organization(session: AsyncSession, org_id: uuid.UUID) -> Organization:
    org = await session.get(Organization, org_id)
    if org is None:
        raise NotFoundError(detail=f"Organization {org_id} not found")
    return org


async def upsert_organization(
    session: AsyncSession, org_id: uuid.UUID, payload: schemas.OrganizationUpsert
) -> Organization:
    org = await session.get(Organization, org_id)
    if org is None:
        org = Organization(org_id=org_id)
        session.add(org)
    org.name = normalize_entity_name(payload.name)
    org.focus_topics = _clean_list(payload.focus_topics)
    org.is_active = True
    await session.commit()
    await session.refresh(org)
    return org


async def create_entry(
    session: AsyncSession, org_id: uuid.UUID, payload: schemas.WatchlistEntryCreate
) -> WatchlistEntry:
    await get_organization(session, org_id)
    name = normalize_entity_name(payload.entity_name)
    if not name:
        raise DomainError(detail="entity_name must not be blank", title="Invalid watchlist entry")
    entry = WatchlistEntry(
        org_id=org_id,
        entity_name=name,
        entity_type=payload.entity_type.strip().lower() if payload.entity_type else None,
        aliases=_clean_list(payload.aliases),
        alert_threshold=payload.alert_threshold,
        sentiment_alert=payload.sentiment_alert,
        is_active=True,
    )
    session.add(entry)
    await session.commit()
    await session.refresh(entry)
    logger.info(
        "watchlist_entry_created",
        extra={"extra": {"org_id": str(org_id), "entry_id": str(entry.entry_id)}},
    )
    return entry


async def list_entries(
    session: AsyncSession, org_id: uuid.UUID, *, include_inactive: bool = False
) -> list[WatchlistEntry]:
    await get_organization(session, org_id)
    stmt = sa.select(WatchlistEntry).where(WatchlistEntry.org_id == org_id)
    if not include_inactive:
        stmt = stmt.where(WatchlistEntry.is_active.is_(True))
    stmt = stmt.order_by(WatchlistEntry.created_at, WatchlistEntry.entry_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def deactivate_entry(session: AsyncSession, org_id: uuid.UUID, entry_id: uuid.UUID) -> WatchlistEntry:
    entry = await session.get(WatchlistEntry, entry_id)
    if entry is None or entry.org_id != org_id:
        raise NotFoundError(detail=f"Watchlist entry {entry_id} not found")
    entry.is_active = False
    await session.commit()
    await session.refresh(entry)
    return entry


async def list_alerts(
    session: AsyncSession,
    org_id: uuid.UUID,
    *,
    status: str | None = None,
    limit: int = 100,
) -> list[EntityAlert]:
    stmt = sa.select(EntityAlert).where(EntityAlert.org_id == org_id)
    if status is not None:
        if status not in ALERT_STATUSES:
            raise DomainError(detail=f"Unknown alert status {status!r}", title="Invalid alert status")
        stmt = stmt.where(EntityAlert.status == status)
    stmt = stmt.order_by(
        EntityAlert.actionable_score.desc(), EntityAlert.created_at.desc(), EntityAlert.alert_id
    ).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_alert_status(
    session: AsyncSession,
    org_id: uuid.UUID,
    alert_id: uuid.UUID,
    status: str,
    *,
    now: datetime | None = None,
) -> EntityAlert:
    if status not in ALERT_STATUSES:
        raise DomainError(detail=f"Unknown alert status {status!r}", title="Invalid alert status")
    alert = await session.get(EntityAlert, alert_id)
    if alert is None or alert.org_id != org_id:
        raise NotFoundError(detail=f"Alert {alert_id} not found")
    if alert.status != status:
        alert.status = status
        alert.status_changed_at = now or datetime.now(tz=timezone.utc)
    await session.commit()
    return alert
