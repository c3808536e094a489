from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.attribution import engine, schemas
from signaldesk.domain.attribution.db_models import (
    AttributionRecord,
    Donation,
    LinkConfidence,
    Touchpoint,
)
from signaldesk.domain.errors import DomainError, NotFoundError
from signaldesk.infra.db import ensure_utc
from signaldesk.infra.metrics import metrics
from signaldesk.settings import settings
from signaldesk.shared.batch import RunBudget, RunSummary, process_item
from signaldesk.shared.retry import TRANSIENT_ERRORS, retry_with_backoff

logger = logging.getLogger(__name__)

JOB_NAME = "attribution"


@dataclass(frozen=True)
class DonationRef:
    transaction_id: str
    donor_identity: str | None
    donated_at: datetime


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


async def record_touchpoint(session: AsyncSession, payload: schemas.TouchpointIn) -> tuple[Touchpoint, str]:
    """Store a touch; re-delivery with the same external id updates it in place.

    The identity link is only replaced when the incoming link is deterministic or
    the stored one is not, so a probabilistic guess never overwrites a resolved donor.
    """

    donor_identity = _clean(payload.donor_identity)
    if payload.link_confidence == LinkConfidence.DETERMINISTIC and not (
        donor_identity and payload.resolution_key_type
    ):
        raise DomainError(
            detail="deterministic touchpoints need donor_identity and resolution_key_type",
            title="Invalid touchpoint",
        )

    external_id = _clean(payload.external_id)
    touchpoint = None
    if external_id is not None:
        touchpoint = (
            await session.execute(
                sa.select(Touchpoint).where(
                    Touchpoint.touchpoint_type == payload.touchpoint_type,
                    Touchpoint.external_id == external_id,
                )
            )
        ).scalar_one_or_none()

    action = "updated"
    if touchpoint is None:
        touchpoint = Touchpoint(touchpoint_type=payload.touchpoint_type, external_id=external_id)
        session.add(touchpoint)
        action = "created"

    occurred_at = payload.occurred_at
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    touchpoint.occurred_at = occurred_at.astimezone(timezone.utc)
    touchpoint.campaign_id = _clean(payload.campaign_id)
    touchpoint.utm_source = payload.utm_source
    touchpoint.utm_medium = payload.utm_medium
    touchpoint.utm_campaign = payload.utm_campaign
    touchpoint.metadata_json = payload.metadata

    stored_deterministic = action == "updated" and touchpoint.link_confidence == LinkConfidence.DETERMINISTIC
    incoming_deterministic = payload.link_confidence == LinkConfidence.DETERMINISTIC
    if incoming_deterministic or not stored_deterministic:
        touchpoint.donor_identity = donor_identity
        touchpoint.resolution_key_type = payload.resolution_key_type
        touchpoint.link_confidence = payload.link_confidence
    else:
        action = "link_protected"
        logger.info(
            "touchpoint_link_protected",
            extra={
                "extra": {
                    "touchpoint_type": payload.touchpoint_type,
                    "external_id": external_id,
                }
            },
        )

    await session.commit()
    await session.refresh(touchpoint)
    return touchpoint, action


async def record_donation(session: AsyncSession, payload: schemas.DonationIn) -> tuple[Donation, bool]:
    donated_at = payload.donated_at
    if donated_at.tzinfo is None:
        donated_at = donated_at.replace(tzinfo=timezone.utc)

    donation = await session.get(Donation, payload.transaction_id)
    created = donation is None
    if donation is None:
        donation = Donation(transaction_id=payload.transaction_id)
        session.add(donation)
    donation.org_id = payload.org_id
    donation.donor_identity = _clean(payload.donor_identity)
    donation.amount = payload.amount
    donation.donated_at = donated_at.astimezone(timezone.utc)
    await session.commit()
    await session.refresh(donation)
    return donation, created


async def _load_batch(
    session: AsyncSession,
    *,
    batch_size: int,
    force: bool,
    transaction_ids: list[str] | None,
) -> list[DonationRef]:
    stmt = sa.select(Donation.transaction_id, Donation.donor_identity, Donation.donated_at)
    if not force:
        stmt = stmt.outerjoin(
            AttributionRecord, AttributionRecord.transaction_id == Donation.transaction_id
        ).where(AttributionRecord.transaction_id.is_(None))
    if transaction_ids:
        stmt = stmt.where(Donation.transaction_id.in_(transaction_ids))
    stmt = stmt.order_by(Donation.donated_at, Donation.transaction_id).limit(batch_size)
    rows = (await session.execute(stmt)).all()
    return [
        DonationRef(transaction_id=row[0], donor_identity=row[1], donated_at=ensure_utc(row[2]))
        for row in rows
    ]


async def linked_touches(session: AsyncSession, donor_identity: str | None, before: datetime) -> list[engine.Touch]:
    """Deterministically linked touches for a donor strictly before ``before``."""

    if not donor_identity:
        return []
    rows = await session.execute(
        sa.select(
            Touchpoint.touchpoint_id,
            Touchpoint.touchpoint_type,
            Touchpoint.campaign_id,
            Touchpoint.occurred_at,
        ).where(
            Touchpoint.donor_identity == donor_identity,
            Touchpoint.link_confidence == LinkConfidence.DETERMINISTIC,
            Touchpoint.occurred_at < before,
        )
    )
    return [
        engine.Touch(
            touchpoint_id=touchpoint_id,
            channel=channel,
            campaign_id=campaign_id,
            occurred_at=ensure_utc(occurred_at),
        )
        for touchpoint_id, channel, campaign_id, occurred_at in rows.all()
    ]


async def upsert_record(
    session: AsyncSession, transaction_id: str, result: engine.Attribution, now: datetime
) -> str:
    record = await session.get(AttributionRecord, transaction_id)
    action = "updated"
    if record is None:
        record = AttributionRecord(transaction_id=transaction_id)
        session.add(record)
        action = "created"
    record.is_organic = result.is_organic
    record.model = result.model
    record.first_touch_channel = result.first_channel
    record.first_touch_campaign = result.first_campaign
    record.first_touch_weight = result.first_weight
    record.last_touch_channel = result.last_channel
    record.last_touch_campaign = result.last_campaign
    record.last_touch_weight = result.last_weight
    record.middle_touches = [share.as_dict() for share in result.middle]
    record.middle_touches_weight = result.middle_weight
    record.total_touchpoints = result.total_touchpoints
    record.computed_at = now
    return action


async def attribute_transactions(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    force: bool = False,
    transaction_ids: list[str] | None = None,
    budget: RunBudget | None = None,
) -> RunSummary:
    now = ensure_utc(now) if now else datetime.now(tz=timezone.utc)
    batch_size = batch_size or settings.attribution_batch_size
    budget = budget or RunBudget.unlimited()
    summary = RunSummary()

    try:
        batch = await retry_with_backoff(
            lambda: _load_batch(
                session, batch_size=batch_size, force=force, transaction_ids=transaction_ids
            ),
            name="attribution_batch_fetch",
            on_retry=session.rollback,
        )
    except TRANSIENT_ERRORS:
        summary.deferred += 1
        summary.bump("batch_deferred")
        return summary

    for donation in batch:
        if budget.expired():
            summary.budget_exhausted = True
            break

        async def _work(donation: DonationRef = donation) -> str | None:
            touches = await linked_touches(session, donation.donor_identity, donation.donated_at)
            result = engine.attribute(touches)
            action = await upsert_record(session, donation.transaction_id, result, now)
            await session.commit()

            kind = "organic" if result.is_organic else "attributed"
            summary.bump(kind)
            summary.bump(f"records_{action}")
            metrics.record_attribution(kind)
            logger.info(
                "attribution_recorded",
                extra={
                    "extra": {
                        "transaction_id": donation.transaction_id,
                        "is_organic": result.is_organic,
                        "total_touchpoints": result.total_touchpoints,
                        "action": action,
                    }
                },
            )
            return None

        await process_item(
            session,
            summary,
            job=JOB_NAME,
            item={"transaction_id": donation.transaction_id},
            work=_work,
        )

    logger.info(
        "attribution_batch_complete",
        extra={"extra": {"now": now.isoformat(), "force": force, **summary.as_dict()}},
    )
    return summary


async def get_attribution(session: AsyncSession, transaction_id: str) -> AttributionRecord:
    record = await session.get(AttributionRecord, transaction_id)
    if record is None:
        raise NotFoundError(detail=f"No attribution for transaction {transaction_id}")
    return record
