from __future__ import annotations

import logging
from datetime import timezone

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.errors import DataQualityError
from signaldesk.domain.mentions import schemas
from signaldesk.domain.mentions.db_models import Mention

logger = logging.getLogger(__name__)


def normalize_entity_name(value: str | None) -> str:
    return " ".join((value or "").split())


def entity_key(value: str | None) -> str:
    return normalize_entity_name(value).casefold()


def _validate(payload: schemas.MentionIn) -> schemas.MentionIn:
    name = normalize_entity_name(payload.entity_name)
    entity_type = payload.entity_type.strip().lower()
    source_type = payload.source_type.strip().lower()
    source_id = payload.source_id.strip()
    if not name or not entity_type or not source_type or not source_id:
        raise DataQualityError("mention is missing entity or source identity")
    if payload.sentiment is not None and not -1.0 <= payload.sentiment <= 1.0:
        raise DataQualityError("sentiment out of range")
    mentioned_at = payload.mentioned_at
    if mentioned_at.tzinfo is None:
        mentioned_at = mentioned_at.replace(tzinfo=timezone.utc)
    return payload.model_copy(
        update={
            "entity_name": name,
            "entity_type": entity_type,
            "source_type": source_type,
            "source_id": source_id,
            "mentioned_at": mentioned_at.astimezone(timezone.utc),
        }
    )


async def _find_existing(session: AsyncSession, clean: schemas.MentionIn) -> Mention | None:
    stmt = sa.select(Mention).where(
        Mention.entity_key == entity_key(clean.entity_name),
        Mention.source_id == clean.source_id,
        Mention.source_type == clean.source_type,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


def _apply_update(existing: Mention, clean: schemas.MentionIn) -> None:
    existing.entity_name = clean.entity_name
    existing.entity_type = clean.entity_type
    existing.mentioned_at = clean.mentioned_at
    existing.sentiment = clean.sentiment
    existing.source_title = clean.source_title or existing.source_title
    existing.source_url = clean.source_url or existing.source_url


async def ingest_mention(session: AsyncSession, payload: schemas.MentionIn) -> tuple[Mention, bool]:
    """Upsert one mention on its source identity.

    Re-delivering the same source item updates the stored row in place, so
    downstream window counts never see the same item twice. The key uses the
    case-folded entity name, matching how trends group mentions.
    """

    clean = _validate(payload)
    existing = await _find_existing(session, clean)
    if existing is None:
        mention = Mention(
            entity_name=clean.entity_name,
            entity_key=entity_key(clean.entity_name),
            entity_type=clean.entity_type,
            source_type=clean.source_type,
            source_id=clean.source_id,
            mentioned_at=clean.mentioned_at,
            sentiment=clean.sentiment,
            source_title=clean.source_title,
            source_url=clean.source_url,
        )
        savepoint = await session.begin_nested()
        try:
            session.add(mention)
            await session.flush()
        except IntegrityError:
            await savepoint.rollback()
            # A concurrent push stored the same source item first.
            existing = await _find_existing(session, clean)
            if existing is None:
                raise
        else:
            await savepoint.commit()
            return mention, True

    _apply_update(existing, clean)
    await session.flush()
    return existing, False


async def ingest_mentions(
    session: AsyncSession, payloads: list[schemas.MentionIn]
) -> schemas.MentionBatchResponse:
    created = updated = skipped = 0
    for payload in payloads:
        try:
            _, was_created = await ingest_mention(session, payload)
        except DataQualityError as exc:
            skipped += 1
            logger.warning(
                "mention_skipped",
                extra={"extra": {"source_type": payload.source_type, "source_id": payload.source_id, "reason": str(exc)}},
            )
            continue
        if was_created:
            created += 1
        else:
            updated += 1
    await session.commit()
    logger.info(
        "mentions_ingested",
        extra={"extra": {"created": created, "updated": updated, "skipped": skipped}},
    )
    return schemas.MentionBatchResponse(created=created, updated=updated, skipped=skipped)
