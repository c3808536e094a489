from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.domain.errors import DataQualityError
from signaldesk.shared.retry import TRANSIENT_ERRORS

logger = logging.getLogger(__name__)


class RunBudget:
    """Wall-clock allowance for one scheduled run, checked between items."""

    def __init__(self, seconds: float | None = None, *, clock=time.monotonic) -> None:  # noqa: ANN001
        self.seconds = seconds
        self._clock = clock
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def expired(self) -> bool:
        if self.seconds is None:
            return False
        return self.elapsed >= self.seconds

    @classmethod
    def unlimited(cls) -> "RunBudget":
        return cls(None)


@dataclass
class RunSummary:
    processed: int = 0
    skipped: int = 0
    errored: int = 0
    deferred: int = 0
    budget_exhausted: bool = False
    counters: dict[str, int] = field(default_factory=dict)

    def bump(self, name: str, count: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + count

    @property
    def status(self) -> str:
        if self.errored and not self.processed and not self.skipped:
            return "failed"
        if self.deferred and not self.processed:
            return "deferred"
        if self.budget_exhausted:
            return "partial"
        return "ok"

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "errored": self.errored,
            "deferred": self.deferred,
            "budget_exhausted": int(self.budget_exhausted),
            **self.counters,
        }


async def process_item(
    session: AsyncSession,
    summary: RunSummary,
    *,
    job: str,
    item: dict[str, object],
    work: Callable[[], Awaitable[str | None]],
) -> None:
    """Run one batch item in its own transaction and file the outcome in ``summary``.

    ``work`` commits its own writes and may return ``"skipped"``. Data-quality
    problems skip the item, transient store failures defer it to the next run and
    anything else is counted as an error. A failed item is rolled back without
    touching rows other items have already committed.
    """

    try:
        outcome = await work()
    except DataQualityError as exc:
        await session.rollback()
        summary.skipped += 1
        logger.warning(f"{job}_item_skipped", extra={"extra": {**item, "reason": str(exc)}})
        return
    except TRANSIENT_ERRORS as exc:
        await session.rollback()
        summary.deferred += 1
        logger.warning(f"{job}_item_deferred", extra={"extra": {**item, "error": type(exc).__name__}})
        return
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        summary.errored += 1
        logger.exception(f"{job}_item_failed", extra={"extra": {**item, "error": type(exc).__name__}})
        return
    if outcome == "skipped":
        summary.skipped += 1
    else:
        summary.processed += 1
