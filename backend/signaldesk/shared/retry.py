from __future__ import annotations

import logging
import random
from typing import Awaitable, Callable, TypeVar

import anyio
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from signaldesk.domain.errors import TransientStoreError
from signaldesk.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
    TransientStoreError,
)


def backoff_delay(attempt: int, *, base: float, maximum: float) -> float:
    return min(base * (2 ** max(0, attempt - 1)), maximum)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    on_retry: Callable[[], Awaitable[None]] | None = None,
) -> T:
    """Run ``operation`` and retry transient store failures with exponential backoff.

    The last transient exception is re-raised once ``attempts`` are used up so the
    caller can defer the work to the next scheduled run. Anything that is not a
    transient store error propagates immediately.
    """

    max_attempts = attempts if attempts is not None else settings.store_retry_attempts
    base = settings.store_retry_backoff_seconds if base_delay is None else base_delay
    ceiling = settings.store_retry_backoff_max_seconds if max_delay is None else max_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except TRANSIENT_ERRORS as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "store_retry_exhausted",
                    extra={"extra": {"operation": name, "attempts": attempt, "error": type(exc).__name__}},
                )
                raise
            delay = backoff_delay(attempt, base=base, maximum=ceiling)
            jitter = delay * random.uniform(0.0, 0.3)
            logger.info(
                "store_retry_scheduled",
                extra={
                    "extra": {
                        "operation": name,
                        "attempt": attempt,
                        "delay_seconds": round(delay + jitter, 3),
                        "error": type(exc).__name__,
                    }
                },
            )
            if on_retry is not None:
                await on_retry()
            await anyio.sleep(delay + jitter)
    raise RuntimeError("store_retry_unreachable")  # pragma: no cover
