import argparse
import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signaldesk.domain.anomalies import service as anomalies_service
from signaldesk.domain.attribution import service as attribution_service
from signaldesk.domain.ops.db_models import JobHeartbeat
from signaldesk.domain.ops.leases import acquire_lease, release_lease
from signaldesk.domain.ops.service import JOB_ORDER, is_job_disabled, record_job_run
from signaldesk.domain.trends import service as trends_service
from signaldesk.domain.watchlists import service as watchlists_service
from signaldesk.infra.db import dispose_engine, get_session_factory
from signaldesk.infra.logging import clear_log_context, configure_logging, update_log_context
from signaldesk.infra.metrics import configure_metrics, metrics
from signaldesk.infra.tracing import configure_tracing, shutdown_tracing
from signaldesk.jobs.heartbeat import record_heartbeat, resolve_runner_id
from signaldesk.settings import settings
from signaldesk.shared.batch import RunBudget, RunSummary

logger = logging.getLogger(__name__)

JobRunner = Callable[[AsyncSession, RunBudget], Awaitable[RunSummary]]


async def _run_job(
    name: str,
    session_factory: async_sessionmaker,
    runner: JobRunner,
    *,
    holder: str,
    budget_seconds: float | None = None,
) -> RunSummary | None:
    """Run one job under its lease; returns None when it was skipped."""

    update_log_context(job=name, run_id=str(uuid.uuid4()))
    started_at = datetime.now(tz=timezone.utc)
    try:
        async with session_factory() as session:
            if await is_job_disabled(session, name):
                logger.info("job_disabled_skip", extra={"extra": {"job": name}})
                return None
            if not await acquire_lease(session, name, holder):
                metrics.record_lease_contention(name)
                logger.info("job_lease_held", extra={"extra": {"job": name, "holder": holder}})
                return None

        try:
            async with session_factory() as session:
                budget = RunBudget(budget_seconds if budget_seconds is not None else settings.job_time_budget_seconds)
                summary = await runner(session, budget)
        except Exception as exc:  # noqa: BLE001
            async with session_factory() as session:
                await record_job_run(
                    session, name, started_at=started_at, summary=None, runner_id=holder, error=type(exc).__name__
                )
            raise
        finally:
            async with session_factory() as session:
                await release_lease(session, name, holder)

        async with session_factory() as session:
            await record_job_run(session, name, started_at=started_at, summary=summary, runner_id=holder)
        _record_batch_metrics(name, summary)
        logger.info("job_complete", extra={"extra": {"job": name, "status": summary.status, **summary.as_dict()}})
        if summary.status == "failed":
            await _record_job_result(session_factory, name, success=False, error_reason="all_items_failed")
        else:
            await _record_job_result(session_factory, name, success=True)
        return summary
    finally:
        clear_log_context()


def _record_batch_metrics(job: str, summary: RunSummary) -> None:
    for outcome in ("processed", "skipped", "errored", "deferred"):
        count = getattr(summary, outcome)
        if count:
            metrics.record_batch_items(job, outcome, count)


async def _record_job_result(
    session_factory: async_sessionmaker, job: str, *, success: bool, error_reason: str | None = None
) -> None:
    now = datetime.now(tz=timezone.utc)
    disabled_now = False
    async with session_factory() as session:
        record = await session.get(JobHeartbeat, job)
        if record is None:
            record = JobHeartbeat(
                name=job,
                last_heartbeat=now,
                last_success_at=None,
                consecutive_failures=0,
                last_error=None,
                last_error_at=None,
                updated_at=now,
            )
            session.add(record)
        record.last_heartbeat = now
        if success:
            record.last_success_at = now
            record.consecutive_failures = 0
            record.last_error = None
            record.last_error_at = None
        else:
            record.consecutive_failures = (record.consecutive_failures or 0) + 1
            record.last_error = error_reason or record.last_error
            record.last_error_at = now
            if not record.is_disabled and record.consecutive_failures >= settings.job_auto_disable_after_failures:
                record.is_disabled = True
                record.disabled_at = now
                disabled_now = True
        failures = record.consecutive_failures
        await session.commit()
    if success:
        metrics.record_job_success(job, now.timestamp())
    else:
        metrics.record_job_error(job, error_reason or "unknown")
    if disabled_now:
        metrics.set_job_disabled(job, True)
        logger.error("job_auto_disabled", extra={"extra": {"job": job, "consecutive_failures": failures}})


def _job_runner(name: str) -> JobRunner:
    if name == "entity-trends":
        return lambda session, budget: trends_service.aggregate_trends(session, budget=budget)
    if name == "anomaly-detection":
        return lambda session, budget: anomalies_service.detect_anomalies(session, budget=budget)
    if name == "watchlist-alerts":
        return lambda session, budget: watchlists_service.match_watchlists(session, budget=budget)
    if name == "attribution":
        return lambda session, budget: attribution_service.attribute_transactions(session, budget=budget)
    raise ValueError(f"unknown_job:{name}")


async def run_jobs(
    job_names: list[str],
    session_factory: async_sessionmaker,
    *,
    holder: str,
    runners: dict[str, JobRunner] | None = None,
) -> dict[str, RunSummary | None]:
    """One pass over ``job_names`` in order; a failing job never stops the rest."""

    results: dict[str, RunSummary | None] = {}
    for name in job_names:
        runner = (runners or {}).get(name) or _job_runner(name)
        try:
            results[name] = await _run_job(name, session_factory, runner, holder=holder)
        except Exception as exc:  # noqa: BLE001
            results[name] = None
            logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
            await _record_job_result(session_factory, name, success=False, error_reason=type(exc).__name__)
    await record_heartbeat(session_factory, runner_id=holder)
    return results


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run scheduled signal jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_ORDER, help="Job name to run")
    parser.add_argument("--interval", type=int, default=300, help="Seconds between loops when not using --once")
    parser.add_argument("--runner-id", dest="runner_id", default=None, help="Lease holder id (defaults to hostname)")
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    configure_tracing(service_name="signaldesk-jobs")
    configure_metrics(settings.metrics_enabled)
    session_factory = get_session_factory()
    holder = resolve_runner_id(args.runner_id)

    job_names = args.jobs or list(JOB_ORDER)
    job_names = [name for name in JOB_ORDER if name in job_names]

    try:
        while True:
            await run_jobs(job_names, session_factory, holder=holder)
            if args.once:
                break
            await asyncio.sleep(max(args.interval, 1))
    finally:
        await dispose_engine()
        shutdown_tracing()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
