import asyncio
from datetime import datetime, timezone

from signaldesk.domain.ops.db_models import JobHeartbeat
from signaldesk.domain.ops.service import JOB_ORDER, record_job_run
from signaldesk.shared.batch import RunSummary


async def _seed_disabled_job(async_session_maker) -> None:
    now = datetime.now(tz=timezone.utc)
    async with async_session_maker() as session:
        session.add(
            JobHeartbeat(
                name="watchlist-alerts",
                last_heartbeat=now,
                consecutive_failures=5,
                last_error="OperationalError",
                last_error_at=now,
                is_disabled=True,
                disabled_at=now,
                updated_at=now,
            )
        )
        await session.commit()
        await record_job_run(
            session,
            "watchlist-alerts",
            started_at=now,
            summary=None,
            runner_id="runner-a",
            error="OperationalError",
        )


def test_jobs_list_reports_every_scheduled_job(client, async_session_maker):
    asyncio.run(_seed_disabled_job(async_session_maker))

    response = client.get("/v1/jobs")

    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["name"] for item in items] == list(JOB_ORDER)
    alerts = next(item for item in items if item["name"] == "watchlist-alerts")
    assert alerts["is_disabled"] is True
    assert alerts["consecutive_failures"] == 5
    assert alerts["last_run_status"] == "failed"
    trends = next(item for item in items if item["name"] == "entity-trends")
    assert trends["last_heartbeat"] is None
    assert trends["is_disabled"] is False


def test_enable_job_clears_disabled_state(client, async_session_maker):
    asyncio.run(_seed_disabled_job(async_session_maker))

    response = client.post("/v1/jobs/watchlist-alerts/enable")

    assert response.status_code == 200
    body = response.json()
    assert body["is_disabled"] is False
    assert body["consecutive_failures"] == 0
    assert body["disabled_at"] is None


def test_enable_unknown_job_is_not_found(client):
    response = client.post("/v1/jobs/nightly-report/enable")

    assert response.status_code == 404
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["title"] == "Not Found"


def test_completed_run_summary_is_listed(client, async_session_maker):
    async def seed() -> None:
        summary = RunSummary(processed=4, budget_exhausted=True)
        async with async_session_maker() as session:
            await record_job_run(
                session, "entity-trends", started_at=datetime.now(tz=timezone.utc), summary=summary
            )

    asyncio.run(seed())

    items = client.get("/v1/jobs").json()["items"]
    trends = next(item for item in items if item["name"] == "entity-trends")
    assert trends["last_run_status"] == "partial"
    assert trends["last_run_at"] is not None
