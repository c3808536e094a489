import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from signaldesk.api import routes_health
from signaldesk.domain.ops.db_models import JobHeartbeat
from signaldesk.infra.metrics import configure_metrics
from signaldesk.main import app
from signaldesk.settings import settings


async def _set_alembic_version(async_session_maker, version: str | None) -> None:
    async with async_session_maker() as session:
        await session.execute(text("CREATE TABLE IF NOT EXISTS alembic_version (version_num VARCHAR(32) NOT NULL)"))
        await session.execute(text("DELETE FROM alembic_version"))
        if version is not None:
            await session.execute(
                text("INSERT INTO alembic_version (version_num) VALUES (:version)"),
                {"version": version},
            )
        await session.commit()


async def _set_job_heartbeat(async_session_maker, age_seconds: int = 0) -> None:
    async with async_session_maker() as session:
        now = datetime.now(timezone.utc)
        heartbeat = JobHeartbeat(
            name="jobs-runner",
            last_heartbeat=now - timedelta(seconds=age_seconds),
            consecutive_failures=0,
            updated_at=now,
        )
        await session.merge(heartbeat)
        await session.commit()


def _check(payload: dict, name: str) -> dict:
    return next(check for check in payload["checks"] if check["name"] == name)


@pytest.fixture(autouse=True)
def reset_head_cache():
    routes_health._HEAD_CACHE.update({"timestamp": 0.0, "heads": None, "skip_reason": None, "warning_logged": False})
    yield
    routes_health._HEAD_CACHE.update({"timestamp": 0.0, "heads": None, "skip_reason": None, "warning_logged": False})


def test_healthz_get_and_head(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.head("/healthz").status_code == 200


def test_readyz_at_shipped_head(client, async_session_maker):
    asyncio.run(_set_alembic_version(async_session_maker, "0001_initial"))

    response = client.get("/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    migrations = _check(payload, "migrations")
    assert migrations["detail"]["expected_heads"] == ["0001_initial"]
    assert migrations["detail"]["current_version"] == "0001_initial"
    assert _check(payload, "db")["ok"] is True
    assert _check(payload, "jobs")["detail"]["enabled"] is False


def test_readyz_without_migrations_applied(client, async_session_maker):
    asyncio.run(_set_alembic_version(async_session_maker, None))

    response = client.get("/readyz")

    assert response.status_code == 503
    migrations = _check(response.json(), "migrations")
    assert migrations["ok"] is False
    assert migrations["detail"]["current_version"] is None


def test_readyz_behind_head(monkeypatch, client, async_session_maker):
    asyncio.run(_set_alembic_version(async_session_maker, "base"))
    monkeypatch.setattr(routes_health, "_load_expected_heads", lambda: (["head2"], None))

    response = client.get("/readyz")

    assert response.status_code == 503
    assert _check(response.json(), "migrations")["detail"]["migrations_check"] == "ok"


def test_readyz_skips_when_migration_files_missing(monkeypatch, client):
    monkeypatch.setattr(routes_health, "_load_expected_heads", lambda: ([], "skipped_no_alembic_files"))

    response = client.get("/readyz")

    assert response.status_code == 200
    assert _check(response.json(), "migrations")["detail"]["migrations_check"] == "skipped_no_alembic_files"


def test_readyz_requires_recent_runner_heartbeat(monkeypatch, client, async_session_maker):
    settings.job_heartbeat_required = True
    settings.job_heartbeat_ttl_seconds = 300
    monkeypatch.setattr(routes_health, "_load_expected_heads", lambda: ([], "skipped_no_alembic_files"))

    missing = client.get("/readyz")
    assert missing.status_code == 503
    assert _check(missing.json(), "jobs")["detail"]["message"] == "job heartbeat missing"

    asyncio.run(_set_job_heartbeat(async_session_maker, age_seconds=900))
    stale = client.get("/readyz")
    assert stale.status_code == 503

    asyncio.run(_set_job_heartbeat(async_session_maker, age_seconds=30))
    fresh = client.get("/readyz")
    assert fresh.status_code == 200
    assert _check(fresh.json(), "jobs")["ok"] is True


def test_metrics_endpoint_serves_prometheus_text(client):
    client.get("/healthz")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_request_latency_seconds" in response.text


def test_metrics_endpoint_requires_token_in_prod(client):
    settings.metrics_token = "secret-token"
    settings.app_env = "prod"
    app.state.metrics = configure_metrics(True)

    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer secret-token"}).status_code == 200


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.get("/healthz")
    assert generated.headers["X-Request-ID"]
