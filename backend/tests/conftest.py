import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("METRICS_ENABLED", "true")


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from signaldesk.domain.anomalies import db_models as anomaly_db_models  # noqa: F401
from signaldesk.domain.attribution import db_models as attribution_db_models  # noqa: F401
from signaldesk.domain.mentions import db_models as mention_db_models  # noqa: F401
from signaldesk.domain.ops import db_models as ops_db_models  # noqa: F401
from signaldesk.domain.trends import db_models as trend_db_models  # noqa: F401
from signaldesk.domain.watchlists import db_models as watchlist_db_models  # noqa: F401
from signaldesk.domain.watchlists import matching
from signaldesk.infra.db import Base, get_db_session
from signaldesk.main import app
from signaldesk.settings import settings


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original_testing = settings.testing
    original_metrics = settings.metrics_enabled
    original_metrics_token = settings.metrics_token
    original_job_heartbeat = settings.job_heartbeat_required
    original_job_heartbeat_ttl = settings.job_heartbeat_ttl_seconds
    original_auto_disable = settings.job_auto_disable_after_failures
    original_retry_attempts = settings.store_retry_attempts
    original_retry_backoff = settings.store_retry_backoff_seconds
    original_min_current = settings.anomaly_min_current_mentions
    original_min_points = settings.anomaly_min_baseline_points
    yield
    settings.testing = original_testing
    settings.metrics_enabled = original_metrics
    settings.metrics_token = original_metrics_token
    settings.job_heartbeat_required = original_job_heartbeat
    settings.job_heartbeat_ttl_seconds = original_job_heartbeat_ttl
    settings.job_auto_disable_after_failures = original_auto_disable
    settings.store_retry_attempts = original_retry_attempts
    settings.store_retry_backoff_seconds = original_retry_backoff
    settings.anomaly_min_current_mentions = original_min_current
    settings.anomaly_min_baseline_points = original_min_points


@pytest.fixture(autouse=True)
def enable_test_mode():
    settings.testing = True
    settings.app_env = "dev"
    settings.store_retry_backoff_seconds = 0.0
    yield


@pytest.fixture(autouse=True)
def restore_app_state():
    """Restore app.state after each test to prevent state pollution."""
    original_metrics = getattr(app.state, "metrics", None)
    original_app_settings = getattr(app.state, "app_settings", None)
    yield
    if original_metrics is not None:
        app.state.metrics = original_metrics
    elif hasattr(app.state, "metrics"):
        delattr(app.state, "metrics")

    if original_app_settings is not None:
        app.state.app_settings = original_app_settings
    elif hasattr(app.state, "app_settings"):
        delattr(app.state, "app_settings")


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def client(async_session_maker):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


def make_candidate(name: str, **overrides) -> matching.Candidate:
    values = {
        "entity_key": matching.normalize(name),
        "entity_name": name,
        "entity_type": "organization",
        "velocity": 120.0,
        "momentum": 10.0,
        "mentions_6h": 8,
        "mentions_24h": 20,
        "sentiment_change": None,
        "last_seen_at": datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc),
        "is_trending": True,
    }
    values.update(overrides)
    return matching.Candidate(**values)
