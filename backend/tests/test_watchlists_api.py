import asyncio
import uuid
from datetime import datetime, timedelta, timezone

from signaldesk.domain.trends.db_models import EntityTrend
from signaldesk.domain.watchlists.service import match_watchlists

ORG_ID = uuid.UUID("00000000-0000-0000-0000-0000000000b2")
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _create_org(client, **overrides) -> dict:
    payload = {"name": " Civic Action ", "focus_topics": ["Gaza", "gaza", "Refugees"]}
    payload.update(overrides)
    response = client.put(f"/v1/orgs/{ORG_ID}", json=payload)
    assert response.status_code == 200
    return response.json()


def test_org_upsert_cleans_topics(client):
    body = _create_org(client)

    assert body["name"] == "Civic Action"
    assert body["focus_topics"] == ["Gaza", "Refugees"]
    assert body["is_active"] is True

    renamed = _create_org(client, name="Civic Action Fund", focus_topics=[])
    assert renamed["name"] == "Civic Action Fund"
    assert renamed["focus_topics"] == []


def test_watchlist_entry_lifecycle(client):
    _create_org(client)

    created = client.post(
        f"/v1/orgs/{ORG_ID}/watchlist",
        json={"entity_name": "CAIR", "entity_type": "Organization", "aliases": ["Council on American-Islamic Relations"]},
    )
    assert created.status_code == 201
    entry = created.json()
    assert entry["entity_type"] == "organization"
    assert entry["alert_threshold"] == 50.0
    assert entry["is_active"] is True

    listed = client.get(f"/v1/orgs/{ORG_ID}/watchlist").json()["items"]
    assert [item["entry_id"] for item in listed] == [entry["entry_id"]]

    removed = client.delete(f"/v1/orgs/{ORG_ID}/watchlist/{entry['entry_id']}")
    assert removed.status_code == 200
    assert removed.json()["is_active"] is False
    assert client.get(f"/v1/orgs/{ORG_ID}/watchlist").json()["items"] == []
    assert len(client.get(f"/v1/orgs/{ORG_ID}/watchlist?include_inactive=true").json()["items"]) == 1


def test_watchlist_entry_validation(client):
    _create_org(client)

    blank = client.post(f"/v1/orgs/{ORG_ID}/watchlist", json={"entity_name": "   "})
    assert blank.status_code == 400
    assert blank.json()["title"] == "Invalid watchlist entry"

    threshold = client.post(f"/v1/orgs/{ORG_ID}/watchlist", json={"entity_name": "CAIR", "alert_threshold": 120})
    assert threshold.status_code == 422

    unknown_org = client.post(f"/v1/orgs/{uuid.uuid4()}/watchlist", json={"entity_name": "CAIR"})
    assert unknown_org.status_code == 404

    missing_entry = client.delete(f"/v1/orgs/{ORG_ID}/watchlist/{uuid.uuid4()}")
    assert missing_entry.status_code == 404


def test_alert_inbox_and_status_changes(client, async_session_maker):
    _create_org(client)
    client.post(f"/v1/orgs/{ORG_ID}/watchlist", json={"entity_name": "CAIR", "alert_threshold": 10})

    async def seed_and_match() -> None:
        async with async_session_maker() as session:
            session.add(
                EntityTrend(
                    entity_key="cair",
                    entity_name="CAIR",
                    entity_type="organization",
                    mentions_1h=4,
                    mentions_6h=12,
                    mentions_24h=20,
                    mentions_7d=40,
                    velocity=150.0,
                    momentum=30.0,
                    is_trending=True,
                    last_seen_at=NOW - timedelta(minutes=20),
                    calculated_at=NOW,
                )
            )
            await session.commit()
            await match_watchlists(session, now=NOW)

    asyncio.run(seed_and_match())

    unread = client.get(f"/v1/orgs/{ORG_ID}/alerts")
    assert unread.status_code == 200
    [alert] = unread.json()["items"]
    assert alert["matched_entity"] == "CAIR"
    assert alert["status"] == "unread"
    assert alert["alert_day"] == "2026-03-10"

    patched = client.patch(f"/v1/orgs/{ORG_ID}/alerts/{alert['alert_id']}", json={"status": "dismissed"})
    assert patched.status_code == 200
    assert patched.json()["status"] == "dismissed"

    assert client.get(f"/v1/orgs/{ORG_ID}/alerts").json()["items"] == []
    dismissed = client.get(f"/v1/orgs/{ORG_ID}/alerts?status=dismissed").json()["items"]
    assert [item["alert_id"] for item in dismissed] == [alert["alert_id"]]

    invalid = client.patch(f"/v1/orgs/{ORG_ID}/alerts/{alert['alert_id']}", json={"status": "archived"})
    assert invalid.status_code == 422

    other_org = client.patch(f"/v1/orgs/{uuid.uuid4()}/alerts/{alert['alert_id']}", json={"status": "read"})
    assert other_org.status_code == 404


def test_unknown_alert_status_filter_is_rejected(client):
    response = client.get(f"/v1/orgs/{ORG_ID}/alerts?status=archived")

    assert response.status_code == 400
    assert response.json()["title"] == "Invalid alert status"
