import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from signaldesk.domain.attribution.service import attribute_transactions

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _touch(touchpoint_type: str, occurred_at: str, external_id: str, **overrides) -> dict:
    payload = {
        "touchpoint_type": touchpoint_type,
        "occurred_at": occurred_at,
        "donor_identity": "donor-1",
        "campaign_id": f"{touchpoint_type}-spring",
        "resolution_key_type": "click_id",
        "link_confidence": "deterministic",
        "external_id": external_id,
    }
    payload.update(overrides)
    return payload


def test_touchpoint_redelivery_updates_in_place(client):
    first = client.post("/v1/touchpoints", json=_touch("ad_click", "2026-03-07T10:00:00Z", "clk-1"))
    again = client.post(
        "/v1/touchpoints",
        json=_touch("ad_click", "2026-03-07T10:00:00Z", "clk-1", campaign_id="retargeting"),
    )

    assert first.status_code == 201
    assert again.status_code == 200
    assert again.json()["touchpoint_id"] == first.json()["touchpoint_id"]
    assert again.json()["campaign_id"] == "retargeting"


def test_deterministic_touchpoint_without_key_is_rejected(client):
    response = client.post(
        "/v1/touchpoints",
        json=_touch("email", "2026-03-08T10:00:00Z", "em-1", resolution_key_type=None),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["title"] == "Invalid touchpoint"
    assert body["request_id"]


def test_unknown_channel_fails_validation(client):
    response = client.post("/v1/touchpoints", json=_touch("billboard", "2026-03-08T10:00:00Z", "bb-1"))

    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "touchpoint_type"


def test_donation_attribution_roundtrip(client, async_session_maker):
    client.post("/v1/touchpoints", json=_touch("ad_click", "2026-03-07T10:00:00Z", "clk-1"))
    client.post("/v1/touchpoints", json=_touch("email", "2026-03-08T10:00:00Z", "em-1"))
    client.post("/v1/touchpoints", json=_touch("email", "2026-03-09T09:00:00Z", "em-2"))
    client.post("/v1/touchpoints", json=_touch("sms", "2026-03-10T08:00:00Z", "sms-1"))

    donation = {
        "transaction_id": "txn-42",
        "amount": "50.00",
        "donated_at": "2026-03-10T11:00:00Z",
        "donor_identity": "donor-1",
    }
    created = client.post("/v1/donations", json=donation)
    repeated = client.post("/v1/donations", json=donation)
    assert created.status_code == 201
    assert repeated.status_code == 200
    assert Decimal(created.json()["amount"]) == Decimal("50.00")

    async def attribute() -> None:
        async with async_session_maker() as session:
            await attribute_transactions(session, now=NOW)

    asyncio.run(attribute())

    response = client.get("/v1/attribution/txn-42")

    assert response.status_code == 200
    body = response.json()
    assert body["is_organic"] is False
    assert body["model"] == "40_20_40"
    assert body["first_touch_channel"] == "ad_click"
    assert body["last_touch_channel"] == "sms"
    assert Decimal(body["first_touch_weight"]) == Decimal("0.4")
    assert Decimal(body["last_touch_weight"]) == Decimal("0.4")
    assert [touch["channel"] for touch in body["middle_touches"]] == ["email", "email"]
    assert [Decimal(touch["weight"]) for touch in body["middle_touches"]] == [Decimal("0.1"), Decimal("0.1")]
    assert body["total_touchpoints"] == 4


def test_missing_attribution_returns_problem_details(client):
    response = client.get("/v1/attribution/unknown")

    assert response.status_code == 404
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["status"] == 404
    assert body["type"].endswith("not-found")
