from datetime import timedelta
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from trendle_api.core.settings import settings
from trendle_api.core.time import utcnow
from trendle_api.models.account import LedgerReason
from trendle_api.models.event import CheckInMethod, Event
from trendle_api.models.venue import Reward, Venue
from trendle_api.services.ledger import Ledger


async def _seed(session_factory, *, balance: int = 0):
    account_id = uuid4()
    async with session_factory() as session:
        venue = Venue(name="The Velvet Whisk", category="Brunch", latitude=-33.9067, longitude=18.4179)
        session.add(venue)
        await session.flush()
        reward = Reward(venue_id=venue.id, title="Gold-leaf pancakes", cost_points=400, category="Brunch")
        event = Event(
            venue_id=venue.id,
            title="Sunday jazz brunch",
            start_time=utcnow() - timedelta(hours=1),
            end_time=utcnow() + timedelta(hours=2),
            check_in_method=CheckInMethod.QR,
            qr_token="jazz-brunch",
            points_reward=30,
        )
        session.add_all([reward, event])
        await session.commit()
        ids = {"venue": venue.id, "reward": reward.id, "event": event.id, "account": account_id}

        ledger = Ledger(session)
        await ledger.ensure_account(account_id)
        if balance:
            await ledger.apply_delta(account_id, balance, LedgerReason.ADMIN_ADJUSTMENT)
    return ids


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_session_header_is_required(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.get("/api/v1/points/me")
        invalid = await client.get("/api/v1/points/me", headers={"X-Session-User": "not-a-uuid"})
        fresh = await client.get("/api/v1/points/me", headers={"X-Session-User": str(uuid4())})

    assert missing.status_code == 401
    assert invalid.status_code == 400
    assert fresh.status_code == 200
    body = fresh.json()
    assert body["balance"] == 0
    assert body["tier"] == "silver"
    assert body["nextTier"] == "gold"
    assert body["pointsToNextTier"] == 500


@pytest.mark.asyncio
async def test_activity_credit_and_duplicate_mapping(app_with_db) -> None:
    app, _ = app_with_db
    headers = {"X-Session-User": str(uuid4())}

    async with _client(app) as client:
        created = await client.post(
            "/api/v1/points/me/activities",
            json={"kind": "post", "referenceId": "post-1", "caption": "Jazz, pancakes and sunshine on the terrace"},
            headers=headers,
        )
        duplicate = await client.post(
            "/api/v1/points/me/activities",
            json={"kind": "post", "referenceId": "post-1"},
            headers=headers,
        )
        missing_text = await client.post(
            "/api/v1/points/me/activities",
            json={"kind": "comment", "referenceId": "comment-1"},
            headers=headers,
        )
        ledger = await client.get("/api/v1/points/me/ledger", headers=headers)

    assert created.status_code == 201
    assert created.json()["amountDelta"] == 55
    assert created.json()["balance"] == 55
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "duplicate_entry"
    assert missing_text.status_code == 422
    entries = ledger.json()["entries"]
    assert [(entry["reason"], entry["amountDelta"]) for entry in entries] == [("post", 55)]
    assert ledger.json()["nextCursor"] is None


@pytest.mark.asyncio
async def test_redeem_and_validate_flow(app_with_db, monkeypatch) -> None:
    app, session_factory = app_with_db
    ids = await _seed(session_factory, balance=1000)
    monkeypatch.setattr(settings, "venue_api_key", "venue-secret")
    headers = {"X-Session-User": str(ids["account"])}

    async with _client(app) as client:
        redeemed = await client.post(f"/api/v1/rewards/{ids['reward']}/redeem", headers=headers)
        code = redeemed.json()["code"]
        vouchers = await client.get("/api/v1/rewards/vouchers", headers=headers)

        request = {"code": code, "venueId": str(ids["venue"])}
        unauthorised = await client.post("/api/v1/rewards/validate", json=request)
        wrong_venue = await client.post(
            "/api/v1/rewards/validate",
            json={"code": code, "venueId": str(uuid4())},
            headers={"X-API-Key": "venue-secret"},
        )
        first = await client.post("/api/v1/rewards/validate", json=request, headers={"X-API-Key": "venue-secret"})
        second = await client.post("/api/v1/rewards/validate", json=request, headers={"X-API-Key": "venue-secret"})
        snapshot = await client.get("/api/v1/points/me", headers=headers)

    assert redeemed.status_code == 201
    assert redeemed.json()["status"] == "active"
    assert redeemed.json()["pointsCost"] == 400
    assert [voucher["code"] for voucher in vouchers.json()] == [code]
    assert unauthorised.status_code == 401
    assert wrong_venue.status_code == 200
    assert wrong_venue.json() == {
        "valid": False,
        "reason": "wrong_venue",
        "voucherId": redeemed.json()["id"],
        "rewardTitle": "Gold-leaf pancakes",
        "consumedAt": None,
    }
    assert first.json()["valid"] is True
    assert first.json()["consumedAt"] is not None
    assert second.json()["valid"] is False
    assert second.json()["reason"] == "already_used"
    assert snapshot.json()["balance"] == 600


@pytest.mark.asyncio
async def test_redeem_errors_map_to_status_codes(app_with_db, monkeypatch) -> None:
    app, session_factory = app_with_db
    ids = await _seed(session_factory, balance=100)
    monkeypatch.setattr(settings, "venue_api_key", "")
    headers = {"X-Session-User": str(ids["account"])}

    async with _client(app) as client:
        poor = await client.post(f"/api/v1/rewards/{ids['reward']}/redeem", headers=headers)
        missing = await client.post(f"/api/v1/rewards/{uuid4()}/redeem", headers=headers)
        toggled = await client.post(f"/api/v1/rewards/{ids['reward']}/active", json={"active": False})
        inactive = await client.post(f"/api/v1/rewards/{ids['reward']}/redeem", headers=headers)
        listed = await client.get("/api/v1/rewards", params={"venueId": str(ids["venue"])})

    assert poor.status_code == 409
    assert poor.json()["detail"]["code"] == "insufficient_balance"
    assert missing.status_code == 404
    assert toggled.json()["isActive"] is False
    assert inactive.status_code == 409
    assert inactive.json()["detail"]["code"] == "reward_inactive"
    assert listed.json() == []


@pytest.mark.asyncio
async def test_check_in_endpoint(app_with_db, monkeypatch) -> None:
    app, session_factory = app_with_db
    ids = await _seed(session_factory)
    monkeypatch.setattr(settings, "venue_api_key", "venue-secret")
    headers = {"X-Session-User": str(ids["account"])}
    url = f"/api/v1/events/{ids['event']}/check-in"

    async with _client(app) as client:
        wrong = await client.post(url, json={"method": "qr", "token": "guess"}, headers=headers)
        either = await client.post(url, json={"method": "either", "token": "jazz-brunch"}, headers=headers)
        gps = await client.post(url, json={"method": "gps", "latitude": -33.9067, "longitude": 18.4179}, headers=headers)
        ok = await client.post(url, json={"method": "qr", "token": "jazz-brunch"}, headers=headers)
        again = await client.post(url, json={"method": "qr", "token": "jazz-brunch"}, headers=headers)
        records = await client.get(
            f"/api/v1/events/{ids['event']}/check-ins",
            headers={"X-API-Key": "venue-secret"},
        )

    assert wrong.status_code == 200
    assert wrong.json()["reason"] == "invalid_code"
    assert either.status_code == 422
    assert gps.json()["reason"] == "wrong_method"
    assert ok.json()["success"] is True
    assert ok.json()["pointsEarned"] == 30
    assert again.json()["reason"] == "already_checked_in"
    assert [record["accountId"] for record in records.json()] == [str(ids["account"])]


@pytest.mark.asyncio
async def test_moderation_endpoints(app_with_db, monkeypatch) -> None:
    app, session_factory = app_with_db
    ids = await _seed(session_factory)
    monkeypatch.setattr(settings, "admin_api_key", "admin-secret")
    admin = {"X-API-Key": "admin-secret"}

    async with _client(app) as client:
        forbidden = await client.get("/api/v1/moderation/cases")
        opened = await client.post(
            "/api/v1/moderation/cases",
            json={"subjectAccountId": str(ids["account"]), "reason": "Shared check-in QR code publicly"},
            headers=admin,
        )
        case_id = opened.json()["id"]
        bogus = await client.post(f"/api/v1/moderation/cases/{case_id}/ban", headers=admin)
        suspended = await client.post(
            f"/api/v1/moderation/cases/{case_id}/suspend",
            json={"notes": "Repeat offence", "actorLabel": "ops"},
            headers=admin,
        )
        again = await client.post(f"/api/v1/moderation/cases/{case_id}/dismiss", headers=admin)
        blocked = await client.post(
            "/api/v1/points/me/activities",
            json={"kind": "like", "referenceId": "post-3"},
            headers={"X-Session-User": str(ids["account"])},
        )
        reinstated = await client.post(f"/api/v1/moderation/accounts/{ids['account']}/reinstate", headers=admin)
        resolved = await client.get("/api/v1/moderation/cases", params={"status": "resolved"}, headers=admin)
        unknown = await client.post(f"/api/v1/moderation/cases/{uuid4()}/warn", headers=admin)

    assert forbidden.status_code == 401
    assert opened.status_code == 201
    assert opened.json()["status"] == "pending"
    assert bogus.status_code == 422
    assert suspended.json()["status"] == "resolved"
    assert suspended.json()["resolutionNotes"] == "Repeat offence"
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "invalid_transition"
    assert blocked.status_code == 403
    assert reinstated.json() == {"accountId": str(ids["account"]), "reinstated": True}
    assert [case["id"] for case in resolved.json()] == [case_id]
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_health_endpoints(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        health = await client.get("/healthz")
        ready = await client.get("/api/v1/readyz")

    assert health.json()["status"] == "ok"
    assert ready.json() == {"status": "ready", "database": "ok"}


@pytest.mark.asyncio
async def test_activity_awards_come_from_server_configuration(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "survey_rewards", {"coffee-habits": 150})
    headers = {"X-Session-User": str(uuid4())}

    async with _client(app) as client:
        invented = await client.post(
            "/api/v1/points/me/activities",
            json={"kind": "survey", "referenceId": "made-up", "points": 1000000},
            headers=headers,
        )
        configured = await client.post(
            "/api/v1/points/me/activities",
            json={"kind": "survey", "referenceId": "coffee-habits", "points": 1000000},
            headers=headers,
        )
        snapshot = await client.get("/api/v1/points/me", headers=headers)

    assert invented.status_code == 422
    assert invented.json()["detail"]["code"] == "activity_rejected"
    assert configured.status_code == 201
    assert configured.json()["amountDelta"] == 150
    assert snapshot.json()["balance"] == 150


@pytest.mark.asyncio
async def test_malformed_ledger_cursor_is_rejected(app_with_db) -> None:
    app, _ = app_with_db
    headers = {"X-Session-User": str(uuid4())}

    async with _client(app) as client:
        garbage = await client.get("/api/v1/points/me/ledger", params={"cursor": "not-a-cursor"}, headers=headers)
        wrong_shape = await client.get(
            "/api/v1/points/me/ledger",
            params={"cursor": "eWVzdGVyZGF5fG5vcGU="},  # "yesterday|nope"
            headers=headers,
        )

    assert garbage.status_code == 400
    assert wrong_shape.status_code == 400
    assert wrong_shape.json()["detail"] == "Invalid ledger cursor"
