import asyncio
import time

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from spotcheck import crud, notifications
from spotcheck.auth import mint_session_jwt, sign
from spotcheck.metrics import metrics
from spotcheck.models import DeviceEvent, DevicePolicy, ExtraTimeRequest, PairingCode
from spotcheck.settings import settings

ADMIN = {"Authorization": "Bearer test-admin-token"}


def _create_device(client, name="Kid phone", headers=ADMIN):
    response = client.post("/api/devices", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()


def _device_headers(device):
    return {"Authorization": f"Bearer {device['deviceSecret']}"}


def _parent_session(apple_sub):
    """Create a parent in the app database and mint its session token."""

    async def _create():
        engine = create_async_engine(settings.database_url)
        Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
        async with Session() as db:
            parent = await crud.ensure_parent(db, apple_sub)
        await engine.dispose()
        return parent

    parent = asyncio.run(_create())
    return {"Authorization": f"Bearer {mint_session_jwt(parent.id, apple_sub)}"}


def _rows_for_device(model, device_id):
    async def _count():
        engine = create_async_engine(settings.database_url)
        async with engine.connect() as conn:
            result = await conn.execute(select(func.count()).select_from(model).where(model.device_id == device_id))
            count = result.scalar_one()
        await engine.dispose()
        return count

    return asyncio.run(_count())


def _listed(client, device_id, headers=ADMIN):
    devices = client.get("/api/devices", headers=headers).json()["devices"]
    return next(d for d in devices if d["id"] == device_id)


def test_admin_creates_device_with_credentials(client):
    device = _create_device(client)
    assert len(device["deviceSecret"]) == 64
    assert len(device["deviceToken"]) == 32

    listed = client.get("/api/devices", headers=ADMIN).json()["devices"]
    assert device["id"] in {d["id"] for d in listed}


def test_default_policy_enforces(client):
    device = _create_device(client)
    response = client.get("/policy", headers=_device_headers(device))
    assert response.status_code == 200
    body = response.json()
    assert body["enforce"] is True
    assert body["actions"]["setHotspotOff"] is True
    assert body["activeExtraTime"] is None


def test_policy_fetch_is_logged_once_per_minute(client):
    device = _create_device(client)
    for _ in range(3):
        assert client.get("/policy", headers=_device_headers(device)).status_code == 200

    events = client.get(f"/api/devices/{device['id']}/events", headers=ADMIN).json()["events"]
    fetches = [e for e in events if e["trigger"] == "policy_fetch"]
    assert len(fetches) == 1
    assert fetches[0]["actions_attempted"] == ["fetch_policy"]


def test_signed_policy_fetch(client):
    device = _create_device(client)
    ts = str(int(time.time() * 1000))
    headers = {
        "X-Device-Token": device["deviceToken"],
        "X-TS": ts,
        "X-Signature": sign(device["deviceSecret"], ts, "GET", "/policy", b""),
    }
    assert client.get("/policy", headers=headers).status_code == 200


def test_stale_signature_is_unauthorized(client):
    device = _create_device(client)
    ts = str(int(time.time() * 1000) - 10 * 60_000)
    headers = {
        "X-Device-Token": device["deviceToken"],
        "X-TS": ts,
        "X-Signature": sign(device["deviceSecret"], ts, "GET", "/policy", b""),
    }
    response = client.get("/policy", headers=headers)
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}


def test_mismatched_device_token_is_unauthorized(client):
    device = _create_device(client)
    other = _create_device(client, "Other")
    headers = dict(_device_headers(device), **{"X-Device-Token": other["deviceToken"]})
    assert client.get("/policy", headers=headers).status_code == 401


def test_events_endpoint_records_event(client):
    device = _create_device(client)
    response = client.post(
        "/events",
        json={"ts": 1_704_150_000_000, "trigger": "automation", "actionsAttempted": ["set_hotspot_off"]},
        headers=_device_headers(device),
    )
    assert response.status_code == 201
    assert response.json() == {"ok": True}

    events = client.get(f"/api/devices/{device['id']}/events", headers=ADMIN).json()["events"]
    assert [e["trigger"] for e in events] == ["automation"]
    assert events[0]["result_ok"] == 1


def test_pairing_code_is_single_use(client):
    device = _create_device(client)
    created = client.post(f"/api/devices/{device['id']}/pairing-code", headers=ADMIN)
    assert created.status_code == 201
    code = created.json()["code"]
    assert len(code) == 4

    paired = client.post("/pair", json={"code": code.lower()})
    assert paired.status_code == 200
    assert paired.json()["deviceSecret"] == device["deviceSecret"]

    again = client.post("/pair", json={"code": code})
    assert again.status_code == 409
    assert again.json() == {"error": "already_redeemed"}


def test_unknown_pairing_code(client):
    response = client.post("/pair", json={"code": "ZZZZ"})
    assert response.status_code == 404
    assert response.json() == {"error": "invalid_code"}


def test_extra_time_request_and_decision(client):
    device = _create_device(client)
    created = client.post("/extra-time/request", json={"minutes": 30}, headers=_device_headers(device))
    assert created.status_code == 201
    request_id = created.json()["requestId"]

    policy = client.get("/policy", headers=_device_headers(device)).json()
    assert policy["pendingExtraTime"]["requestId"] == request_id

    pending = client.get(
        "/api/extra-time/requests", params={"status": "pending", "deviceId": device["id"]}, headers=ADMIN
    ).json()["requests"]
    assert [r["id"] for r in pending] == [request_id]

    decided = client.post(
        f"/api/extra-time/requests/{request_id}/decision",
        json={"decision": "approve", "grantedMinutes": 15},
        headers=ADMIN,
    )
    assert decided.status_code == 200
    body = decided.json()
    assert body["status"] == "approved"
    assert body["endsAt"] - body["startsAt"] == 15 * 60_000

    again = client.post(
        f"/api/extra-time/requests/{request_id}/decision", json={"decision": "deny"}, headers=ADMIN
    )
    assert again.status_code == 409
    assert again.json() == {"error": "already_resolved"}

    policy = client.get("/policy", headers=_device_headers(device)).json()
    assert policy["enforce"] is False
    assert policy["activeExtraTime"]["requestId"] == request_id
    assert policy["pendingExtraTime"] is None


def test_extra_time_request_validation(client):
    device = _create_device(client)
    response = client.post("/extra-time/request", json={"minutes": 0}, headers=_device_headers(device))
    assert response.status_code == 422


def test_direct_grant_shows_in_status_message(client):
    device = _create_device(client)
    granted = client.post(
        f"/api/devices/{device['id']}/extra-time/grant", json={"minutes": 20}, headers=ADMIN
    )
    assert granted.status_code == 200
    assert granted.json()["grantedMinutes"] == 20

    policy = client.get("/policy", headers=_device_headers(device)).json()
    assert "approved extra time" in policy["statusMessage"]

    cancelled = client.post(
        f"/api/devices/{device['id']}/extra-time/grant", json={"minutes": 0}, headers=ADMIN
    )
    assert cancelled.status_code == 200
    assert client.get("/policy", headers=_device_headers(device)).json()["enforce"] is True


def test_policy_patch_round_trip(client):
    device = _create_device(client)
    response = client.patch(
        f"/api/devices/{device['id']}/policy",
        json={"quietDays": {"mon": {"start": "22:00", "end": "07:00"}}, "tz": "Europe/Paris", "setWifiOff": True},
        headers=ADMIN,
    )
    assert response.status_code == 200

    policy = client.get("/policy", headers=_device_headers(device)).json()
    assert policy["quietDays"] == {"mon": {"start": "22:00", "end": "07:00"}}
    assert policy["actions"]["setWifiOff"] is True


def test_policy_patch_rejects_bad_values(client):
    device = _create_device(client)
    url = f"/api/devices/{device['id']}/policy"
    assert client.patch(url, json={"quietStart": "25:00"}, headers=ADMIN).status_code == 422
    assert client.patch(url, json={"quietDays": {"someday": {"start": "01:00", "end": "02:00"}}}, headers=ADMIN).status_code == 422
    assert client.patch(url, json={"tz": "Mars/Olympus_Mons"}, headers=ADMIN).status_code == 422


def test_parent_only_sees_own_devices(client):
    alice = _parent_session("apple-sub-alice")
    bob = _parent_session("apple-sub-bob")

    device = _create_device(client, "Alice's iPad", headers=alice)
    assert client.get(f"/api/devices/{device['id']}/events", headers=alice).status_code == 200
    assert client.get(f"/api/devices/{device['id']}/events", headers=bob).status_code == 404
    assert client.delete(f"/api/devices/{device['id']}", headers=bob).status_code == 404
    assert device["id"] not in {d["id"] for d in client.get("/api/devices", headers=bob).json()["devices"]}

    dashboard = client.get("/api/dashboard", headers=alice).json()["devices"]
    assert [d["id"] for d in dashboard] == [device["id"]]


def test_parent_routes_require_credentials(client):
    assert client.get("/api/devices").status_code == 401
    assert client.get("/api/devices", headers={"Authorization": "Bearer nope"}).status_code == 401
    # The admin token is not a parent session.
    assert client.get("/api/me", headers=ADMIN).status_code == 401


def test_me_and_push_registration(client):
    parent = _parent_session("apple-sub-carol")
    me = client.get("/api/me", headers=parent)
    assert me.status_code == 200
    assert me.json()["ok"] is True

    registered = client.post("/api/push/register", json={"deviceToken": "f" * 64}, headers=parent)
    assert registered.status_code == 200


def test_device_rename_requires_a_field(client):
    device = _create_device(client)
    url = f"/api/devices/{device['id']}"
    assert client.patch(url, json={}, headers=ADMIN).json() == {"error": "no_fields"}
    assert client.patch(url, json={"name": "Renamed"}, headers=ADMIN).status_code == 200


def test_policy_fetch_and_events_touch_last_seen(client):
    fetcher = _create_device(client, "Fetcher")
    reporter = _create_device(client, "Reporter")
    assert _listed(client, fetcher["id"])["last_seen_at"] is None
    assert _listed(client, reporter["id"])["last_seen_at"] is None

    assert client.get("/policy", headers=_device_headers(fetcher)).status_code == 200
    assert _listed(client, fetcher["id"])["last_seen_at"] is not None
    assert _listed(client, reporter["id"])["last_seen_at"] is None

    response = client.post(
        "/events",
        json={"ts": 1_704_150_000_000, "trigger": "automation"},
        headers=_device_headers(reporter),
    )
    assert response.status_code == 201
    assert _listed(client, reporter["id"])["last_seen_at"] is not None


def test_rejected_credentials_do_not_touch_last_seen(client):
    device = _create_device(client)
    assert client.get("/policy", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert _listed(client, device["id"])["last_seen_at"] is None


def test_deleting_a_device_removes_its_rows(client):
    device = _create_device(client)
    headers = _device_headers(device)
    url = f"/api/devices/{device['id']}"
    assert client.post(f"{url}/pairing-code", headers=ADMIN).status_code == 201
    assert client.patch(f"{url}/policy", json={"quietStart": "22:00", "quietEnd": "07:00"}, headers=ADMIN).status_code == 200
    assert client.post("/events", json={"ts": 1_704_150_000_000, "trigger": "automation"}, headers=headers).status_code == 201
    assert client.post("/extra-time/request", json={"minutes": 10}, headers=headers).status_code == 201
    assert client.get("/policy", headers=headers).status_code == 200

    for model in (DevicePolicy, DeviceEvent, PairingCode, ExtraTimeRequest):
        assert _rows_for_device(model, device["id"]) > 0

    assert client.delete(url, headers=ADMIN).json() == {"ok": True}

    for model in (DevicePolicy, DeviceEvent, PairingCode, ExtraTimeRequest):
        assert _rows_for_device(model, device["id"]) == 0
    assert client.get("/policy", headers=headers).status_code == 401
    assert client.get(f"{url}/events", headers=ADMIN).status_code == 404


def test_notification_failure_does_not_fail_extra_time_request(client, monkeypatch):
    def unreachable(fields):
        raise ConnectionError("redis is down")

    monkeypatch.setattr(notifications.redis_client, "enqueue", unreachable)
    metrics.reset()

    parent = _parent_session("apple-sub-dana")
    device = _create_device(client, "Dana's iPad", headers=parent)
    created = client.post("/extra-time/request", json={"minutes": 20, "reason": "film"}, headers=_device_headers(device))

    assert created.status_code == 201
    assert created.json()["status"] == "pending"
    assert metrics.counter("notification_enqueue_errors") == 1
    assert metrics.counter("notifications_enqueued") == 0
    assert client.get("/health").json()["notifications_dropped"] == 1

    pending = client.get("/api/extra-time/requests", params={"status": "pending"}, headers=parent).json()["requests"]
    assert [r["id"] for r in pending] == [created.json()["requestId"]]
