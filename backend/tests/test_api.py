from datetime import datetime, timedelta, timezone

import httpx
import pytest
from jose import jwt
from loguru import logger

from restodir.core.audit import AuditEmitter
from restodir.core.config import settings
from restodir.core.db import get_session
from restodir.main import app

from factories import ADMIN, MODERATOR, OTHER_PARTNER, PARTNER, RecordingSink, complete_fields


def token_for(actor_id: str, role: str, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": actor_id,
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=5),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    }
    payload.update(claims)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth(actor) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(actor.id, actor.role.value)}"}


@pytest.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as s:
            yield s

    sink = RecordingSink()
    previous_emitter = app.state.audit_emitter
    app.state.audit_emitter = AuditEmitter(sink)
    app.dependency_overrides[get_session] = override_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            c.audit_sink = sink
            yield c
    finally:
        await app.state.audit_emitter.wait_idle()
        app.state.audit_emitter = previous_emitter
        app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_healthz(client):
    response = await client.get("/api/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers.get("X-Request-ID")


@pytest.mark.anyio
async def test_authentication_is_required(client):
    assert (await client.get("/api/establishments")).status_code == 401

    bad = {"Authorization": "Bearer not-a-token"}
    assert (await client.get("/api/establishments", headers=bad)).status_code == 401

    wrong_role = {"Authorization": f"Bearer {token_for('x', 'superuser')}"}
    assert (await client.get("/api/establishments", headers=wrong_role)).status_code == 401

    refresh = {"Authorization": f"Bearer {token_for('x', 'partner', type='refresh')}"}
    assert (await client.get("/api/establishments", headers=refresh)).status_code == 401


@pytest.mark.anyio
async def test_listing_lifecycle_over_http(client):
    created = await client.post("/api/establishments", json=complete_fields(), headers=auth(PARTNER))
    assert created.status_code == 201, created.text
    body = created.json()
    establishment_id = body["id"]
    assert body["status"] == "draft"
    assert body["allowed_actions"] == ["submit", "archive"]

    patched = await client.patch(
        f"/api/establishments/{establishment_id}",
        json={"description": "Updated", "expected_updated_at": body["updated_at"]},
        headers=auth(PARTNER),
    )
    assert patched.status_code == 200, patched.text
    assert patched.json()["description"] == "Updated"

    submitted = await client.post(
        f"/api/establishments/{establishment_id}/submit", headers=auth(PARTNER)
    )
    assert submitted.json()["status"] == "pending"

    queue = await client.get("/api/moderation/establishments", headers=auth(MODERATOR))
    assert [item["id"] for item in queue.json()["items"]] == [establishment_id]

    approved = await client.post(
        f"/api/moderation/establishments/{establishment_id}/moderate",
        json={"action": "approve"},
        headers=auth(MODERATOR),
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "active"
    assert approved.json()["allowed_actions"] == ["suspend", "archive"]

    search = await client.get(
        "/api/search/radius",
        params={"latitude": 53.9006, "longitude": 27.5590, "radius_km": 1},
    )
    assert search.status_code == 200, search.text
    page = search.json()
    assert page["total"] == 1 and page["has_more"] is False
    assert page["items"][0]["id"] == establishment_id
    assert page["items"][0]["distance_km"] == 0.0
    assert "moderation_notes" not in page["items"][0]
    assert "allowed_actions" not in page["items"][0]

    public = await client.get(f"/api/search/establishments/{establishment_id}")
    assert public.status_code == 200

    suspended = await client.post(
        f"/api/establishments/{establishment_id}/suspend",
        json={"reason": "Closed for renovation"},
        headers=auth(PARTNER),
    )
    assert suspended.json()["status"] == "suspended"

    search = await client.get(
        "/api/search/bounds",
        params={"min_lat": 53.0, "max_lat": 55.0, "min_lon": 27.0, "max_lon": 28.0},
    )
    assert search.json()["total"] == 0
    missing = await client.get(f"/api/search/establishments/{establishment_id}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"

    await app.state.audit_emitter.wait_idle()
    assert client.audit_sink.actions() == ["create", "update", "submit", "approve", "suspend"]


@pytest.mark.anyio
async def test_domain_errors_map_to_status_codes(client):
    too_many = complete_fields(categories=["Ресторан", "Бар", "Паб"])
    response = await client.post("/api/establishments", json=too_many, headers=auth(PARTNER))
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
    assert response.json()["field"] == "categories"

    created = await client.post("/api/establishments", json=complete_fields(), headers=auth(PARTNER))
    establishment_id = created.json()["id"]

    duplicate = await client.post("/api/establishments", json=complete_fields(), headers=auth(PARTNER))
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "duplicate_name"

    premature = await client.post(
        f"/api/moderation/establishments/{establishment_id}/moderate",
        json={"action": "approve"},
        headers=auth(MODERATOR),
    )
    assert premature.status_code == 409
    assert premature.json()["code"] == "illegal_transition"

    await client.post(f"/api/establishments/{establishment_id}/submit", headers=auth(PARTNER))
    self_approval = await client.post(
        f"/api/moderation/establishments/{establishment_id}/moderate",
        json={"action": "approve"},
        headers=auth(PARTNER),
    )
    assert self_approval.status_code == 403
    assert self_approval.json()["code"] == "forbidden"

    empty_reject = await client.post(
        f"/api/moderation/establishments/{establishment_id}/moderate",
        json={"action": "reject", "notes": {}},
        headers=auth(ADMIN),
    )
    assert empty_reject.status_code == 422

    foreign = await client.get(f"/api/establishments/{establishment_id}", headers=auth(OTHER_PARTNER))
    assert foreign.status_code == 404


@pytest.mark.anyio
async def test_status_cannot_be_patched(client):
    created = await client.post("/api/establishments", json=complete_fields(), headers=auth(PARTNER))
    response = await client.patch(
        f"/api/establishments/{created.json()['id']}",
        json={"status": "active"},
        headers=auth(PARTNER),
    )
    assert response.status_code == 422


@pytest.mark.anyio
@pytest.mark.parametrize(
    "path, params, code",
    [
        ("/api/search/radius", {"latitude": 60, "longitude": 27.5, "radius_km": 5}, "invalid_coordinates"),
        ("/api/search/radius", {"longitude": 27.5, "radius_km": 5}, "invalid_coordinates"),
        ("/api/search/radius", {"latitude": 53.9, "longitude": 27.5, "radius_km": 0}, "invalid_radius"),
        ("/api/search/radius", {"latitude": 53.9, "longitude": 27.5, "radius_km": 1001}, "invalid_radius"),
        (
            "/api/search/bounds",
            {"min_lat": 54, "max_lat": 53, "min_lon": 27, "max_lon": 28},
            "invalid_bounds",
        ),
        ("/api/search/browse", {"price_range": "$$$$"}, "invalid_filter_value"),
        ("/api/search/browse", {"min_rating": "6"}, "invalid_filter_value"),
        ("/api/search/browse", {"limit": 101}, "validation_error"),
    ],
)
async def test_search_validation_errors(client, path, params, code):
    response = await client.get(path, params=params)
    assert response.status_code == 422
    assert response.json()["code"] == code


@pytest.mark.anyio
async def test_moderation_endpoints_require_moderator(client):
    response = await client.get("/api/moderation/establishments", headers=auth(PARTNER))
    assert response.status_code == 403


@pytest.mark.anyio
async def test_admin_coordinate_correction(client):
    created = await client.post("/api/establishments", json=complete_fields(), headers=auth(PARTNER))
    establishment_id = created.json()["id"]

    response = await client.patch(
        f"/api/moderation/establishments/{establishment_id}/coordinates",
        json={"latitude": 53.91, "longitude": 27.57},
        headers=auth(ADMIN),
    )
    assert response.status_code == 200, response.text
    assert response.json()["latitude"] == 53.91


@pytest.fixture
def access_log():
    records = []
    handler_id = logger.add(
        lambda message: records.append(message.record),
        level="INFO",
        filter=lambda record: record["message"] == "request_completed",
    )
    yield records
    logger.remove(handler_id)


@pytest.mark.anyio
async def test_access_log_names_the_authenticated_actor(client, access_log):
    response = await client.get(
        "/api/establishments", headers={**auth(PARTNER), "X-Request-ID": "req-42"}
    )
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-42"

    await client.get("/api/search/browse")

    authenticated, anonymous = access_log
    assert authenticated["extra"]["actor_id"] == PARTNER.id
    assert authenticated["extra"]["request_id"] == "req-42"
    assert authenticated["extra"]["status"] == 200
    assert anonymous["extra"]["actor_id"] == "-"


@pytest.mark.anyio
async def test_oversized_body_is_refused(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_BODY_BYTES", 64)
    response = await client.post(
        "/api/establishments", json=complete_fields(), headers=auth(PARTNER)
    )
    assert response.status_code == 413
    assert response.json()["code"] == "payload_too_large"

    listing = await client.get("/api/establishments", headers=auth(PARTNER))
    assert listing.json()["total"] == 0
