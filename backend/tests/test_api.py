# tests/test_api.py — Gateway: health, login, token checks and error envelopes
from datetime import timedelta

import pytest
from httpx import AsyncClient

from auth import MAX_LOGIN_ATTEMPTS, AuthService
from errors import ConcurrentModification, NotFound, PersistenceError
from main import status_for
from seed import DEMO_ADMIN_EMAIL, seed_demo_data

from tests.conftest import ADMIN_PASSWORD, AMBASSADOR_PASSWORD, get_auth_headers


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["store"] == "connected"
    assert data["revision"] >= 1
    assert "X-Request-ID" in resp.headers
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json()["name"] == "OpsDesk"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    resp = await client.get("/", headers={"X-Request-ID": "trace-me"})
    assert resp.headers["X-Request-ID"] == "trace-me"


# --- Login ---

@pytest.mark.asyncio
async def test_admin_login(client: AsyncClient, admin_user):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "Admin@OpsDesk.dev", "password": ADMIN_PASSWORD}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["role"] == "admin"
    assert AuthService.verify_token(data["access_token"])["sub"] == admin_user.id


@pytest.mark.asyncio
async def test_ambassador_login_carries_profile(client: AsyncClient, ambassador):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "carlos@demo.com", "password": AMBASSADOR_PASSWORD}
    )
    assert resp.status_code == 200
    assert resp.json()["user"]["ambassador_id"] == ambassador.id


@pytest.mark.asyncio
async def test_wrong_password(client: AsyncClient, admin_user):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "admin@opsdesk.dev", "password": "WrongPassword1"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_login_lockout(client: AsyncClient, admin_user):
    for _ in range(MAX_LOGIN_ATTEMPTS):
        resp = await client.post(
            "/api/v1/auth/login", json={"email": "admin@opsdesk.dev", "password": "WrongPassword1"}
        )
        assert resp.status_code == 401
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "admin@opsdesk.dev", "password": ADMIN_PASSWORD}
    )
    assert resp.status_code == 429


# --- Tokens ---

@pytest.mark.asyncio
async def test_me(client: AsyncClient, admin_user):
    resp = await client.get("/api/v1/auth/me", headers=get_auth_headers(admin_user))
    assert resp.status_code == 200
    assert resp.json()["email"] == "admin@opsdesk.dev"


@pytest.mark.asyncio
async def test_missing_token(client: AsyncClient):
    resp = await client.get("/api/v1/auth/me")
    assert resp.status_code in (401, 403)


@pytest.mark.asyncio
async def test_garbage_token(client: AsyncClient):
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_expired_token(client: AsyncClient, admin_user):
    token = AuthService.create_access_token(admin_user, expires_delta=timedelta(seconds=-1))
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


@pytest.mark.asyncio
async def test_deleted_ambassador_loses_access(client: AsyncClient, ops, admin_actor, ambassador, ambassador_user):
    headers = get_auth_headers(ambassador_user)
    await ops.delete_ambassador(ambassador.id, actor=admin_actor)
    resp = await client.get("/api/v1/auth/me", headers=headers)
    assert resp.status_code == 401


# --- Error envelope ---

@pytest.mark.asyncio
async def test_not_found_envelope(client: AsyncClient, admin_user):
    resp = await client.get("/api/v1/clients/does-not-exist", headers=get_auth_headers(admin_user))
    assert resp.status_code == 404
    body = resp.json()
    assert body == {
        **NotFound("Client", "does-not-exist").to_dict(),
        "request_id": resp.headers["X-Request-ID"],
    }
    assert body["kind"] == "NotFound"


@pytest.mark.asyncio
async def test_request_validation_envelope(client: AsyncClient, admin_user):
    resp = await client.post("/api/v1/clients", json={}, headers=get_auth_headers(admin_user))
    assert resp.status_code == 422
    body = resp.json()
    assert body["kind"] == "ValidationError"
    assert isinstance(body["detail"], list)


def test_storage_errors_map_to_server_statuses():
    assert status_for(ConcurrentModification("stale")) == 409
    assert status_for(PersistenceError("disk full")) == 503


# --- Seed ---

@pytest.mark.asyncio
async def test_seed_demo_data(ops):
    assert await seed_demo_data(ops, password="demo-pass") is True
    snapshot = await ops.store.load()
    counts = snapshot.counts()
    assert counts["users"] == 3
    assert counts["ambassadors"] == 2
    assert counts["clients"] == 4
    assert sum(1 for c in snapshot.clients if c.ambassador_id is None) == 1
    assert await ops.authenticate(DEMO_ADMIN_EMAIL, "demo-pass") is not None

    assert await seed_demo_data(ops) is False
    assert (await ops.store.load()).counts() == counts
