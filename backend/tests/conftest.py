# tests/conftest.py — Shared test fixtures
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"

import auth as auth_module
from auth import AuthService
from database import create_engine
from entities import Actor, User
from errors import ConcurrentModification
from main import app
from operations import OpsService
from routers import applications as applications_router
from snapshot_store import SnapshotRepository, SnapshotStore, SQLSnapshotRepository, StoredDocument

ADMIN_PASSWORD = "AdminPassword123"
AMBASSADOR_PASSWORD = "AmbassadorPass1"


class InMemoryRepository(SnapshotRepository):
    """Repository double with controllable contents and write failures"""

    def __init__(self, payload=None):
        self.payload = payload
        self.revision = 0 if payload is None else 1
        self.fail_writes = False
        self.writes = 0

    async def read(self):
        if self.payload is None:
            return None
        return StoredDocument(self.payload, self.revision)

    async def write(self, payload, expected_revision):
        if self.fail_writes:
            raise OSError("disk full")
        if expected_revision != self.revision:
            raise ConcurrentModification(f"expected {expected_revision}, at {self.revision}")
        self.payload = payload
        self.revision += 1
        self.writes += 1
        return self.revision


@pytest.fixture(autouse=True)
def reset_rate_limits():
    auth_module._login_attempts.clear()
    applications_router._apply_attempts.clear()
    yield
    auth_module._login_attempts.clear()
    applications_router._apply_attempts.clear()


@pytest_asyncio.fixture(scope="function")
async def store(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'opsdesk-test.db'}")
    snapshot_store = SnapshotStore(SQLSnapshotRepository(engine))
    await snapshot_store.open()
    yield snapshot_store
    await snapshot_store.close()


@pytest_asyncio.fixture(scope="function")
async def ops(store):
    return OpsService(store)


@pytest_asyncio.fixture(scope="function")
async def client(ops):
    """HTTP test client bound to the per-test OpsService"""
    app.state.ops = ops
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    del app.state.ops


@pytest_asyncio.fixture
async def admin_user(ops):
    """Create an admin user"""
    return await ops.create_admin_user("admin@opsdesk.dev", ADMIN_PASSWORD)


@pytest.fixture
def admin_actor(admin_user):
    return Actor(user_id=admin_user.id, role="admin")


@pytest_asyncio.fixture
async def ambassador(ops, admin_actor):
    """Create an active ambassador (and its owning user)"""
    return await ops.create_ambassador(
        "Carlos Rodriguez", "carlos@demo.com", AMBASSADOR_PASSWORD, actor=admin_actor
    )


@pytest_asyncio.fixture
async def ambassador_user(ops, ambassador):
    return await ops.get_user(ambassador.user_id)


@pytest_asyncio.fixture
async def acme(ops, admin_actor):
    """Create an unassigned client"""
    return await ops.create_client("Acme Textiles", actor=admin_actor, industry="textiles")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(user)
    return {"Authorization": f"Bearer {token}"}
