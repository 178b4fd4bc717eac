"""Shared test fixtures for Incident Hub."""

import os

import pytest
from httpx import ASGITransport, AsyncClient

ACCESS_SECRET = "test-access-secret-for-unit-tests"
REFRESH_SECRET = "test-refresh-secret-for-unit-tests"
PASSWORD = "secret123"


@pytest.fixture
def app(tmp_path):
    """Create a test app with in-memory DB."""
    os.environ["INCIDENT_HUB_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["INCIDENT_HUB_JWT_SECRET"] = ACCESS_SECRET
    os.environ["INCIDENT_HUB_JWT_REFRESH_SECRET"] = REFRESH_SECRET
    os.environ["INCIDENT_HUB_UPLOAD_DIR"] = str(tmp_path / "uploads")

    # Clear caches and singletons so new env vars take effect
    from incident_hub.common.config import get_settings
    get_settings.cache_clear()

    from incident_hub.deps import reset_singletons
    reset_singletons()

    from incident_hub.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from incident_hub.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def create_account(client):
    """Insert an account of any role directly, bypassing public registration."""
    from incident_hub.users.models import Role

    async def _create(email: str, role: Role = Role.USER, name: str = "Test User"):
        from incident_hub.deps import get_db, get_user_service
        async with get_db().get_session() as session:
            return await get_user_service().create_user(
                session, name, email, PASSWORD, role=role,
            )

    return _create


@pytest.fixture
def login(client):
    """Log in and return bearer headers for the account."""

    async def _login(email: str, password: str = PASSWORD) -> dict[str, str]:
        resp = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['accessToken']}"}

    return _login


@pytest.fixture
async def user_headers(client):
    resp = await client.post("/api/v1/auth/register", json={
        "name": "Reporter", "email": "user@example.com", "password": PASSWORD,
    })
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['accessToken']}"}


@pytest.fixture
async def admin_headers(create_account, login):
    from incident_hub.users.models import Role
    await create_account("admin@example.com", Role.ADMIN, name="Admin")
    return await login("admin@example.com")


@pytest.fixture
async def super_admin_headers(create_account, login):
    from incident_hub.users.models import Role
    await create_account("root@example.com", Role.SUPER_ADMIN, name="Root")
    return await login("root@example.com")
