"""Tests for the audit trail service."""

from datetime import datetime, timedelta, timezone

import pytest

from incident_hub.audit.context import RequestMeta
from incident_hub.audit.service import AuditFilters, AuditService, snapshot
from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.database import DatabaseManager
from incident_hub.common.schemas import Pagination
from incident_hub.users.models import Role
from incident_hub.users.service import UserService

META = RequestMeta(ip_address="203.0.113.5", user_agent="pytest", method="GET", path="/x")


def make_settings(**overrides) -> IncidentHubSettings:
    defaults = {
        "jwt_secret": "access-secret-for-tests",
        "jwt_refresh_secret": "refresh-secret-for-tests",
        "db_url": "sqlite+aiosqlite://",
    }
    defaults.update(overrides)
    return IncidentHubSettings(**defaults)


@pytest.fixture
async def db():
    manager = DatabaseManager(make_settings())
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def audit_svc():
    return AuditService(make_settings())


@pytest.fixture
def user_svc():
    return UserService(make_settings())


class TestRecord:
    async def test_success_entry(self, db, audit_svc):
        async with db.get_session() as session:
            entry = await audit_svc.record(
                session, "INCIDENT_CREATE", "Incident", "e-1", "u-1", META,
                new_values={"at": datetime(2024, 1, 2, tzinfo=timezone.utc), "role": Role.ADMIN},
            )
            assert entry.status == "Success"
            assert entry.error is None
            assert entry.ip_address == "203.0.113.5"
            assert entry.new_values == {"at": "2024-01-02T00:00:00+00:00", "role": "ADMIN"}

    async def test_error_marks_failed(self, db, audit_svc):
        async with db.get_session() as session:
            entry = await audit_svc.record(
                session, "AUTH_FAILED", "User", None, None, META, error=ValueError("boom"),
            )
            assert entry.status == "Failed"
            assert entry.error == "boom"

    async def test_snapshot_excludes_fields(self, db, user_svc):
        async with db.get_session() as session:
            user = await user_svc.create_user(session, "Eve", "eve@example.com", "secret123")
            data = snapshot(user, exclude=("password_hash",))
            assert "password_hash" not in data
            assert data["email"] == "eve@example.com"
            assert isinstance(data["created_at"], str)


class TestList:
    async def test_filters_and_actor_embedding(self, db, audit_svc, user_svc):
        async with db.get_session() as session:
            admin = await user_svc.create_user(session, "Ann", "ann@example.com", "secret123", Role.ADMIN)
            user = await user_svc.create_user(session, "Ben", "ben@example.com", "secret123")
            await audit_svc.record(session, "INCIDENT_UPDATE", "Incident", "i-1", admin.id, META)
            await audit_svc.record(session, "INCIDENT_CREATE", "Incident", "i-1", user.id, META)
            await audit_svc.record(session, "AUTH_FAILED", "User", None, None, META, error="nope")

        async with db.get_session() as session:
            rows, total = await audit_svc.list_entries(
                session, AuditFilters(actor_role="ADMIN"), Pagination(page=1, limit=50),
            )
            assert total == 1
            entry, actor = rows[0]
            assert entry.action == "INCIDENT_UPDATE"
            assert actor.email == "ann@example.com"

            rows, total = await audit_svc.list_entries(
                session, AuditFilters(entity="Incident"), Pagination(page=1, limit=50),
            )
            assert total == 2

            rows, total = await audit_svc.list_entries(
                session, AuditFilters(), Pagination(page=1, limit=50),
            )
            assert total == 3
            orphan = [r for r in rows if r[0].action == "AUTH_FAILED"][0]
            assert orphan[1] is None

    async def test_date_range(self, db, audit_svc):
        async with db.get_session() as session:
            await audit_svc.record(session, "AUTH_LOGIN", "User", None, None, META)
        future = datetime.now(timezone.utc) + timedelta(days=1)
        async with db.get_session() as session:
            _, total = await audit_svc.list_entries(
                session, AuditFilters(date_from=future), Pagination(page=1, limit=50),
            )
            assert total == 0

    async def test_pagination(self, db, audit_svc):
        async with db.get_session() as session:
            for _ in range(5):
                await audit_svc.record(session, "AUTH_LOGIN", "User", None, None, META)
        async with db.get_session() as session:
            rows, total = await audit_svc.list_entries(
                session, AuditFilters(), Pagination(page=2, limit=2),
            )
            assert total == 5
            assert len(rows) == 2
