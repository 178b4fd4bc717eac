"""Tests for the incident state machine and its side effects."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from incident_hub.audit.context import RequestMeta
from incident_hub.audit.models import AuditLogModel
from incident_hub.audit.service import AuditService
from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.database import OUTBOX_KEY, DatabaseManager
from incident_hub.common.exceptions import ForbiddenError, NotFoundError, ValidationError
from incident_hub.common.schemas import Pagination
from incident_hub.incidents.models import IncidentModel
from incident_hub.incidents.service import IncidentFilters, IncidentService
from incident_hub.notifications.models import NotificationModel
from incident_hub.notifications.service import NotificationService
from incident_hub.users.models import Role
from incident_hub.users.service import UserService

META = RequestMeta(ip_address="127.0.0.1", user_agent="pytest", method="PATCH", path="/incidents")
MISSING_ID = "00000000-0000-0000-0000-000000000000"


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
def user_svc():
    return UserService(make_settings())


@pytest.fixture
def incident_svc(user_svc):
    settings = make_settings()
    return IncidentService(
        settings, user_svc, AuditService(settings), NotificationService(settings),
    )


@pytest.fixture
async def people(db, user_svc):
    async with db.get_session() as session:
        root = await user_svc.create_user(session, "Root", "root@example.com", "secret123", Role.SUPER_ADMIN)
        admin = await user_svc.create_user(session, "Ann", "ann@example.com", "secret123", Role.ADMIN)
        owner = await user_svc.create_user(session, "Olga", "olga@example.com", "secret123")
        other = await user_svc.create_user(session, "Otto", "otto@example.com", "secret123")
    return {"root": root, "admin": admin, "owner": owner, "other": other}


async def _report(db, svc, actor, title="Phishing mail", **kwargs):
    fields = {
        "description": "Suspicious link in inbox",
        "category": "Phishing",
        "priority": "High",
        "incident_date": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }
    fields.update(kwargs)
    async with db.get_session() as session:
        return await svc.create_incident(session, actor, META, title=title, **fields)


async def _update(db, svc, incident_id, actor, **changes):
    async with db.get_session() as session:
        return await svc.update_incident(session, incident_id, changes, actor, META)


async def _reload(db, incident_id) -> IncidentModel | None:
    async with db.get_session() as session:
        return await session.get(IncidentModel, incident_id)


async def _notifications(db, user_id=None, type_=None) -> list[NotificationModel]:
    query = select(NotificationModel)
    if user_id:
        query = query.where(NotificationModel.user_id == user_id)
    if type_:
        query = query.where(NotificationModel.type == type_)
    async with db.get_session() as session:
        return list((await session.execute(query)).scalars().all())


async def _audits(db, action) -> list[AuditLogModel]:
    async with db.get_session() as session:
        result = await session.execute(select(AuditLogModel).where(AuditLogModel.action == action))
        return list(result.scalars().all())


class TestCreate:
    async def test_starts_open_with_side_effects(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        assert inc.status == "Open"
        assert inc.created_by == people["owner"].id
        assert inc.resolved_at is None

        audits = await _audits(db, "INCIDENT_CREATE")
        assert len(audits) == 1 and audits[0].entity_id == inc.id

        for key in ("root", "admin"):
            notes = await _notifications(db, people[key].id)
            assert [n.title for n in notes] == ["New Incident Reported"]
            assert notes[0].incident_id == inc.id
        owner_notes = await _notifications(db, people["owner"].id)
        assert [n.title for n in owner_notes] == ["Incident Created"]
        assert await _notifications(db, people["other"].id) == []

    async def test_admin_creator_not_told_twice(self, db, incident_svc, people):
        await _report(db, incident_svc, people["admin"])
        notes = await _notifications(db, people["admin"].id)
        assert [n.title for n in notes] == ["Incident Created"]

    async def test_realtime_events_staged(self, db, incident_svc, people):
        async with db.get_session() as session:
            await incident_svc.create_incident(
                session, people["owner"], META, title="T", description="D",
                category="Malware", priority="Low",
                incident_date=datetime(2024, 5, 1, tzinfo=timezone.utc),
            )
            staged = {(e.room, e.event) for e in session.info[OUTBOX_KEY]}
        assert ("admin", "incident:new") in staged
        assert (f"user_{people['owner'].id}", "incident:notification") in staged

    async def test_invalid_category(self, db, incident_svc, people):
        with pytest.raises(ValidationError):
            await _report(db, incident_svc, people["owner"], category="Gremlins")

    async def test_blank_title(self, db, incident_svc, people):
        with pytest.raises(ValidationError):
            await _report(db, incident_svc, people["owner"], title="  ")


class TestUpdatePolicy:
    async def test_owner_edits_while_open(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        updated = await _update(db, incident_svc, inc.id, people["owner"], title="Renamed", priority="Low")
        assert updated.title == "Renamed"
        audit = (await _audits(db, "INCIDENT_UPDATE"))[0]
        assert audit.old_values["title"] == "Phishing mail"
        assert audit.new_values["title"] == "Renamed"

    async def test_owner_locked_out_after_processing(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        await _update(db, incident_svc, inc.id, people["admin"], status="In Progress")
        with pytest.raises(ForbiddenError, match="Cannot edit incident after it is processed"):
            await _update(db, incident_svc, inc.id, people["owner"], title="Too late")
        assert (await _reload(db, inc.id)).title == "Phishing mail"
        denied = await _audits(db, "UNAUTHORIZED_ACCESS")
        assert len(denied) == 1 and denied[0].status == "Failed"

    async def test_owner_cannot_touch_triage_fields(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        with pytest.raises(ForbiddenError, match="status"):
            await _update(db, incident_svc, inc.id, people["owner"], status="Resolved")
        assert (await _reload(db, inc.id)).status == "Open"

    async def test_non_owner_user_forbidden(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        with pytest.raises(ForbiddenError):
            await _update(db, incident_svc, inc.id, people["other"], title="Mine now")
        assert len(await _audits(db, "UNAUTHORIZED_ACCESS")) == 1

    async def test_unknown_field_refused(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        with pytest.raises(ForbiddenError):
            await _update(db, incident_svc, inc.id, people["admin"], created_by=people["admin"].id)

    async def test_unknown_assignee(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        with pytest.raises(NotFoundError):
            await _update(db, incident_svc, inc.id, people["admin"], assigned_to=MISSING_ID)

    async def test_missing_and_malformed_ids(self, db, incident_svc, people):
        with pytest.raises(NotFoundError):
            await _update(db, incident_svc, MISSING_ID, people["admin"], title="x")
        with pytest.raises(NotFoundError):
            await _update(db, incident_svc, "garbage", people["admin"], title="x")


class TestUpdateEffects:
    async def test_resolved_at_is_sticky(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        await _update(db, incident_svc, inc.id, people["admin"], status="Resolved")
        first = (await _reload(db, inc.id)).resolved_at
        assert first is not None

        await _update(db, incident_svc, inc.id, people["admin"], status="Closed")
        assert (await _reload(db, inc.id)).resolved_at == first
        await _update(db, incident_svc, inc.id, people["admin"], status="Resolved")
        assert (await _reload(db, inc.id)).resolved_at == first

    async def test_transition_selects_notification(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        await _update(db, incident_svc, inc.id, people["admin"], status="In Progress")
        await _update(db, incident_svc, inc.id, people["admin"], status="Resolved")
        await _update(db, incident_svc, inc.id, people["admin"], status="Open")
        await _update(db, incident_svc, inc.id, people["admin"], status="Closed")
        await _update(db, incident_svc, inc.id, people["admin"], resolution_notes="done")
        types = [
            n.type for n in await _notifications(db, people["owner"].id)
            if n.type != "INCIDENT_CREATED"
        ]
        assert sorted(types) == sorted([
            "INCIDENT_IN_PROGRESS", "INCIDENT_RESOLVED", "INCIDENT_REOPENED",
            "INCIDENT_CLOSED", "INCIDENT_UPDATED",
        ])
        resolved = await _notifications(db, people["owner"].id, "INCIDENT_RESOLVED")
        assert resolved[0].message == 'Your incident "Phishing mail" has been resolved by Ann'

    async def test_assignment_notifies_assignee(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        await _update(db, incident_svc, inc.id, people["admin"], assigned_to=people["root"].id)
        assigned = await _notifications(db, people["root"].id, "INCIDENT_ASSIGNED")
        assert len(assigned) == 1

        # Re-saving the same assignee is not a new assignment.
        await _update(db, incident_svc, inc.id, people["admin"], assigned_to=people["root"].id)
        assert len(await _notifications(db, people["root"].id, "INCIDENT_ASSIGNED")) == 1

    async def test_self_assignment_is_silent(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        await _update(db, incident_svc, inc.id, people["admin"], assigned_to=people["admin"].id)
        assert await _notifications(db, people["admin"].id, "INCIDENT_ASSIGNED") == []


class TestBulkResolve:
    async def test_mixed_ids(self, db, incident_svc, people):
        a = await _report(db, incident_svc, people["owner"], title="A")
        b = await _report(db, incident_svc, people["owner"], title="B")
        await _update(db, incident_svc, b.id, people["admin"], status="Resolved")
        b_resolved_at = (await _reload(db, b.id)).resolved_at

        async with db.get_session() as session:
            result = await incident_svc.bulk_resolve(
                session, [a.id, b.id, "not-an-id", MISSING_ID], people["admin"], META,
            )
        assert result.matched == 2
        assert result.modified == 1
        assert result.incident_ids == [a.id]

        reloaded_a = await _reload(db, a.id)
        assert reloaded_a.status == "Resolved" and reloaded_a.resolved_at is not None
        assert (await _reload(db, b.id)).resolved_at == b_resolved_at

        bulk_notes = await _notifications(db, people["owner"].id, "BULK_RESOLVE")
        assert [n.incident_id for n in bulk_notes] == [a.id]
        audits = await _audits(db, "INCIDENT_BULK_RESOLVE")
        assert len(audits) == 1
        assert audits[0].entity == "System"
        assert audits[0].new_values["modified"] == 1

    async def test_fills_missing_resolved_at(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        async with db.get_session() as session:
            row = await session.get(IncidentModel, inc.id)
            row.status = "Resolved"
        async with db.get_session() as session:
            result = await incident_svc.bulk_resolve(session, [inc.id], people["admin"], META)
        assert result.modified == 1
        assert (await _reload(db, inc.id)).resolved_at is not None

    @pytest.mark.parametrize("ids", [[], None, "abc"])
    async def test_requires_a_list(self, db, incident_svc, people, ids):
        with pytest.raises(ValidationError, match="incidentIds array is required"):
            async with db.get_session() as session:
                await incident_svc.bulk_resolve(session, ids, people["admin"], META)

    async def test_user_forbidden(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        with pytest.raises(ForbiddenError):
            async with db.get_session() as session:
                await incident_svc.bulk_resolve(session, [inc.id], people["owner"], META)
        assert (await _reload(db, inc.id)).status == "Open"


class TestHardDelete:
    async def test_super_admin_deletes(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        async with db.get_session() as session:
            await incident_svc.hard_delete(session, inc.id, people["root"], META)
        assert await _reload(db, inc.id) is None

        audit = (await _audits(db, "INCIDENT_HARD_DELETE"))[0]
        assert audit.old_values["title"] == "Phishing mail"
        deleted = await _notifications(db, people["owner"].id, "INCIDENT_DELETED")
        assert len(deleted) == 1
        assert deleted[0].incident_id == inc.id

    async def test_admin_forbidden(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        with pytest.raises(ForbiddenError):
            async with db.get_session() as session:
                await incident_svc.hard_delete(session, inc.id, people["admin"], META)
        assert await _reload(db, inc.id) is not None

    async def test_missing(self, db, incident_svc, people):
        with pytest.raises(NotFoundError):
            async with db.get_session() as session:
                await incident_svc.hard_delete(session, MISSING_ID, people["root"], META)


class TestQueries:
    async def test_user_only_sees_own(self, db, incident_svc, people):
        mine = await _report(db, incident_svc, people["owner"], title="Mine")
        await _report(db, incident_svc, people["other"], title="Theirs")
        async with db.get_session() as session:
            items, total = await incident_svc.list_incidents(
                session, people["owner"],
                IncidentFilters(created_by=people["other"].id), Pagination(),
            )
        assert total == 1 and items[0].id == mine.id

    async def test_elevated_sees_all_and_filters(self, db, incident_svc, people):
        await _report(db, incident_svc, people["owner"], title="Mine")
        await _report(db, incident_svc, people["other"], title="Theirs", category="Malware")
        async with db.get_session() as session:
            _, total = await incident_svc.list_incidents(
                session, people["admin"], IncidentFilters(), Pagination(),
            )
            assert total == 2
            items, total = await incident_svc.list_incidents(
                session, people["admin"], IncidentFilters(created_by=people["other"].id), Pagination(),
            )
            assert total == 1 and items[0].title == "Theirs"
            items, _ = await incident_svc.list_incidents(
                session, people["admin"], IncidentFilters(search="malw"), Pagination(),
            )
            assert [i.title for i in items] == ["Theirs"]
            items, _ = await incident_svc.list_incidents(
                session, people["admin"], IncidentFilters(), Pagination(), sort="title",
            )
            assert [i.title for i in items] == ["Mine", "Theirs"]

    async def test_unknown_sort(self, db, incident_svc, people):
        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await incident_svc.list_incidents(
                    session, people["admin"], IncidentFilters(), Pagination(), sort="-password",
                )

    async def test_get_scoping(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        async with db.get_session() as session:
            assert (await incident_svc.get_incident(session, inc.id, people["admin"], META)).id == inc.id
        with pytest.raises(ForbiddenError):
            async with db.get_session() as session:
                await incident_svc.get_incident(session, inc.id, people["other"], META)
        with pytest.raises(NotFoundError):
            async with db.get_session() as session:
                await incident_svc.get_incident(session, "bad-id", people["owner"], META)

    async def test_stats(self, db, incident_svc, people):
        a = await _report(db, incident_svc, people["owner"], title="A")
        await _report(db, incident_svc, people["owner"], title="B", category="Malware")
        await _update(db, incident_svc, a.id, people["admin"], status="Resolved")
        async with db.get_session() as session:
            stats = await incident_svc.stats(session)
        assert stats["total"] == 2
        assert {s["status"]: s["count"] for s in stats["status_breakdown"]} == {"Open": 1, "Resolved": 1}
        assert {c["category"] for c in stats["category_breakdown"]} == {"Phishing", "Malware"}
        assert stats["avg_resolution_ms"] is not None and stats["avg_resolution_ms"] >= 0

    async def test_user_summaries(self, db, incident_svc, people):
        inc = await _report(db, incident_svc, people["owner"])
        await _update(db, incident_svc, inc.id, people["admin"], assigned_to=people["admin"].id)
        reloaded = await _reload(db, inc.id)
        async with db.get_session() as session:
            users = await incident_svc.user_summaries(session, [reloaded])
        assert set(users) == {people["owner"].id, people["admin"].id}
