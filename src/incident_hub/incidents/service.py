"""Incident service: reporting, triage, bulk resolution and reporting views.

Every mutation writes its audit entry, its notifications and its realtime
events inside the caller's session, so all of them land or none do.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from incident_hub.audit.context import RequestMeta
from incident_hub.audit.service import snapshot
from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.exceptions import ForbiddenError, NotFoundError, ValidationError
from incident_hub.common.logging import get_logger
from incident_hub.common.models import is_valid_id, utcnow
from incident_hub.common.schemas import Pagination
from incident_hub.common.security import (
    actor_entity,
    authorize,
    authorize_owner_or_elevated,
)
from incident_hub.incidents.models import Category, IncidentModel, Priority, Status
from incident_hub.incidents.policy import NOTICE_TEMPLATES, Transition, classify, edit_rule
from incident_hub.notifications.models import NotificationType
from incident_hub.realtime.events import ADMIN_ROOM, publish, user_room
from incident_hub.users.models import ELEVATED_ROLES, Role, UserModel

logger = get_logger("incidents")

SORT_COLUMNS = {
    "createdAt": IncidentModel.created_at,
    "updatedAt": IncidentModel.updated_at,
    "incidentDate": IncidentModel.incident_date,
    "resolvedAt": IncidentModel.resolved_at,
    "priority": IncidentModel.priority,
    "status": IncidentModel.status,
    "category": IncidentModel.category,
    "title": IncidentModel.title,
}
DEFAULT_SORT = "-createdAt"
CATEGORY_BREAKDOWN_LIMIT = 10

ENUM_FIELDS = {"category": Category, "priority": Priority, "status": Status}
REQUIRED_FIELDS = frozenset({"title", "description", "category", "priority", "status"})


def _coerce(enum_cls, value, field: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}: {value}") from exc


@dataclass
class IncidentFilters:
    status: str | None = None
    category: str | None = None
    priority: str | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


@dataclass
class BulkResolveResult:
    matched: int
    modified: int
    incident_ids: list[str]


class IncidentService:
    """Role-scoped incident state machine."""

    def __init__(
        self,
        settings: IncidentHubSettings,
        user_service,
        audit_service,
        notification_service,
    ):
        self.settings = settings
        self.user_service = user_service
        self.audit_service = audit_service
        self.notification_service = notification_service

    # ── Create ──

    async def create_incident(
        self,
        session: AsyncSession,
        actor: UserModel,
        meta: RequestMeta,
        title: str,
        description: str,
        category: Category | str,
        incident_date: datetime,
        priority: Priority | str = Priority.MEDIUM,
        evidence_files: Iterable[str] = (),
    ) -> IncidentModel:
        if not title or not title.strip() or not description or not description.strip():
            raise ValidationError("title and description are required")
        incident = IncidentModel(
            title=title.strip(),
            description=description.strip(),
            category=_coerce(Category, category, "category"),
            priority=_coerce(Priority, priority, "priority"),
            status=Status.OPEN.value,
            incident_date=incident_date,
            evidence_files=list(evidence_files),
            created_by=actor.id,
        )
        session.add(incident)
        await session.flush()

        await self.audit_service.record(
            session, "INCIDENT_CREATE", "Incident", incident.id, actor.id, meta,
            new_values=snapshot(incident),
        )

        admin_ids = [
            uid for uid in await self.user_service.elevated_user_ids(session)
            if uid != actor.id
        ]
        await self.notification_service.notify(
            session, admin_ids, NotificationType.INCIDENT_CREATED,
            "New Incident Reported",
            f'New incident "{incident.title}" reported by {actor.name}',
            incident_id=incident.id,
        )
        await self.notification_service.notify(
            session, actor.id, NotificationType.INCIDENT_CREATED,
            "Incident Created",
            f'Your incident "{incident.title}" has been created successfully',
            incident_id=incident.id,
        )

        publish(session, ADMIN_ROOM, "incident:new", {
            "incidentId": incident.id,
            "title": incident.title,
            "category": incident.category,
            "priority": incident.priority,
            "status": incident.status,
            "createdBy": actor.id,
        })
        publish(session, user_room(actor.id), "incident:notification", {
            "incidentId": incident.id,
            "action": "CREATE",
            "status": incident.status,
            "title": incident.title,
        })
        logger.info(
            "Incident %s created by %s", incident.id, actor.id,
            extra={"incident_id": incident.id, "user_id": actor.id},
        )
        return incident

    # ── Read ──

    async def _get_or_404(self, session: AsyncSession, incident_id: str) -> IncidentModel:
        if not is_valid_id(incident_id):
            raise NotFoundError("Incident not found")
        incident = await session.get(IncidentModel, incident_id)
        if incident is None:
            raise NotFoundError("Incident not found")
        return incident

    async def get_incident(
        self, session: AsyncSession, incident_id: str, actor: UserModel, meta: RequestMeta,
    ) -> IncidentModel:
        incident = await self._get_or_404(session, incident_id)
        await authorize_owner_or_elevated(
            session, actor, incident.created_by, meta,
            entity_id=incident.id, message="Access denied",
        )
        return incident

    def _scoped_query(self, actor: UserModel, filters: IncidentFilters):
        """Base query with the caller's visibility applied before any filter."""
        query = select(IncidentModel)
        if actor.is_elevated:
            if filters.created_by:
                query = query.where(IncidentModel.created_by == filters.created_by)
        else:
            query = query.where(IncidentModel.created_by == actor.id)

        if filters.status:
            query = query.where(IncidentModel.status == filters.status)
        if filters.category:
            query = query.where(IncidentModel.category == filters.category)
        if filters.priority:
            query = query.where(IncidentModel.priority == filters.priority)
        if filters.assigned_to:
            query = query.where(IncidentModel.assigned_to == filters.assigned_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(or_(
                IncidentModel.title.ilike(pattern),
                IncidentModel.description.ilike(pattern),
                IncidentModel.category.ilike(pattern),
            ))
        if filters.date_from:
            query = query.where(IncidentModel.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(IncidentModel.created_at <= filters.date_to)
        return query

    @staticmethod
    def _order_by(sort: str | None):
        sort = sort or DEFAULT_SORT
        descending = sort.startswith("-")
        column = SORT_COLUMNS.get(sort.lstrip("-"))
        if column is None:
            raise ValidationError(f"Unsupported sort field: {sort.lstrip('-')}")
        return (column.desc() if descending else column.asc(), IncidentModel.id.desc())

    async def list_incidents(
        self,
        session: AsyncSession,
        actor: UserModel,
        filters: IncidentFilters,
        pagination: Pagination,
        sort: str | None = None,
    ) -> tuple[list[IncidentModel], int]:
        query = self._scoped_query(actor, filters)
        total = (
            await session.execute(select(func.count()).select_from(query.subquery()))
        ).scalar_one()
        query = (
            query.order_by(*self._order_by(sort))
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all()), total

    async def export_incidents(
        self,
        session: AsyncSession,
        actor: UserModel,
        filters: IncidentFilters,
        limit: int,
        sort: str | None = None,
    ) -> list[IncidentModel]:
        query = self._scoped_query(actor, filters).order_by(*self._order_by(sort)).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def user_summaries(
        self, session: AsyncSession, incidents: Iterable[IncidentModel],
    ) -> dict[str, UserModel]:
        """Creator and assignee accounts referenced by ``incidents``, keyed by id."""
        ids = {
            uid
            for inc in incidents
            for uid in (inc.created_by, inc.assigned_to)
            if uid
        }
        if not ids:
            return {}
        result = await session.execute(select(UserModel).where(UserModel.id.in_(ids)))
        return {user.id: user for user in result.scalars().all()}

    async def stats(self, session: AsyncSession) -> dict[str, Any]:
        total = (
            await session.execute(select(func.count(IncidentModel.id)))
        ).scalar_one()

        status_rows = await session.execute(
            select(IncidentModel.status, func.count(IncidentModel.id))
            .group_by(IncidentModel.status)
        )
        count_col = func.count(IncidentModel.id).label("count")
        category_rows = await session.execute(
            select(IncidentModel.category, count_col)
            .group_by(IncidentModel.category)
            .order_by(count_col.desc(), IncidentModel.category.asc())
            .limit(CATEGORY_BREAKDOWN_LIMIT)
        )
        resolved_rows = await session.execute(
            select(IncidentModel.created_at, IncidentModel.resolved_at).where(
                IncidentModel.status == Status.RESOLVED.value,
                IncidentModel.resolved_at.is_not(None),
            )
        )
        durations = [
            (resolved_at - created_at).total_seconds() * 1000
            for created_at, resolved_at in resolved_rows.all()
        ]
        return {
            "total": total,
            "status_breakdown": [
                {"status": status, "count": count} for status, count in status_rows.all()
            ],
            "category_breakdown": [
                {"category": category, "count": count} for category, count in category_rows.all()
            ],
            "avg_resolution_ms": sum(durations) / len(durations) if durations else None,
        }

    # ── Update ──

    async def _deny(
        self, session: AsyncSession, actor: UserModel, incident: IncidentModel,
        meta: RequestMeta, message: str,
    ) -> None:
        await self.audit_service.record(
            session, "UNAUTHORIZED_ACCESS", actor_entity(actor), incident.id, actor.id, meta,
            new_values={"route": meta.route}, error=message,
        )
        await session.commit()
        raise ForbiddenError(message)

    async def update_incident(
        self,
        session: AsyncSession,
        incident_id: str,
        changes: dict[str, Any],
        actor: UserModel,
        meta: RequestMeta,
    ) -> IncidentModel:
        """Apply a partial update within the actor's field allow-list.

        ``changes`` holds only the fields the caller explicitly supplied.
        """
        incident = await self._get_or_404(session, incident_id)
        is_owner = incident.created_by is not None and incident.created_by == actor.id
        if not is_owner and not actor.is_elevated:
            await authorize_owner_or_elevated(
                session, actor, incident.created_by, meta,
                entity_id=incident.id, message="Access denied",
            )

        rule = edit_rule(actor.role, is_owner, incident.status)
        if rule.denial:
            await self._deny(session, actor, incident, meta, rule.denial)
        outside = sorted(set(changes) - rule.fields)
        if outside:
            await self._deny(
                session, actor, incident, meta,
                f"Not permitted to change: {', '.join(outside)}",
            )

        changes = dict(changes)
        if "assigned_to" in changes and not (changes["assigned_to"] or "").strip():
            # blank assignee unassigns
            changes["assigned_to"] = None
        new_assignee = changes.get("assigned_to")
        if new_assignee and not await self.user_service.exists(session, new_assignee):
            raise NotFoundError("Assigned user not found")

        old_values = snapshot(incident)
        old_status = incident.status
        old_assignee = incident.assigned_to

        for field, value in changes.items():
            if field in REQUIRED_FIELDS and (value is None or not str(value).strip()):
                raise ValidationError(f"{field} cannot be empty")
            if field in ENUM_FIELDS:
                value = _coerce(ENUM_FIELDS[field], value, field)
            elif isinstance(value, str):
                value = value.strip()
            setattr(incident, field, value)

        if incident.status == Status.RESOLVED.value and incident.resolved_at is None:
            incident.resolved_at = utcnow()
        await session.flush()

        await self.audit_service.record(
            session, "INCIDENT_UPDATE", "Incident", incident.id, actor.id, meta,
            old_values=old_values, new_values=snapshot(incident),
        )

        transition = classify(old_status, incident.status)
        await self._notify_update(session, incident, actor, transition)

        if incident.assigned_to and incident.assigned_to != old_assignee and incident.assigned_to != actor.id:
            await self.notification_service.notify(
                session, incident.assigned_to, NotificationType.INCIDENT_ASSIGNED,
                "Incident Assigned",
                f'Incident "{incident.title}" has been assigned to you by {actor.name}',
                incident_id=incident.id,
            )

        publish(session, ADMIN_ROOM, "incident:update", {
            "incidentId": incident.id,
            "action": transition.value,
            "status": incident.status,
            "title": incident.title,
            "updatedBy": actor.id,
            "updatedByRole": actor.role,
        })
        logger.info(
            "Incident %s updated by %s (%s)", incident.id, actor.id, transition.value,
            extra={"incident_id": incident.id, "user_id": actor.id},
        )
        return incident

    async def _notify_update(
        self, session: AsyncSession, incident: IncidentModel, actor: UserModel,
        transition: Transition,
    ) -> None:
        if incident.created_by is None:
            return
        template = NOTICE_TEMPLATES[transition]
        if actor.is_elevated:
            message = f'Your incident "{incident.title}" has been {template.verb} by {actor.name}'
        else:
            message = f'Your incident "{incident.title}" has been updated'
        await self.notification_service.notify(
            session, incident.created_by, template.notification_type,
            template.title, message, incident_id=incident.id,
        )
        publish(session, user_room(incident.created_by), "incident:notification", {
            "incidentId": incident.id,
            "action": transition.value,
            "status": incident.status,
            "title": incident.title,
            "updatedBy": actor.id,
            "updatedByRole": actor.role,
            "message": message,
        })

    # ── Bulk resolve ──

    async def bulk_resolve(
        self,
        session: AsyncSession,
        incident_ids: Any,
        actor: UserModel,
        meta: RequestMeta,
    ) -> BulkResolveResult:
        """Resolve many incidents in one statement.

        Malformed ids are ignored. ``resolved_at`` is only filled where it is
        still empty, so re-resolving never moves an existing timestamp.
        """
        await authorize(session, actor, ELEVATED_ROLES, meta)
        if not isinstance(incident_ids, list) or not incident_ids:
            raise ValidationError("incidentIds array is required")

        valid_ids = list(dict.fromkeys(
            i for i in incident_ids if isinstance(i, str) and is_valid_id(i)
        ))
        matched = 0
        changing: list[tuple[str, str, str | None]] = []
        if valid_ids:
            result = await session.execute(
                select(
                    IncidentModel.id, IncidentModel.title, IncidentModel.created_by,
                    IncidentModel.status, IncidentModel.resolved_at,
                ).where(IncidentModel.id.in_(valid_ids))
            )
            rows = result.all()
            matched = len(rows)
            changing = [
                (row.id, row.title, row.created_by)
                for row in rows
                if row.status != Status.RESOLVED.value or row.resolved_at is None
            ]

        modified = 0
        if changing:
            now = utcnow()
            result = await session.execute(
                update(IncidentModel)
                .where(
                    IncidentModel.id.in_([c[0] for c in changing]),
                    or_(
                        IncidentModel.status != Status.RESOLVED.value,
                        IncidentModel.resolved_at.is_(None),
                    ),
                )
                .values(
                    status=Status.RESOLVED.value,
                    resolved_at=func.coalesce(IncidentModel.resolved_at, now),
                )
                .execution_options(synchronize_session=False)
            )
            modified = result.rowcount or 0

        await self.audit_service.record(
            session, "INCIDENT_BULK_RESOLVE", "System", actor.id, actor.id, meta,
            new_values={"incidentIds": incident_ids, "matched": matched, "modified": modified},
        )

        for incident_id, title, owner_id in changing:
            if owner_id:
                await self.notification_service.notify(
                    session, owner_id, NotificationType.BULK_RESOLVE,
                    "Incident Resolved",
                    f'Your incident "{title}" has been resolved',
                    incident_id=incident_id,
                )

        changed_ids = [c[0] for c in changing]
        publish(session, ADMIN_ROOM, "incident:bulk-resolve", {
            "action": Transition.RESOLVE.value,
            "incidentIds": changed_ids,
            "count": modified,
            "performedBy": actor.id,
        })
        logger.info("Bulk resolve by %s: matched=%d modified=%d", actor.id, matched, modified)
        return BulkResolveResult(matched=matched, modified=modified, incident_ids=changed_ids)

    # ── Hard delete ──

    async def hard_delete(
        self,
        session: AsyncSession,
        incident_id: str,
        actor: UserModel,
        meta: RequestMeta,
    ) -> None:
        await authorize(session, actor, [Role.SUPER_ADMIN], meta)
        incident = await self._get_or_404(session, incident_id)
        old_values = snapshot(incident)
        owner_id, title = incident.created_by, incident.title

        await session.delete(incident)
        await session.flush()

        await self.audit_service.record(
            session, "INCIDENT_HARD_DELETE", "Incident", incident_id, actor.id, meta,
            old_values=old_values,
        )
        if owner_id:
            message = f'Your incident "{title}" has been permanently deleted by {actor.name}'
            await self.notification_service.notify(
                session, owner_id, NotificationType.INCIDENT_DELETED,
                "Incident Deleted", message, incident_id=incident_id,
            )
            publish(session, user_room(owner_id), "incident:notification", {
                "incidentId": incident_id,
                "action": "DELETE",
                "title": title,
                "message": message,
            })
        publish(session, ADMIN_ROOM, "incident:delete", {
            "incidentId": incident_id,
            "title": title,
            "deletedBy": actor.id,
        })
        logger.warning(
            "Incident %s permanently deleted by %s", incident_id, actor.id,
            extra={"incident_id": incident_id, "user_id": actor.id},
        )
