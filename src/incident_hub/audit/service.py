"""Audit service: append and query the audit trail."""

import enum
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from incident_hub.audit.context import RequestMeta
from incident_hub.audit.models import AuditLogModel
from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.schemas import Pagination
from incident_hub.users.models import UserModel

STATUS_SUCCESS = "Success"
STATUS_FAILED = "Failed"


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def snapshot(obj: Any, exclude: Iterable[str] = ()) -> dict[str, Any]:
    """JSON-safe dict of an ORM object's column values."""
    skip = set(exclude)
    mapper = inspect(obj).mapper
    return {
        attr.key: _json_safe(getattr(obj, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in skip
    }


@dataclass
class AuditFilters:
    entity: str | None = None
    action: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class AuditService:
    """Append-only log of who did what, from where, with what outcome."""

    def __init__(self, settings: IncidentHubSettings):
        self.settings = settings

    # ── Write ──

    async def record(
        self,
        session: AsyncSession,
        action: str,
        entity: str,
        entity_id: str | None,
        actor_id: str | None,
        meta: RequestMeta,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        error: BaseException | str | None = None,
    ) -> AuditLogModel:
        """Append one entry. Status is Failed iff ``error`` is supplied."""
        entry = AuditLogModel(
            action=action,
            entity=entity,
            entity_id=entity_id,
            actor_id=actor_id,
            old_values=_json_safe(old_values) if old_values else None,
            new_values=_json_safe(new_values) if new_values else None,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            status=STATUS_FAILED if error is not None else STATUS_SUCCESS,
            error=str(error) if error is not None else None,
        )
        session.add(entry)
        await session.flush()
        return entry

    # ── Read ──

    async def list_entries(
        self,
        session: AsyncSession,
        filters: AuditFilters,
        pagination: Pagination,
    ) -> tuple[list[tuple[AuditLogModel, UserModel | None]], int]:
        """Newest-first page of entries, each paired with its actor if it still exists."""
        query = select(AuditLogModel, UserModel).outerjoin(
            UserModel, UserModel.id == AuditLogModel.actor_id
        )
        if filters.entity:
            query = query.where(AuditLogModel.entity == filters.entity)
        if filters.action:
            query = query.where(AuditLogModel.action == filters.action)
        if filters.actor_id:
            query = query.where(AuditLogModel.actor_id == filters.actor_id)
        if filters.actor_role:
            query = query.where(UserModel.role == filters.actor_role)
        if filters.date_from:
            query = query.where(AuditLogModel.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(AuditLogModel.created_at <= filters.date_to)

        total = (
            await session.execute(select(func.count()).select_from(query.subquery()))
        ).scalar_one()

        query = (
            query.order_by(AuditLogModel.created_at.desc(), AuditLogModel.id.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        result = await session.execute(query)
        return [(row[0], row[1]) for row in result.all()], total

    async def get_events_for(
        self, session: AsyncSession, entity_id: str, action: str | None = None,
    ) -> list[AuditLogModel]:
        """All entries about one entity, oldest first."""
        query = select(AuditLogModel).where(AuditLogModel.entity_id == entity_id)
        if action:
            query = query.where(AuditLogModel.action == action)
        query = query.order_by(AuditLogModel.created_at.asc())
        result = await session.execute(query)
        return list(result.scalars().all())
