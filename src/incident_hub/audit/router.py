"""Audit log API router (SUPER_ADMIN only)."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from incident_hub.audit.schemas import (
    AuditLogListResponse,
    AuditLogResponse,
    EntityHistoryResponse,
)
from incident_hub.audit.service import AuditFilters
from incident_hub.common.schemas import Pagination
from incident_hub.common.security import require_roles
from incident_hub.users.models import Role, UserModel

router = APIRouter()

_super_admin = require_roles(Role.SUPER_ADMIN)


def _get_service():
    from incident_hub.deps import get_audit_service
    return get_audit_service()


def _get_db():
    from incident_hub.deps import get_db
    return get_db()


@router.get("/logs", response_model=AuditLogListResponse)
async def list_logs(
    entity: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    performed_by: Optional[str] = Query(None, alias="performedBy"),
    user_role: Optional[Role] = Query(None, alias="userRole"),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    _: UserModel = Depends(_super_admin),
):
    svc = _get_service()
    db = _get_db()
    pagination = Pagination.clamp(
        page, limit, svc.settings.audit_default_page_size, svc.settings.audit_max_page_size,
    )
    filters = AuditFilters(
        entity=entity,
        action=action,
        actor_id=performed_by,
        actor_role=user_role.value if user_role else None,
        date_from=date_from,
        date_to=date_to,
    )
    async with db.get_session() as session:
        rows, total = await svc.list_entries(session, filters, pagination)
        return AuditLogListResponse(
            items=[AuditLogResponse.build(entry, actor) for entry, actor in rows],
            page=pagination.page,
            limit=pagination.limit,
            total=total,
            pages=pagination.pages(total),
        )


@router.get("/logs/entity/{entity_id}", response_model=EntityHistoryResponse)
async def entity_history(
    entity_id: str,
    action: Optional[str] = Query(None),
    _: UserModel = Depends(_super_admin),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        entries = await svc.get_events_for(session, entity_id, action=action)
        return EntityHistoryResponse(
            entity_id=entity_id,
            items=[AuditLogResponse.build(e) for e in entries],
        )
