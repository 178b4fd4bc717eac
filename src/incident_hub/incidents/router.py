"""Incident API router."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile

from incident_hub.audit.context import request_meta
from incident_hub.common.security import get_current_user, require_roles
from incident_hub.incidents.export import to_csv, to_pdf
from incident_hub.incidents.models import Category, Priority, Status
from incident_hub.incidents.schemas import (
    BulkResolveRequest,
    BulkResolveResponse,
    IncidentEnvelope,
    IncidentListResponse,
    IncidentResponse,
    IncidentStats,
    IncidentStatsResponse,
    IncidentUpdate,
)
from incident_hub.incidents.service import IncidentFilters
from incident_hub.incidents.uploads import discard_evidence, save_evidence
from incident_hub.common.schemas import Pagination, SuccessResponse
from incident_hub.users.models import Role, UserModel

router = APIRouter()

_admin = require_roles(Role.ADMIN, Role.SUPER_ADMIN)
_super_admin = require_roles(Role.SUPER_ADMIN)


def _get_service():
    from incident_hub.deps import get_incident_service
    return get_incident_service()


def _get_db():
    from incident_hub.deps import get_db
    return get_db()


def _get_settings():
    from incident_hub.common.config import get_settings
    return get_settings()


def _filters(
    status: Optional[Status] = Query(None),
    category: Optional[Category] = Query(None),
    priority: Optional[Priority] = Query(None),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    created_by: Optional[str] = Query(None, alias="createdBy"),
    search: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
) -> IncidentFilters:
    return IncidentFilters(
        status=status.value if status else None,
        category=category.value if category else None,
        priority=priority.value if priority else None,
        assigned_to=assigned_to,
        created_by=created_by,
        search=search or None,
        date_from=date_from,
        date_to=date_to,
    )


def _export_name(ext: str) -> str:
    return f"incidents-{datetime.now().strftime('%Y%m%d-%H%M%S')}.{ext}"


# ── Reporting ──

@router.get("/incidents/stats", response_model=IncidentStatsResponse)
async def incident_stats(user: UserModel = Depends(_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        stats = await svc.stats(session)
        return IncidentStatsResponse(stats=IncidentStats.model_validate(stats))


@router.get("/incidents/export/csv")
async def export_csv(
    sort: Optional[str] = Query(None),
    filters: IncidentFilters = Depends(_filters),
    user: UserModel = Depends(_admin),
):
    svc = _get_service()
    db = _get_db()
    settings = _get_settings()
    async with db.get_session() as session:
        incidents = await svc.export_incidents(
            session, user, filters, settings.csv_export_limit, sort=sort,
        )
        users = await svc.user_summaries(session, incidents)
    return Response(
        content=to_csv(incidents, users),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{_export_name("csv")}"'},
    )


@router.get("/incidents/export/pdf")
async def export_pdf(
    sort: Optional[str] = Query(None),
    filters: IncidentFilters = Depends(_filters),
    user: UserModel = Depends(_admin),
):
    svc = _get_service()
    db = _get_db()
    settings = _get_settings()
    async with db.get_session() as session:
        incidents = await svc.export_incidents(
            session, user, filters, settings.pdf_export_limit, sort=sort,
        )
        users = await svc.user_summaries(session, incidents)
    return Response(
        content=to_pdf(incidents, users, generated_by=user.email),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{_export_name("pdf")}"'},
    )


# ── Incidents ──

@router.post("/incidents", response_model=IncidentEnvelope, status_code=201)
async def create_incident(
    request: Request,
    title: str = Form(...),
    description: str = Form(...),
    category: Category = Form(...),
    priority: Priority = Form(...),
    incident_date: datetime = Form(..., alias="incidentDate"),
    evidence: Optional[list[UploadFile]] = File(None),
    user: UserModel = Depends(get_current_user),
):
    svc = _get_service()
    db = _get_db()
    settings = _get_settings()
    stored = await save_evidence(evidence, settings)
    try:
        async with db.get_session() as session:
            incident = await svc.create_incident(
                session, user, request_meta(request),
                title=title,
                description=description,
                category=category,
                priority=priority,
                incident_date=incident_date,
                evidence_files=stored,
            )
            users = await svc.user_summaries(session, [incident])
            return IncidentEnvelope(incident=IncidentResponse.build(incident, users))
    except Exception:
        discard_evidence(stored, settings)
        raise


@router.get("/incidents", response_model=IncidentListResponse)
async def list_incidents(
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    sort: Optional[str] = Query(None),
    filters: IncidentFilters = Depends(_filters),
    user: UserModel = Depends(get_current_user),
):
    svc = _get_service()
    db = _get_db()
    settings = _get_settings()
    pagination = Pagination.clamp(page, limit, settings.default_page_size, settings.max_page_size)
    async with db.get_session() as session:
        incidents, total = await svc.list_incidents(session, user, filters, pagination, sort=sort)
        users = await svc.user_summaries(session, incidents)
        return IncidentListResponse(
            items=[IncidentResponse.build(i, users) for i in incidents],
            page=pagination.page,
            limit=pagination.limit,
            total=total,
            pages=pagination.pages(total),
        )


@router.patch("/incidents/bulk/resolve", response_model=BulkResolveResponse)
async def bulk_resolve(
    body: BulkResolveRequest,
    request: Request,
    user: UserModel = Depends(_admin),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.bulk_resolve(session, body.incident_ids, user, request_meta(request))
        return BulkResolveResponse(matched=result.matched, modified=result.modified)


@router.get("/incidents/{incident_id}", response_model=IncidentEnvelope)
async def get_incident(
    incident_id: str,
    request: Request,
    user: UserModel = Depends(get_current_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        incident = await svc.get_incident(session, incident_id, user, request_meta(request))
        users = await svc.user_summaries(session, [incident])
        return IncidentEnvelope(incident=IncidentResponse.build(incident, users))


@router.patch("/incidents/{incident_id}", response_model=IncidentEnvelope)
async def update_incident(
    incident_id: str,
    body: IncidentUpdate,
    request: Request,
    user: UserModel = Depends(get_current_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        incident = await svc.update_incident(
            session, incident_id, body.changes(), user, request_meta(request),
        )
        users = await svc.user_summaries(session, [incident])
        return IncidentEnvelope(incident=IncidentResponse.build(incident, users))


@router.delete("/incidents/{incident_id}", response_model=SuccessResponse)
async def delete_incident(
    incident_id: str,
    request: Request,
    user: UserModel = Depends(_super_admin),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.hard_delete(session, incident_id, user, request_meta(request))
    return SuccessResponse()
