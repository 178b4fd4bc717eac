"""User API router: self profile, assignee lookup and SUPER_ADMIN administration."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from incident_hub.audit.context import request_meta
from incident_hub.common.schemas import Pagination, SuccessResponse
from incident_hub.common.security import get_current_user, require_roles
from incident_hub.users.models import Role, UserModel
from incident_hub.users.schemas import (
    AdminListResponse,
    AdminSummary,
    UserCreate,
    UserEnvelope,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from incident_hub.users.service import UserFilters

router = APIRouter()

_admin = require_roles(Role.ADMIN, Role.SUPER_ADMIN)
_super_admin = require_roles(Role.SUPER_ADMIN)


def _get_service():
    from incident_hub.deps import get_user_service
    return get_user_service()


def _get_db():
    from incident_hub.deps import get_db
    return get_db()


@router.get("/users/me", response_model=UserEnvelope)
async def me(user: UserModel = Depends(get_current_user)):
    return UserEnvelope(user=UserResponse.model_validate(user))


@router.get("/users/admins", response_model=AdminListResponse)
async def list_admins(_: UserModel = Depends(_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        admins = await svc.list_assignable_admins(session)
        return AdminListResponse(admins=[AdminSummary.model_validate(a) for a in admins])


@router.get("/users", response_model=UserListResponse)
async def list_users(
    role: Optional[Role] = Query(None),
    is_blocked: Optional[bool] = Query(None, alias="isBlocked"),
    search: Optional[str] = Query(None),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    _: UserModel = Depends(_super_admin),
):
    svc = _get_service()
    db = _get_db()
    pagination = Pagination.clamp(
        page, limit, svc.settings.default_page_size, svc.settings.max_page_size,
    )
    filters = UserFilters(
        role=role.value if role else None, is_blocked=is_blocked, search=search or None,
    )
    async with db.get_session() as session:
        users, total = await svc.list_users(session, filters, pagination)
        return UserListResponse(
            items=[UserResponse.model_validate(u) for u in users],
            page=pagination.page,
            limit=pagination.limit,
            total=total,
            pages=pagination.pages(total),
        )


@router.post("/users", response_model=UserEnvelope, status_code=201)
async def create_user(
    body: UserCreate, request: Request, actor: UserModel = Depends(_super_admin),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        user = await svc.admin_create_user(
            session, actor, request_meta(request),
            body.name, body.email, body.password, role=body.role,
        )
        return UserEnvelope(user=UserResponse.model_validate(user))


@router.patch("/users/{user_id}", response_model=UserEnvelope)
async def update_user(
    user_id: str, body: UserUpdate, request: Request,
    actor: UserModel = Depends(_super_admin),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        user = await svc.update_user(
            session, user_id, actor, request_meta(request),
            **body.model_dump(exclude_unset=True),
        )
        return UserEnvelope(user=UserResponse.model_validate(user))


@router.delete("/users/{user_id}", response_model=SuccessResponse)
async def delete_user(
    user_id: str, request: Request, actor: UserModel = Depends(_super_admin),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.delete_user(session, user_id, actor, request_meta(request))
    return SuccessResponse()
