"""Notification API router. Every route is scoped to the caller."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from incident_hub.common.schemas import Pagination, SuccessResponse
from incident_hub.common.security import get_current_user
from incident_hub.notifications.schemas import (
    DeleteAllResponse,
    MarkAllReadResponse,
    NotificationEnvelope,
    NotificationListResponse,
    NotificationResponse,
)
from incident_hub.users.models import UserModel

router = APIRouter()


def _get_service():
    from incident_hub.deps import get_notification_service
    return get_notification_service()


def _get_db():
    from incident_hub.deps import get_db
    return get_db()


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    unread_only: bool = Query(False, alias="unreadOnly"),
    user: UserModel = Depends(get_current_user),
):
    svc = _get_service()
    db = _get_db()
    pagination = Pagination.clamp(
        page, limit, svc.settings.default_page_size, svc.settings.max_page_size,
    )
    async with db.get_session() as session:
        items, total, unread = await svc.list_for_user(
            session, user.id, pagination, unread_only=unread_only,
        )
        return NotificationListResponse(
            items=[NotificationResponse.model_validate(n) for n in items],
            page=pagination.page,
            limit=pagination.limit,
            total=total,
            pages=pagination.pages(total),
            unread_count=unread,
        )


@router.patch("/notifications/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(user: UserModel = Depends(get_current_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        modified = await svc.mark_all_read(session, user.id)
    return MarkAllReadResponse(modified=modified)


@router.patch("/notifications/{notification_id}/read", response_model=NotificationEnvelope)
async def mark_read(notification_id: str, user: UserModel = Depends(get_current_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        note = await svc.mark_read(session, user.id, notification_id)
        return NotificationEnvelope(notification=NotificationResponse.model_validate(note))


@router.delete("/notifications/{notification_id}", response_model=SuccessResponse)
async def delete_notification(notification_id: str, user: UserModel = Depends(get_current_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.delete(session, user.id, notification_id)
    return SuccessResponse()


@router.delete("/notifications", response_model=DeleteAllResponse)
async def delete_all_notifications(user: UserModel = Depends(get_current_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        deleted = await svc.delete_all(session, user.id)
    return DeleteAllResponse(deleted=deleted)
