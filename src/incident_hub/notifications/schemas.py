"""Pydantic schemas for notification endpoints."""

from datetime import datetime
from typing import Optional

from incident_hub.common.schemas import ApiModel


class NotificationResponse(ApiModel):
    id: str
    type: str
    title: str
    message: str
    incident_id: Optional[str] = None
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationEnvelope(ApiModel):
    success: bool = True
    notification: NotificationResponse


class NotificationListResponse(ApiModel):
    success: bool = True
    items: list[NotificationResponse]
    page: int
    limit: int
    total: int
    pages: int
    unread_count: int


class MarkAllReadResponse(ApiModel):
    success: bool = True
    modified: int


class DeleteAllResponse(ApiModel):
    success: bool = True
    deleted: int
