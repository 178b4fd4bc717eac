"""Pydantic schemas for audit log endpoints."""

from datetime import datetime
from typing import Any, Optional

from incident_hub.audit.models import AuditLogModel
from incident_hub.common.schemas import ApiModel
from incident_hub.users.models import UserModel


class AuditActor(ApiModel):
    id: str
    name: str
    email: str
    role: str


class AuditLogResponse(ApiModel):
    id: str
    action: str
    entity: str
    entity_id: Optional[str] = None
    performed_by: Optional[AuditActor] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    ip_address: str
    user_agent: Optional[str] = None
    status: str
    error: Optional[str] = None
    created_at: datetime

    @classmethod
    def build(cls, entry: AuditLogModel, actor: UserModel | None = None) -> "AuditLogResponse":
        return cls(
            id=entry.id,
            action=entry.action,
            entity=entry.entity,
            entity_id=entry.entity_id,
            performed_by=AuditActor.model_validate(actor) if actor else None,
            old_values=entry.old_values,
            new_values=entry.new_values,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            status=entry.status,
            error=entry.error,
            created_at=entry.created_at,
        )


class AuditLogListResponse(ApiModel):
    success: bool = True
    items: list[AuditLogResponse]
    page: int
    limit: int
    total: int
    pages: int


class EntityHistoryResponse(ApiModel):
    success: bool = True
    entity_id: str
    items: list[AuditLogResponse]
