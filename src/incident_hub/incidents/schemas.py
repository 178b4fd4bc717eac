"""Pydantic schemas for incident endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import ConfigDict, Field

from incident_hub.common.schemas import ApiModel
from incident_hub.incidents.models import Category, IncidentModel, Priority, Status
from incident_hub.users.models import UserModel


class UserSummary(ApiModel):
    id: str
    name: str
    email: str
    role: str


class IncidentResponse(ApiModel):
    id: str
    title: str
    description: str
    category: str
    priority: str
    status: str
    incident_date: datetime
    evidence_files: list[str] = Field(default_factory=list)
    created_by: Optional[UserSummary] = None
    assigned_to: Optional[UserSummary] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def build(cls, incident: IncidentModel, users: dict[str, UserModel]) -> "IncidentResponse":
        def summary(user_id: str | None) -> UserSummary | None:
            user = users.get(user_id) if user_id else None
            return UserSummary.model_validate(user) if user else None

        return cls(
            id=incident.id,
            title=incident.title,
            description=incident.description,
            category=incident.category,
            priority=incident.priority,
            status=incident.status,
            incident_date=incident.incident_date,
            evidence_files=incident.evidence_files or [],
            created_by=summary(incident.created_by),
            assigned_to=summary(incident.assigned_to),
            resolved_at=incident.resolved_at,
            resolution_notes=incident.resolution_notes,
            created_at=incident.created_at,
            updated_at=incident.updated_at,
        )


class IncidentEnvelope(ApiModel):
    success: bool = True
    incident: IncidentResponse


class IncidentListResponse(ApiModel):
    success: bool = True
    items: list[IncidentResponse]
    page: int
    limit: int
    total: int
    pages: int


class IncidentUpdate(ApiModel):
    """Partial update. Unknown keys are kept so the edit policy can refuse them."""

    model_config = ConfigDict(extra="allow")

    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    category: Optional[Category] = None
    priority: Optional[Priority] = None
    status: Optional[Status] = None
    assigned_to: Optional[str] = None
    resolution_notes: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        return {k: v.value if isinstance(v, (Category, Priority, Status)) else v for k, v in data.items()}


class BulkResolveRequest(ApiModel):
    incident_ids: Any = None


class BulkResolveResponse(ApiModel):
    success: bool = True
    matched: int
    modified: int


class StatusCount(ApiModel):
    status: str
    count: int


class CategoryCount(ApiModel):
    category: str
    count: int


class IncidentStats(ApiModel):
    total: int
    status_breakdown: list[StatusCount]
    category_breakdown: list[CategoryCount]
    avg_resolution_ms: Optional[float] = None


class IncidentStatsResponse(ApiModel):
    success: bool = True
    stats: IncidentStats
