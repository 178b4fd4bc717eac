"""SQLAlchemy model for per-user notifications."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from incident_hub.common.models import Base, TimestampMixin, generate_uuid


class NotificationType(str, enum.Enum):
    INCIDENT_CREATED = "INCIDENT_CREATED"
    INCIDENT_UPDATED = "INCIDENT_UPDATED"
    INCIDENT_RESOLVED = "INCIDENT_RESOLVED"
    INCIDENT_IN_PROGRESS = "INCIDENT_IN_PROGRESS"
    INCIDENT_REOPENED = "INCIDENT_REOPENED"
    INCIDENT_CLOSED = "INCIDENT_CLOSED"
    INCIDENT_DELETED = "INCIDENT_DELETED"
    INCIDENT_ASSIGNED = "INCIDENT_ASSIGNED"
    BULK_RESOLVE = "BULK_RESOLVE"


class NotificationModel(Base, TimestampMixin):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read_created", "user_id", "read", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # Plain reference: deletion notices must keep pointing at the removed incident.
    incident_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
