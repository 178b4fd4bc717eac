"""Notification service: persist, push, and manage per-user notifications."""

from typing import Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.exceptions import NotFoundError
from incident_hub.common.models import is_valid_id, utcnow
from incident_hub.common.schemas import Pagination
from incident_hub.notifications.models import NotificationModel, NotificationType
from incident_hub.realtime.events import publish, user_room


class NotificationService:
    """Recipient-scoped notifications with a realtime echo."""

    def __init__(self, settings: IncidentHubSettings):
        self.settings = settings

    # ── Fan-out ──

    async def notify(
        self,
        session: AsyncSession,
        recipients: str | Iterable[str],
        notification_type: NotificationType,
        title: str,
        message: str,
        incident_id: str | None = None,
    ) -> list[NotificationModel]:
        """Persist one notification per distinct recipient and stage a push to each."""
        if isinstance(recipients, str):
            recipients = [recipients]
        seen: set[str] = set()
        created: list[NotificationModel] = []
        for user_id in recipients:
            if not user_id or user_id in seen:
                continue
            seen.add(user_id)
            note = NotificationModel(
                user_id=user_id,
                type=NotificationType(notification_type).value,
                title=title,
                message=message,
                incident_id=incident_id,
            )
            session.add(note)
            created.append(note)
        if not created:
            return created
        await session.flush()

        for note in created:
            publish(session, user_room(note.user_id), "notification:new", {
                "id": note.id,
                "type": note.type,
                "title": note.title,
                "message": note.message,
                "incidentId": note.incident_id,
                "createdAt": note.created_at.isoformat(),
            })
        return created

    # ── Recipient operations ──

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        pagination: Pagination,
        unread_only: bool = False,
    ) -> tuple[list[NotificationModel], int, int]:
        """Returns (page, total matching, total unread)."""
        query = select(NotificationModel).where(NotificationModel.user_id == user_id)
        if unread_only:
            query = query.where(NotificationModel.read.is_(False))

        total = (
            await session.execute(select(func.count()).select_from(query.subquery()))
        ).scalar_one()
        unread = await self.unread_count(session, user_id)

        query = (
            query.order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all()), total, unread

    async def unread_count(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            select(func.count(NotificationModel.id)).where(
                NotificationModel.user_id == user_id,
                NotificationModel.read.is_(False),
            )
        )
        return result.scalar_one()

    async def _get_owned(
        self, session: AsyncSession, user_id: str, notification_id: str,
    ) -> NotificationModel:
        if not is_valid_id(notification_id):
            raise NotFoundError("Notification not found")
        result = await session.execute(
            select(NotificationModel).where(
                NotificationModel.id == notification_id,
                NotificationModel.user_id == user_id,
            )
        )
        note = result.scalar_one_or_none()
        if note is None:
            raise NotFoundError("Notification not found")
        return note

    async def mark_read(
        self, session: AsyncSession, user_id: str, notification_id: str,
    ) -> NotificationModel:
        note = await self._get_owned(session, user_id, notification_id)
        if not note.read:
            note.read = True
            note.read_at = utcnow()
            await session.flush()
        return note

    async def mark_all_read(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            update(NotificationModel)
            .where(NotificationModel.user_id == user_id, NotificationModel.read.is_(False))
            .values(read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def delete(self, session: AsyncSession, user_id: str, notification_id: str) -> None:
        note = await self._get_owned(session, user_id, notification_id)
        await session.delete(note)
        await session.flush()

    async def delete_all(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            delete(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
