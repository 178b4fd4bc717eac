"""Credential store: accounts, roles, block flags and refresh sessions."""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from incident_hub.audit.context import RequestMeta
from incident_hub.auth.passwords import MIN_PASSWORD_LENGTH, hash_password
from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.exceptions import ConflictError, NotFoundError, ValidationError
from incident_hub.common.models import is_valid_id, utcnow
from incident_hub.common.schemas import Pagination
from incident_hub.incidents.models import IncidentModel
from incident_hub.notifications.models import NotificationModel
from incident_hub.users.models import ELEVATED_ROLES, RefreshSessionModel, Role, UserModel

PUBLIC_FIELDS = ("name", "email", "role", "is_blocked")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def public_view(user: UserModel) -> dict[str, Any]:
    """Audit-safe view of an account; never includes credentials."""
    return {field: getattr(user, field) for field in PUBLIC_FIELDS}


@dataclass
class UserFilters:
    role: str | None = None
    is_blocked: bool | None = None
    search: str | None = None


class UserService:
    """Account CRUD plus the one-row-per-user refresh session record."""

    def __init__(self, settings: IncidentHubSettings, audit_service=None):
        self.settings = settings
        self.audit_service = audit_service

    # ── Accounts ──

    async def create_user(
        self,
        session: AsyncSession,
        name: str,
        email: str,
        password: str,
        role: Role = Role.USER,
    ) -> UserModel:
        if not name or not email or not password:
            raise ValidationError("name, email and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        email = normalize_email(email)
        if await self.get_by_email(session, email) is not None:
            raise ConflictError("Email already registered")

        user = UserModel(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            role=Role(role).value,
        )
        session.add(user)
        await session.flush()
        return user

    async def get_by_id(self, session: AsyncSession, user_id: str) -> UserModel | None:
        if not is_valid_id(user_id):
            return None
        return await session.get(UserModel, user_id)

    async def get_by_email(self, session: AsyncSession, email: str) -> UserModel | None:
        result = await session.execute(
            select(UserModel).where(UserModel.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def exists(self, session: AsyncSession, user_id: str) -> bool:
        return await self.get_by_id(session, user_id) is not None

    async def list_users(
        self, session: AsyncSession, filters: UserFilters, pagination: Pagination,
    ) -> tuple[list[UserModel], int]:
        query = select(UserModel)
        if filters.role:
            query = query.where(UserModel.role == filters.role)
        if filters.is_blocked is not None:
            query = query.where(UserModel.is_blocked == filters.is_blocked)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.where(
                or_(UserModel.name.ilike(pattern), UserModel.email.ilike(pattern))
            )
        total = (
            await session.execute(select(func.count()).select_from(query.subquery()))
        ).scalar_one()
        query = (
            query.order_by(UserModel.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all()), total

    async def list_assignable_admins(self, session: AsyncSession) -> list[UserModel]:
        result = await session.execute(
            select(UserModel)
            .where(
                UserModel.role.in_([r.value for r in ELEVATED_ROLES]),
                UserModel.is_blocked.is_(False),
            )
            .order_by(UserModel.name.asc())
        )
        return list(result.scalars().all())

    async def elevated_user_ids(self, session: AsyncSession) -> list[str]:
        """Ids of every ADMIN and SUPER_ADMIN account, blocked or not."""
        result = await session.execute(
            select(UserModel.id).where(
                UserModel.role.in_([r.value for r in ELEVATED_ROLES])
            )
        )
        return list(result.scalars().all())

    async def admin_create_user(
        self,
        session: AsyncSession,
        actor: UserModel,
        meta: RequestMeta,
        name: str,
        email: str,
        password: str,
        role: Role = Role.USER,
    ) -> UserModel:
        user = await self.create_user(session, name, email, password, role=role)
        if self.audit_service:
            await self.audit_service.record(
                session, "USER_CREATE", "User", user.id, actor.id, meta,
                new_values=public_view(user),
            )
        return user

    async def update_user(
        self,
        session: AsyncSession,
        user_id: str,
        actor: UserModel,
        meta: RequestMeta,
        **updates: Any,
    ) -> UserModel:
        user = await self.get_by_id(session, user_id)
        if user is None:
            raise NotFoundError("User not found")

        old_values = public_view(user)

        if updates.get("email") is not None:
            email = normalize_email(updates["email"])
            if email != user.email:
                other = await self.get_by_email(session, email)
                if other is not None:
                    raise ConflictError("Email already exists")
                user.email = email
        if updates.get("name") is not None:
            user.name = updates["name"].strip()
        if updates.get("role") is not None:
            user.role = Role(updates["role"]).value
        if updates.get("password") is not None:
            if len(updates["password"]) < MIN_PASSWORD_LENGTH:
                raise ValidationError(
                    f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
                )
            user.password_hash = hash_password(updates["password"])
        if updates.get("is_blocked") is not None:
            user.is_blocked = bool(updates["is_blocked"])
            if user.is_blocked:
                await self.revoke_refresh_session(session, user.id)

        await session.flush()

        if self.audit_service:
            await self.audit_service.record(
                session, "USER_UPDATE", "User", user.id, actor.id, meta,
                old_values=old_values, new_values=public_view(user),
            )
        return user

    async def delete_user(
        self,
        session: AsyncSession,
        user_id: str,
        actor: UserModel,
        meta: RequestMeta,
    ) -> None:
        user = await self.get_by_id(session, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.id == actor.id:
            raise ValidationError("Cannot delete your own account")

        old_values = public_view(user)
        await self.revoke_refresh_session(session, user.id)
        await self._detach_references(session, user.id)
        await session.delete(user)
        await session.flush()

        if self.audit_service:
            await self.audit_service.record(
                session, "USER_DELETE", "User", user_id, actor.id, meta,
                old_values=old_values,
            )

    async def _detach_references(self, session: AsyncSession, user_id: str) -> None:
        """Clear incident references to ``user_id`` and drop its notifications.

        Done explicitly since SQLite does not enforce the ON DELETE rules.
        """
        for column in (IncidentModel.created_by, IncidentModel.assigned_to):
            await session.execute(
                update(IncidentModel)
                .where(column == user_id)
                .values({column.key: None})
                .execution_options(synchronize_session=False)
            )
        await session.execute(
            delete(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .execution_options(synchronize_session=False)
        )

    async def touch_last_login(self, session: AsyncSession, user: UserModel) -> None:
        user.last_login = utcnow()
        await session.flush()

    # ── Refresh sessions ──

    async def get_refresh_session(
        self, session: AsyncSession, user_id: str,
    ) -> RefreshSessionModel | None:
        return await session.get(RefreshSessionModel, user_id)

    async def store_refresh_session(
        self, session: AsyncSession, user_id: str, fingerprint: str,
    ) -> RefreshSessionModel:
        """Replace the user's refresh lineage with a new fingerprint."""
        record = await self.get_refresh_session(session, user_id)
        if record is None:
            record = RefreshSessionModel(user_id=user_id, fingerprint=fingerprint, issued_at=utcnow())
            session.add(record)
        else:
            record.fingerprint = fingerprint
            record.issued_at = utcnow()
        await session.flush()
        return record

    async def revoke_refresh_session(self, session: AsyncSession, user_id: str) -> bool:
        record = await self.get_refresh_session(session, user_id)
        if record is None:
            return False
        await session.delete(record)
        await session.flush()
        return True
