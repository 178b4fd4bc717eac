"""Access control gate: bearer authentication and role/ownership checks.

Every refusal is written to the audit trail and committed before the error
is raised, so the entry survives the request's rollback.
"""

from typing import Iterable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from incident_hub.audit.context import RequestMeta, request_meta
from incident_hub.auth.tokens import TokenClass
from incident_hub.common.exceptions import (
    ForbiddenError,
    IncidentHubError,
    TokenExpiredError,
    UnauthorizedError,
)
from incident_hub.common.logging import get_logger
from incident_hub.users.models import ELEVATED_ROLES, Role, UserModel

logger = get_logger("security")

_bearer = HTTPBearer(auto_error=False)


def actor_entity(user: UserModel) -> str:
    if user.role == Role.SUPER_ADMIN.value:
        return "SuperAdmin"
    if user.role == Role.ADMIN.value:
        return "Admin"
    return "User"


def _services():
    from incident_hub.deps import get_audit_service, get_db, get_token_service, get_user_service
    return get_db(), get_token_service(), get_user_service(), get_audit_service()


async def authenticate(token: str | None, meta: RequestMeta) -> UserModel:
    """Resolve the account behind an access token.

    Raises UnauthorizedError for a missing/invalid/expired token or an
    unknown account, ForbiddenError for a blocked account.
    """
    db, tokens, users, audit = _services()
    async with db.get_session() as session:
        user: UserModel | None = None
        try:
            if not token:
                raise UnauthorizedError("Not authorized, no token")
            try:
                claims = tokens.verify(token, TokenClass.ACCESS)
            except TokenExpiredError as exc:
                raise TokenExpiredError("Not authorized, token expired") from exc
            except UnauthorizedError as exc:
                raise UnauthorizedError("Not authorized, token failed") from exc
            user = await users.get_by_id(session, claims["id"])
            if user is None:
                raise UnauthorizedError("Not authorized, user not found")
            if user.is_blocked:
                raise ForbiddenError("User account is blocked")
            return user
        except IncidentHubError as exc:
            logger.warning("Authentication failed on %s: %s", meta.route, exc.message)
            await audit.record(
                session, "AUTH_FAILED",
                actor_entity(user) if user else "User",
                user.id if user else None,
                user.id if user else None,
                meta,
                new_values={"route": meta.route},
                error=exc.message,
            )
            await session.commit()
            raise


async def authorize(
    session: AsyncSession,
    user: UserModel,
    allowed_roles: Iterable[Role | str],
    meta: RequestMeta,
) -> None:
    """Exact role-set membership check."""
    allowed = {Role(r).value for r in allowed_roles}
    if user.role in allowed:
        return
    message = f"User role {user.role} is not authorized to access this route"
    _, _, _, audit = _services()
    await audit.record(
        session, "UNAUTHORIZED_ACCESS", actor_entity(user), user.id, user.id, meta,
        new_values={"route": meta.route}, error=message,
    )
    await session.commit()
    raise ForbiddenError(message)


async def authorize_owner_or_elevated(
    session: AsyncSession,
    user: UserModel,
    owner_id: str | None,
    meta: RequestMeta,
    entity_id: str | None = None,
    message: str = "User not authorized to access this resource",
) -> None:
    """ADMIN and SUPER_ADMIN always pass; anyone else must own the resource."""
    if Role(user.role) in ELEVATED_ROLES or (owner_id is not None and user.id == owner_id):
        return
    _, _, _, audit = _services()
    await audit.record(
        session, "UNAUTHORIZED_ACCESS", actor_entity(user), entity_id, user.id, meta,
        new_values={"route": meta.route}, error=message,
    )
    await session.commit()
    raise ForbiddenError(message)


# ── FastAPI dependencies ──


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> UserModel:
    token = credentials.credentials if credentials else None
    user = await authenticate(token, request_meta(request))
    request.state.user = user
    return user


def require_roles(*roles: Role):
    """Dependency factory: the authenticated user must hold one of ``roles``."""

    async def dependency(
        request: Request, user: UserModel = Depends(get_current_user),
    ) -> UserModel:
        db, _, _, _ = _services()
        async with db.get_session() as session:
            await authorize(session, user, roles, request_meta(request))
        return user

    return dependency
