"""Session lifecycle: register, login, refresh with rotation, logout.

Each account has at most one live refresh lineage, stored as a fingerprint
in ``refresh_sessions``. Every successful refresh rotates the token. A
refresh token whose fingerprint does not match the stored one is treated as
replayed: the stored session is revoked and the caller must log in again.
"""

import hmac
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from incident_hub.audit.context import RequestMeta
from incident_hub.auth.passwords import verify_password
from incident_hub.auth.tokens import TokenClass, TokenService, fingerprint
from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.exceptions import (
    ForbiddenError,
    IncidentHubError,
    RefreshTokenReuseError,
    UnauthorizedError,
    ValidationError,
)
from incident_hub.common.logging import get_logger
from incident_hub.users.models import UserModel
from incident_hub.users.service import UserService

logger = get_logger("auth")

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH = "Invalid refresh token"
BLOCKED = "User account is blocked"


@dataclass
class AuthResult:
    user: UserModel
    access_token: str
    refresh_token: str


@dataclass
class RefreshResult:
    access_token: str
    refresh_token: str


class SessionService:
    """Drives the per-account session state machine."""

    def __init__(
        self,
        settings: IncidentHubSettings,
        token_service: TokenService,
        user_service: UserService,
        audit_service=None,
    ):
        self.settings = settings
        self.tokens = token_service
        self.users = user_service
        self.audit_service = audit_service

    async def _audit(self, session: AsyncSession, action: str, user_id, actor_id, meta, **kwargs):
        if self.audit_service:
            await self.audit_service.record(
                session, action, "User", user_id, actor_id, meta, **kwargs
            )

    async def _issue(self, session: AsyncSession, user: UserModel) -> AuthResult:
        """Mint both tokens and make the new refresh token the live lineage."""
        access_token = self.tokens.issue_access_token(user.id, user.role)
        refresh_token = self.tokens.issue_refresh_token(user.id)
        await self.users.store_refresh_session(session, user.id, fingerprint(refresh_token))
        return AuthResult(user=user, access_token=access_token, refresh_token=refresh_token)

    # ── Register / login ──

    async def register(
        self, session: AsyncSession, name: str, email: str, password: str, meta: RequestMeta,
    ) -> AuthResult:
        user = await self.users.create_user(session, name, email, password)
        result = await self._issue(session, user)
        await self._audit(
            session, "AUTH_REGISTER", user.id, user.id, meta,
            new_values={"name": user.name, "email": user.email, "role": user.role},
        )
        logger.info("Registered user %s", user.id)
        return result

    async def login(
        self, session: AsyncSession, email: str, password: str, meta: RequestMeta,
    ) -> AuthResult:
        if not email or not password:
            raise ValidationError("email and password are required")

        user = await self.users.get_by_email(session, email)
        if user is None or not verify_password(user.password_hash, password):
            await self._audit(
                session, "AUTH_LOGIN_FAILED", user.id if user else None,
                user.id if user else None, meta,
                new_values={"email": email}, error=INVALID_CREDENTIALS,
            )
            await session.commit()
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if user.is_blocked:
            await self._audit(
                session, "AUTH_LOGIN_FAILED", user.id, user.id, meta, error=BLOCKED,
            )
            await session.commit()
            raise ForbiddenError(BLOCKED)

        await self.users.touch_last_login(session, user)
        result = await self._issue(session, user)
        await self._audit(session, "AUTH_LOGIN", user.id, user.id, meta)
        return result

    # ── Refresh ──

    async def refresh(
        self, session: AsyncSession, token: str | None, meta: RequestMeta,
    ) -> RefreshResult:
        if not token:
            raise UnauthorizedError("No refresh token")

        try:
            claims = self.tokens.verify(token, TokenClass.REFRESH)
        except UnauthorizedError as exc:
            raise UnauthorizedError(INVALID_REFRESH) from exc

        user = await self.users.get_by_id(session, claims["id"])
        if user is None:
            raise UnauthorizedError(INVALID_REFRESH)
        if user.is_blocked:
            raise ForbiddenError(BLOCKED)

        stored = await self.users.get_refresh_session(session, user.id)
        presented = fingerprint(token)
        if stored is None or not hmac.compare_digest(stored.fingerprint, presented):
            await self.users.revoke_refresh_session(session, user.id)
            await self._audit(
                session, "AUTH_REFRESH_REUSE", user.id, user.id, meta,
                error=RefreshTokenReuseError().message,
            )
            await session.commit()
            logger.warning("Refresh token reuse detected for user %s", user.id)
            raise RefreshTokenReuseError()

        issued = await self._issue(session, user)
        await self._audit(session, "AUTH_REFRESH", user.id, user.id, meta)
        return RefreshResult(access_token=issued.access_token, refresh_token=issued.refresh_token)

    # ── Logout ──

    async def logout(
        self, session: AsyncSession, token: str | None, meta: RequestMeta,
    ) -> str | None:
        """Revoke the session named by ``token`` if it verifies.

        Returns the id of the user whose session was cleared, if any.
        """
        if not token:
            return None
        try:
            claims = self.tokens.verify(token, TokenClass.REFRESH)
        except IncidentHubError:
            return None

        user = await self.users.get_by_id(session, claims["id"])
        if user is None:
            return None
        await self.users.revoke_refresh_session(session, user.id)
        await self._audit(session, "AUTH_LOGOUT", user.id, user.id, meta)
        return user.id
