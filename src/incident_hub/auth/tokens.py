"""Access/refresh token issuance and verification.

Access tokens carry ``{id, role}`` and live for a configurable number of
minutes. Refresh tokens carry ``{id}`` plus a random ``jti`` and live for a
fixed seven days. Each class is signed with its own secret, so a refresh
token can never pass as an access token or the other way round.
"""

import enum
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.exceptions import InvalidTokenError, TokenExpiredError

REFRESH_TOKEN_TTL = timedelta(days=7)


class TokenClass(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


def fingerprint(token: str) -> str:
    """SHA-256 hex digest of a token, for storage and comparison only."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenService:
    """Signs and verifies the two token classes."""

    def __init__(self, settings: IncidentHubSettings):
        self.settings = settings

    def _secret(self, token_class: TokenClass) -> str:
        if token_class is TokenClass.ACCESS:
            return self.settings.jwt_secret
        return self.settings.jwt_refresh_secret

    def issue_access_token(self, user_id: str, role: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "id": user_id,
            "role": role,
            "type": TokenClass.ACCESS.value,
            "iat": now,
            "exp": now + timedelta(minutes=self.settings.access_token_expire_minutes),
        }
        return jwt.encode(claims, self._secret(TokenClass.ACCESS), algorithm=self.settings.jwt_algorithm)

    def issue_refresh_token(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "id": user_id,
            "type": TokenClass.REFRESH.value,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + REFRESH_TOKEN_TTL,
        }
        return jwt.encode(claims, self._secret(TokenClass.REFRESH), algorithm=self.settings.jwt_algorithm)

    def verify(self, token: str, token_class: TokenClass) -> dict[str, Any]:
        """Decode ``token`` against the secret of ``token_class``.

        Raises TokenExpiredError past expiry, InvalidTokenError otherwise.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret(token_class),
                algorithms=[self.settings.jwt_algorithm],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError() from exc

        if claims.get("type") != token_class.value or not claims.get("id"):
            raise InvalidTokenError()
        if token_class is TokenClass.ACCESS and not claims.get("role"):
            raise InvalidTokenError()
        return claims
