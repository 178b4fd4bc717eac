"""Authentication API router: register, login, refresh, logout.

The refresh token only ever travels in an httpOnly cookie.
"""

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from incident_hub.audit.context import request_meta
from incident_hub.auth.schemas import (
    AuthResponse,
    AuthUser,
    LoginRequest,
    RefreshResponse,
    RegisterRequest,
)
from incident_hub.auth.service import AuthResult
from incident_hub.auth.tokens import REFRESH_TOKEN_TTL
from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.exceptions import RefreshTokenReuseError
from incident_hub.common.logging import get_logger
from incident_hub.common.schemas import SuccessResponse

logger = get_logger("auth")

router = APIRouter()


def _get_service():
    from incident_hub.deps import get_session_service
    return get_session_service()


def _get_db():
    from incident_hub.deps import get_db
    return get_db()


def set_refresh_cookie(response: Response, token: str, settings: IncidentHubSettings) -> None:
    response.set_cookie(
        settings.refresh_cookie_name,
        token,
        max_age=int(REFRESH_TOKEN_TTL.total_seconds()),
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def clear_refresh_cookie(response: Response, settings: IncidentHubSettings) -> None:
    response.delete_cookie(
        settings.refresh_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        user=AuthUser.model_validate(result.user),
        access_token=result.access_token,
    )


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
async def register(body: RegisterRequest, request: Request, response: Response):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.register(
            session, body.name, body.email, body.password, request_meta(request),
        )
        payload = _auth_response(result)
    set_refresh_cookie(response, result.refresh_token, svc.settings)
    return payload


@router.post("/auth/login", response_model=AuthResponse)
async def login(body: LoginRequest, request: Request, response: Response):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.login(session, body.email, body.password, request_meta(request))
        payload = _auth_response(result)
    set_refresh_cookie(response, result.refresh_token, svc.settings)
    return payload


@router.post("/auth/refresh", response_model=RefreshResponse)
async def refresh(request: Request, response: Response):
    svc = _get_service()
    db = _get_db()
    token = request.cookies.get(svc.settings.refresh_cookie_name)
    try:
        async with db.get_session() as session:
            result = await svc.refresh(session, token, request_meta(request))
    except RefreshTokenReuseError as e:
        reply = JSONResponse(status_code=e.status_code, content={"success": False, "message": e.message})
        clear_refresh_cookie(reply, svc.settings)
        return reply
    set_refresh_cookie(response, result.refresh_token, svc.settings)
    return RefreshResponse(access_token=result.access_token)


@router.post("/auth/logout", response_model=SuccessResponse)
async def logout(request: Request, response: Response):
    svc = _get_service()
    db = _get_db()
    token = request.cookies.get(svc.settings.refresh_cookie_name)
    try:
        async with db.get_session() as session:
            await svc.logout(session, token, request_meta(request))
    except Exception:
        logger.exception("Logout failed, clearing cookie anyway")
    clear_refresh_cookie(response, svc.settings)
    return SuccessResponse()
