"""FastAPI application factory for Incident Hub."""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from incident_hub.common.config import get_settings
from incident_hub.common.exceptions import IncidentHubError
from incident_hub.common.logging import get_logger, setup_logging
from incident_hub.common.schemas import HealthResponse

logger = get_logger("app")


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()) if p not in ("body", "query", "path"))
        parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(settings.log_level)
        Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
        from incident_hub.deps import get_db, get_event_bus, get_room_manager
        db = get_db()
        await db.init()
        await db.create_all()
        bus = get_event_bus()
        bus.start(get_room_manager())
        logger.info("Incident Hub started (%s)", settings.environment)
        yield
        # Shutdown
        await bus.stop()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error envelope ──

    @app.exception_handler(IncidentHubError)
    async def handle_domain_error(request: Request, exc: IncidentHubError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": _validation_message(exc)},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        user = getattr(request.state, "user", None)
        if user is not None:
            from incident_hub.audit.context import request_meta
            from incident_hub.deps import get_audit_service, get_db
            try:
                async with get_db().get_session() as session:
                    await get_audit_service().record(
                        session, "SERVER_ERROR", "System", None, user.id,
                        request_meta(request), error=exc,
                    )
            except Exception:
                logger.exception("Could not record SERVER_ERROR audit entry")
        return JSONResponse(status_code=500, content={"success": False, "error": "Server Error"})

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from incident_hub.auth.router import router as auth_router
    from incident_hub.incidents.router import router as incidents_router
    from incident_hub.notifications.router import router as notifications_router
    from incident_hub.audit.router import router as audit_router
    from incident_hub.users.router import router as users_router
    from incident_hub.realtime.router import router as realtime_router

    prefix = settings.api_prefix
    app.include_router(auth_router, prefix=prefix, tags=["auth"])
    app.include_router(incidents_router, prefix=prefix, tags=["incidents"])
    app.include_router(notifications_router, prefix=prefix, tags=["notifications"])
    app.include_router(audit_router, prefix=prefix, tags=["audit"])
    app.include_router(users_router, prefix=prefix, tags=["users"])
    app.include_router(realtime_router, tags=["realtime"])

    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")

    return app
