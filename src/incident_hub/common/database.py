"""Async database manager for Incident Hub (single-DB)."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from incident_hub.common.config import IncidentHubSettings, get_settings
from incident_hub.common.logging import get_logger
from incident_hub.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import incident_hub.users.models  # noqa: F401
import incident_hub.incidents.models  # noqa: F401
import incident_hub.notifications.models  # noqa: F401
import incident_hub.audit.models  # noqa: F401

logger = get_logger("database")

OUTBOX_KEY = "outbox"


def stage_after_commit(session: AsyncSession, item) -> None:
    """Queue ``item`` for the after-commit hook of the session's manager."""
    session.info.setdefault(OUTBOX_KEY, []).append(item)


class DatabaseManager:
    """Manages a single async database engine."""

    def __init__(self, settings: IncidentHubSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._after_commit: Callable[[list], None] | None = None

    def on_commit(self, hook: Callable[[list], None]) -> None:
        """Register the consumer of items staged with ``stage_after_commit``."""
        self._after_commit = hook

    async def init(self) -> None:
        url = self._settings.db_url
        self.engine = create_async_engine(url, echo=False)
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized. Call init() first")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                session.info.pop(OUTBOX_KEY, None)
                raise
            self._release_outbox(session)

    def _release_outbox(self, session: AsyncSession) -> None:
        staged = session.info.pop(OUTBOX_KEY, None)
        if not staged or self._after_commit is None:
            return
        try:
            self._after_commit(staged)
        except Exception:
            logger.exception("After-commit hook failed for %d item(s)", len(staged))

    async def create_all(self) -> None:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized. Call init() first")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
