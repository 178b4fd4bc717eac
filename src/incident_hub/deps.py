"""Dependency injection singletons for Incident Hub."""

from incident_hub.common.config import get_settings
from incident_hub.common.database import DatabaseManager
from incident_hub.audit.service import AuditService
from incident_hub.auth.service import SessionService
from incident_hub.auth.tokens import TokenService
from incident_hub.incidents.service import IncidentService
from incident_hub.notifications.service import NotificationService
from incident_hub.realtime.events import EventBus
from incident_hub.realtime.manager import RoomManager
from incident_hub.users.service import UserService

_db: DatabaseManager | None = None
_tokens: TokenService | None = None
_audit: AuditService | None = None
_users: UserService | None = None
_sessions: SessionService | None = None
_notifications: NotificationService | None = None
_incidents: IncidentService | None = None
_event_bus: EventBus | None = None
_rooms: RoomManager | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
        _db.on_commit(get_event_bus().publish_committed)
    return _db


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus(maxsize=get_settings().realtime_queue_size)
    return _event_bus


def get_room_manager() -> RoomManager:
    global _rooms
    if _rooms is None:
        _rooms = RoomManager()
    return _rooms


def get_token_service() -> TokenService:
    global _tokens
    if _tokens is None:
        _tokens = TokenService(get_settings())
    return _tokens


def get_audit_service() -> AuditService:
    global _audit
    if _audit is None:
        _audit = AuditService(get_settings())
    return _audit


def get_user_service() -> UserService:
    global _users
    if _users is None:
        _users = UserService(get_settings(), audit_service=get_audit_service())
    return _users


def get_session_service() -> SessionService:
    global _sessions
    if _sessions is None:
        _sessions = SessionService(
            get_settings(),
            get_token_service(),
            get_user_service(),
            audit_service=get_audit_service(),
        )
    return _sessions


def get_notification_service() -> NotificationService:
    global _notifications
    if _notifications is None:
        _notifications = NotificationService(get_settings())
    return _notifications


def get_incident_service() -> IncidentService:
    global _incidents
    if _incidents is None:
        _incidents = IncidentService(
            get_settings(),
            get_user_service(),
            get_audit_service(),
            get_notification_service(),
        )
    return _incidents


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _tokens, _audit, _users, _sessions, _notifications, _incidents, _event_bus, _rooms
    _db = None
    _tokens = None
    _audit = None
    _users = None
    _sessions = None
    _notifications = None
    _incidents = None
    _event_bus = None
    _rooms = None
