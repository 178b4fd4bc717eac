"""Declarative rules for who may change which incident fields, and how
status changes are classified for audit and notification purposes.
"""

import enum
from dataclasses import dataclass

from incident_hub.incidents.models import Status
from incident_hub.notifications.models import NotificationType
from incident_hub.users.models import Role

OWNER_FIELDS: frozenset[str] = frozenset({"title", "description", "category", "priority"})
TRIAGE_FIELDS: frozenset[str] = OWNER_FIELDS | {"status", "assigned_to", "resolution_notes"}


class Relation(str, enum.Enum):
    OWNER = "owner"
    OTHER = "other"


class Phase(str, enum.Enum):
    """Only whether an incident is still untouched matters to edit rights."""

    OPEN = "open"
    PROCESSED = "processed"


@dataclass(frozen=True)
class EditRule:
    fields: frozenset[str]
    denial: str | None = None


_DENIED_OTHER = EditRule(frozenset(), "Access denied")
_DENIED_PROCESSED = EditRule(frozenset(), "Cannot edit incident after it is processed")

EDIT_RULES: dict[tuple[Role, Relation, Phase], EditRule] = {
    (Role.USER, Relation.OWNER, Phase.OPEN): EditRule(OWNER_FIELDS),
    (Role.USER, Relation.OWNER, Phase.PROCESSED): _DENIED_PROCESSED,
    (Role.USER, Relation.OTHER, Phase.OPEN): _DENIED_OTHER,
    (Role.USER, Relation.OTHER, Phase.PROCESSED): _DENIED_OTHER,
    **{
        (role, relation, phase): EditRule(TRIAGE_FIELDS)
        for role in (Role.ADMIN, Role.SUPER_ADMIN)
        for relation in Relation
        for phase in Phase
    },
}


def edit_rule(role: Role | str, is_owner: bool, status: Status | str) -> EditRule:
    phase = Phase.OPEN if Status(status) is Status.OPEN else Phase.PROCESSED
    relation = Relation.OWNER if is_owner else Relation.OTHER
    return EDIT_RULES[(Role(role), relation, phase)]


class Transition(str, enum.Enum):
    UPDATE = "UPDATE"
    RESOLVE = "RESOLVE"
    INPROGRESS = "INPROGRESS"
    OPEN = "OPEN"
    CLOSE = "CLOSE"


_TRANSITION_BY_TARGET = {
    Status.RESOLVED: Transition.RESOLVE,
    Status.IN_PROGRESS: Transition.INPROGRESS,
    Status.OPEN: Transition.OPEN,
    Status.CLOSED: Transition.CLOSE,
}


def classify(old_status: Status | str, new_status: Status | str) -> Transition:
    """UPDATE when the status is unchanged, otherwise named by the new status."""
    old, new = Status(old_status), Status(new_status)
    if old is new:
        return Transition.UPDATE
    return _TRANSITION_BY_TARGET[new]


@dataclass(frozen=True)
class NoticeTemplate:
    notification_type: NotificationType
    title: str
    verb: str


NOTICE_TEMPLATES: dict[Transition, NoticeTemplate] = {
    Transition.UPDATE: NoticeTemplate(NotificationType.INCIDENT_UPDATED, "Incident Updated", "updated"),
    Transition.RESOLVE: NoticeTemplate(NotificationType.INCIDENT_RESOLVED, "Incident Resolved", "resolved"),
    Transition.INPROGRESS: NoticeTemplate(
        NotificationType.INCIDENT_IN_PROGRESS, "Incident In Progress", "moved to In Progress"
    ),
    Transition.OPEN: NoticeTemplate(NotificationType.INCIDENT_REOPENED, "Incident Reopened", "reopened"),
    Transition.CLOSE: NoticeTemplate(NotificationType.INCIDENT_CLOSED, "Incident Closed", "closed"),
}
