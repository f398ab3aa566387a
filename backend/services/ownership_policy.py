"""Single authorization rule for every user-owned resource.

Plans, notes and habits carry ``user_id`` directly; tasks, task instances
and session logs are owned through ``Task.plan_id -> Plan.user_id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Habit, Note, Plan, SessionLog, Task
from services.errors import ForbiddenError, NotFoundError

RESOURCE_KINDS = ("plan", "task", "session", "note", "habit")


class AccessDecision(str, Enum):
    ALLOWED = "allowed"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class ResourceRef:
    kind: str
    id: str

    def __post_init__(self) -> None:
        if self.kind not in RESOURCE_KINDS:
            raise ValueError(f"Unknown resource kind: {self.kind}")

    @classmethod
    def plan(cls, plan_id: str) -> "ResourceRef":
        return cls("plan", str(plan_id))

    @classmethod
    def task(cls, task_id: str) -> "ResourceRef":
        return cls("task", str(task_id))

    @classmethod
    def session(cls, session_id: str) -> "ResourceRef":
        return cls("session", str(session_id))

    @classmethod
    def note(cls, note_id: str) -> "ResourceRef":
        return cls("note", str(note_id))

    @classmethod
    def habit(cls, habit_id: str) -> "ResourceRef":
        return cls("habit", str(habit_id))


def owner_of(db: Session, ref: ResourceRef) -> int | None:
    """Return the owning user id, or None when the resource does not exist."""
    if ref.kind == "plan":
        stmt = select(Plan.user_id).where(Plan.id == ref.id)
    elif ref.kind == "task":
        stmt = select(Plan.user_id).join(Task, Task.plan_id == Plan.id).where(Task.id == ref.id)
    elif ref.kind == "note":
        stmt = select(Note.user_id).where(Note.id == ref.id)
    elif ref.kind == "habit":
        stmt = select(Habit.user_id).where(Habit.id == ref.id)
    else:
        stmt = (
            select(Plan.user_id)
            .join(Task, Task.plan_id == Plan.id)
            .join(SessionLog, SessionLog.task_id == Task.id)
            .where(SessionLog.id == ref.id)
        )
    owner = db.execute(stmt).scalar_one_or_none()
    return int(owner) if owner is not None else None


def check_access(db: Session, user_id: int, ref: ResourceRef) -> AccessDecision:
    owner = owner_of(db, ref)
    if owner is None:
        return AccessDecision.NOT_FOUND
    if owner != int(user_id):
        return AccessDecision.FORBIDDEN
    return AccessDecision.ALLOWED


def can_access(db: Session, user_id: int, ref: ResourceRef) -> bool:
    return check_access(db, user_id, ref) is AccessDecision.ALLOWED


def require_access(db: Session, user_id: int, ref: ResourceRef) -> None:
    decision = check_access(db, user_id, ref)
    if decision is AccessDecision.NOT_FOUND:
        raise NotFoundError(f"{ref.kind.capitalize()} not found")
    if decision is AccessDecision.FORBIDDEN:
        raise ForbiddenError("Not authorized")
