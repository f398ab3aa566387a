from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import Plan, SessionLog, Task
from services.errors import ForbiddenError, NotFoundError
from services.ownership_policy import ResourceRef, require_access
from services.schemas import PLAN_PATCH_FIELDS, PlanCreate, PlanPatch, apply_values, patch_values
from utils.datetime_utils import utcnow


def new_client_id() -> str:
    return str(uuid.uuid4())


def insert_or_get(db: Session, row, model, row_id: str):
    """Insert ``row`` unless ``row_id`` already exists; return ``(row, created)``.

    The primary key decides between concurrent creators. The loser's
    savepoint is rolled back and it reads the winner's row instead.
    """
    existing = db.get(model, row_id)
    if existing is not None:
        return existing, False
    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except IntegrityError:
        existing = db.get(model, row_id)
        if existing is None:
            raise
        return existing, False
    return row, True


def _logged_minutes_column():
    return func.coalesce(func.sum(SessionLog.duration_minutes), 0)


def _check_bounds(start, end) -> None:
    if start is not None and end is not None and end < start:
        raise ValueError("endDate must not be before startDate")


def list_plans(db: Session, user_id: int) -> list[tuple[Plan, int]]:
    rows = db.execute(
        select(Plan, _logged_minutes_column())
        .outerjoin(Task, Task.plan_id == Plan.id)
        .outerjoin(SessionLog, SessionLog.task_id == Task.id)
        .where(Plan.user_id == user_id)
        .group_by(Plan.id)
        .order_by(Plan.display_order, Plan.created_at.desc())
    ).all()
    return [(plan, int(minutes or 0)) for plan, minutes in rows]


def get_plan(db: Session, user_id: int, plan_id: str) -> Plan:
    require_access(db, user_id, ResourceRef.plan(plan_id))
    plan = db.get(Plan, plan_id)
    if plan is None:
        raise NotFoundError("Plan not found")
    return plan


def plan_logged_minutes(db: Session, plan_id: str) -> int:
    minutes = db.execute(
        select(_logged_minutes_column())
        .select_from(SessionLog)
        .join(Task, SessionLog.task_id == Task.id)
        .where(Task.plan_id == plan_id)
    ).scalar_one()
    return int(minutes or 0)


def create_plan(db: Session, user_id: int, payload: PlanCreate, *, now: datetime | None = None) -> tuple[Plan, bool]:
    """Create a plan; replaying a create with the same client id returns the stored plan."""
    _check_bounds(payload.start_date, payload.end_date)
    stamp = now or utcnow()
    plan_id = payload.id or new_client_id()
    row = Plan(
        id=plan_id,
        user_id=user_id,
        title=payload.title,
        description=payload.description,
        target_hours=payload.target_hours,
        start_date=payload.start_date,
        end_date=payload.end_date,
        priority=payload.priority,
        status=payload.status,
        color=payload.color,
        display_order=payload.display_order,
        created_at=stamp,
        updated_at=stamp,
        server_modified_at=stamp,
    )
    plan, created = insert_or_get(db, row, Plan, plan_id)
    if int(plan.user_id) != int(user_id):
        raise ForbiddenError("Not authorized")
    return plan, created


def update_plan(
    db: Session,
    user_id: int,
    plan_id: str,
    patch: PlanPatch,
    *,
    now: datetime | None = None,
) -> Plan:
    plan = get_plan(db, user_id, plan_id)
    values = patch_values(patch, PLAN_PATCH_FIELDS)
    if "title" in values and not (values["title"] or "").strip():
        raise ValueError("Title cannot be empty")
    _check_bounds(values.get("start_date", plan.start_date), values.get("end_date", plan.end_date))
    for required in ("priority", "status", "target_hours", "display_order"):
        if required in values and values[required] is None:
            raise ValueError(f"{required} cannot be null")
    if apply_values(plan, values, PLAN_PATCH_FIELDS):
        stamp = now or utcnow()
        plan.updated_at = stamp
        plan.server_modified_at = stamp
    db.flush()
    return plan


def delete_plan(db: Session, user_id: int, plan_id: str) -> None:
    plan = get_plan(db, user_id, plan_id)
    db.delete(plan)
    db.flush()
