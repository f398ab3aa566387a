from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Plan, SessionLog, Task, TaskInstance
from services.errors import ForbiddenError, NotFoundError
from services.instance_materializer import (
    InstanceState,
    is_occurrence,
    list_effective_states,
    update_instance,
)
from services.ownership_policy import ResourceRef, require_access
from services.plan_service import insert_or_get, new_client_id
from services.schemas import TASK_PATCH_FIELDS, InstancePatch, TaskCreate, TaskPatch, apply_values, patch_values
from utils.datetime_utils import utcnow

NON_NULL_TASK_FIELDS = ("title", "duration_minutes", "priority", "status", "actual_duration_minutes")


def get_task(db: Session, user_id: int, task_id: str) -> Task:
    require_access(db, user_id, ResourceRef.task(task_id))
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


def task_logged_minutes(db: Session, task_id: str) -> int:
    minutes = db.execute(
        select(func.coalesce(func.sum(SessionLog.duration_minutes), 0)).where(SessionLog.task_id == task_id)
    ).scalar_one()
    return int(minutes or 0)


def list_tasks_for_plan(db: Session, user_id: int, plan_id: str) -> list[tuple[Task, int]]:
    require_access(db, user_id, ResourceRef.plan(plan_id))
    rows = db.execute(
        select(Task, func.coalesce(func.sum(SessionLog.duration_minutes), 0))
        .outerjoin(SessionLog, SessionLog.task_id == Task.id)
        .where(Task.plan_id == plan_id)
        .group_by(Task.id)
        .order_by(Task.task_date, Task.start_time, Task.created_at)
    ).all()
    return [(task, int(minutes or 0)) for task, minutes in rows]


def list_tasks_for_date(db: Session, user_id: int, day: date) -> list[tuple[Task, InstanceState | None]]:
    """Everything scheduled on ``day`` across the user's plans.

    Recurring tasks come with their effective state for that day; one-off
    tasks carry their own state and pair with ``None``.
    """
    one_off = db.execute(
        select(Task)
        .join(Plan, Task.plan_id == Plan.id)
        .where(Plan.user_id == user_id, Task.is_recurring.is_(False), Task.task_date == day)
    ).scalars().all()
    recurring = [
        task
        for task in db.execute(
            select(Task)
            .join(Plan, Task.plan_id == Plan.id)
            .where(Plan.user_id == user_id, Task.is_recurring.is_(True))
        ).scalars().all()
        if is_occurrence(task, day)
    ]
    stored: dict[str, TaskInstance] = {}
    if recurring:
        rows = db.execute(
            select(TaskInstance).where(
                TaskInstance.task_id.in_([task.id for task in recurring]),
                TaskInstance.instance_date == day,
            )
        ).scalars().all()
        stored = {row.task_id: row for row in rows}

    items: list[tuple[Task, InstanceState | None]] = [(task, None) for task in one_off]
    for task in recurring:
        row = stored.get(task.id)
        items.append((task, InstanceState.from_row(row) if row is not None else InstanceState.defaults(task, day)))
    items.sort(key=lambda item: (item[0].start_time or "", item[0].created_at or datetime.min))
    return items


def create_task(db: Session, user_id: int, payload: TaskCreate, *, now: datetime | None = None) -> tuple[Task, bool]:
    require_access(db, user_id, ResourceRef.plan(payload.plan_id))
    if not payload.is_recurring and payload.task_date is None:
        raise ValueError("taskDate is required for non-recurring task")
    if payload.start_date and payload.end_date and payload.end_date < payload.start_date:
        raise ValueError("endDate must not be before startDate")

    stamp = now or utcnow()
    task_id = payload.id or new_client_id()
    row = Task(
        id=task_id,
        plan_id=payload.plan_id,
        title=payload.title.strip(),
        description=payload.description,
        duration_minutes=payload.duration_minutes,
        task_date=payload.task_date if not payload.is_recurring else None,
        start_time=payload.start_time,
        is_recurring=payload.is_recurring,
        repeat_days=payload.repeat_days if payload.is_recurring else None,
        start_date=payload.start_date,
        end_date=payload.end_date,
        priority=payload.priority,
        status="not_started",
        actual_duration_minutes=0,
        created_at=stamp,
        updated_at=stamp,
        server_modified_at=stamp,
    )
    task, created = insert_or_get(db, row, Task, task_id)
    if not created:
        require_access(db, user_id, ResourceRef.task(task.id))
        if task.plan_id != payload.plan_id:
            raise ForbiddenError("Task id already belongs to another plan")
    return task, created


def update_task(
    db: Session,
    user_id: int,
    task_id: str,
    patch: TaskPatch,
    *,
    now: datetime | None = None,
) -> Task:
    """Update the task template (or the one-off task itself)."""
    task = get_task(db, user_id, task_id)
    values = patch_values(patch, TASK_PATCH_FIELDS)
    for name in NON_NULL_TASK_FIELDS:
        if name in values and values[name] is None:
            raise ValueError(f"{name} cannot be null")
    if "title" in values and not values["title"].strip():
        raise ValueError("Title cannot be empty")
    if not task.is_recurring and "task_date" in values and values["task_date"] is None:
        raise ValueError("taskDate is required for non-recurring task")

    stamp = now or utcnow()
    was_completed = task.status == "completed"
    if apply_values(task, values, TASK_PATCH_FIELDS):
        if task.status == "completed" and not was_completed:
            task.completed_at = stamp
        task.updated_at = stamp
        task.server_modified_at = stamp
    db.flush()
    return task


def update_task_instance(
    db: Session,
    user_id: int,
    task_id: str,
    day: date,
    patch: InstancePatch,
    *,
    now: datetime | None = None,
) -> tuple[Task, InstanceState]:
    task = get_task(db, user_id, task_id)
    state = update_instance(db, task, day, patch, now=now)
    return task, state


def list_task_instances(
    db: Session,
    user_id: int,
    task_id: str,
    start: date,
    end: date,
    *,
    max_days: int,
) -> tuple[Task, list[InstanceState]]:
    task = get_task(db, user_id, task_id)
    return task, list_effective_states(db, task, start, end, max_days=max_days)


def delete_task(db: Session, user_id: int, task_id: str) -> None:
    task = get_task(db, user_id, task_id)
    db.delete(task)
    db.flush()
