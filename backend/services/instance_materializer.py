"""Occurrence dates and lazily materialized per-date state of recurring tasks.

A recurring task is a template. For any occurrence date the effective state
is either the stored ``TaskInstance`` row for ``(task, date)`` or, when no
row exists, the template defaults. Rows are only created by the first write
for that date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Task, TaskInstance
from db.upsert import insert_ignoring_conflict
from services.errors import InstanceError
from services.schemas import INSTANCE_PATCH_FIELDS, InstancePatch, apply_values, patch_values
from utils.datetime_utils import utcnow

EVERY_DAY_MASK = 0b1111111
DEFAULT_STATUS = "not_started"
COMPLETED_STATUS = "completed"
MAX_RANGE_DAYS = 366


def weekday_bit(d: date) -> int:
    """Bit for ``d`` in a weekday mask where Sunday is bit 0."""
    return 1 << ((d.weekday() + 1) % 7)


def mask_from_weekdays(days: list[int]) -> int:
    """Build a mask from day numbers, Sunday = 0 ... Saturday = 6."""
    mask = 0
    for day in days:
        if not 0 <= int(day) <= 6:
            raise ValueError(f"Weekday out of range: {day}")
        mask |= 1 << int(day)
    return mask


def occurrence_dates(range_start: date, range_end: date, weekday_mask: int | None) -> Iterator[date]:
    """Ascending dates in ``[range_start, range_end]`` whose weekday bit is set.

    ``None`` means every day. Each call returns a fresh generator.
    """
    mask = EVERY_DAY_MASK if weekday_mask is None else int(weekday_mask) & EVERY_DAY_MASK
    if mask == 0 or range_end < range_start:
        return
    current = range_start
    one_day = timedelta(days=1)
    while current <= range_end:
        if mask & weekday_bit(current):
            yield current
        current += one_day


def effective_range(task: Task) -> tuple[date | None, date | None]:
    """Task bounds, falling back to the owning plan's schedule bounds."""
    plan = task.plan
    start = task.start_date or (plan.start_date if plan is not None else None)
    end = task.end_date or (plan.end_date if plan is not None else None)
    return start, end


def is_occurrence(task: Task, d: date) -> bool:
    if not task.is_recurring:
        return task.task_date == d
    start, end = effective_range(task)
    if start is not None and d < start:
        return False
    if end is not None and d > end:
        return False
    mask = EVERY_DAY_MASK if task.repeat_days is None else int(task.repeat_days)
    return bool(mask & weekday_bit(d))


def task_occurrence_dates(task: Task, range_start: date, range_end: date) -> Iterator[date]:
    """Occurrences of ``task`` inside the requested window, clamped to its own range."""
    if not task.is_recurring:
        if task.task_date is not None and range_start <= task.task_date <= range_end:
            yield task.task_date
        return
    start, end = effective_range(task)
    lo = max(range_start, start) if start is not None else range_start
    hi = min(range_end, end) if end is not None else range_end
    yield from occurrence_dates(lo, hi, task.repeat_days)


@dataclass
class InstanceState:
    task_id: str
    instance_date: date
    status: str = DEFAULT_STATUS
    actual_duration_minutes: int = 0
    completed_at: datetime | None = None
    notes: str | None = None
    materialized: bool = False

    @classmethod
    def defaults(cls, task: Task, d: date) -> "InstanceState":
        return cls(task_id=task.id, instance_date=d)

    @classmethod
    def from_row(cls, row: TaskInstance) -> "InstanceState":
        return cls(
            task_id=row.task_id,
            instance_date=row.instance_date,
            status=row.status or DEFAULT_STATUS,
            actual_duration_minutes=int(row.actual_duration_minutes or 0),
            completed_at=row.completed_at,
            notes=row.notes,
            materialized=True,
        )


def _require_recurring(task: Task) -> None:
    if not task.is_recurring:
        raise InstanceError("Task is not recurring; update the task itself")


def find_instance(db: Session, task_id: str, d: date) -> TaskInstance | None:
    return db.execute(
        select(TaskInstance).where(TaskInstance.task_id == task_id, TaskInstance.instance_date == d)
    ).scalar_one_or_none()


def get_effective_state(db: Session, task: Task, d: date) -> InstanceState:
    """Stored state for ``(task, d)`` or template defaults. Never writes."""
    _require_recurring(task)
    row = find_instance(db, task.id, d)
    if row is None:
        return InstanceState.defaults(task, d)
    return InstanceState.from_row(row)


def list_effective_states(
    db: Session,
    task: Task,
    range_start: date,
    range_end: date,
    *,
    max_days: int = MAX_RANGE_DAYS,
) -> list[InstanceState]:
    """Calendar view: one effective state per occurrence date in the window."""
    _require_recurring(task)
    if range_end < range_start:
        raise InstanceError("end must not be before start")
    if (range_end - range_start).days + 1 > max_days:
        raise InstanceError(f"Date range is limited to {max_days} days")
    rows = db.execute(
        select(TaskInstance).where(
            TaskInstance.task_id == task.id,
            TaskInstance.instance_date >= range_start,
            TaskInstance.instance_date <= range_end,
        )
    ).scalars().all()
    by_date = {row.instance_date: row for row in rows}
    states: list[InstanceState] = []
    for d in task_occurrence_dates(task, range_start, range_end):
        row = by_date.get(d)
        states.append(InstanceState.from_row(row) if row is not None else InstanceState.defaults(task, d))
    return states


def materialize_instance(db: Session, task: Task, d: date, *, now: datetime | None = None) -> TaskInstance:
    """Return the row for ``(task, d)``, creating it with defaults if absent.

    Safe under concurrent creators: the unique ``(task_id, instance_date)``
    constraint decides, and the loser reads the winner's row.
    """
    existing = find_instance(db, task.id, d)
    if existing is not None:
        return existing

    stamp = now or utcnow()
    values = {
        "task_id": task.id,
        "instance_date": d,
        "status": DEFAULT_STATUS,
        "actual_duration_minutes": 0,
        "created_at": stamp,
        "server_modified_at": stamp,
    }
    insert_ignoring_conflict(db, TaskInstance, values, ("task_id", "instance_date"))

    row = find_instance(db, task.id, d)
    if row is None:
        raise InstanceError(f"Could not materialize instance for {d.isoformat()}")
    return row


def update_instance(
    db: Session,
    task: Task,
    d: date,
    patch: InstancePatch | dict,
    *,
    now: datetime | None = None,
) -> InstanceState:
    """Apply ``patch`` to the ``(task, d)`` instance, materializing it on first write.

    Reaching ``completed`` stamps ``completed_at``; moving away from
    ``completed`` keeps the previous stamp until the next completion.
    """
    _require_recurring(task)
    if not is_occurrence(task, d):
        raise InstanceError(f"{d.isoformat()} is not an occurrence date of this task")
    if isinstance(patch, dict):
        patch = InstancePatch.model_validate(patch)
    values = patch_values(patch, INSTANCE_PATCH_FIELDS)
    if "status" in values and values["status"] is None:
        raise InstanceError("status cannot be null")
    if "actual_duration_minutes" in values and values["actual_duration_minutes"] is None:
        values["actual_duration_minutes"] = 0

    stamp = now or utcnow()
    row = materialize_instance(db, task, d, now=stamp)
    apply_values(row, values, INSTANCE_PATCH_FIELDS)
    if row.status == COMPLETED_STATUS and (values.get("status") == COMPLETED_STATUS or row.completed_at is None):
        row.completed_at = stamp
    row.server_modified_at = stamp
    db.flush()
    return InstanceState.from_row(row)
