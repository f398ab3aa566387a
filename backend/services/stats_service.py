from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Plan, Task

FINISHED_STATUSES = ("completed", "partially_completed")


def dashboard_stats(db: Session, user_id: int) -> dict:
    """Task counts per status, and planned vs actual minutes of finished tasks."""
    status_rows = db.execute(
        select(Task.status, func.count())
        .join(Plan, Task.plan_id == Plan.id)
        .where(Plan.user_id == user_id)
        .group_by(Task.status)
    ).all()
    planned, completed = db.execute(
        select(
            func.coalesce(func.sum(Task.duration_minutes), 0),
            func.coalesce(func.sum(Task.actual_duration_minutes), 0),
        )
        .join(Plan, Task.plan_id == Plan.id)
        .where(Plan.user_id == user_id, Task.status.in_(FINISHED_STATUSES))
    ).one()
    return {
        "taskCounts": {status: int(count) for status, count in status_rows},
        "timeStats": {
            "plannedMinutes": int(planned or 0),
            "completedMinutes": int(completed or 0),
        },
    }
