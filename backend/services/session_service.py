from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from db.models import Plan, SessionLog, Task
from services.errors import NotFoundError
from services.ownership_policy import ResourceRef, require_access
from services.plan_service import insert_or_get, new_client_id
from services.schemas import SessionCreate
from utils.datetime_utils import as_utc_naive, start_of_day, start_of_next_day, utcnow


def _owned_sessions():
    return (
        select(SessionLog, Task.title)
        .join(Task, SessionLog.task_id == Task.id)
        .join(Plan, Task.plan_id == Plan.id)
    )


def list_sessions(
    db: Session,
    user_id: int,
    *,
    task_id: str | None = None,
    day: date | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[tuple[SessionLog, str]]:
    stmt = _owned_sessions().where(Plan.user_id == user_id)
    if task_id:
        stmt = stmt.where(SessionLog.task_id == task_id)
    if day is not None:
        stmt = stmt.where(SessionLog.timestamp >= start_of_day(day), SessionLog.timestamp < start_of_next_day(day))
    if start is not None:
        stmt = stmt.where(SessionLog.timestamp >= as_utc_naive(start))
    if end is not None:
        stmt = stmt.where(SessionLog.timestamp <= as_utc_naive(end))
    rows = db.execute(stmt.order_by(SessionLog.timestamp.desc())).all()
    return [(row, title) for row, title in rows]


def get_session(db: Session, user_id: int, session_id: str) -> tuple[SessionLog, str]:
    require_access(db, user_id, ResourceRef.session(session_id))
    row = db.execute(_owned_sessions().where(SessionLog.id == session_id)).first()
    if row is None:
        raise NotFoundError("Session not found")
    return row[0], row[1]


def create_session(
    db: Session,
    user_id: int,
    payload: SessionCreate,
    *,
    now: datetime | None = None,
) -> tuple[SessionLog, bool]:
    """Append a session log. Session logs are never edited; a repeated id returns the stored log."""
    require_access(db, user_id, ResourceRef.task(payload.task_id))
    stamp = now or utcnow()
    session_id = payload.id or new_client_id()
    row = SessionLog(
        id=session_id,
        task_id=payload.task_id,
        duration_minutes=payload.duration_minutes,
        type=payload.type,
        timestamp=as_utc_naive(payload.timestamp) or stamp,
        server_modified_at=stamp,
    )
    session_log, created = insert_or_get(db, row, SessionLog, session_id)
    if not created:
        require_access(db, user_id, ResourceRef.session(session_log.id))
    return session_log, created


def daily_stats(db: Session, user_id: int, day: date) -> dict:
    pomodoro_count, total_minutes = db.execute(
        select(
            func.count(case((SessionLog.type == "pomodoro", 1))),
            func.coalesce(func.sum(SessionLog.duration_minutes), 0),
        )
        .select_from(SessionLog)
        .join(Task, SessionLog.task_id == Task.id)
        .join(Plan, Task.plan_id == Plan.id)
        .where(
            Plan.user_id == user_id,
            SessionLog.timestamp >= start_of_day(day),
            SessionLog.timestamp < start_of_next_day(day),
        )
    ).one()
    total = int(total_minutes or 0)
    return {
        "date": day.isoformat(),
        "pomodoroCount": int(pomodoro_count or 0),
        "totalMinutes": total,
        "totalHours": round(total / 60, 2),
    }
