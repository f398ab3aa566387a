"""Habits and their daily check-ins.

A habit is scheduled on the weekdays of its ``target_days`` mask (the same
Sunday-first bit layout recurring tasks use). A check-in is one row per
``(habit, date)``; checking in twice for the same date updates that row.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Habit, HabitCheckIn
from db.upsert import insert_ignoring_conflict
from services.errors import ForbiddenError, NotFoundError
from services.instance_materializer import weekday_bit
from services.ownership_policy import ResourceRef, require_access
from services.plan_service import insert_or_get, new_client_id
from services.schemas import HABIT_PATCH_FIELDS, CheckInRequest, HabitCreate, HabitPatch, apply_values, patch_values
from utils.datetime_utils import today_utc, utcnow

DEFAULT_HABIT_ICON = "✓"
DEFAULT_HABIT_COLOR = "#4CAF50"


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= int(month) <= 12:
        raise ValueError(f"month must be 1..12, got {month}")
    last_day = calendar.monthrange(int(year), int(month))[1]
    return date(int(year), int(month), 1), date(int(year), int(month), last_day)


def is_scheduled(habit: Habit, day: date) -> bool:
    return bool(int(habit.target_days or 0) & weekday_bit(day))


def get_habit(db: Session, user_id: int, habit_id: str) -> Habit:
    require_access(db, user_id, ResourceRef.habit(habit_id))
    habit = db.get(Habit, habit_id)
    if habit is None:
        raise NotFoundError("Habit not found")
    return habit


def list_habits(db: Session, user_id: int) -> list[Habit]:
    return list(
        db.execute(
            select(Habit)
            .where(Habit.user_id == user_id, Habit.is_active.is_(True))
            .order_by(Habit.created_at.desc())
        ).scalars().all()
    )


def list_habits_for_day(db: Session, user_id: int, day: date) -> list[tuple[Habit, bool]]:
    """Active habits scheduled on ``day`` with whether each is checked in."""
    rows = db.execute(
        select(Habit, HabitCheckIn.id)
        .outerjoin(HabitCheckIn, (HabitCheckIn.habit_id == Habit.id) & (HabitCheckIn.check_date == day))
        .where(Habit.user_id == user_id, Habit.is_active.is_(True))
        .order_by(Habit.created_at)
    ).all()
    return [(habit, check_in_id is not None) for habit, check_in_id in rows if is_scheduled(habit, day)]


def create_habit(db: Session, user_id: int, payload: HabitCreate, *, now: datetime | None = None) -> tuple[Habit, bool]:
    stamp = now or utcnow()
    habit_id = payload.id or new_client_id()
    row = Habit(
        id=habit_id,
        user_id=user_id,
        name=payload.name.strip(),
        description=payload.description,
        icon=payload.icon or DEFAULT_HABIT_ICON,
        color=payload.color or DEFAULT_HABIT_COLOR,
        target_days=payload.target_days,
        reminder_time=payload.reminder_time,
        is_active=True,
        created_at=stamp,
        updated_at=stamp,
    )
    habit, created = insert_or_get(db, row, Habit, habit_id)
    if int(habit.user_id) != int(user_id):
        raise ForbiddenError("Not authorized")
    return habit, created


def update_habit(db: Session, user_id: int, habit_id: str, patch: HabitPatch, *, now: datetime | None = None) -> Habit:
    habit = get_habit(db, user_id, habit_id)
    values = patch_values(patch, HABIT_PATCH_FIELDS)
    for name in ("name", "icon", "color", "target_days", "is_active"):
        if name in values and values[name] is None:
            raise ValueError(f"{name} cannot be null")
    if "name" in values and not values["name"].strip():
        raise ValueError("name cannot be empty")
    if apply_values(habit, values, HABIT_PATCH_FIELDS):
        habit.updated_at = now or utcnow()
    db.flush()
    return habit


def delete_habit(db: Session, user_id: int, habit_id: str) -> None:
    habit = get_habit(db, user_id, habit_id)
    db.delete(habit)
    db.flush()


def _find_check_in(db: Session, habit_id: str, day: date) -> HabitCheckIn | None:
    return db.execute(
        select(HabitCheckIn).where(HabitCheckIn.habit_id == habit_id, HabitCheckIn.check_date == day)
    ).scalar_one_or_none()


def check_in(
    db: Session,
    user_id: int,
    habit_id: str,
    request: CheckInRequest,
    *,
    today: date | None = None,
) -> tuple[HabitCheckIn, bool]:
    """Mark ``habit`` done for a date; repeating it keeps one row.

    Notes on a repeat replace the stored notes only when given.
    """
    habit = get_habit(db, user_id, habit_id)
    day = request.check_date or today or today_utc()
    created = False
    if _find_check_in(db, habit.id, day) is None:
        created = insert_ignoring_conflict(
            db,
            HabitCheckIn,
            {
                "habit_id": habit.id,
                "check_date": day,
                "is_completed": True,
                "notes": request.notes,
                "created_at": utcnow(),
            },
            ("habit_id", "check_date"),
        )
    row = _find_check_in(db, habit.id, day)
    row.is_completed = True
    if not created and request.notes is not None:
        row.notes = request.notes
    db.flush()
    return row, created


def uncheck(db: Session, user_id: int, habit_id: str, day: date | None = None) -> bool:
    habit = get_habit(db, user_id, habit_id)
    row = _find_check_in(db, habit.id, day or today_utc())
    if row is None:
        return False
    db.delete(row)
    db.flush()
    return True


def current_streak(check_dates: set[date], today: date) -> int:
    """Consecutive checked-in days ending on ``today``; 0 when today is unchecked."""
    streak = 0
    day = today
    while day in check_dates:
        streak += 1
        day -= timedelta(days=1)
    return streak


def habit_stats(db: Session, habit: Habit, *, today: date | None = None) -> dict:
    today = today or today_utc()
    month_start, month_end = month_bounds(today.year, today.month)
    total = db.execute(
        select(func.count()).select_from(HabitCheckIn).where(HabitCheckIn.habit_id == habit.id)
    ).scalar_one()
    monthly = db.execute(
        select(func.count())
        .select_from(HabitCheckIn)
        .where(
            HabitCheckIn.habit_id == habit.id,
            HabitCheckIn.check_date >= month_start,
            HabitCheckIn.check_date <= month_end,
        )
    ).scalar_one()
    recent = db.execute(
        select(HabitCheckIn.check_date).where(HabitCheckIn.habit_id == habit.id, HabitCheckIn.check_date <= today)
    ).scalars().all()
    return {
        "totalCheckIns": int(total or 0),
        "monthlyCheckIns": int(monthly or 0),
        "currentStreak": current_streak(set(recent), today),
    }


def month_check_ins(
    db: Session,
    user_id: int,
    habit_id: str,
    year: int,
    month: int,
) -> tuple[Habit, list[HabitCheckIn]]:
    habit = get_habit(db, user_id, habit_id)
    start, end = month_bounds(year, month)
    rows = db.execute(
        select(HabitCheckIn)
        .where(HabitCheckIn.habit_id == habit.id, HabitCheckIn.check_date >= start, HabitCheckIn.check_date <= end)
        .order_by(HabitCheckIn.check_date)
    ).scalars().all()
    return habit, list(rows)
