from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from api.errors import service_errors
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.habit_service import (
    check_in,
    create_habit,
    delete_habit,
    get_habit,
    habit_stats,
    list_habits,
    list_habits_for_day,
    month_check_ins,
    uncheck,
    update_habit,
)
from services.schemas import CheckInRequest, HabitCreate, HabitPatch
from services.serializers import serialize_check_in, serialize_habit
from utils.datetime_utils import today_utc

router = APIRouter(prefix="/habits", tags=["habits"])


@router.get("")
def get_habits(
    day: Optional[date] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        if day is not None:
            items = list_habits_for_day(db, user.id, day)
            return {"habits": [serialize_habit(habit, checked_today=checked) for habit, checked in items]}
        rows = list_habits(db, user.id)
    return {"habits": [serialize_habit(habit) for habit in rows]}


@router.get("/{habit_id}")
def get_one_habit(
    habit_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        habit = get_habit(db, user.id, habit_id)
        stats = habit_stats(db, habit)
    return serialize_habit(habit, stats=stats)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_new_habit(
    payload: HabitCreate,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        habit, created = create_habit(db, user.id, payload)
        db.commit()
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_habit(habit)


@router.put("/{habit_id}")
def update_existing_habit(
    habit_id: str,
    payload: HabitPatch,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        habit = update_habit(db, user.id, habit_id, payload)
        db.commit()
    return serialize_habit(habit)


@router.delete("/{habit_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_existing_habit(
    habit_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        delete_habit(db, user.id, habit_id)
        db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{habit_id}/check", status_code=status.HTTP_201_CREATED)
def check_in_habit(
    habit_id: str,
    response: Response,
    payload: Optional[CheckInRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        row, created = check_in(db, user.id, habit_id, payload or CheckInRequest())
        db.commit()
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_check_in(row)


@router.post("/{habit_id}/uncheck")
def uncheck_habit(
    habit_id: str,
    payload: Optional[CheckInRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    day = payload.check_date if payload is not None else None
    with service_errors():
        removed = uncheck(db, user.id, habit_id, day)
        db.commit()
    return {"removed": removed}


@router.get("/{habit_id}/calendar")
def get_habit_calendar(
    habit_id: str,
    year: Optional[int] = Query(default=None, ge=1970, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    today = today_utc()
    with service_errors():
        habit, rows = month_check_ins(db, user.id, habit_id, year or today.year, month or today.month)
        stats = habit_stats(db, habit, today=today)
    return {
        "habit": serialize_habit(habit),
        "checkIns": [serialize_check_in(row) for row in rows],
        "stats": stats,
    }
