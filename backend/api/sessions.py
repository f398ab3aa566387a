from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from api.errors import service_errors
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.schemas import SessionCreate
from services.serializers import serialize_session
from services.session_service import create_session, daily_stats, get_session, list_sessions
from utils.datetime_utils import today_utc

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("")
def get_sessions(
    task_id: Optional[str] = Query(default=None, alias="taskId"),
    day: Optional[date] = Query(default=None, alias="date"),
    start: Optional[datetime] = Query(default=None, alias="startDate"),
    end: Optional[datetime] = Query(default=None, alias="endDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        rows = list_sessions(db, user.id, task_id=task_id, day=day, start=start, end=end)
    return {"sessions": [serialize_session(row, task_title=title) for row, title in rows]}


@router.get("/stats/daily")
def get_daily_stats(
    day: Optional[date] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        return daily_stats(db, user.id, day or today_utc())


@router.get("/{session_id}")
def get_one_session(
    session_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        row, title = get_session(db, user.id, session_id)
    return serialize_session(row, task_title=title)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_new_session(
    payload: SessionCreate,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        row, created = create_session(db, user.id, payload)
        db.commit()
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_session(row)
