from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from api.errors import service_errors
from auth.utils import get_current_user
from config import settings
from db.database import get_db
from db.models import User
from services.schemas import InstancePatch, TaskCreate, TaskPatch
from services.serializers import serialize_instance, serialize_task
from services.task_service import (
    create_task,
    delete_task,
    get_task,
    list_task_instances,
    list_tasks_for_date,
    list_tasks_for_plan,
    task_logged_minutes,
    update_task,
    update_task_instance,
)

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _with_state(task_payload: dict, state) -> dict:
    if state is None:
        return task_payload
    instance = serialize_instance(state)
    return {
        **task_payload,
        "status": instance["status"],
        "actualDurationMinutes": instance["actualDurationMinutes"],
        "completedAt": instance["completedAt"],
        "instance": instance,
    }


@router.get("")
def get_tasks(
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    day: Optional[date] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if plan_id:
        with service_errors():
            rows = list_tasks_for_plan(db, user.id, plan_id)
        return {"tasks": [serialize_task(task, total_logged_minutes=minutes) for task, minutes in rows]}
    if day is not None:
        with service_errors():
            items = list_tasks_for_date(db, user.id, day)
        return {"tasks": [_with_state(serialize_task(task), state) for task, state in items]}
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query param date or planId required")


@router.get("/{task_id}")
def get_one_task(
    task_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        task = get_task(db, user.id, task_id)
        minutes = task_logged_minutes(db, task.id)
    return serialize_task(task, total_logged_minutes=minutes)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_new_task(
    payload: TaskCreate,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        task, created = create_task(db, user.id, payload)
        db.commit()
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_task(task)


@router.put("/{task_id}")
def update_existing_task(
    task_id: str,
    payload: dict[str, Any] = Body(...),
    instance_date: Optional[date] = Query(default=None, alias="instanceDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update the template, or one occurrence when ``instanceDate`` is given."""
    with service_errors():
        if instance_date is not None:
            patch = InstancePatch.model_validate(payload)
            task, state = update_task_instance(db, user.id, task_id, instance_date, patch)
            db.commit()
            return _with_state(serialize_task(task), state)
        task = update_task(db, user.id, task_id, TaskPatch.model_validate(payload))
        db.commit()
    return serialize_task(task)


@router.get("/{task_id}/instances")
def get_task_instances(
    task_id: str,
    start: date = Query(...),
    end: date = Query(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        task, states = list_task_instances(
            db,
            user.id,
            task_id,
            start,
            end,
            max_days=settings.INSTANCE_RANGE_MAX_DAYS,
        )
    return {"taskId": task.id, "instances": [serialize_instance(state) for state in states]}


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_existing_task(
    task_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        delete_task(db, user.id, task_id)
        db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
