from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from api.errors import service_errors
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.plan_service import (
    create_plan,
    delete_plan,
    get_plan,
    list_plans,
    plan_logged_minutes,
    update_plan,
)
from services.schemas import PlanCreate, PlanPatch
from services.serializers import serialize_plan

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("")
def get_my_plans(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        rows = list_plans(db, user.id)
    return {"plans": [serialize_plan(plan, total_logged_minutes=minutes) for plan, minutes in rows]}


@router.get("/{plan_id}")
def get_one_plan(
    plan_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        plan = get_plan(db, user.id, plan_id)
        minutes = plan_logged_minutes(db, plan.id)
    return serialize_plan(plan, total_logged_minutes=minutes)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_new_plan(
    payload: PlanCreate,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        plan, created = create_plan(db, user.id, payload)
        db.commit()
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_plan(plan)


@router.put("/{plan_id}")
def update_existing_plan(
    plan_id: str,
    payload: PlanPatch,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        plan = update_plan(db, user.id, plan_id, payload)
        db.commit()
    return serialize_plan(plan)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_existing_plan(
    plan_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        delete_plan(db, user.id, plan_id)
        db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
