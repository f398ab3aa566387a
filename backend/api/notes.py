from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from api.errors import service_errors
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.note_service import create_note, delete_note, get_note, list_notes, update_note
from services.schemas import NoteCreate, NotePatch
from services.serializers import serialize_note

router = APIRouter(prefix="/notes", tags=["notes"])


@router.get("")
def get_notes(
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    task_id: Optional[str] = Query(default=None, alias="taskId"),
    include_archived: bool = Query(default=False, alias="includeArchived"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        rows = list_notes(db, user.id, plan_id=plan_id, task_id=task_id, include_archived=include_archived)
    return {"notes": [serialize_note(row) for row in rows]}


@router.get("/{note_id}")
def get_one_note(
    note_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        note = get_note(db, user.id, note_id)
    return serialize_note(note)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_new_note(
    payload: NoteCreate,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        note, created = create_note(db, user.id, payload)
        db.commit()
    if not created:
        response.status_code = status.HTTP_200_OK
    return serialize_note(note)


@router.put("/{note_id}")
def update_existing_note(
    note_id: str,
    payload: NotePatch,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        note = update_note(db, user.id, note_id, payload)
        db.commit()
    return serialize_note(note)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_existing_note(
    note_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        delete_note(db, user.id, note_id)
        db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
