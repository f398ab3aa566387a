from __future__ import annotations

import hashlib
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Note, Task
from db.upsert import insert_ignoring_conflict
from services.errors import ForbiddenError, NotFoundError
from services.ownership_policy import ResourceRef, require_access
from services.plan_service import new_client_id
from services.schemas import NOTE_PATCH_FIELDS, NoteCreate, NotePatch, apply_values, patch_values
from utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_NOTE_COLOR = "#FFEB3B"


def note_fingerprint(plan_id: str | None, title: str | None, content: str) -> str:
    """Duplicate key of a note: same plan, same trimmed title, same content."""
    raw = "\x1f".join([plan_id or "", (title or "").strip(), content or ""])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _check_links(db: Session, user_id: int, plan_id: str | None, task_id: str | None) -> None:
    if plan_id:
        require_access(db, user_id, ResourceRef.plan(plan_id))
    if task_id:
        require_access(db, user_id, ResourceRef.task(task_id))
        if plan_id and db.get(Task, task_id).plan_id != plan_id:
            raise ValueError("taskId does not belong to planId")


def get_note(db: Session, user_id: int, note_id: str) -> Note:
    require_access(db, user_id, ResourceRef.note(note_id))
    note = db.get(Note, note_id)
    if note is None:
        raise NotFoundError("Note not found")
    return note


def list_notes(
    db: Session,
    user_id: int,
    *,
    plan_id: str | None = None,
    task_id: str | None = None,
    include_archived: bool = False,
) -> list[Note]:
    stmt = select(Note).where(Note.user_id == user_id)
    if plan_id:
        require_access(db, user_id, ResourceRef.plan(plan_id))
        stmt = stmt.where(Note.plan_id == plan_id)
    if task_id:
        require_access(db, user_id, ResourceRef.task(task_id))
        stmt = stmt.where(Note.task_id == task_id)
    if not include_archived:
        stmt = stmt.where(Note.is_archived.is_(False))
    return list(db.execute(stmt.order_by(Note.is_pinned.desc(), Note.created_at.desc())).scalars().all())


def create_note(db: Session, user_id: int, payload: NoteCreate, *, now: datetime | None = None) -> tuple[Note, bool]:
    """Find-or-create a note; returns ``(note, created)``.

    A resent create (same client id, or the same plan, title and content)
    returns the stored note. The unique ``(user_id, fingerprint)`` key
    settles concurrent duplicates inside the database.
    """
    if payload.id:
        existing = db.get(Note, payload.id)
        if existing is not None:
            if int(existing.user_id) != int(user_id):
                raise ForbiddenError("Not authorized")
            return existing, False

    _check_links(db, user_id, payload.plan_id, payload.task_id)
    title = payload.title.strip() if payload.title else payload.title
    fingerprint = note_fingerprint(payload.plan_id, title, payload.content)
    stamp = now or utcnow()
    note_id = payload.id or new_client_id()
    insert_ignoring_conflict(
        db,
        Note,
        {
            "id": note_id,
            "user_id": user_id,
            "plan_id": payload.plan_id,
            "task_id": payload.task_id,
            "title": title,
            "content": payload.content,
            "color": payload.color or DEFAULT_NOTE_COLOR,
            "is_pinned": False,
            "is_archived": False,
            "fingerprint": fingerprint,
            "created_at": stamp,
            "updated_at": stamp,
        },
        ("user_id", "fingerprint"),
    )
    note = db.execute(
        select(Note).where(Note.user_id == user_id, Note.fingerprint == fingerprint)
    ).scalar_one()
    created = note.id == note_id
    if not created:
        logger.info(f"Duplicate note create for user {user_id} resolved to {note.id}")
    return note, created


def update_note(db: Session, user_id: int, note_id: str, patch: NotePatch, *, now: datetime | None = None) -> Note:
    note = get_note(db, user_id, note_id)
    values = patch_values(patch, NOTE_PATCH_FIELDS)
    for name in ("content", "color", "is_pinned", "is_archived"):
        if name in values and values[name] is None:
            raise ValueError(f"{name} cannot be null")
    if "title" in values and values["title"] is not None:
        values["title"] = values["title"].strip()

    fingerprint = note_fingerprint(
        note.plan_id,
        values.get("title", note.title),
        values.get("content", note.content),
    )
    if fingerprint != note.fingerprint:
        clash = db.execute(
            select(Note.id).where(Note.user_id == user_id, Note.fingerprint == fingerprint, Note.id != note.id)
        ).scalar_one_or_none()
        if clash is not None:
            raise ValueError("An identical note already exists")
        note.fingerprint = fingerprint
    if apply_values(note, values, NOTE_PATCH_FIELDS):
        note.updated_at = now or utcnow()
    db.flush()
    return note


def delete_note(db: Session, user_id: int, note_id: str) -> None:
    note = get_note(db, user_id, note_id)
    db.delete(note)
    db.flush()
