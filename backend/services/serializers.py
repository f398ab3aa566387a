from __future__ import annotations

from typing import Any

from db.models import Habit, HabitCheckIn, Note, Plan, SessionLog, Task, TaskInstance
from services.instance_materializer import InstanceState
from utils.datetime_utils import isoformat_date, isoformat_utc


def serialize_plan(row: Plan, *, total_logged_minutes: int | None = None) -> dict[str, Any]:
    payload = {
        "id": row.id,
        "title": row.title,
        "description": row.description,
        "targetHours": float(row.target_hours or 0.0),
        "startDate": isoformat_date(row.start_date),
        "endDate": isoformat_date(row.end_date),
        "priority": row.priority or "medium",
        "status": row.status,
        "color": row.color,
        "displayOrder": int(row.display_order or 0),
        "createdAt": isoformat_utc(row.created_at),
        "lastModified": isoformat_utc(row.updated_at),
    }
    if total_logged_minutes is not None:
        payload["totalLoggedMinutes"] = int(total_logged_minutes)
    return payload


def serialize_task(row: Task, *, total_logged_minutes: int | None = None) -> dict[str, Any]:
    payload = {
        "id": row.id,
        "planId": row.plan_id,
        "title": row.title,
        "description": row.description,
        "durationMinutes": int(row.duration_minutes or 0),
        "taskDate": isoformat_date(row.task_date),
        "startTime": row.start_time,
        "isRecurring": bool(row.is_recurring),
        "repeatDays": row.repeat_days,
        "startDate": isoformat_date(row.start_date),
        "endDate": isoformat_date(row.end_date),
        "priority": row.priority or "medium",
        "status": row.status,
        "actualDurationMinutes": int(row.actual_duration_minutes or 0),
        "completedAt": isoformat_utc(row.completed_at),
        "createdAt": isoformat_utc(row.created_at),
        "lastModified": isoformat_utc(row.updated_at),
    }
    if total_logged_minutes is not None:
        payload["totalLoggedMinutes"] = int(total_logged_minutes)
    return payload


def serialize_instance(state: InstanceState | TaskInstance) -> dict[str, Any]:
    if isinstance(state, TaskInstance):
        state = InstanceState.from_row(state)
    return {
        "taskId": state.task_id,
        "instanceDate": isoformat_date(state.instance_date),
        "status": state.status,
        "actualDurationMinutes": int(state.actual_duration_minutes or 0),
        "completedAt": isoformat_utc(state.completed_at),
        "notes": state.notes,
        "materialized": bool(state.materialized),
    }


def serialize_session(row: SessionLog, *, task_title: str | None = None) -> dict[str, Any]:
    payload = {
        "id": row.id,
        "taskId": row.task_id,
        "durationMinutes": int(row.duration_minutes or 0),
        "type": row.type,
        "timestamp": isoformat_utc(row.timestamp),
    }
    if task_title is not None:
        payload["taskTitle"] = task_title
    return payload


def serialize_note(row: Note) -> dict[str, Any]:
    return {
        "id": row.id,
        "planId": row.plan_id,
        "taskId": row.task_id,
        "title": row.title,
        "content": row.content,
        "color": row.color,
        "isPinned": bool(row.is_pinned),
        "isArchived": bool(row.is_archived),
        "createdAt": isoformat_utc(row.created_at),
        "lastModified": isoformat_utc(row.updated_at),
    }


def serialize_habit(row: Habit, *, checked_today: bool | None = None, stats: dict | None = None) -> dict[str, Any]:
    payload = {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "icon": row.icon,
        "color": row.color,
        "targetDays": int(row.target_days or 0),
        "reminderTime": row.reminder_time,
        "isActive": bool(row.is_active),
        "createdAt": isoformat_utc(row.created_at),
        "lastModified": isoformat_utc(row.updated_at),
    }
    if checked_today is not None:
        payload["isCheckedToday"] = checked_today
    if stats is not None:
        payload["stats"] = stats
    return payload


def serialize_check_in(row: HabitCheckIn) -> dict[str, Any]:
    return {
        "habitId": row.habit_id,
        "checkDate": isoformat_date(row.check_date),
        "isCompleted": bool(row.is_completed),
        "notes": row.notes,
    }
