"""Wire records and typed partial updates for plans, tasks, instances, sessions, notes and habits.

Every wire model speaks camelCase (``planId``, ``lastModified``) and accepts
snake_case too. Partial updates are typed models whose set fields are copied
onto rows only through the explicit allow-lists below.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from services.errors import SyncValidationError

TASK_STATUSES = ("not_started", "in_progress", "partially_completed", "completed", "skipped")
PLAN_STATUSES = ("not_started", "in_progress", "completed", "archived")
PRIORITIES = ("high", "medium", "low")
SESSION_TYPES = ("pomodoro", "stopwatch", "manual")
WEEKDAY_MASK_MAX = 0b1111111

TaskStatus = Literal["not_started", "in_progress", "partially_completed", "completed", "skipped"]
PlanStatus = Literal["not_started", "in_progress", "completed", "archived"]
Priority = Literal["high", "medium", "low"]
SessionType = Literal["pomodoro", "stopwatch", "manual"]

# Columns a newer client record may overwrite on an existing row.
PLAN_SYNC_FIELDS = frozenset({
    "title", "description", "target_hours", "start_date", "end_date",
    "priority", "status", "color", "display_order",
})
TASK_SYNC_FIELDS = frozenset({
    "title", "description", "duration_minutes", "start_time",
    "priority", "status", "actual_duration_minutes",
})

# Columns a CRUD patch may touch.
PLAN_PATCH_FIELDS = PLAN_SYNC_FIELDS
TASK_PATCH_FIELDS = TASK_SYNC_FIELDS | frozenset({"task_date", "repeat_days", "start_date", "end_date"})
INSTANCE_PATCH_FIELDS = frozenset({"status", "actual_duration_minutes", "notes"})
NOTE_PATCH_FIELDS = frozenset({"title", "content", "color", "is_pinned", "is_archived"})
HABIT_PATCH_FIELDS = frozenset({
    "name", "description", "icon", "color", "target_days", "reminder_time", "is_active",
})


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _strip_id(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


class PlanRecord(WireModel):
    id: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    target_hours: float = Field(default=0.0, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Priority = "medium"
    status: PlanStatus = "not_started"
    color: Optional[str] = None
    display_order: int = 0
    created_at: Optional[datetime] = None
    last_modified: datetime = Field(validation_alias=AliasChoices("lastModified", "updatedAt", "last_modified"))

    @field_validator("id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        return _strip_id(value)


class TaskRecord(WireModel):
    id: str = Field(min_length=1, max_length=64)
    plan_id: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    duration_minutes: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("durationMinutes", "plannedMinutes", "duration_minutes"),
    )
    task_date: Optional[date] = Field(default=None, validation_alias=AliasChoices("taskDate", "date", "task_date"))
    start_time: Optional[str] = None
    is_recurring: bool = False
    repeat_days: Optional[int] = Field(default=None, ge=0, le=WEEKDAY_MASK_MAX)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Priority = "medium"
    status: TaskStatus = "not_started"
    actual_duration_minutes: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    last_modified: datetime = Field(validation_alias=AliasChoices("lastModified", "updatedAt", "last_modified"))

    @field_validator("id", "plan_id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        return _strip_id(value)


class SessionRecord(WireModel):
    id: str = Field(min_length=1, max_length=64)
    task_id: str = Field(min_length=1, max_length=64)
    duration_minutes: int = Field(ge=0)
    type: SessionType
    timestamp: datetime

    @field_validator("id", "task_id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        return _strip_id(value)


class PushBatch(WireModel):
    plans: list[PlanRecord] = Field(default_factory=list)
    tasks: list[TaskRecord] = Field(default_factory=list)
    sessions: list[SessionRecord] = Field(default_factory=list)

    @field_validator("plans", "tasks", "sessions", mode="before")
    @classmethod
    def none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def record_count(self) -> int:
        return len(self.plans) + len(self.tasks) + len(self.sessions)


def _format_error_location(loc: tuple) -> str:
    parts: list[str] = []
    for item in loc:
        if isinstance(item, int) and parts:
            parts[-1] = f"{parts[-1]}[{item}]"
        else:
            parts.append(str(item))
    return ".".join(parts)


def validation_details(exc: ValidationError) -> list[str]:
    return [f"{_format_error_location(err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()]


def parse_push_batch(payload: Any, *, max_records: int | None = None) -> PushBatch:
    """Validate a raw push payload as a whole.

    Raises SyncValidationError listing every problem; a batch is either
    entirely well-formed or rejected before any write happens.
    """
    if isinstance(payload, PushBatch):
        batch = payload
    else:
        if not isinstance(payload, dict):
            raise SyncValidationError("Validation failed", ["body: expected an object with plans, tasks and sessions"])
        try:
            batch = PushBatch.model_validate(payload)
        except ValidationError as exc:
            raise SyncValidationError("Validation failed", validation_details(exc)) from exc
    if max_records is not None and batch.record_count > max_records:
        raise SyncValidationError(
            "Validation failed",
            [f"batch: {batch.record_count} records exceeds the limit of {max_records}"],
        )
    return batch


class PlanCreate(WireModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    target_hours: float = Field(default=0.0, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Priority = "medium"
    status: PlanStatus = "not_started"
    color: Optional[str] = None
    display_order: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        return _strip_id(value)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class PlanPatch(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    target_hours: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Optional[Priority] = None
    status: Optional[PlanStatus] = None
    color: Optional[str] = None
    display_order: Optional[int] = None


class TaskCreate(WireModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    plan_id: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    duration_minutes: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("durationMinutes", "plannedMinutes", "duration_minutes"),
    )
    task_date: Optional[date] = Field(default=None, validation_alias=AliasChoices("taskDate", "date", "task_date"))
    start_time: Optional[str] = None
    is_recurring: bool = False
    repeat_days: Optional[int] = Field(default=None, ge=0, le=WEEKDAY_MASK_MAX)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Priority = "medium"

    @field_validator("id", "plan_id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        return _strip_id(value)


class TaskPatch(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    task_date: Optional[date] = None
    start_time: Optional[str] = None
    repeat_days: Optional[int] = Field(default=None, ge=0, le=WEEKDAY_MASK_MAX)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None
    actual_duration_minutes: Optional[int] = Field(default=None, ge=0)


class InstancePatch(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    status: Optional[TaskStatus] = None
    actual_duration_minutes: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class SessionCreate(WireModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    task_id: str = Field(min_length=1, max_length=64)
    duration_minutes: int = Field(ge=0)
    type: SessionType
    timestamp: Optional[datetime] = None

    @field_validator("id", "task_id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        return _strip_id(value)


def coerce_weekday_mask(value: Any) -> Any:
    """Accept a mask int or a 7-char ``"1010101"`` string indexed Sunday first."""
    if isinstance(value, str):
        raw = value.strip()
        if len(raw) != 7 or set(raw) - {"0", "1"}:
            raise ValueError("weekday string must be 7 characters of 0/1, Sunday first")
        return sum(1 << i for i, flag in enumerate(raw) if flag == "1")
    return value


class NoteCreate(WireModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    plan_id: Optional[str] = Field(default=None, max_length=64)
    task_id: Optional[str] = Field(default=None, max_length=64)
    title: Optional[str] = Field(default=None, max_length=200)
    content: str = Field(min_length=1, max_length=20000)
    color: Optional[str] = Field(default=None, max_length=32)

    @field_validator("id", "plan_id", "task_id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        value = _strip_id(value)
        return value or None


class NotePatch(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: Optional[str] = Field(default=None, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1, max_length=20000)
    color: Optional[str] = Field(default=None, max_length=32)
    is_pinned: Optional[bool] = None
    is_archived: Optional[bool] = None


class HabitCreate(WireModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=32)
    target_days: int = Field(default=WEEKDAY_MASK_MAX, ge=0, le=WEEKDAY_MASK_MAX)
    reminder_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")

    @field_validator("id", mode="before")
    @classmethod
    def strip_identifiers(cls, value: Any) -> Any:
        return _strip_id(value)

    @field_validator("target_days", mode="before")
    @classmethod
    def weekday_string(cls, value: Any) -> Any:
        return coerce_weekday_mask(value)


class HabitPatch(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=32)
    target_days: Optional[int] = Field(default=None, ge=0, le=WEEKDAY_MASK_MAX)
    reminder_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    is_active: Optional[bool] = None

    @field_validator("target_days", mode="before")
    @classmethod
    def weekday_string(cls, value: Any) -> Any:
        return coerce_weekday_mask(value)


class CheckInRequest(WireModel):
    check_date: Optional[date] = Field(default=None, validation_alias=AliasChoices("date", "checkDate", "check_date"))
    notes: Optional[str] = None


def patch_values(patch: BaseModel, allowed: frozenset[str]) -> dict[str, Any]:
    """Fields the caller actually set, restricted to ``allowed``."""
    values = patch.model_dump(exclude_unset=True)
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise ValueError(f"Fields not updatable: {', '.join(unknown)}")
    return values


def apply_values(row: Any, values: dict[str, Any], allowed: frozenset[str]) -> list[str]:
    changed: list[str] = []
    for name, value in values.items():
        if name not in allowed:
            continue
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed.append(name)
    return changed


def record_values(record: BaseModel, allowed: frozenset[str]) -> dict[str, Any]:
    """Every allowed field of a full record, set or defaulted."""
    return {name: getattr(record, name) for name in sorted(allowed)}
