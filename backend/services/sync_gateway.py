"""Push/pull reconciliation between offline clients and the server store.

``push`` validates a whole batch up front, then applies every record inside
one transaction: ownership first, then the last-writer-wins decision. A
record the caller may not write is dropped and reported; a storage failure
rolls the entire batch back. ``pull`` returns everything the caller owns that
changed after a cursor, and a new cursor captured before querying. Pulls
reach back a few seconds behind the cursor; clients apply the repeated rows
idempotently because equal timestamps skip.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.database import Database
from db.models import Plan, SessionLog, Task, TaskInstance
from services.conflict_resolver import Resolution, resolve, resolve_immutable
from services.errors import PersistenceError, SyncValidationError
from services.ownership_policy import AccessDecision, ResourceRef, check_access
from services.schemas import (
    PLAN_SYNC_FIELDS,
    TASK_SYNC_FIELDS,
    PlanRecord,
    PushBatch,
    SessionRecord,
    TaskRecord,
    apply_values,
    parse_push_batch,
    record_values,
)
from services.serializers import serialize_instance, serialize_plan, serialize_session, serialize_task
from utils.datetime_utils import as_utc_naive, isoformat_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class EntityCounts:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    rejected: int = 0

    def record(self, resolution: Resolution) -> None:
        if resolution is Resolution.INSERT:
            self.created += 1
        elif resolution is Resolution.UPDATE:
            self.updated += 1
        else:
            self.skipped += 1

    def to_dict(self, *, include_updated: bool = True) -> dict[str, int]:
        payload = {"created": self.created}
        if include_updated:
            payload["updated"] = self.updated
        payload["skipped"] = self.skipped
        payload["rejected"] = self.rejected
        return payload


@dataclass(frozen=True)
class RejectedRecord:
    entity: str
    id: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"entity": self.entity, "id": self.id, "reason": self.reason}


@dataclass
class PushResult:
    plans: EntityCounts = field(default_factory=EntityCounts)
    tasks: EntityCounts = field(default_factory=EntityCounts)
    sessions: EntityCounts = field(default_factory=EntityCounts)
    rejected: list[RejectedRecord] = field(default_factory=list)
    synced_at: datetime | None = None

    def reject(self, entity: str, record_id: str, decision: AccessDecision) -> None:
        getattr(self, entity).rejected += 1
        self.rejected.append(RejectedRecord(entity=entity, id=record_id, reason=decision.value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "results": {
                "plans": self.plans.to_dict(),
                "tasks": self.tasks.to_dict(),
                "sessions": self.sessions.to_dict(include_updated=False),
            },
            "rejected": [item.to_dict() for item in self.rejected],
            "syncedAt": isoformat_utc(self.synced_at),
        }


@dataclass
class PullResult:
    plans: list[dict[str, Any]] = field(default_factory=list)
    tasks: list[dict[str, Any]] = field(default_factory=list)
    sessions: list[dict[str, Any]] = field(default_factory=list)
    instances: list[dict[str, Any]] = field(default_factory=list)
    pulled_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "plans": self.plans,
            "tasks": self.tasks,
            "sessions": self.sessions,
            "instances": self.instances,
            "pulledAt": isoformat_utc(self.pulled_at),
        }


def parse_cursor(since: datetime | str | None) -> datetime | None:
    if since is None:
        return None
    if isinstance(since, datetime):
        return as_utc_naive(since)
    raw = str(since).strip()
    if not raw:
        return None
    try:
        return as_utc_naive(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError as exc:
        raise SyncValidationError("Validation failed", [f"since: not an ISO timestamp: {raw}"]) from exc


class SyncGateway:
    def __init__(
        self,
        database: Database,
        *,
        max_batch_records: int | None = 1000,
        pull_overlap_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._database = database
        self._max_batch_records = max_batch_records
        self._pull_overlap = timedelta(seconds=max(float(pull_overlap_seconds), 0.0))
        self._clock = clock

    # Push

    def push(self, user_id: int, payload: PushBatch | dict) -> PushResult:
        batch = parse_push_batch(payload, max_records=self._max_batch_records)
        try:
            with self._database.transaction(label=f"sync push user={user_id}") as db:
                result = self.apply_batch(db, user_id, batch)
                result.synced_at = self._clock()
        except SQLAlchemyError as exc:
            logger.error(f"Sync push failed for user {user_id}; batch rolled back", exc_info=True)
            raise PersistenceError("Sync push failed; no changes were saved") from exc

        logger.info(
            f"Sync push user={user_id} "
            f"plans={result.plans.to_dict()} tasks={result.tasks.to_dict()} "
            f"sessions={result.sessions.to_dict(include_updated=False)}"
        )
        return result

    def apply_batch(self, db: Session, user_id: int, batch: PushBatch) -> PushResult:
        """Apply a validated batch on ``db`` without committing.

        Parents go first so a batch may create a plan and its tasks together.
        """
        result = PushResult()
        for record in batch.plans:
            self._apply_plan(db, user_id, record, result)
        for record in batch.tasks:
            self._apply_task(db, user_id, record, result)
        for record in batch.sessions:
            self._apply_session(db, user_id, record, result)
        return result

    def _apply_plan(self, db: Session, user_id: int, record: PlanRecord, result: PushResult) -> None:
        stored = db.execute(select(Plan).where(Plan.id == record.id).with_for_update()).scalar_one_or_none()
        if stored is not None and int(stored.user_id) != int(user_id):
            self._log_rejection("plans", record.id, AccessDecision.FORBIDDEN, user_id)
            result.reject("plans", record.id, AccessDecision.FORBIDDEN)
            return

        incoming_modified = as_utc_naive(record.last_modified)
        resolution = resolve(incoming_modified, stored.updated_at if stored is not None else None, exists=stored is not None)
        now = self._clock()
        if resolution is Resolution.INSERT:
            values = record_values(record, PLAN_SYNC_FIELDS)
            db.add(
                Plan(
                    id=record.id,
                    user_id=user_id,
                    created_at=as_utc_naive(record.created_at) or incoming_modified,
                    updated_at=incoming_modified,
                    server_modified_at=now,
                    **values,
                )
            )
            db.flush()
        elif resolution is Resolution.UPDATE:
            apply_values(stored, record_values(record, PLAN_SYNC_FIELDS), PLAN_SYNC_FIELDS)
            stored.updated_at = incoming_modified
            stored.server_modified_at = now
            db.flush()
        result.plans.record(resolution)

    def _apply_task(self, db: Session, user_id: int, record: TaskRecord, result: PushResult) -> None:
        parent = check_access(db, user_id, ResourceRef.plan(record.plan_id))
        if parent is not AccessDecision.ALLOWED:
            self._log_rejection("tasks", record.id, parent, user_id)
            result.reject("tasks", record.id, parent)
            return

        stored = db.execute(select(Task).where(Task.id == record.id).with_for_update()).scalar_one_or_none()
        if stored is not None and check_access(db, user_id, ResourceRef.task(record.id)) is not AccessDecision.ALLOWED:
            self._log_rejection("tasks", record.id, AccessDecision.FORBIDDEN, user_id)
            result.reject("tasks", record.id, AccessDecision.FORBIDDEN)
            return

        incoming_modified = as_utc_naive(record.last_modified)
        resolution = resolve(incoming_modified, stored.updated_at if stored is not None else None, exists=stored is not None)
        now = self._clock()
        if resolution is Resolution.INSERT:
            values = record_values(record, TASK_SYNC_FIELDS)
            db.add(
                Task(
                    id=record.id,
                    plan_id=record.plan_id,
                    task_date=record.task_date,
                    is_recurring=record.is_recurring,
                    repeat_days=record.repeat_days,
                    start_date=record.start_date,
                    end_date=record.end_date,
                    completed_at=now if record.status == "completed" else None,
                    created_at=as_utc_naive(record.created_at) or incoming_modified,
                    updated_at=incoming_modified,
                    server_modified_at=now,
                    **values,
                )
            )
            db.flush()
        elif resolution is Resolution.UPDATE:
            # Identity, parent and recurrence shape are fixed once created.
            was_completed = stored.status == "completed"
            apply_values(stored, record_values(record, TASK_SYNC_FIELDS), TASK_SYNC_FIELDS)
            if stored.status == "completed" and not was_completed:
                stored.completed_at = now
            stored.updated_at = incoming_modified
            stored.server_modified_at = now
            db.flush()
        result.tasks.record(resolution)

    def _apply_session(self, db: Session, user_id: int, record: SessionRecord, result: PushResult) -> None:
        parent = check_access(db, user_id, ResourceRef.task(record.task_id))
        if parent is not AccessDecision.ALLOWED:
            self._log_rejection("sessions", record.id, parent, user_id)
            result.reject("sessions", record.id, parent)
            return

        exists = db.get(SessionLog, record.id) is not None
        resolution = resolve_immutable(exists)
        if resolution is Resolution.INSERT:
            db.add(
                SessionLog(
                    id=record.id,
                    task_id=record.task_id,
                    duration_minutes=record.duration_minutes,
                    type=record.type,
                    timestamp=as_utc_naive(record.timestamp),
                    server_modified_at=self._clock(),
                )
            )
            db.flush()
        result.sessions.record(resolution)

    @staticmethod
    def _log_rejection(entity: str, record_id: str, decision: AccessDecision, user_id: int) -> None:
        logger.info(f"Sync push user={user_id} rejected {entity} record {record_id}: {decision.value}")

    # Pull

    def pull(self, user_id: int, since: datetime | str | None = None) -> PullResult:
        since_at = parse_cursor(since)
        # Captured before querying. Rows are stamped before their commit, so a
        # row stamped just before an earlier cursor may have become visible
        # only after that pull; the overlap re-sends that slice.
        pulled_at = self._clock()
        if since_at is not None:
            since_at = since_at - self._pull_overlap
        try:
            with self._database.session(label=f"sync pull user={user_id}") as db:
                result = self.collect_changes(db, user_id, since_at)
        except SQLAlchemyError as exc:
            logger.error(f"Sync pull failed for user {user_id}", exc_info=True)
            raise PersistenceError("Sync pull failed") from exc
        result.pulled_at = pulled_at
        return result

    def collect_changes(self, db: Session, user_id: int, since: datetime | None) -> PullResult:
        plan_stmt = select(Plan).where(Plan.user_id == user_id)
        task_stmt = select(Task).join(Plan, Task.plan_id == Plan.id).where(Plan.user_id == user_id)
        session_stmt = (
            select(SessionLog)
            .join(Task, SessionLog.task_id == Task.id)
            .join(Plan, Task.plan_id == Plan.id)
            .where(Plan.user_id == user_id)
        )
        instance_stmt = (
            select(TaskInstance)
            .join(Task, TaskInstance.task_id == Task.id)
            .join(Plan, Task.plan_id == Plan.id)
            .where(Plan.user_id == user_id)
        )
        if since is not None:
            plan_stmt = plan_stmt.where(Plan.server_modified_at > since)
            task_stmt = task_stmt.where(Task.server_modified_at > since)
            session_stmt = session_stmt.where(SessionLog.server_modified_at > since)
            instance_stmt = instance_stmt.where(TaskInstance.server_modified_at > since)

        plans = db.execute(plan_stmt.order_by(Plan.server_modified_at, Plan.id)).scalars().all()
        tasks = db.execute(task_stmt.order_by(Task.server_modified_at, Task.id)).scalars().all()
        sessions = db.execute(session_stmt.order_by(SessionLog.server_modified_at, SessionLog.id)).scalars().all()
        instances = db.execute(
            instance_stmt.order_by(TaskInstance.server_modified_at, TaskInstance.id)
        ).scalars().all()
        return PullResult(
            plans=[serialize_plan(row) for row in plans],
            tasks=[serialize_task(row) for row in tasks],
            sessions=[serialize_session(row) for row in sessions],
            instances=[serialize_instance(row) for row in instances],
        )
