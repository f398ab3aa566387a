from __future__ import annotations

from datetime import datetime
from enum import Enum


class Resolution(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


def resolve(incoming_modified: datetime, stored_modified: datetime | None, *, exists: bool | None = None) -> Resolution:
    """Last-writer-wins decision for one incoming record.

    ``exists`` defaults to ``stored_modified is not None``. Equal timestamps
    skip, so an exact retransmission is a no-op.
    """
    if exists is None:
        exists = stored_modified is not None
    if not exists:
        return Resolution.INSERT
    if stored_modified is None or incoming_modified > stored_modified:
        return Resolution.UPDATE
    return Resolution.SKIP


def resolve_immutable(exists: bool) -> Resolution:
    """Append-only records are inserted once and never overwritten."""
    return Resolution.SKIP if exists else Resolution.INSERT
