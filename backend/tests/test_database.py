from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
from sqlalchemy import func, select


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Database  # noqa: E402
from db.models import User  # noqa: E402


def _count_users(database: Database) -> int:
    with database.session() as db:
        return int(db.execute(select(func.count()).select_from(User)).scalar_one())


def test_in_memory_database_shares_one_connection():
    database = Database("sqlite://")
    database.startup()
    with database.transaction() as db:
        db.add(User(email="memory@example.com", password_hash="hash"))
    assert _count_users(database) == 1
    database.shutdown()
    assert database.started is False


def test_session_requires_startup():
    database = Database("sqlite://")
    with pytest.raises(RuntimeError):
        database.session()


def test_transaction_rolls_back_when_block_raises(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'planner.db'}")
    database.startup()
    with pytest.raises(ValueError):
        with database.transaction() as db:
            db.add(User(email="rollback@example.com", password_hash="hash"))
            db.flush()
            raise ValueError("boom")
    assert _count_users(database) == 0
    database.shutdown()


def test_borrowed_session_tracks_statements_and_closes(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'planner.db'}")
    database.startup()
    borrowed = database.session(label="users read")
    with borrowed as db:
        db.execute(select(User)).all()
        assert borrowed.session is db
    assert borrowed.statement_count == 1
    assert "FROM users" in borrowed.last_statement
    with pytest.raises(RuntimeError):
        borrowed.session
    database.shutdown()


def test_long_checkout_logs_warning(tmp_path, caplog):
    database = Database(f"sqlite:///{tmp_path / 'planner.db'}", checkout_warn_seconds=0)
    database.startup()
    caplog.set_level(logging.WARNING, logger="db.database")
    with database.session(label="slow request") as db:
        db.execute(select(User)).all()
    assert any("slow request was checked out" in record.getMessage() for record in caplog.records)
    database.shutdown()
