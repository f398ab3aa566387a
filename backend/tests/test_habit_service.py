from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest
from sqlalchemy import func, select


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Database  # noqa: E402
from db.models import HabitCheckIn, User  # noqa: E402
from services.errors import ForbiddenError  # noqa: E402
from services.habit_service import (  # noqa: E402
    check_in,
    create_habit,
    current_streak,
    habit_stats,
    is_scheduled,
    list_habits_for_day,
    month_bounds,
    month_check_ins,
    uncheck,
)
from services.schemas import CheckInRequest, HabitCreate  # noqa: E402


def _new_db(tmp_path) -> Database:
    database = Database(f"sqlite:///{tmp_path / 'planner.db'}")
    database.startup()
    return database


def _users(db) -> tuple[int, int]:
    owner = User(email="habits@example.com", password_hash="hash")
    other = User(email="habits-other@example.com", password_hash="hash")
    db.add_all([owner, other])
    db.commit()
    return owner.id, other.id


def _check_in_count(db) -> int:
    return int(db.execute(select(func.count()).select_from(HabitCheckIn)).scalar_one())


def test_month_bounds_handles_leap_years_and_rejects_bad_months():
    assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds(2023, 2) == (date(2023, 2, 1), date(2023, 2, 28))
    assert month_bounds(2024, 12)[1] == date(2024, 12, 31)
    with pytest.raises(ValueError):
        month_bounds(2024, 13)


def test_current_streak_counts_back_from_today():
    today = date(2024, 1, 10)
    assert current_streak({date(2024, 1, 10), date(2024, 1, 9), date(2024, 1, 7)}, today) == 2
    assert current_streak({date(2024, 1, 9)}, today) == 0


def test_weekday_string_schedules_habit(tmp_path):
    database = _new_db(tmp_path)
    with database.session() as db:
        owner_id, _ = _users(db)
        # Sunday first: Monday, Wednesday and Friday.
        habit, created = create_habit(db, owner_id, HabitCreate(name="Gym", targetDays="0101010"))
        assert created is True
        assert habit.target_days == 0b0101010
        assert is_scheduled(habit, date(2024, 1, 1)) is True  # Monday
        assert is_scheduled(habit, date(2024, 1, 2)) is False  # Tuesday
        assert [h.id for h, _ in list_habits_for_day(db, owner_id, date(2024, 1, 2))] == []
    database.shutdown()


def test_check_in_twice_keeps_one_row(tmp_path):
    database = _new_db(tmp_path)
    with database.session() as db:
        owner_id, _ = _users(db)
        habit, _ = create_habit(db, owner_id, HabitCreate(id="h1", name="Read"))
        day = date(2024, 1, 1)

        row, created = check_in(db, owner_id, "h1", CheckInRequest(date=day, notes="10 pages"))
        assert created is True
        again, created_again = check_in(db, owner_id, "h1", CheckInRequest(date=day))
        db.commit()

        assert created_again is False
        assert again.id == row.id
        assert again.notes == "10 pages"
        assert _check_in_count(db) == 1

        replaced, _ = check_in(db, owner_id, "h1", CheckInRequest(date=day, notes="20 pages"))
        assert replaced.notes == "20 pages"
        assert _check_in_count(db) == 1

        items = list_habits_for_day(db, owner_id, day)
        assert [(h.id, checked) for h, checked in items] == [("h1", True)]
    database.shutdown()


def test_check_in_defaults_to_today_and_uncheck_removes_it(tmp_path):
    database = _new_db(tmp_path)
    with database.session() as db:
        owner_id, other_id = _users(db)
        create_habit(db, owner_id, HabitCreate(id="h1", name="Meditate"))
        today = date(2024, 3, 5)

        row, _ = check_in(db, owner_id, "h1", CheckInRequest(), today=today)
        assert row.check_date == today

        with pytest.raises(ForbiddenError):
            check_in(db, other_id, "h1", CheckInRequest(date=today))
        with pytest.raises(ForbiddenError):
            uncheck(db, other_id, "h1", today)

        assert uncheck(db, owner_id, "h1", today) is True
        assert uncheck(db, owner_id, "h1", today) is False
        assert _check_in_count(db) == 0
    database.shutdown()


def test_calendar_returns_only_the_requested_month(tmp_path):
    database = _new_db(tmp_path)
    with database.session() as db:
        owner_id, _ = _users(db)
        create_habit(db, owner_id, HabitCreate(id="h1", name="Walk"))
        for day in (date(2024, 1, 31), date(2024, 2, 1), date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)):
            check_in(db, owner_id, "h1", CheckInRequest(date=day))

        habit, rows = month_check_ins(db, owner_id, "h1", 2024, 2)
        assert [row.check_date for row in rows] == [date(2024, 2, 1), date(2024, 2, 28), date(2024, 2, 29)]

        stats = habit_stats(db, habit, today=date(2024, 2, 29))
        assert stats == {"totalCheckIns": 5, "monthlyCheckIns": 3, "currentStreak": 2}
    database.shutdown()
