from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, ForeignKey, Index,
    Date, DateTime, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text)
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plans = relationship("Plan", back_populates="user", cascade="all, delete-orphan")
    notes = relationship("Note", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    habits = relationship("Habit", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Text, primary_key=True)  # client-generated
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text)
    target_hours = Column(Float, nullable=False, default=0.0)
    start_date = Column(Date)
    end_date = Column(Date)
    priority = Column(Text, nullable=False, default="medium")  # high | medium | low
    status = Column(Text, nullable=False, default="not_started")
    color = Column(Text)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    # Client lastModified; drives last-writer-wins.
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    # Server clock at the last write; drives the pull cursor.
    server_modified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="plans")
    tasks = relationship("Task", back_populates="plan", cascade="all, delete-orphan", passive_deletes=True)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Text, primary_key=True)  # client-generated
    plan_id = Column(Text, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text)
    duration_minutes = Column(Integer, nullable=False, default=0)
    task_date = Column(Date)
    start_time = Column(Text)  # HH:MM
    is_recurring = Column(Boolean, nullable=False, default=False)
    repeat_days = Column(Integer)  # weekday bitmask, Sunday = bit 0; NULL = every day
    start_date = Column(Date)
    end_date = Column(Date)
    priority = Column(Text, nullable=False, default="medium")
    status = Column(Text, nullable=False, default="not_started")
    actual_duration_minutes = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    server_modified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    plan = relationship("Plan", back_populates="tasks")
    instances = relationship("TaskInstance", back_populates="task", cascade="all, delete-orphan", passive_deletes=True)
    sessions = relationship("SessionLog", back_populates="task", cascade="all, delete-orphan", passive_deletes=True)


class TaskInstance(Base):
    __tablename__ = "daily_task_instances"
    __table_args__ = (
        UniqueConstraint("task_id", "instance_date", name="uq_daily_task_instances_task_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Text, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    instance_date = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default="not_started")
    actual_duration_minutes = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    server_modified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="instances")


class SessionLog(Base):
    __tablename__ = "session_logs"

    id = Column(Text, primary_key=True)  # client-generated
    task_id = Column(Text, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=0)
    type = Column(Text, nullable=False)  # pomodoro | stopwatch | manual
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    server_modified_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="sessions")


class Note(Base):
    __tablename__ = "notes"
    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_notes_user_fingerprint"),
    )

    id = Column(Text, primary_key=True)  # client-generated
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    plan_id = Column(Text, ForeignKey("plans.id", ondelete="CASCADE"))
    task_id = Column(Text, ForeignKey("tasks.id", ondelete="SET NULL"))
    title = Column(Text)
    content = Column(Text, nullable=False)
    color = Column(Text, nullable=False, default="#FFEB3B")
    is_pinned = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    # sha256 of (plan, trimmed title, content); one note per user per fingerprint.
    fingerprint = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="notes")


class Habit(Base):
    __tablename__ = "habits"

    id = Column(Text, primary_key=True)  # client-generated
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    icon = Column(Text, nullable=False, default="✓")
    color = Column(Text, nullable=False, default="#4CAF50")
    target_days = Column(Integer, nullable=False, default=0b1111111)  # weekday bitmask, Sunday = bit 0
    reminder_time = Column(Text)  # HH:MM
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="habits")
    check_ins = relationship("HabitCheckIn", back_populates="habit", cascade="all, delete-orphan", passive_deletes=True)


class HabitCheckIn(Base):
    __tablename__ = "habit_check_ins"
    __table_args__ = (
        UniqueConstraint("habit_id", "check_date", name="uq_habit_check_ins_habit_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    habit_id = Column(Text, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False)
    check_date = Column(Date, nullable=False)
    is_completed = Column(Boolean, nullable=False, default=True)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    habit = relationship("Habit", back_populates="check_ins")


Index("idx_plans_user_changed", Plan.user_id, Plan.server_modified_at)
Index("idx_tasks_plan_changed", Task.plan_id, Task.server_modified_at)
Index("idx_tasks_plan_date", Task.plan_id, Task.task_date)
Index("idx_task_instances_changed", TaskInstance.task_id, TaskInstance.server_modified_at)
Index("idx_session_logs_task_time", SessionLog.task_id, SessionLog.timestamp)
Index("idx_session_logs_changed", SessionLog.task_id, SessionLog.server_modified_at)
Index("idx_notes_user_pinned", Note.user_id, Note.is_pinned, Note.created_at)
Index("idx_habits_user_active", Habit.user_id, Habit.is_active)
