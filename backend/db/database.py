from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class BorrowedSession:
    """One scoped checkout of a Session from a :class:`Database`.

    The wrapper owns the Session for exactly one ``with`` block. It keeps the
    last statement executed through that Session (via a listener bound to the
    Session instance, never to the shared pool), rolls back when the block
    raises, always closes the Session on exit, and logs a warning when the
    checkout was held longer than ``warn_after_seconds``.
    """

    def __init__(self, factory: sessionmaker, *, warn_after_seconds: float, label: str | None = None) -> None:
        self._factory = factory
        self._warn_after_seconds = max(float(warn_after_seconds), 0.0)
        self._label = label or "session"
        self._session: Session | None = None
        self._acquired_at: float | None = None
        self._last_statement = None
        self.statement_count = 0

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("Session is not checked out")
        return self._session

    @property
    def last_statement(self) -> str | None:
        if self._last_statement is None:
            return None
        return " ".join(str(self._last_statement).split())

    @property
    def held_seconds(self) -> float:
        if self._acquired_at is None:
            return 0.0
        return max(time.perf_counter() - self._acquired_at, 0.0)

    def _on_execute(self, orm_execute_state) -> None:
        self._last_statement = orm_execute_state.statement
        self.statement_count += 1

    def __enter__(self) -> Session:
        if self._session is not None:
            raise RuntimeError("BorrowedSession cannot be entered twice")
        session = self._factory()
        event.listen(session, "do_orm_execute", self._on_execute)
        self._session = session
        self._acquired_at = time.perf_counter()
        return session

    def __exit__(self, exc_type, exc, tb) -> None:
        session = self._session
        if session is None:
            return
        held = self.held_seconds
        try:
            if exc_type is not None:
                session.rollback()
        finally:
            event.remove(session, "do_orm_execute", self._on_execute)
            session.close()
            self._session = None
            if held > self._warn_after_seconds:
                logger.warning(
                    f"{self._label} was checked out for {held:.2f}s "
                    f"({self.statement_count} statements); last statement: {self.last_statement}"
                )


class Database:
    """Explicitly owned engine + session factory.

    Nothing is connected until :meth:`startup`; :meth:`shutdown` disposes the
    pool. Instances are handed to whatever needs storage instead of being
    imported as module state.
    """

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_size: int | None = None,
        max_overflow: int | None = None,
        pool_timeout: int | None = None,
        pool_recycle: int | None = None,
        checkout_warn_seconds: float = 5.0,
    ) -> None:
        self.url = url
        self._echo = echo
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._pool_timeout = pool_timeout
        self._pool_recycle = pool_recycle
        self.checkout_warn_seconds = checkout_warn_seconds
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            settings.DATABASE_URL,
            echo=settings.DB_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
            pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
            checkout_warn_seconds=settings.DB_CHECKOUT_WARN_SECONDS,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.strip().lower().startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        url = self.url.strip().lower()
        return url in {"sqlite://", "sqlite:///:memory:"} or ":memory:" in url

    @property
    def started(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database has not been started")
        return self._engine

    def _engine_kwargs(self) -> dict:
        kwargs: dict = {"echo": self._echo}
        if self.is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if self.is_memory:
                # One shared connection, otherwise every checkout sees an empty database.
                kwargs["poolclass"] = StaticPool
            return kwargs
        kwargs["pool_pre_ping"] = True
        if self._pool_size is not None:
            kwargs["pool_size"] = self._pool_size
        if self._max_overflow is not None:
            kwargs["max_overflow"] = self._max_overflow
        if self._pool_timeout is not None:
            kwargs["pool_timeout"] = self._pool_timeout
        if self._pool_recycle is not None:
            kwargs["pool_recycle"] = self._pool_recycle
        return kwargs

    def startup(self, *, create_tables: bool = True) -> None:
        if self._engine is not None:
            return
        engine = create_engine(self.url, **self._engine_kwargs())
        if self.is_sqlite:
            event.listen(engine, "connect", _set_sqlite_pragma)
        self._engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        if create_tables:
            # Import registers every mapped class on Base.metadata.
            import db.models  # noqa: F401

            Base.metadata.create_all(bind=engine)
        logger.info(f"Database started ({engine.dialect.name})")

    def shutdown(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database shut down")

    def session(self, label: str | None = None) -> BorrowedSession:
        if self._session_factory is None:
            raise RuntimeError("Database has not been started")
        return BorrowedSession(
            self._session_factory,
            warn_after_seconds=self.checkout_warn_seconds,
            label=label,
        )

    @contextmanager
    def transaction(self, label: str | None = None) -> Iterator[Session]:
        """Borrow a Session, commit on success, roll back on any exception."""
        with self.session(label) as db:
            yield db
            db.commit()


def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request):
    database = get_database(request)
    with database.session(label=f"{request.method} {request.url.path}") as db:
        yield db
