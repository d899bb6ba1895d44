import logging
from time import perf_counter

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.infrastructure.db.base import Base
from app.infrastructure.observability.metrics import observe_db_query

logger = logging.getLogger(__name__)


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_started_at_stack", []).append(perf_counter())


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    stack = conn.info.get("query_started_at_stack", [])
    if not stack:
        return
    started_at = stack.pop(-1)
    observe_db_query(perf_counter() - started_at, operation="sync_sql")


def _is_sqlite_memory_url(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.split("://", 1)[-1] in {"", "/"})


class Database:
    """Process-scoped engine and session factory with an explicit open/close lifecycle."""

    def __init__(self, url: str, **engine_options) -> None:
        self.url = url
        self._engine_options = engine_options
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    def open(self) -> "Database":
        if self._engine is not None:
            return self
        options = {"pool_pre_ping": True, **self._engine_options}
        if self.url.startswith("sqlite"):
            options.setdefault("connect_args", {"check_same_thread": False})
            if _is_sqlite_memory_url(self.url):
                options.setdefault("poolclass", StaticPool)
        engine = create_engine(self.url, **options)
        event.listen(engine, "before_cursor_execute", _before_cursor_execute)
        event.listen(engine, "after_cursor_execute", _after_cursor_execute)
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        logger.info("database_opened dialect=%s", engine.dialect.name)
        return self

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("database_closed")

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory()

    def create_all(self) -> None:
        from app.domain import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)


def get_database(request: Request) -> Database:
    return request.app.state.database
