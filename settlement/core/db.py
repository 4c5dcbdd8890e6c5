"""
Database connection and instrumentation with Prometheus metrics
"""

import time
import re
from contextlib import contextmanager
from typing import Generator

from sqlmodel import create_engine, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from settlement.core.config import settings
from settlement.core.metrics import (
    db_pool_in_use,
    db_pool_available,
    db_pool_wait_seconds,
    db_query_duration_seconds,
    db_queries_total,
    db_query_errors_total,
)


def build_engine(url: str) -> Engine:
    """
    Create an instrumented engine for the given database URL.

    PostgreSQL gets a sized connection pool. SQLite (local runs and tests) gets a
    single shared connection so an in-memory database survives across sessions.
    """
    if url.startswith("sqlite"):
        new_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        new_engine = create_engine(
            url,
            pool_size=10,  # Maximum number of connections to keep in pool
            max_overflow=20,  # Maximum connections that can be created beyond pool_size
            pool_pre_ping=True,  # Verify connections before using them
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    instrument_engine(new_engine)
    return new_engine


# =============================================================================
# CONNECTION POOL METRICS
# =============================================================================


def update_pool_metrics(target: Engine) -> None:
    """Update connection pool metrics"""
    pool_obj = target.pool
    if not hasattr(pool_obj, "checkedout"):
        # StaticPool / NullPool expose no counters
        return

    checked_out = pool_obj.checkedout()  # type: ignore[attr-defined]
    size = pool_obj.size() if hasattr(pool_obj, "size") else 0  # type: ignore[attr-defined]
    overflow = pool_obj.overflow() if hasattr(pool_obj, "overflow") else 0  # type: ignore[attr-defined]

    db_pool_in_use.set(checked_out)
    db_pool_available.set(size - checked_out + overflow)


# =============================================================================
# QUERY METRICS
# =============================================================================


def _extract_operation_and_table(statement: str) -> tuple[str, str]:
    """
    Extract operation type and table name from SQL statement

    Returns:
        Tuple of (operation, table) where operation is select/insert/update/delete
    """
    normalized = " ".join(statement.lower().split())

    if normalized.startswith("select"):
        operation = "select"
    elif normalized.startswith("insert"):
        operation = "insert"
    elif normalized.startswith("update"):
        operation = "update"
    elif normalized.startswith("delete"):
        operation = "delete"
    else:
        operation = "other"

    # First table mentioned after FROM / INTO / UPDATE / JOIN
    table_match = re.search(
        r"(?:from|into|update|join)\s+([a-z_][a-z0-9_]*)",
        normalized
    )
    table = table_match.group(1) if table_match else "unknown"

    return operation, table


def _categorize_error(exception: BaseException) -> str:
    error_type = type(exception).__name__.lower()

    if "timeout" in error_type:
        return "timeout"
    if "constraint" in error_type or "integrity" in error_type:
        return "constraint"
    if "connection" in error_type:
        return "connection"
    return "other"


def instrument_engine(target: Engine) -> None:
    """Attach pool and query metric listeners to an engine"""

    @event.listens_for(target, "connect")
    def receive_connect(dbapi_conn, connection_record):
        update_pool_metrics(target)

    @event.listens_for(target, "checkout")
    def receive_checkout(dbapi_conn, connection_record, connection_proxy):
        connection_record.info["checkout_start"] = time.time()
        update_pool_metrics(target)

    @event.listens_for(target, "checkin")
    def receive_checkin(dbapi_conn, connection_record):
        if "checkout_start" in connection_record.info:
            wait_time = time.time() - connection_record.info["checkout_start"]
            db_pool_wait_seconds.observe(wait_time)
            del connection_record.info["checkout_start"]

        update_pool_metrics(target)

    @event.listens_for(target, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = time.time()

    @event.listens_for(target, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if hasattr(context, "_query_start_time"):
            duration = time.time() - context._query_start_time
            operation, table = _extract_operation_and_table(statement)

            db_query_duration_seconds.labels(
                operation=operation,
                table=table
            ).observe(duration)

            db_queries_total.labels(operation=operation).inc()

    @event.listens_for(target, "handle_error")
    def handle_error(exception_context):
        error_category = _categorize_error(exception_context.original_exception)
        db_query_errors_total.labels(error_type=error_category).inc()


engine = build_engine(str(settings.SQLALCHEMY_DATABASE_URI))


# =============================================================================
# INSTRUMENTED SESSION CONTEXT MANAGER
# =============================================================================


@contextmanager
def get_instrumented_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic metric tracking

    Used by the background consumer and worker, which run outside FastAPI's
    dependency injection.

    Usage:
        with get_instrumented_session() as session:
            session.exec(...)
    """
    wait_start = time.time()
    session = Session(engine)
    wait_duration = time.time() - wait_start
    db_pool_wait_seconds.observe(wait_duration)

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
        update_pool_metrics(engine)
