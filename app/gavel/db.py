from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from flask import Flask, g, has_app_context
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.gavel.errors import Transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Write conflicts the transaction primitive absorbs by re-running the unit of work.
CONFLICT_ERRORS = (OperationalError, IntegrityError, StaleDataError)

# Backoff between attempts: base * 2**(attempt-1), capped, with +-50% jitter
_RETRY_BASE_DELAY = 0.01
_RETRY_MAX_DELAY = 0.5

# SQLSTATE 23505 (Postgres unique_violation)
_UNIQUE_VIOLATION = "23505"


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    is_postgres = db_url.startswith("postgres")
    is_sqlite = db_url.startswith("sqlite")
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if is_postgres:
        engine_kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
            }
        )
    if is_sqlite:
        engine_kwargs["connect_args"] = {"timeout": 15, "check_same_thread": False}
    engine = create_engine(db_url, **engine_kwargs)
    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _sqlite_fk_on(dbapi_connection, connection_record):  # type: ignore[no-redef]
            # ondelete="CASCADE" is only honoured with foreign keys enabled.
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()
    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.
    """
    if hasattr(g, "db_session") and g.db_session is not None:
        return g.db_session
    if app is None:
        from flask import current_app

        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        try:
            s.close()
        except Exception:
            logger.exception("Failed to close request DB session")
        g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts: yields a session and commits/rolls back.
    """
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def is_write_conflict(e: Exception) -> bool:
    """
    True for failures caused by a concurrent writer.
    Integrity errors count only when a unique constraint was hit (a racing
    insert); foreign-key, not-null and check violations are real errors.
    """
    if not isinstance(e, IntegrityError):
        return isinstance(e, CONFLICT_ERRORS)
    orig = getattr(e, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == _UNIQUE_VIOLATION
    return "unique constraint" in str(orig).lower()


def _retry_delay(attempt: int) -> float:
    delay = min(_RETRY_BASE_DELAY * 2 ** (attempt - 1), _RETRY_MAX_DELAY)
    return delay * random.uniform(0.5, 1.5)


def run_transaction(
    fn: Callable[[Session], T],
    *,
    app: Flask | None = None,
    max_attempts: int | None = None,
) -> T:
    """
    Atomic read-modify-write.

    Runs ``fn`` against a fresh session inside one database transaction and
    commits. Every read in ``fn`` sees the same transaction; every write
    commits together or not at all. Write conflicts (row version mismatch,
    unique-key race, lock/serialization failure) roll back and re-run ``fn``
    from scratch after a short jittered backoff, up to ``TX_MAX_ATTEMPTS``
    times, after which ``Transient`` is raised. Any other exception, including
    a non-unique integrity violation, rolls back and propagates unchanged.
    """
    if app is None:
        from flask import current_app

        app = current_app._get_current_object()  # type: ignore[attr-defined]
    attempts = max_attempts or int(app.config.get("TX_MAX_ATTEMPTS") or 5)
    sm = app.extensions["sqlalchemy_sessionmaker"]

    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        s: Session = sm()
        try:
            result = fn(s)
            s.commit()
            return result
        except CONFLICT_ERRORS as e:
            s.rollback()
            if not is_write_conflict(e):
                raise
            last_error = e
            logger.warning(
                "Transaction conflict (attempt %s/%s, request_id=%s): %s",
                attempt,
                attempts,
                getattr(g, "request_id", None) if has_app_context() else None,
                e.__class__.__name__,
            )
            if attempt < attempts:
                time.sleep(_retry_delay(attempt))
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    raise Transient("The request conflicted with concurrent changes; please retry.") from last_error
