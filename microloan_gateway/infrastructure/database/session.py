"""Database session management with connection pooling and retried units of work"""

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from microloan_gateway.config import settings
from microloan_gateway.domain.exceptions import ConcurrentAwardError, TransientStoreError
from microloan_gateway.infrastructure.observability.metrics import store_retry_counter

logger = logging.getLogger(__name__)

# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Deadlocks, lock/statement timeouts, version conflicts and lost unique-key or award races
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError, ConcurrentAwardError)

T = TypeVar("T")


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _bound_statement_time(db: Session, timeout_ms: int) -> None:
    """Cap each statement of the unit at timeout_ms (Postgres only); the total is tracked by the caller"""
    if timeout_ms > 0 and db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    max_retries: int | None = None,
    backoff_base: float | None = None,
    timeout_ms: int | None = None,
) -> T:
    """
    Run work() as one atomic unit and commit it.

    Retry strategy:
    - Retryable store errors roll the unit back and re-run it with
      exponential backoff: base, 2*base, 4*base, ...
    - After max_retries attempts, or once timeout_ms has elapsed since the
      first attempt started, a TransientStoreError is raised; nothing from
      the failed attempts is left behind
    - Any other exception rolls back and propagates unchanged

    On Postgres timeout_ms also becomes the statement_timeout of every
    statement, so a single stuck statement cannot outlive the unit's budget.
    The budget across statements and retries is checked between attempts.

    work() must be idempotent across attempts: it re-reads everything it
    needs from the session on every run.
    """
    max_retries = settings.store_max_retries if max_retries is None else max_retries
    backoff_base = settings.store_backoff_base if backoff_base is None else backoff_base
    timeout_ms = settings.transaction_timeout_ms if timeout_ms is None else timeout_ms

    started = time.monotonic()
    attempt = 0
    while True:
        try:
            _bound_statement_time(db, timeout_ms)
            result = work()
            db.commit()
            return result

        except RETRYABLE_ERRORS as e:
            db.rollback()
            attempt += 1
            store_retry_counter.labels(error=type(e).__name__).inc()

            elapsed_ms = (time.monotonic() - started) * 1000
            if attempt >= max_retries or (timeout_ms > 0 and elapsed_ms >= timeout_ms):
                logger.error(
                    "Unit of work failed after retries",
                    extra={"attempts": attempt, "elapsed_ms": round(elapsed_ms, 1), "error": str(e)},
                )
                raise TransientStoreError(f"Store unavailable after {attempt} attempts") from e

            backoff = backoff_base * (2 ** (attempt - 1))
            logger.warning(
                "Retrying unit of work",
                extra={"attempt": attempt, "backoff_seconds": backoff, "error": type(e).__name__},
            )
            time.sleep(backoff)

        except Exception:
            db.rollback()
            raise
