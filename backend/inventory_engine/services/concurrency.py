# Overview: Service-layer helpers for counter concurrency: row locks, bounded retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConcurrencyError


class RetryExhaustedError(ConcurrencyError):
    """A counter write lost every race within the retry budget."""
    code = "retry_exhausted"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Counter writes additionally use guarded UPDATEs, so correctness does not
    depend on the lock being honored.
    """
    return query.with_for_update()


def _default_attempts() -> int:
    return int(current_app.config.get("COUNTER_RETRY_ATTEMPTS", 2))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Exhaustion surfaces RetryExhaustedError.
    Domain errors raised by func propagate untouched on the first attempt.
    """
    if attempts is None:
        attempts = _default_attempts()
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Concurrent update still conflicting after %d attempt(s): %s", attempts, exc
                )
                raise RetryExhaustedError(
                    f"Concurrent update conflict persisted after {attempts} attempt(s)"
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
