# Overview: Unit-of-work helpers: row locking, bounded retry, rollback on failure.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StateConflict
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The optimistic version_id check still catches lost races there.
    """
    return query.with_for_update()


def _default_attempts() -> int:
    return int(current_app.config.get("CONCURRENCY_RETRY_ATTEMPTS", 3))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (locks) and StaleDataError (optimistic
    version conflicts). Each attempt re-runs func from scratch, so the
    transition guard is re-validated against fresh state: a writer that
    lost the race sees the winner's status and fails with StateConflict.

    Any other exception rolls the session back before propagating so a
    failed operation never leaves half-applied changes in the session.
    """
    if attempts is None:
        attempts = _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise StateConflict(
                    "Row was modified by a concurrent transaction",
                    action="concurrent_update",
                ) from exc
            logger.warning("stale row version, retrying (attempt %d/%d)", attempt + 1, attempts)
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("database busy, retrying (attempt %d/%d)", attempt + 1, attempts)
        except Exception:
            db.session.rollback()
            raise
        time.sleep(backoff_base * (2 ** attempt))
