# Overview: Row locking and retry helpers shared by every workflow transition.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for status-changing operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id_col
    check on flush is what detects a concurrent write.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a workflow operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, busy database) and StaleDataError
    (optimistic locking conflicts). The operation re-reads its rows on every
    attempt, so a retried transition re-checks its expected pre-state.

    A StaleDataError that survives every attempt is reported as
    ConcurrencyConflict instead of overwriting the other writer.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, StaleDataError):
                    raise ConcurrencyConflict("Row was modified concurrently; reload and retry") from exc
                raise
            logger.warning("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
