# Overview: Unit-of-work helpers: row locking, retry and error translation.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict, PersistenceFailure
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Version columns on the locked rows still catch lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one unit of work, retrying on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session back
    and propagates unchanged. When retries run out, StaleDataError becomes
    ConcurrencyConflict and OperationalError becomes PersistenceFailure.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(
                    "Record was modified concurrently; retry the request",
                    details={"attempts": attempts},
                ) from exc
            logger.warning("Stale version on attempt %s/%s, retrying", attempt + 1, attempts)
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceFailure(
                    "Storage layer unavailable",
                    details={"attempts": attempts},
                ) from exc
            logger.warning("Operational error on attempt %s/%s, retrying: %s", attempt + 1, attempts, exc)
        except Exception:
            db.session.rollback()
            raise
        time.sleep(backoff_base * (2 ** attempt))


def atomic(func, **retry_kwargs):
    """Run func as a unit of work and commit it; roll back on any failure."""
    def _op():
        result = func()
        db.session.commit()
        return result
    return run_with_retry(_op, **retry_kwargs)
