# Overview: Service-layer helpers for transactions, row locking and caller-side retries.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import scoped_session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BillingError, ConflictError, InternalError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the unit of work takes the write lock up front instead.
    """
    return query.with_for_update()


def _begin(session) -> None:
    # Flask-SQLAlchemy hands out a scoped_session registry, not a Session.
    if isinstance(session, scoped_session):
        session = session()
    if session.in_transaction():
        return
    if session.get_bind().dialect.name == "sqlite":
        session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def unit_of_work(session):
    """
    Run a block as one all-or-nothing transaction.

    Commits when the block exits normally and rolls back every applied step
    on any failure. Store errors are translated:
    - StaleDataError / IntegrityError -> ConflictError (lost race)
    - any other SQLAlchemyError -> InternalError, logged with traceback
    Business errors propagate unchanged.
    """
    _begin(session)
    try:
        yield session
        session.commit()
    except BillingError:
        session.rollback()
        raise
    except StaleDataError as exc:
        session.rollback()
        raise ConflictError("Concurrent modification detected, please retry") from exc
    except sa_exc.IntegrityError as exc:
        session.rollback()
        raise ConflictError("Conflicting write rejected by the store", details={"reason": str(exc.orig)}) from exc
    except sa_exc.SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Store failure inside unit of work")
        raise InternalError() from exc
    except Exception:
        session.rollback()
        raise


def run_with_retry(func, *, retry_on=(ConflictError,), attempts: int = 3, backoff_base: float = 0.1):
    """
    Caller-side retry with exponential backoff.

    The billing core never retries by itself; request handlers use this for
    operations where a retry is known to be safe (draft creation racing on
    the active-draft constraint).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
