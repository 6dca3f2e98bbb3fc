"""Request-scoped transaction handling for ledger-mutating operations."""

from __future__ import annotations

import logging
from functools import wraps

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from stockapp.errors import InventoryError, StorageError
from stockapp.extensions import db

logger = logging.getLogger(__name__)

# Lost races (deadlocks, dropped connections, concurrent inserts of the same
# unique key) succeed or fail cleanly when the whole operation is replayed.
TRANSIENT_ERRORS = (OperationalError, IntegrityError)


def _retry_attempts() -> int:
    try:
        attempts = int(current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 1))
    except (TypeError, ValueError):
        attempts = 1
    return max(attempts, 1)


def transactional(func):
    """Run ``func`` as one transaction: commit on success, roll back on error.

    Transient database failures replay the whole operation; when the attempts
    are exhausted the caller receives a :class:`StorageError` and no partial
    change has been committed.
    """

    @wraps(func)
    def wrapped(*args, **kwargs):
        attempts = _retry_attempts()
        for attempt in range(1, attempts + 1):
            try:
                result = func(*args, **kwargs)
                db.session.commit()
                return result
            except InventoryError:
                db.session.rollback()
                raise
            except TRANSIENT_ERRORS as exc:
                db.session.rollback()
                if attempt < attempts:
                    logger.warning(
                        "Transient database error in %s (attempt %s/%s): %s",
                        func.__name__,
                        attempt,
                        attempts,
                        exc,
                    )
                    continue
                logger.exception("Giving up on %s after %s attempts", func.__name__, attempts)
                raise StorageError(
                    "The database could not complete the operation; nothing was applied."
                ) from exc
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.exception("Database error in %s", func.__name__)
                raise StorageError(
                    "The operation could not be saved; nothing was applied."
                ) from exc

    return wrapped
