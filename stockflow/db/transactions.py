import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import ConflictError, StockFlowError, TransientStoreError
from stockflow.core.observability import log_event

T = TypeVar("T")

logger = logging.getLogger("stockflow.ledger")


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    *,
    attempts: int | None = None,
    backoff_base: float = 0.05,
    conflict_message: str = "Record conflicts with existing data",
) -> T:
    """
    Run ``work`` and commit it as one unit, rolling back on any failure.

    ``work`` must be safe to call again from scratch: on transient store
    failures (lock timeouts, serialization failures, dropped connections) the
    session is rolled back and the whole unit is replayed.
    """
    max_attempts = attempts or settings.db_transient_retry_attempts
    for attempt in range(1, max_attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except StockFlowError:
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(conflict_message) from exc
        except (DBAPIError, PoolTimeoutError) as exc:
            db.rollback()
            if not _is_transient(exc):
                raise
            log_event(
                logger,
                "transaction_retry",
                level=logging.WARNING,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(exc.__class__.__name__),
            )
            if attempt >= max_attempts:
                raise TransientStoreError(
                    "The data store is temporarily unavailable. Please retry."
                ) from exc
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.rollback()
            raise
    raise TransientStoreError("The data store is temporarily unavailable. Please retry.")
