import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import ConflictError
from stockflow.core.id_utils import generate_dated_code
from stockflow.core.observability import log_event
from stockflow.db.transactions import run_in_transaction

T = TypeVar("T")

logger = logging.getLogger("stockflow.ledger")


def run_with_generated_code(
    db: Session,
    prefix: str,
    work: Callable[[str], T],
    *,
    attempts: int | None = None,
    generate: Callable[[str], str] = generate_dated_code,
) -> T:
    """
    Run ``work(code)`` in a transaction with a freshly generated ``PREFIX-YYYYMMDD-NNN``.

    A unique-constraint collision rolls the whole unit back and retries with a
    new code; the last collision surfaces as :class:`ConflictError`.
    """
    max_attempts = attempts or settings.code_generation_attempts
    for attempt in range(1, max_attempts + 1):
        code = generate(prefix)
        try:
            return run_in_transaction(
                db,
                lambda: work(code),
                conflict_message=f"Generated code {code} is already in use",
            )
        except ConflictError:
            log_event(
                logger,
                "code_collision",
                level=logging.WARNING,
                prefix=prefix,
                code=code,
                attempt=attempt,
            )
            if attempt >= max_attempts:
                raise
    raise ConflictError(f"Could not allocate a unique {prefix} code")
