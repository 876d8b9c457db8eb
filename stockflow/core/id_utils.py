import random
from datetime import datetime, timezone

import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_dated_code(prefix: str, *, now: datetime | None = None) -> str:
    """Return ``PREFIX-YYYYMMDD-NNN`` with a random 001-999 suffix.

    Collisions are possible; callers rely on the unique constraint and retry.
    """
    moment = now or datetime.now(timezone.utc)
    return f"{prefix}-{moment.strftime('%Y%m%d')}-{random.randint(1, 999):03d}"
