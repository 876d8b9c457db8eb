from enum import Enum

from stockflow.core.errors import AlreadyReturnedError, ValidationError


class LoanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"


_TRANSITIONS: dict[LoanStatus, frozenset[LoanStatus]] = {
    LoanStatus.ACTIVE: frozenset({LoanStatus.OVERDUE, LoanStatus.RETURNED}),
    LoanStatus.OVERDUE: frozenset({LoanStatus.RETURNED}),
    LoanStatus.RETURNED: frozenset(),
}


def parse_status(value: str | LoanStatus) -> LoanStatus:
    try:
        return LoanStatus(str(value.value if isinstance(value, LoanStatus) else value).upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown loan status '{value}'") from exc


def can_transition(current: str | LoanStatus, target: str | LoanStatus) -> bool:
    return parse_status(target) in _TRANSITIONS[parse_status(current)]


def transition(current: str | LoanStatus, target: str | LoanStatus) -> LoanStatus:
    """Return ``target`` if the edge is allowed; RETURNED is terminal."""
    source = parse_status(current)
    destination = parse_status(target)
    if source is LoanStatus.RETURNED:
        raise AlreadyReturnedError("Loan already returned")
    if destination not in _TRANSITIONS[source]:
        raise ValidationError(f"Loan cannot move from {source.value} to {destination.value}")
    return destination


def statuses_that_can_become(target: LoanStatus) -> list[str]:
    return [status.value for status, allowed in _TRANSITIONS.items() if target in allowed]
