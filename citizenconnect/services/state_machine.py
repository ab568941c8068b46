"""
Status machine for the complaint lifecycle.

This is the single source of truth for legal transitions - every status
change MUST be validated here before anything is written.
"""
from typing import Dict, List, NamedTuple, Optional, Union

from citizenconnect.models.enums import ComplaintStatus
from citizenconnect.services.errors import InvalidTransition

StatusLike = Union[ComplaintStatus, str]

# Directed graph, not a strict chain: each forward step has at most one revert.
ALLOWED_TRANSITIONS: Dict[ComplaintStatus, List[ComplaintStatus]] = {
    ComplaintStatus.RAISED: [ComplaintStatus.ACKNOWLEDGED],
    ComplaintStatus.ACKNOWLEDGED: [ComplaintStatus.IN_PROGRESS, ComplaintStatus.RAISED],
    ComplaintStatus.IN_PROGRESS: [ComplaintStatus.RESOLVED, ComplaintStatus.ACKNOWLEDGED],
    ComplaintStatus.RESOLVED: [ComplaintStatus.CLOSED, ComplaintStatus.IN_PROGRESS],
    ComplaintStatus.CLOSED: [],
}

PROGRESS_PERCENTAGE: Dict[ComplaintStatus, int] = {
    ComplaintStatus.RAISED: 20,
    ComplaintStatus.ACKNOWLEDGED: 40,
    ComplaintStatus.IN_PROGRESS: 60,
    ComplaintStatus.RESOLVED: 80,
    ComplaintStatus.CLOSED: 100,
}

DISPLAY_NAMES: Dict[ComplaintStatus, str] = {
    ComplaintStatus.RAISED: "Raised",
    ComplaintStatus.ACKNOWLEDGED: "Acknowledged",
    ComplaintStatus.IN_PROGRESS: "In Progress",
    ComplaintStatus.RESOLVED: "Resolved",
    ComplaintStatus.CLOSED: "Closed",
}

# Complaint attribute stamped the first time a status is entered
TIMESTAMP_FIELDS: Dict[ComplaintStatus, str] = {
    ComplaintStatus.ACKNOWLEDGED: "acknowledged_at",
    ComplaintStatus.IN_PROGRESS: "in_progress_at",
    ComplaintStatus.RESOLVED: "resolved_at",
    ComplaintStatus.CLOSED: "closed_at",
}


class TransitionResult(NamedTuple):
    valid: bool
    reason: Optional[str]
    allowed_next_statuses: List[ComplaintStatus]


def parse_status(value: StatusLike) -> Optional[ComplaintStatus]:
    """Return the matching status, or None when value is not a status."""
    if isinstance(value, ComplaintStatus):
        return value
    try:
        return ComplaintStatus(value)
    except ValueError:
        return None


def next_possible_statuses(current: StatusLike) -> List[ComplaintStatus]:
    status = parse_status(current)
    if status is None:
        return []
    return list(ALLOWED_TRANSITIONS[status])


def progress_percentage(status: StatusLike) -> int:
    parsed = parse_status(status)
    return PROGRESS_PERCENTAGE.get(parsed, 0)


def status_display_name(status: StatusLike) -> str:
    parsed = parse_status(status)
    if parsed is None:
        return str(status)
    return DISPLAY_NAMES[parsed]


def timestamp_field_for(status: StatusLike) -> Optional[str]:
    return TIMESTAMP_FIELDS.get(parse_status(status))


def validate_transition(current: StatusLike, next_status: StatusLike) -> TransitionResult:
    """
    Check whether current → next_status is legal.

    Invalid when:
    - next_status is not one of the five statuses
    - current is Closed (terminal)
    - next_status is not in current's allowed set
    """
    allowed = next_possible_statuses(current)
    target = parse_status(next_status)

    if target is None:
        valid_values = ", ".join(s.value for s in ComplaintStatus)
        return TransitionResult(
            False, f"Invalid status: {next_status}. Must be one of: {valid_values}", allowed
        )

    if parse_status(current) == ComplaintStatus.CLOSED:
        return TransitionResult(False, "Cannot change status of a closed complaint", allowed)

    if target not in allowed:
        current_value = getattr(current, "value", current)
        valid_next = ", ".join(s.value for s in allowed) or "None"
        return TransitionResult(
            False,
            f"Cannot transition from {current_value} to {target.value}. Valid next states: {valid_next}",
            allowed,
        )

    return TransitionResult(True, None, allowed)


def ensure_transition(current: StatusLike, next_status: StatusLike) -> ComplaintStatus:
    """Validate and return the parsed target status, or raise InvalidTransition."""
    result = validate_transition(current, next_status)
    if not result.valid:
        raise InvalidTransition(
            result.reason,
            current_status=getattr(current, "value", current),
            allowed_next_statuses=[s.value for s in result.allowed_next_statuses],
        )
    return parse_status(next_status)
