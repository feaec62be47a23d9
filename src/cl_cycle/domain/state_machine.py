"""Cycle state machine: PLANNED -> OPEN -> CLOSED, forward only."""

from src.cl_common.enums import CycleStatus
from src.cl_common.errors import CycleStateConflictError

_TRANSITIONS: dict[CycleStatus, CycleStatus] = {
    CycleStatus.PLANNED: CycleStatus.OPEN,
    CycleStatus.OPEN: CycleStatus.CLOSED,
}

_ACTIONS: dict[CycleStatus, str] = {
    CycleStatus.OPEN: "open",
    CycleStatus.CLOSED: "close",
}


def can_transition(current: str, target: str) -> bool:
    return _TRANSITIONS.get(CycleStatus(current)) == CycleStatus(target)


def require_transition(cycle_id: str, current: str, target: str) -> None:
    """Raise CycleStateConflictError unless current -> target is the next step."""
    if can_transition(current, target):
        return
    required = next(src for src, dst in _TRANSITIONS.items() if dst == CycleStatus(target))
    raise CycleStateConflictError(
        cycle_id,
        current,
        required.value,
        _ACTIONS.get(CycleStatus(target), "transition"),
    )


def require_status(cycle_id: str, current: str, required: CycleStatus, action: str) -> None:
    if current != required.value:
        raise CycleStateConflictError(cycle_id, current, required.value, action)
