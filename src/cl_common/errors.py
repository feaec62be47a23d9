"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Cycle lifecycle / state conflicts / concurrency
  2xxx: Cycle lines / allocation invariants / plan commits
  3xxx: Participations / cash transfers
  4xxx: Malformed external events
  5xxx: Payouts
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Cycle ---

class CycleNotFoundError(AppError):
    def __init__(self, cycle_id: str) -> None:
        super().__init__(1001, f"Cycle not found: {cycle_id}", 404)


class CycleStateConflictError(AppError):
    """Operator action attempted on a cycle in the wrong state."""

    def __init__(self, cycle_id: str, current: str, required: str, action: str) -> None:
        self.current = current
        self.required = required
        super().__init__(
            1002,
            f"Cannot {action} cycle {cycle_id}: status is {current}, requires {required}",
            409,
        )


class CycleBusyError(AppError):
    """Another close (or allocation batch) holds the cycle lock; retry later."""

    def __init__(self, cycle_id: str) -> None:
        super().__init__(1003, f"Cycle {cycle_id} is locked by another operation, retry", 409)


class NoSuccessorCycleError(AppError):
    def __init__(self, cycle_id: str) -> None:
        super().__init__(
            1004,
            f"Cycle {cycle_id} has rollover work but no PLANNED successor cycle; plan one first",
            409,
        )


class AnotherCycleOpenError(AppError):
    def __init__(self, open_cycle_id: str) -> None:
        super().__init__(1005, f"Cycle {open_cycle_id} is already OPEN; close it first", 409)


class NoOpenCycleError(AppError):
    def __init__(self) -> None:
        super().__init__(1006, "No OPEN cycle found", 404)


# --- 2xxx: Lines / invariants ---

class CycleLineNotFoundError(AppError):
    def __init__(self, line_id: str) -> None:
        super().__init__(2001, f"Cycle line not found: {line_id}", 404)


class DuplicateCycleLineError(AppError):
    def __init__(self, cycle_id: str, type_id: int, station_id: int) -> None:
        super().__init__(
            2002,
            f"Cycle {cycle_id} already has a line for type {type_id} at station {station_id}",
            409,
        )


class InvariantViolationError(AppError):
    """A write would break a ledger invariant. `invariant` names the rule."""

    def __init__(self, invariant: str, detail: str) -> None:
        self.invariant = invariant
        super().__init__(2003, f"Invariant {invariant} violated: {detail}", 422)


class PlanCommitNotFoundError(AppError):
    def __init__(self, commit_id: str) -> None:
        super().__init__(2004, f"Plan commit not found: {commit_id}", 404)


# --- 3xxx: Participations ---

class ParticipationNotFoundError(AppError):
    def __init__(self, participation_id: str) -> None:
        super().__init__(3001, f"Participation not found: {participation_id}", 404)


class ParticipationStateError(AppError):
    def __init__(self, participation_id: str, current: str, required: str) -> None:
        super().__init__(
            3002,
            f"Participation {participation_id} is {current}, requires {required}",
            409,
        )


class AmountMismatchError(AppError):
    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(3003, f"Amount mismatch: expected {expected} ISK, got {actual} ISK", 422)


class TransferNotFoundError(AppError):
    def __init__(self, ref_id: str) -> None:
        super().__init__(3004, f"Cash transfer not found: {ref_id}", 404)


class TransferAlreadyMatchedError(AppError):
    def __init__(self, ref_id: str, participation_id: str) -> None:
        super().__init__(
            3005,
            f"Cash transfer {ref_id} is already bound to participation {participation_id}",
            409,
        )


class DuplicateParticipationError(AppError):
    def __init__(self, cycle_id: str, user_id: str) -> None:
        super().__init__(3006, f"User {user_id} already participates in cycle {cycle_id}", 409)


# --- 4xxx: External events ---

class MalformedEventError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4001, f"Malformed event: {detail}", 422)


# --- 5xxx: Payouts ---

class PayoutNotComputedError(AppError):
    def __init__(self, participation_id: str) -> None:
        super().__init__(5001, f"No payout computed for participation {participation_id}", 409)


class PayoutAlreadySentError(AppError):
    def __init__(self, participation_id: str) -> None:
        super().__init__(5002, f"Payout already sent for participation {participation_id}", 409)


class InvalidProfitShareError(AppError):
    def __init__(self, value: object) -> None:
        super().__init__(5003, f"Profit share must be within 0..1, got {value}", 422)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
