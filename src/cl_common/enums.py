"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class CycleStatus(str, Enum):
    PLANNED = "PLANNED"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class FillSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class ParticipationStatus(str, Enum):
    AWAITING_INVESTMENT = "AWAITING_INVESTMENT"
    OPTED_IN = "OPTED_IN"
    OPTED_OUT = "OPTED_OUT"
    AWAITING_PAYOUT = "AWAITING_PAYOUT"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"


# Participations whose capital is in the pool and that share in profit
VALIDATED_PARTICIPATION_STATUSES = (
    ParticipationStatus.OPTED_IN.value,
    ParticipationStatus.AWAITING_PAYOUT.value,
    ParticipationStatus.COMPLETED.value,
)


class RolloverType(str, Enum):
    """How much of a closed cycle's payout is reinvested in the successor."""
    FULL_PAYOUT = "FULL_PAYOUT"
    INITIAL_ONLY = "INITIAL_ONLY"
    CUSTOM_AMOUNT = "CUSTOM_AMOUNT"


class LedgerEntryType(str, Enum):
    DEPOSIT = "deposit"
    EXECUTION = "execution"     # buy (negative) / sell (positive) fill slice
    FEE = "fee"                 # broker / relist / transport
    PAYOUT = "payout"
    ROLLOVER = "rollover"
    REFUND = "refund"
    MATCH_ATTEMPT = "match_attempt"
    ADJUSTMENT = "adjustment"


class LedgerSource(str, Enum):
    WALLET_TRANSACTIONS = "wallet_transactions"
    WALLET_JOURNAL = "wallet_journal"
    OPERATOR = "operator"
    SYSTEM = "system"


class MatchStatus(str, Enum):
    LINKED = "linked"
    UNLINKED = "unlinked"
    MATCHED = "matched"
    REJECTED = "rejected"


class FeeType(str, Enum):
    TRANSPORT = "transport"
    BROKER = "broker"
    RELIST = "relist"


class AllocationStatus(str, Enum):
    ALLOCATED = "ALLOCATED"
    PARTIAL = "PARTIAL"
    UNMATCHED = "UNMATCHED"
    DUPLICATE = "DUPLICATE"
    MALFORMED = "MALFORMED"


class MatchOutcomeStatus(str, Enum):
    MATCHED = "MATCHED"
    AMBIGUOUS = "AMBIGUOUS"
    UNMATCHED = "UNMATCHED"
    DUPLICATE = "DUPLICATE"
    INCOMPATIBLE = "INCOMPATIBLE"
