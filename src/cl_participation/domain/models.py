"""Domain models for cl_participation — pure dataclasses."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from src.cl_common.enums import MatchOutcomeStatus


@dataclass
class Participation:
    id: str
    cycle_id: str
    user_id: str | None
    character_name: str
    amount_cents: int
    profit_share_pct: Decimal            # 0..1
    status: str                          # ParticipationStatus value
    character_id: int | None = None
    memo: str | None = None
    wallet_journal_ref: str | None = None
    validated_at: datetime | None = None
    rollover_type: str | None = None     # RolloverType value
    rollover_requested_cents: int | None = None
    rollover_from_participation_id: str | None = None
    rollover_deducted_cents: int = 0
    payout_amount_cents: int | None = None
    payout_paid_at: datetime | None = None
    refunded_at: datetime | None = None
    opted_out_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_rollover(self) -> bool:
        return self.rollover_from_participation_id is not None


@dataclass
class CashEvent:
    """A normalized cash transfer (wallet journal or transaction style)."""

    ref_id: str
    amount_cents: int
    occurred_at: datetime
    character_id: int | None = None
    character_name: str | None = None
    is_wallet_journal: bool = True
    participation_id: str | None = None  # set once bound


@dataclass
class MatchOutcome:
    ref_id: str
    status: str                          # MatchOutcomeStatus value
    participation_id: str | None = None
    candidate_ids: list[str] = field(default_factory=list)
    reason: str | None = None


@dataclass
class MatchSummary:
    matched: int = 0
    ambiguous: int = 0
    unmatched: int = 0
    duplicates: int = 0
    incompatible: int = 0
    outcomes: list[MatchOutcome] = field(default_factory=list)

    def add(self, outcome: MatchOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == MatchOutcomeStatus.MATCHED.value:
            self.matched += 1
        elif outcome.status == MatchOutcomeStatus.AMBIGUOUS.value:
            self.ambiguous += 1
        elif outcome.status == MatchOutcomeStatus.DUPLICATE.value:
            self.duplicates += 1
        elif outcome.status == MatchOutcomeStatus.INCOMPATIBLE.value:
            self.incompatible += 1
        else:
            self.unmatched += 1
