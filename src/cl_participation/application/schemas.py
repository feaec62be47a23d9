"""Request / response schemas for participations and cash transfers."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from src.cl_common.enums import RolloverType
from src.cl_common.money import format_isk
from src.cl_participation.domain.models import CashEvent, MatchOutcome, MatchSummary, Participation

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _check_rollover_amount(rollover_type: RolloverType | None, amount: Decimal | None) -> None:
    if rollover_type == RolloverType.CUSTOM_AMOUNT and amount is None:
        raise ValueError("CUSTOM_AMOUNT rollover requires an amount")


class CreateParticipationRequest(BaseModel):
    user_id: str | None = None
    character_name: str = Field(..., min_length=1, max_length=100)
    character_id: int | None = Field(None, gt=0)
    amount_isk: Decimal = Field(..., gt=0)
    profit_share_pct: Decimal | None = Field(None, ge=0, le=1)
    rollover_type: RolloverType | None = None
    rollover_requested_isk: Decimal | None = Field(None, gt=0)

    @field_validator("character_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("character_name must not be blank")
        return v

    @model_validator(mode="after")
    def custom_rollover_needs_amount(self) -> "CreateParticipationRequest":
        _check_rollover_amount(self.rollover_type, self.rollover_requested_isk)
        return self


class RolloverRequest(BaseModel):
    rollover_type: RolloverType | None  # None clears the request
    amount_isk: Decimal | None = Field(None, gt=0)

    @model_validator(mode="after")
    def custom_rollover_needs_amount(self) -> "RolloverRequest":
        _check_rollover_amount(self.rollover_type, self.amount_isk)
        return self


class ManualMatchRequest(BaseModel):
    ref_id: str = Field(..., min_length=1)
    amount_isk: Decimal | None = Field(None, gt=0)


class CashEventIn(BaseModel):
    ref_id: str = Field(..., min_length=1)
    amount_isk: Decimal
    occurred_at: datetime
    character_id: int | None = None
    character_name: str | None = None
    is_wallet_journal: bool = True


class IngestTransfersRequest(BaseModel):
    events: list[CashEventIn] = Field(..., min_length=1)


class MatchPendingRequest(BaseModel):
    cycle_id: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ParticipationResponse(BaseModel):
    id: str
    cycle_id: str
    user_id: str | None
    character_name: str
    character_id: int | None
    amount_isk: str
    profit_share_pct: str
    status: str
    memo: str | None
    wallet_journal_ref: str | None
    validated_at: datetime | None
    rollover_type: str | None
    rollover_requested_isk: str | None
    rollover_from_participation_id: str | None
    rollover_deducted_isk: str
    payout_amount_isk: str | None
    payout_paid_at: datetime | None
    refunded_at: datetime | None

    @classmethod
    def from_domain(cls, p: Participation) -> "ParticipationResponse":
        return cls(
            id=p.id,
            cycle_id=p.cycle_id,
            user_id=p.user_id,
            character_name=p.character_name,
            character_id=p.character_id,
            amount_isk=format_isk(p.amount_cents),
            profit_share_pct=str(p.profit_share_pct),
            status=p.status,
            memo=p.memo,
            wallet_journal_ref=p.wallet_journal_ref,
            validated_at=p.validated_at,
            rollover_type=p.rollover_type,
            rollover_requested_isk=(
                format_isk(p.rollover_requested_cents)
                if p.rollover_requested_cents is not None
                else None
            ),
            rollover_from_participation_id=p.rollover_from_participation_id,
            rollover_deducted_isk=format_isk(p.rollover_deducted_cents),
            payout_amount_isk=(
                format_isk(p.payout_amount_cents) if p.payout_amount_cents is not None else None
            ),
            payout_paid_at=p.payout_paid_at,
            refunded_at=p.refunded_at,
        )


class ParticipationListResponse(BaseModel):
    items: list[ParticipationResponse]


class TransferResponse(BaseModel):
    ref_id: str
    amount_isk: str
    occurred_at: datetime
    character_id: int | None
    character_name: str | None
    is_wallet_journal: bool
    participation_id: str | None

    @classmethod
    def from_domain(cls, e: CashEvent) -> "TransferResponse":
        return cls(
            ref_id=e.ref_id,
            amount_isk=format_isk(e.amount_cents),
            occurred_at=e.occurred_at,
            character_id=e.character_id,
            character_name=e.character_name,
            is_wallet_journal=e.is_wallet_journal,
            participation_id=e.participation_id,
        )


class TransferListResponse(BaseModel):
    items: list[TransferResponse]


class IngestTransfersResponse(BaseModel):
    inserted: int
    duplicates: int
    malformed: int
    errors: list[str]


class MatchOutcomeResponse(BaseModel):
    ref_id: str
    status: str
    participation_id: str | None
    candidate_ids: list[str]
    reason: str | None

    @classmethod
    def from_domain(cls, o: MatchOutcome) -> "MatchOutcomeResponse":
        return cls(
            ref_id=o.ref_id,
            status=o.status,
            participation_id=o.participation_id,
            candidate_ids=list(o.candidate_ids),
            reason=o.reason,
        )


class MatchSummaryResponse(BaseModel):
    cycle_id: str
    matched: int
    ambiguous: int
    unmatched: int
    duplicates: int
    incompatible: int
    outcomes: list[MatchOutcomeResponse]

    @classmethod
    def from_domain(cls, cycle_id: str, s: MatchSummary) -> "MatchSummaryResponse":
        return cls(
            cycle_id=cycle_id,
            matched=s.matched,
            ambiguous=s.ambiguous,
            unmatched=s.unmatched,
            duplicates=s.duplicates,
            incompatible=s.incompatible,
            outcomes=[MatchOutcomeResponse.from_domain(o) for o in s.outcomes],
        )
