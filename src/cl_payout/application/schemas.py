"""Payout request / response schemas."""

from decimal import Decimal

from pydantic import BaseModel, Field

from src.cl_common.money import format_isk
from src.cl_payout.domain.calculator import PayoutLine, PayoutPlan


class ApprovedPayout(BaseModel):
    participation_id: str
    amount_isk: Decimal = Field(..., ge=0)


class FinalizePayoutsRequest(BaseModel):
    approved: list[ApprovedPayout] = Field(default_factory=list)


class PayoutItem(BaseModel):
    participation_id: str
    user_id: str | None
    character_name: str
    investment_isk: str
    profit_share_pct: str
    profit_share_isk: str
    total_payout_isk: str

    @classmethod
    def from_line(cls, ln: PayoutLine) -> "PayoutItem":
        return cls(
            participation_id=ln.participation_id,
            user_id=ln.user_id,
            character_name=ln.character_name,
            investment_isk=format_isk(ln.amount_cents),
            profit_share_pct=str(ln.profit_share_pct),
            profit_share_isk=format_isk(ln.profit_share_cents),
            total_payout_isk=format_isk(ln.total_payout_cents),
        )


class PayoutSuggestionResponse(BaseModel):
    cycle_id: str
    cycle_profit_isk: str
    total_capital_isk: str
    profit_pool_isk: str
    total_payout_isk: str
    payouts: list[PayoutItem]

    @classmethod
    def from_plan(cls, cycle_id: str, plan: PayoutPlan) -> "PayoutSuggestionResponse":
        return cls(
            cycle_id=cycle_id,
            cycle_profit_isk=format_isk(plan.cycle_profit_cents),
            total_capital_isk=format_isk(plan.total_capital_cents),
            profit_pool_isk=format_isk(plan.pool_cents),
            total_payout_isk=format_isk(plan.total_payout_cents),
            payouts=[PayoutItem.from_line(ln) for ln in plan.lines],
        )


class FinalizedPayout(BaseModel):
    participation_id: str
    payout_amount_isk: str
    rollover_deducted_isk: str
    status: str


class FinalizePayoutsResponse(BaseModel):
    cycle_id: str
    finalized: list[FinalizedPayout]
    total_payout_isk: str
