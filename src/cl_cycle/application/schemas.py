"""Request / response schemas for the cycle API.

Money crosses the boundary as 2-decimal ISK (Decimal in, string out) and is
held as int cents everywhere else.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from src.cl_common.money import format_isk, format_unit_cost
from src.cl_cycle.domain.models import (
    Cycle,
    CycleLine,
    CycleProfit,
    CycleSnapshot,
    FeeEvent,
    PlanCommit,
)

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class PlanCycleRequest(BaseModel):
    name: str | None = Field(None, max_length=200)
    started_at: datetime
    initial_injection_isk: Decimal = Field(Decimal("0"), ge=0)


class UpdatePlannedCycleRequest(BaseModel):
    name: str | None = Field(None, max_length=200)
    started_at: datetime | None = None
    initial_injection_isk: Decimal | None = Field(None, ge=0)


class CloseCycleRequest(BaseModel):
    successor_cycle_id: str | None = None


class CreateLineRequest(BaseModel):
    type_id: int = Field(..., gt=0)
    destination_station_id: int = Field(..., gt=0)
    planned_units: int = Field(..., gt=0)


class CommitPlanRequest(BaseModel):
    memo: str | None = Field(None, max_length=500)
    lines: list[CreateLineRequest] = Field(..., min_length=1)

    @field_validator("lines")
    @classmethod
    def unique_keys(cls, v: list[CreateLineRequest]) -> list[CreateLineRequest]:
        keys = [(ln.type_id, ln.destination_station_id) for ln in v]
        if len(keys) != len(set(keys)):
            raise ValueError("lines must not repeat a (type_id, destination_station_id) pair")
        return v


class UpdateLineRequest(BaseModel):
    planned_units: int = Field(..., gt=0)


class MarkListedRequest(BaseModel):
    units: int = Field(..., ge=0)


class FeeRequest(BaseModel):
    amount_isk: Decimal = Field(..., gt=0)
    memo: str | None = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class CycleResponse(BaseModel):
    id: str
    name: str | None
    status: str
    started_at: datetime
    closed_at: datetime | None
    initial_injection_cents: int
    initial_injection_isk: str
    initial_capital_cents: int | None
    initial_capital_isk: str | None

    @classmethod
    def from_domain(cls, c: Cycle) -> "CycleResponse":
        return cls(
            id=c.id,
            name=c.name,
            status=c.status,
            started_at=c.started_at,
            closed_at=c.closed_at,
            initial_injection_cents=c.initial_injection_cents,
            initial_injection_isk=format_isk(c.initial_injection_cents),
            initial_capital_cents=c.initial_capital_cents,
            initial_capital_isk=(
                format_isk(c.initial_capital_cents) if c.initial_capital_cents is not None else None
            ),
        )


class CycleListResponse(BaseModel):
    items: list[CycleResponse]


class LineResponse(BaseModel):
    id: str
    cycle_id: str
    type_id: int
    destination_station_id: int
    planned_units: int
    units_bought: int
    units_sold: int
    units_remaining: int
    listed_units: int
    buy_cost_isk: str
    wac_unit_cost_isk: str
    sales_gross_isk: str
    sales_tax_isk: str
    sales_net_isk: str
    broker_fees_isk: str
    relist_fees_isk: str
    line_profit_isk: str
    is_rollover: bool
    rollover_from_cycle_id: str | None
    rollover_from_line_id: str | None
    plan_commit_id: str | None

    @classmethod
    def from_domain(cls, ln: CycleLine) -> "LineResponse":
        return cls(
            id=ln.id,
            cycle_id=ln.cycle_id,
            type_id=ln.type_id,
            destination_station_id=ln.destination_station_id,
            planned_units=ln.planned_units,
            units_bought=ln.units_bought,
            units_sold=ln.units_sold,
            units_remaining=ln.units_remaining,
            listed_units=ln.listed_units,
            buy_cost_isk=format_isk(ln.buy_cost_cents),
            wac_unit_cost_isk=format_unit_cost(ln.wac_unit_cost),
            sales_gross_isk=format_isk(ln.sales_gross_cents),
            sales_tax_isk=format_isk(ln.sales_tax_cents),
            sales_net_isk=format_isk(ln.sales_net_cents),
            broker_fees_isk=format_isk(ln.broker_fees_cents),
            relist_fees_isk=format_isk(ln.relist_fees_cents),
            line_profit_isk=format_isk(ln.line_profit_cents),
            is_rollover=ln.is_rollover,
            rollover_from_cycle_id=ln.rollover_from_cycle_id,
            rollover_from_line_id=ln.rollover_from_line_id,
            plan_commit_id=ln.plan_commit_id,
        )


class LineListResponse(BaseModel):
    items: list[LineResponse]


class PlanCommitResponse(BaseModel):
    id: str
    cycle_id: str
    memo: str | None
    lines: list[LineResponse]

    @classmethod
    def from_domain(cls, commit: PlanCommit, lines: list[CycleLine]) -> "PlanCommitResponse":
        return cls(
            id=commit.id,
            cycle_id=commit.cycle_id,
            memo=commit.memo,
            lines=[LineResponse.from_domain(ln) for ln in lines],
        )


class CommitLineStatus(BaseModel):
    line_id: str
    type_id: int
    destination_station_id: int
    planned_units: int
    units_bought: int
    units_sold: int
    units_remaining: int
    buy_progress_pct: str
    sell_progress_pct: str


class CommitStatusResponse(BaseModel):
    commit_id: str
    cycle_id: str
    lines: list[CommitLineStatus]
    total_buys_isk: str
    total_sells_isk: str
    total_fees_isk: str
    ledger_entries: int


class FeeResponse(BaseModel):
    id: int
    cycle_id: str
    fee_type: str
    amount_isk: str
    memo: str | None

    @classmethod
    def from_event(cls, fee: FeeEvent) -> "FeeResponse":
        return cls(
            id=fee.id,
            cycle_id=fee.cycle_id,
            fee_type=fee.fee_type,
            amount_isk=format_isk(fee.amount_cents),
            memo=fee.memo,
        )


class SnapshotResponse(BaseModel):
    id: int
    cycle_id: str
    wallet_cash_isk: str
    inventory_isk: str
    cycle_profit_isk: str
    snapshot_at: datetime

    @classmethod
    def from_domain(cls, s: CycleSnapshot) -> "SnapshotResponse":
        return cls(
            id=s.id,
            cycle_id=s.cycle_id,
            wallet_cash_isk=format_isk(s.wallet_cash_cents),
            inventory_isk=format_isk(s.inventory_cents),
            cycle_profit_isk=format_isk(s.cycle_profit_cents),
            snapshot_at=s.snapshot_at,
        )


class LineProfitItem(BaseModel):
    line_id: str
    type_id: int
    destination_station_id: int
    profit_isk: str


class ProfitResponse(BaseModel):
    cycle_id: str
    line_profit_excl_transport_isk: str
    transport_fees_isk: str
    cycle_profit_isk: str
    lines: list[LineProfitItem]

    @classmethod
    def from_domain(cls, cycle_id: str, p: CycleProfit) -> "ProfitResponse":
        return cls(
            cycle_id=cycle_id,
            line_profit_excl_transport_isk=format_isk(p.line_profit_excl_transport_cents),
            transport_fees_isk=format_isk(p.transport_fees_cents),
            cycle_profit_isk=format_isk(p.cycle_profit_cents),
            lines=[
                LineProfitItem(
                    line_id=lp.line_id,
                    type_id=lp.type_id,
                    destination_station_id=lp.destination_station_id,
                    profit_isk=format_isk(lp.profit_cents),
                )
                for lp in p.lines
            ],
        )


class CloseCycleResponse(BaseModel):
    cycle: CycleResponse
    successor_cycle_id: str | None
    snapshot: SnapshotResponse
    cycle_profit_isk: str
    rollover_lines: int
    rollover_participations: int
    payouts: int
    total_payout_isk: str


class InvariantReport(BaseModel):
    cycles_checked: int
    violations: list[str]
    ok: bool
