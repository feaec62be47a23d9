"""Fill ingestion / reconciliation schemas.

FillIn is deliberately loose: a malformed fill must reach the validator and
be counted, not fail request validation for the whole batch.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.cl_common.money import format_isk
from src.cl_allocation.domain.models import AllocationOutcome, ReconcileSummary, UnmatchedFill


class FillIn(BaseModel):
    side: str | None = None
    type_id: Any = None
    station_id: Any = None
    quantity: Any = None
    unit_price_isk: Any = None
    external_ref_id: str | None = None
    occurred_at: datetime | None = None
    character_id: int | None = None


class IngestFillsRequest(BaseModel):
    fills: list[FillIn] = Field(..., min_length=1)


class ReconcileRequest(BaseModel):
    cycle_id: str | None = None


class IngestFillsResponse(BaseModel):
    inserted: int
    duplicates: int
    malformed: int
    errors: list[str]


class SliceItem(BaseModel):
    line_id: str
    quantity: int
    amount_isk: str
    tax_isk: str


class AllocationOutcomeResponse(BaseModel):
    external_ref_id: str
    side: str | None
    status: str
    applied_quantity: int
    unallocated_quantity: int
    slices: list[SliceItem]
    reason: str | None

    @classmethod
    def from_domain(cls, o: AllocationOutcome) -> "AllocationOutcomeResponse":
        return cls(
            external_ref_id=o.external_ref_id,
            side=o.side,
            status=o.status,
            applied_quantity=o.applied_quantity,
            unallocated_quantity=o.unallocated_quantity,
            slices=[
                SliceItem(
                    line_id=s.line_id,
                    quantity=s.quantity,
                    amount_isk=format_isk(s.amount_cents),
                    tax_isk=format_isk(s.tax_cents),
                )
                for s in o.slices
            ],
            reason=o.reason,
        )


class ReconcileSummaryResponse(BaseModel):
    cycle_id: str
    buys_allocated: int
    sells_allocated: int
    unmatched_buys: int
    unmatched_sells: int
    duplicates: int
    malformed: int
    outcomes: list[AllocationOutcomeResponse]

    @classmethod
    def from_domain(cls, cycle_id: str, s: ReconcileSummary) -> "ReconcileSummaryResponse":
        return cls(
            cycle_id=cycle_id,
            buys_allocated=s.buys_allocated,
            sells_allocated=s.sells_allocated,
            unmatched_buys=s.unmatched_buys,
            unmatched_sells=s.unmatched_sells,
            duplicates=s.duplicates,
            malformed=s.malformed,
            outcomes=[AllocationOutcomeResponse.from_domain(o) for o in s.outcomes],
        )


class UnmatchedFillItem(BaseModel):
    external_ref_id: str
    side: str
    type_id: int
    station_id: int
    quantity: int
    allocated_quantity: int
    unallocated_quantity: int
    unit_price_isk: str
    occurred_at: datetime

    @classmethod
    def from_domain(cls, u: UnmatchedFill) -> "UnmatchedFillItem":
        return cls(
            external_ref_id=u.fill.external_ref_id,
            side=u.fill.side,
            type_id=u.fill.type_id,
            station_id=u.fill.station_id,
            quantity=u.fill.quantity,
            allocated_quantity=u.allocated_quantity,
            unallocated_quantity=u.unallocated_quantity,
            unit_price_isk=format_isk(u.fill.unit_price_cents),
            occurred_at=u.fill.occurred_at,
        )


class UnmatchedFillListResponse(BaseModel):
    cycle_id: str
    items: list[UnmatchedFillItem]
