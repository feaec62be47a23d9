"""Domain models for cl_allocation — fills and allocation outcomes."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class FillEvent:
    """A normalized market fill (one wallet transaction)."""

    side: str                 # FillSide value
    type_id: int
    station_id: int
    quantity: int
    unit_price_cents: int
    external_ref_id: str
    occurred_at: datetime
    character_id: int | None = None


@dataclass
class UnmatchedFill:
    fill: FillEvent
    allocated_quantity: int

    @property
    def unallocated_quantity(self) -> int:
        return self.fill.quantity - self.allocated_quantity


@dataclass
class AllocationSlice:
    line_id: str
    quantity: int
    amount_cents: int         # buy cost or sale gross
    tax_cents: int = 0
    broker_fee_cents: int = 0


@dataclass
class AllocationOutcome:
    external_ref_id: str
    side: str | None
    status: str               # AllocationStatus value
    slices: list[AllocationSlice] = field(default_factory=list)
    unallocated_quantity: int = 0
    reason: str | None = None

    @property
    def applied_quantity(self) -> int:
        return sum(s.quantity for s in self.slices)


@dataclass
class ReconcileSummary:
    buys_allocated: int = 0
    sells_allocated: int = 0
    unmatched_buys: int = 0
    unmatched_sells: int = 0
    duplicates: int = 0
    malformed: int = 0
    outcomes: list[AllocationOutcome] = field(default_factory=list)
