"""Domain models for cl_cycle — pure dataclasses plus derived line figures."""

from dataclasses import dataclass
from datetime import datetime
from fractions import Fraction

from src.cl_common.money import prorate, unit_cost_cents


@dataclass
class Cycle:
    id: str
    name: str | None
    status: str                          # CycleStatus value
    started_at: datetime
    initial_injection_cents: int
    initial_capital_cents: int | None    # stamped at open
    closed_at: datetime | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class CycleFilter:
    status: str | None = None
    id: str | None = None


@dataclass
class PlanCommit:
    id: str
    cycle_id: str
    memo: str | None
    created_at: datetime | None = None


@dataclass
class CycleLine:
    id: str
    cycle_id: str
    type_id: int
    destination_station_id: int
    planned_units: int
    units_bought: int = 0
    units_sold: int = 0
    listed_units: int = 0
    buy_cost_cents: int = 0
    sales_gross_cents: int = 0
    sales_tax_cents: int = 0
    sales_net_cents: int = 0
    broker_fees_cents: int = 0
    relist_fees_cents: int = 0
    is_rollover: bool = False
    rollover_from_cycle_id: str | None = None
    rollover_from_line_id: str | None = None
    plan_commit_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def units_remaining(self) -> int:
        return max(0, self.units_bought - self.units_sold)

    @property
    def buy_capacity(self) -> int:
        return max(0, self.planned_units - self.units_bought)

    @property
    def sell_capacity(self) -> int:
        return self.units_remaining

    @property
    def wac_unit_cost(self) -> Fraction:
        """buy_cost / units_bought, exact; 0 when nothing bought."""
        return unit_cost_cents(self.buy_cost_cents, self.units_bought)

    @property
    def remaining_cost_cents(self) -> int:
        """Cost basis carried by the unsold units."""
        return prorate(self.buy_cost_cents, self.units_remaining, self.units_bought)

    @property
    def line_profit_cents(self) -> int:
        return (
            self.sales_net_cents
            - self.buy_cost_cents
            - self.broker_fees_cents
            - self.relist_fees_cents
        )


@dataclass
class Allocation:
    """One applied slice of a fill against a line (BUY or SELL side)."""

    side: str                 # FillSide value
    line_id: str
    external_ref_id: str
    quantity: int
    unit_price_cents: int
    amount_cents: int         # quantity * unit_price (gross for sells)
    occurred_at: datetime
    tax_cents: int = 0
    is_rollover: bool = False
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class FeeEvent:
    id: int
    cycle_id: str
    fee_type: str             # FeeType value
    amount_cents: int
    memo: str | None
    occurred_at: datetime


@dataclass
class CycleSnapshot:
    id: int
    cycle_id: str
    wallet_cash_cents: int
    inventory_cents: int
    cycle_profit_cents: int
    snapshot_at: datetime


@dataclass
class LineProfit:
    line_id: str
    type_id: int
    destination_station_id: int
    profit_cents: int


@dataclass
class CycleProfit:
    line_profit_excl_transport_cents: int
    transport_fees_cents: int
    cycle_profit_cents: int
    lines: list[LineProfit]
