"""Rollover builders — pure functions over lines and participations.

Unsold inventory leaves the closing cycle at cost (synthetic SELL, no tax)
and enters the successor as an already-listed rollover line (synthetic BUY).
Reinvested payouts become pre-validated successor participations carrying the
source's character_name verbatim.
"""

from datetime import datetime

from src.cl_common.enums import FillSide, ParticipationStatus, RolloverType
from src.cl_common.money import round_half_up
from src.cl_cycle.domain.models import Allocation, CycleLine
from src.cl_participation.domain.models import Participation

ROLLOVER_MEMO_PREFIX = "ROLLOVER-"


def rollover_out_ref(line_id: str) -> str:
    return f"rollover-out:{line_id}"


def rollover_in_ref(source_line_id: str) -> str:
    return f"rollover-in:{source_line_id}"


def buyback_allocation(line: CycleLine, at: datetime) -> Allocation:
    """SELL the remaining units back at their cost basis."""
    qty = line.units_remaining
    return Allocation(
        side=FillSide.SELL.value,
        line_id=line.id,
        external_ref_id=rollover_out_ref(line.id),
        quantity=qty,
        unit_price_cents=round_half_up(line.wac_unit_cost),
        amount_cents=line.remaining_cost_cents,
        occurred_at=at,
        tax_cents=0,
        is_rollover=True,
    )


def apply_buyback(line: CycleLine, alloc: Allocation) -> None:
    line.units_sold += alloc.quantity
    line.sales_gross_cents += alloc.amount_cents
    line.sales_net_cents += alloc.amount_cents
    line.listed_units = min(line.listed_units, line.units_bought)


def successor_line(
    source: CycleLine, successor_cycle_id: str, line_id: str, at: datetime
) -> tuple[CycleLine, Allocation]:
    """Rollover line for the successor plus the BUY allocation that backs it."""
    remaining = source.units_remaining
    cost = source.remaining_cost_cents
    line = CycleLine(
        id=line_id,
        cycle_id=successor_cycle_id,
        type_id=source.type_id,
        destination_station_id=source.destination_station_id,
        planned_units=remaining,
        units_bought=remaining,
        units_sold=0,
        listed_units=remaining,
        buy_cost_cents=cost,
        is_rollover=True,
        rollover_from_cycle_id=source.cycle_id,
        rollover_from_line_id=source.id,
    )
    alloc = Allocation(
        side=FillSide.BUY.value,
        line_id=line_id,
        external_ref_id=rollover_in_ref(source.id),
        quantity=remaining,
        unit_price_cents=round_half_up(source.wac_unit_cost),
        amount_cents=cost,
        occurred_at=at,
        is_rollover=True,
    )
    return line, alloc


def reinvest_amount(p: Participation, payout_cents: int, cap_cents: int) -> int:
    """Amount of the payout rolled into the successor, capped at payout and cap."""
    if p.rollover_type == RolloverType.FULL_PAYOUT.value:
        wanted = payout_cents
    elif p.rollover_type == RolloverType.INITIAL_ONLY.value:
        wanted = p.amount_cents
    elif p.rollover_type == RolloverType.CUSTOM_AMOUNT.value:
        wanted = p.rollover_requested_cents or 0
    else:
        return 0
    return max(0, min(wanted, payout_cents, cap_cents))


def successor_participation(
    source: Participation,
    successor_cycle_id: str,
    participation_id: str,
    amount_cents: int,
    at: datetime,
) -> Participation:
    return Participation(
        id=participation_id,
        cycle_id=successor_cycle_id,
        user_id=source.user_id,
        character_name=source.character_name,
        character_id=source.character_id,
        amount_cents=amount_cents,
        profit_share_pct=source.profit_share_pct,
        status=ParticipationStatus.OPTED_IN.value,
        memo=f"{ROLLOVER_MEMO_PREFIX}{source.cycle_id}-{source.id}",
        validated_at=at,
        rollover_from_participation_id=source.id,
    )
