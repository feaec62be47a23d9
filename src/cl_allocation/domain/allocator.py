"""Allocation engine core — spill a fill across candidate lines.

Pure: mutates the CycleLine objects it is given and returns the allocation
rows to persist. Candidates must already be in allocation order (rollover
lines first, then oldest, then id) and locked by the caller.
"""

from src.cl_common.enums import AllocationStatus, FillSide
from src.cl_common.money import calc_fee
from src.cl_allocation.domain.models import AllocationOutcome, AllocationSlice, FillEvent
from src.cl_cycle.domain.models import Allocation, CycleLine


def capacity(line: CycleLine, side: str) -> int:
    return line.buy_capacity if side == FillSide.BUY.value else line.sell_capacity


def apply_buy(line: CycleLine, quantity: int, unit_price_cents: int) -> AllocationSlice:
    amount = quantity * unit_price_cents
    line.units_bought += quantity
    line.buy_cost_cents += amount
    line.listed_units = min(line.listed_units, line.units_bought)
    return AllocationSlice(line_id=line.id, quantity=quantity, amount_cents=amount)


def apply_sell(
    line: CycleLine, quantity: int, unit_price_cents: int, tax_bps: int, broker_bps: int
) -> AllocationSlice:
    gross = quantity * unit_price_cents
    tax = calc_fee(gross, tax_bps)
    broker = calc_fee(gross, broker_bps)
    line.units_sold += quantity
    line.sales_gross_cents += gross
    line.sales_tax_cents += tax
    line.sales_net_cents += gross - tax
    line.broker_fees_cents += broker
    line.listed_units = min(line.listed_units, line.units_bought)
    return AllocationSlice(
        line_id=line.id, quantity=quantity, amount_cents=gross, tax_cents=tax, broker_fee_cents=broker
    )


def allocate_fill(
    fill: FillEvent,
    candidates: list[CycleLine],
    already_allocated: int,
    tax_bps: int,
    broker_bps: int,
) -> tuple[AllocationOutcome, list[Allocation]]:
    """Apply the not-yet-allocated part of `fill` to `candidates` in order."""
    to_apply = fill.quantity - already_allocated
    if to_apply <= 0:
        return (
            AllocationOutcome(
                external_ref_id=fill.external_ref_id,
                side=fill.side,
                status=AllocationStatus.DUPLICATE.value,
                reason="already allocated",
            ),
            [],
        )

    slices: list[AllocationSlice] = []
    rows: list[Allocation] = []
    remaining = to_apply
    for line in candidates:
        if remaining == 0:
            break
        room = capacity(line, fill.side)
        if room <= 0:
            continue
        qty = min(room, remaining)
        if fill.side == FillSide.BUY.value:
            s = apply_buy(line, qty, fill.unit_price_cents)
        else:
            s = apply_sell(line, qty, fill.unit_price_cents, tax_bps, broker_bps)
        slices.append(s)
        rows.append(
            Allocation(
                side=fill.side,
                line_id=line.id,
                external_ref_id=fill.external_ref_id,
                quantity=qty,
                unit_price_cents=fill.unit_price_cents,
                amount_cents=s.amount_cents,
                occurred_at=fill.occurred_at,
                tax_cents=s.tax_cents,
            )
        )
        remaining -= qty

    if not slices:
        status = AllocationStatus.UNMATCHED
        reason = "no open line with capacity" if candidates else "no line for type/station"
    elif remaining > 0:
        status = AllocationStatus.PARTIAL
        reason = f"{remaining} units exceed line capacity"
    else:
        status = AllocationStatus.ALLOCATED
        reason = None
    return (
        AllocationOutcome(
            external_ref_id=fill.external_ref_id,
            side=fill.side,
            status=status.value,
            slices=slices,
            unallocated_quantity=remaining,
            reason=reason,
        ),
        rows,
    )
