"""Pure profit / snapshot arithmetic over cycle lines."""

from src.cl_cycle.domain.models import CycleLine, CycleProfit, LineProfit


def compute_cycle_profit(lines: list[CycleLine], transport_fees_cents: int) -> CycleProfit:
    """Realized cash profit: sum of line profits minus transport fees."""
    breakdown = [
        LineProfit(
            line_id=line.id,
            type_id=line.type_id,
            destination_station_id=line.destination_station_id,
            profit_cents=line.line_profit_cents,
        )
        for line in lines
    ]
    line_total = sum(lp.profit_cents for lp in breakdown)
    return CycleProfit(
        line_profit_excl_transport_cents=line_total,
        transport_fees_cents=transport_fees_cents,
        cycle_profit_cents=line_total - transport_fees_cents,
        lines=breakdown,
    )


def inventory_value_cents(lines: list[CycleLine]) -> int:
    """WAC x remaining units, summed over lines."""
    return sum(line.remaining_cost_cents for line in lines)
