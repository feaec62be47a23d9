"""Tests for the cycle state machine and profit arithmetic."""

import pytest

from src.cl_common.enums import CycleStatus
from src.cl_common.errors import CycleStateConflictError
from src.cl_cycle.domain.models import CycleLine
from src.cl_cycle.domain.profit import compute_cycle_profit, inventory_value_cents
from src.cl_cycle.domain.state_machine import can_transition, require_status, require_transition


class TestStateMachine:
    def test_forward_steps(self) -> None:
        assert can_transition("PLANNED", "OPEN")
        assert can_transition("OPEN", "CLOSED")

    def test_no_skipping_or_going_back(self) -> None:
        assert not can_transition("PLANNED", "CLOSED")
        assert not can_transition("CLOSED", "OPEN")
        assert not can_transition("OPEN", "OPEN")

    def test_close_planned_names_both_states(self) -> None:
        with pytest.raises(CycleStateConflictError, match="status is PLANNED, requires OPEN") as exc:
            require_transition("cyc_1", "PLANNED", "CLOSED")
        assert exc.value.http_status == 409

    def test_open_closed(self) -> None:
        with pytest.raises(CycleStateConflictError, match="Cannot open"):
            require_transition("cyc_1", "CLOSED", "OPEN")

    def test_require_status(self) -> None:
        require_status("cyc_1", "PLANNED", CycleStatus.PLANNED, "edit")
        with pytest.raises(CycleStateConflictError, match="Cannot edit"):
            require_status("cyc_1", "OPEN", CycleStatus.PLANNED, "edit")


def _make_line(**kwargs) -> CycleLine:
    defaults = dict(id="line_1", cycle_id="cyc_1", type_id=34, destination_station_id=1, planned_units=1000)
    defaults.update(kwargs)
    return CycleLine(**defaults)


class TestProfit:
    def test_cycle_profit_subtracts_transport(self) -> None:
        sold = _make_line(
            units_bought=1000, units_sold=1000, buy_cost_cents=560000,
            sales_gross_cents=700000, sales_tax_cents=35000, sales_net_cents=665000,
            broker_fees_cents=21000,
        )
        other = _make_line(id="line_2", units_bought=10, buy_cost_cents=1000, relist_fees_cents=50)
        profit = compute_cycle_profit([sold, other], transport_fees_cents=4000)

        assert profit.line_profit_excl_transport_cents == 84000 - 1050
        assert profit.cycle_profit_cents == 84000 - 1050 - 4000
        assert [lp.profit_cents for lp in profit.lines] == [84000, -1050]

    def test_inventory_at_wac(self) -> None:
        line = _make_line(units_bought=1000, units_sold=800, buy_cost_cents=560000)
        assert inventory_value_cents([line]) == 112000
