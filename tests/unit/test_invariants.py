"""Tests for cl_cycle.domain.invariants."""

from datetime import UTC, datetime

from src.cl_cycle.domain.invariants import (
    audit_lines,
    check_allocation_sums,
    check_line,
    check_rollover_line,
    check_rollover_name,
)
from src.cl_cycle.domain.models import Allocation, CycleLine

_AT = datetime(2026, 3, 1, tzinfo=UTC)


def _make_line(**kwargs) -> CycleLine:
    defaults = dict(
        id="line_1", cycle_id="cyc_1", type_id=34, destination_station_id=60003760,
        planned_units=100, units_bought=50, units_sold=20, listed_units=30, buy_cost_cents=25000,
    )
    defaults.update(kwargs)
    return CycleLine(**defaults)


def _alloc(side: str, qty: int, ref: str) -> Allocation:
    return Allocation(
        side=side, line_id="line_1", external_ref_id=ref, quantity=qty,
        unit_price_cents=500, amount_cents=qty * 500, occurred_at=_AT,
    )


class TestCheckLine:
    def test_consistent(self) -> None:
        assert check_line(_make_line()) == []

    def test_listed_above_bought(self) -> None:
        violations = check_line(_make_line(listed_units=51))
        assert len(violations) == 1
        assert "listed_units" in violations[0]

    def test_sold_above_bought(self) -> None:
        assert "units_sold" in check_line(_make_line(units_sold=51))[0]

    def test_cost_without_units(self) -> None:
        assert check_line(_make_line(units_bought=0, units_sold=0, listed_units=0))


class TestAllocationSums:
    def test_matching_sums(self) -> None:
        allocs = [_alloc("BUY", 30, "T1"), _alloc("BUY", 20, "T2"), _alloc("SELL", 20, "T3")]
        assert check_allocation_sums(_make_line(), allocs) == []

    def test_missing_allocation(self) -> None:
        violations = check_allocation_sums(_make_line(), [_alloc("BUY", 30, "T1")])
        assert len(violations) == 2

    def test_audit_collects_everything(self) -> None:
        bad = _make_line(id="line_2", units_sold=60)
        good_allocs = {"line_1": [_alloc("BUY", 50, "T1"), _alloc("SELL", 20, "T2")]}
        violations = audit_lines([_make_line(), bad], good_allocs)
        assert all("line_2" in v for v in violations)
        assert len(violations) == 3


class TestRolloverChecks:
    def test_rollover_line_must_be_fully_listed(self) -> None:
        line = _make_line(is_rollover=True, planned_units=50, units_bought=50, listed_units=40, units_sold=0)
        assert check_rollover_line(line)

    def test_regular_line_is_not_checked(self) -> None:
        assert check_rollover_line(_make_line()) == []

    def test_rollover_name(self) -> None:
        assert check_rollover_name("part_2", "Alpha", "Alpha") == []
        assert check_rollover_name("part_2", "alpha", "Alpha")
