"""AllocationService against in-memory repositories."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from src.cl_allocation.application.schemas import FillIn
from src.cl_common.enums import LedgerEntryType
from src.cl_common.errors import CycleStateConflictError, NoOpenCycleError
from src.cl_cycle.application.schemas import CreateLineRequest, PlanCycleRequest

_START = datetime(2026, 1, 1, tzinfo=UTC)
_TYPE, _STATION = 34, 60003760


async def _plan_with_line(store, db, planned_units: int = 1000) -> tuple[str, str]:
    cycle = await store.manager.plan_cycle(
        db, PlanCycleRequest(name="C1", started_at=_START, initial_injection_isk=Decimal("1000000"))
    )
    line = await store.manager.create_cycle_line(
        db,
        cycle.id,
        CreateLineRequest(type_id=_TYPE, destination_station_id=_STATION, planned_units=planned_units),
    )
    return cycle.id, line.id


async def _open_with_line(store, db, planned_units: int = 1000) -> tuple[str, str]:
    cycle_id, line_id = await _plan_with_line(store, db, planned_units)
    await store.manager.open_cycle(db, cycle_id)
    return cycle_id, line_id


def _fill(ref: str, side: str, qty, price: str, type_id=_TYPE, day: int = 2) -> FillIn:
    return FillIn(
        side=side, type_id=type_id, station_id=_STATION, quantity=qty,
        unit_price_isk=price, external_ref_id=ref, occurred_at=datetime(2026, 1, day, tzinfo=UTC),
    )


_BUYS_AND_SELL = [
    _fill("T1", "BUY", 400, "5.00"),
    _fill("T2", "BUY", 600, "6.00"),
    _fill("T3", "SELL", 1000, "7.00", day=5),
]


class TestAllocateBatch:
    async def test_buys_then_sell(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db)

        summary = await store.allocation.allocate_batch(db, cycle_id, _BUYS_AND_SELL)

        assert summary.buys_allocated == 2
        assert summary.sells_allocated == 1
        assert summary.unmatched_buys == summary.unmatched_sells == 0
        line = store.line(line_id)
        assert line.units_bought == line.units_sold == 1000
        assert line.buy_cost_cents == 560000
        assert line.sales_gross_cents == 700000
        assert line.sales_tax_cents == 35000
        assert line.sales_net_cents == 665000
        assert line.broker_fees_cents == 21000
        assert line.line_profit_cents == 84000

    async def test_ledger_entries(self, store, db):
        cycle_id, _ = await _open_with_line(store, db)
        await store.allocation.allocate_batch(db, cycle_id, _BUYS_AND_SELL)

        executions = [e.amount_cents for e in store.ledger_repo.of_type(LedgerEntryType.EXECUTION.value)]
        fees = [e.amount_cents for e in store.ledger_repo.of_type(LedgerEntryType.FEE.value)]
        assert executions == [-200000, -360000, 665000]
        assert fees == [-21000]
        assert {e.external_ref_id for e in store.ledger_repo.entries} >= {"T1", "T2", "T3"}

    async def test_rerun_is_idempotent(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db)
        await store.allocation.allocate_batch(db, cycle_id, _BUYS_AND_SELL)
        allocations = len(store.lines.allocations)
        entries = len(store.ledger_repo.entries)

        summary = await store.allocation.allocate_batch(db, cycle_id, _BUYS_AND_SELL)

        assert summary.duplicates == 3
        assert summary.buys_allocated == summary.sells_allocated == 0
        assert len(store.lines.allocations) == allocations
        assert len(store.ledger_repo.entries) == entries
        assert store.line(line_id).units_bought == 1000

    async def test_malformed_does_not_stop_batch(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db)
        fills = [
            _fill("BAD1", "BUY", None, "5.00"),
            _fill("BAD2", "BUY", 10, "NaN"),
            _fill("T1", "BUY", 400, "5.00"),
        ]

        summary = await store.allocation.allocate_batch(db, cycle_id, fills)

        assert summary.malformed == 2
        assert summary.buys_allocated == 1
        assert store.line(line_id).units_bought == 400
        assert [o.status for o in summary.outcomes] == ["MALFORMED", "MALFORMED", "ALLOCATED"]

    async def test_unknown_type_is_unmatched(self, store, db):
        cycle_id, _ = await _open_with_line(store, db)
        summary = await store.allocation.allocate_batch(
            db, cycle_id, [_fill("T9", "BUY", 5, "1.00", type_id=999)]
        )
        assert summary.unmatched_buys == 1
        assert summary.outcomes[0].status == "UNMATCHED"

    async def test_overflow_is_partial_and_reported(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db, planned_units=100)

        outcome = await store.allocation.allocate(db, cycle_id, _fill("T1", "BUY", 150, "5.00"))

        assert outcome.status == "PARTIAL"
        assert outcome.applied_quantity == 100
        assert outcome.unallocated_quantity == 50
        assert store.line(line_id).units_bought == 100

    async def test_sell_before_buy_is_unmatched(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db)
        summary = await store.allocation.allocate_batch(db, cycle_id, [_fill("S1", "SELL", 10, "7.00")])
        assert summary.unmatched_sells == 1
        assert store.line(line_id).units_sold == 0

    async def test_planned_cycle_rejected(self, store, db):
        cycle_id, _ = await _plan_with_line(store, db)
        db.rollback.reset_mock()

        with pytest.raises(CycleStateConflictError, match="requires OPEN"):
            await store.allocation.allocate_batch(db, cycle_id, _BUYS_AND_SELL)
        db.rollback.assert_awaited()
        assert store.lines.allocations == []
        assert set(store.fills.fills) == {("BUY", "T1"), ("BUY", "T2"), ("SELL", "T3")}

    async def test_direct_unmatched_fill_is_queued(self, store, db):
        cycle_id, _ = await _open_with_line(store, db)
        summary = await store.allocation.allocate_batch(
            db, cycle_id, [_fill("T9", "BUY", 10, "1.00", type_id=99)]
        )
        assert summary.unmatched_buys == 1

        report = await store.allocation.list_unmatched_fills(db, cycle_id)

        assert [i.external_ref_id for i in report.items] == ["T9"]
        assert report.items[0].unallocated_quantity == 10

    async def test_direct_partial_fill_is_retried_by_reconcile(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db, planned_units=100)
        await store.allocation.allocate(db, cycle_id, _fill("T1", "BUY", 150, "5.00"))
        await store.manager.update_cycle_line(db, line_id, 200)

        summary = await store.allocation.reconcile(db, cycle_id)

        assert summary.buys_allocated == 1
        assert store.line(line_id).units_bought == 150


class TestReconcile:
    async def test_staged_fills_are_allocated_once(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db)
        ingest = await store.allocation.ingest_fills(db, _BUYS_AND_SELL)
        assert ingest.inserted == 3

        first = await store.allocation.reconcile(db)
        allocations = len(store.lines.allocations)
        second = await store.allocation.reconcile(db, cycle_id)

        assert first.buys_allocated == 2
        assert first.sells_allocated == 1
        assert second.duplicates == 3
        assert len(store.lines.allocations) == allocations
        assert store.line(line_id).units_sold == 1000

    async def test_fills_before_cycle_start_are_ignored(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db)
        early = FillIn(
            side="BUY", type_id=_TYPE, station_id=_STATION, quantity=5, unit_price_isk="5.00",
            external_ref_id="OLD", occurred_at=datetime(2025, 12, 31, tzinfo=UTC),
        )
        await store.allocation.ingest_fills(db, [early])

        summary = await store.allocation.reconcile(db, cycle_id)

        assert summary.outcomes == []
        assert store.line(line_id).units_bought == 0

    async def test_ingest_counts_duplicates_and_malformed(self, store, db):
        await store.allocation.ingest_fills(db, _BUYS_AND_SELL[:1])
        resp = await store.allocation.ingest_fills(
            db, [_BUYS_AND_SELL[0], _fill("BAD", "HOLD", 1, "1.00")]
        )
        assert (resp.inserted, resp.duplicates, resp.malformed) == (0, 1, 1)
        assert "unknown side" in resp.errors[0]

    async def test_no_open_cycle(self, store, db):
        with pytest.raises(NoOpenCycleError):
            await store.allocation.reconcile(db)

    async def test_unmatched_report(self, store, db):
        cycle_id, _ = await _open_with_line(store, db, planned_units=100)
        await store.allocation.ingest_fills(db, [_fill("T1", "BUY", 150, "5.00")])
        await store.allocation.reconcile(db, cycle_id)

        report = await store.allocation.list_unmatched_fills(db, cycle_id)

        assert len(report.items) == 1
        assert report.items[0].external_ref_id == "T1"
        assert report.items[0].allocated_quantity == 100
        assert report.items[0].unallocated_quantity == 50

    async def test_capacity_added_later_absorbs_rest(self, store, db):
        cycle_id, line_id = await _open_with_line(store, db, planned_units=100)
        await store.allocation.ingest_fills(db, [_fill("T1", "BUY", 150, "5.00")])
        await store.allocation.reconcile(db, cycle_id)

        await store.manager.update_cycle_line(db, line_id, 200)
        summary = await store.allocation.reconcile(db, cycle_id)

        assert summary.buys_allocated == 1
        line = store.line(line_id)
        assert line.units_bought == 150
        assert len(store.lines.allocations) == 1
        assert store.lines.allocations[0].quantity == 150
