"""Repository tests with a mocked AsyncSession: row mapping and error translation."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import DBAPIError

from src.cl_allocation.domain.models import FillEvent
from src.cl_allocation.infrastructure.persistence import FillRepository
from src.cl_common.errors import (
    CycleBusyError,
    CycleNotFoundError,
    CycleStateConflictError,
    InternalError,
    ParticipationNotFoundError,
)
from src.cl_cycle.infrastructure.persistence import CycleRepository, LineRepository
from src.cl_ledger.domain.models import NewLedgerEntry
from src.cl_ledger.infrastructure.persistence import LedgerRepository
from src.cl_participation.domain.models import CashEvent, Participation
from src.cl_participation.infrastructure.persistence import ParticipationRepository

_NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(sqlstate)
        self.sqlstate = sqlstate


def _db_returning(*, one: object = None, many: list | None = None) -> AsyncMock:
    result_mock = MagicMock()
    result_mock.fetchone.return_value = one
    result_mock.fetchall.return_value = many or []
    db = AsyncMock()
    db.execute = AsyncMock(return_value=result_mock)
    return db


def _cycle_row(**kwargs: object) -> MagicMock:
    row = MagicMock()
    row.id = kwargs.get("id", "cyc-1")
    row.name = kwargs.get("name", "Cycle 1")
    row.status = kwargs.get("status", "OPEN")
    row.started_at = _NOW
    row.initial_injection_cents = 100_000_000
    row.initial_capital_cents = kwargs.get("initial_capital_cents", 600_000_000)
    row.closed_at = None
    row.created_at = _NOW
    row.updated_at = _NOW
    return row


def _line_row(**kwargs: object) -> MagicMock:
    row = MagicMock()
    row.id = kwargs.get("id", "line-1")
    row.cycle_id = "cyc-1"
    row.type_id = 34
    row.destination_station_id = 60003760
    row.planned_units = 1000
    row.units_bought = kwargs.get("units_bought", 1000)
    row.units_sold = kwargs.get("units_sold", 0)
    row.listed_units = 1000
    row.buy_cost_cents = 560_000
    row.sales_gross_cents = 0
    row.sales_tax_cents = 0
    row.sales_net_cents = 0
    row.broker_fees_cents = 0
    row.relist_fees_cents = 0
    row.is_rollover = False
    row.rollover_from_cycle_id = None
    row.rollover_from_line_id = None
    row.plan_commit_id = "pc-1"
    row.created_at = _NOW
    row.updated_at = _NOW
    return row


def _participation_row(**kwargs: object) -> MagicMock:
    row = MagicMock()
    row.id = kwargs.get("id", "p-1")
    row.cycle_id = "cyc-1"
    row.user_id = "user-1"
    row.character_name = "Alpha"
    row.character_id = None
    row.amount_cents = 500_000_000
    row.profit_share_pct = Decimal("0.5")
    row.status = kwargs.get("status", "AWAITING_INVESTMENT")
    row.memo = "ARB-cyc-1-user-1"
    row.wallet_journal_ref = kwargs.get("wallet_journal_ref")
    row.validated_at = kwargs.get("validated_at")
    row.rollover_type = None
    row.rollover_requested_cents = None
    row.rollover_from_participation_id = None
    row.rollover_deducted_cents = 0
    row.payout_amount_cents = None
    row.payout_paid_at = None
    row.refunded_at = None
    row.opted_out_at = None
    row.created_at = _NOW
    row.updated_at = _NOW
    return row


class TestCycleRepository:
    async def test_get_cycle_maps_row(self) -> None:
        db = _db_returning(one=_cycle_row())
        cycle = await CycleRepository().get_cycle(db, "cyc-1")
        assert cycle is not None
        assert cycle.id == "cyc-1"
        assert cycle.status == "OPEN"
        assert cycle.initial_capital_cents == 600_000_000

    async def test_get_cycle_missing_returns_none(self) -> None:
        db = _db_returning(one=None)
        assert await CycleRepository().get_cycle(db, "nope") is None

    async def test_lock_cycle_lock_not_available_raises_busy(self) -> None:
        db = AsyncMock()
        db.execute = AsyncMock(
            side_effect=DBAPIError("SELECT ... NOWAIT", {}, _PgError("55P03"))
        )
        with pytest.raises(CycleBusyError, match="locked by another operation"):
            await CycleRepository().lock_cycle(db, "cyc-1")

    async def test_lock_cycle_other_db_error_propagates(self) -> None:
        db = AsyncMock()
        db.execute = AsyncMock(
            side_effect=DBAPIError("SELECT ... NOWAIT", {}, _PgError("40001"))
        )
        with pytest.raises(DBAPIError):
            await CycleRepository().lock_cycle(db, "cyc-1")

    async def test_list_snapshots_maps_rows(self) -> None:
        row = MagicMock()
        row.id = 1
        row.cycle_id = "cyc-1"
        row.wallet_cash_cents = 500_000_000
        row.inventory_cents = 112_000
        row.cycle_profit_cents = -44_800
        row.snapshot_at = _NOW
        db = _db_returning(many=[row])
        snaps = await CycleRepository().list_snapshots(db, "cyc-1")
        assert len(snaps) == 1
        assert snaps[0].cycle_profit_cents == -44_800

    async def test_mark_open_lost_race_is_state_conflict(self) -> None:
        missed, current = MagicMock(), MagicMock()
        missed.fetchone.return_value = None
        current.fetchone.return_value = _cycle_row(status="OPEN")
        db = AsyncMock()
        db.execute = AsyncMock(side_effect=[missed, current])
        with pytest.raises(CycleStateConflictError, match="status is OPEN, requires PLANNED"):
            await CycleRepository().mark_open(db, "cyc-1", 600_000_000)

    async def test_update_planned_missing_cycle_is_not_found(self) -> None:
        db = _db_returning(one=None)
        with pytest.raises(CycleNotFoundError):
            await CycleRepository().update_planned(db, "cyc-x", None, _NOW, 0)


class TestLineRepository:
    async def test_list_lines_maps_rows(self) -> None:
        db = _db_returning(many=[_line_row(id="l-1"), _line_row(id="l-2", units_sold=300)])
        lines = await LineRepository().list_lines(db, "cyc-1")
        assert [line.id for line in lines] == ["l-1", "l-2"]
        assert lines[1].units_sold == 300
        assert lines[0].plan_commit_id == "pc-1"

    async def test_get_line_missing_returns_none(self) -> None:
        db = _db_returning(one=None)
        assert await LineRepository().get_line(db, "missing") is None


class TestParticipationRepository:
    async def test_insert_transfer_new_row(self) -> None:
        row = MagicMock()
        row.ref_id = "j-1"
        db = _db_returning(one=row)
        event = CashEvent(
            ref_id="j-1",
            amount_cents=500_000_000,
            occurred_at=_NOW,
            character_name="Alpha",
            is_wallet_journal=True,
        )
        assert await ParticipationRepository().insert_transfer(db, event) is True

    async def test_insert_transfer_duplicate_returns_false(self) -> None:
        db = _db_returning(one=None)
        event = CashEvent(ref_id="j-1", amount_cents=1, occurred_at=_NOW)
        assert await ParticipationRepository().insert_transfer(db, event) is False

    async def test_bind_transfer_lost_race_returns_none(self) -> None:
        db = _db_returning(one=None)
        bound = await ParticipationRepository().bind_transfer(db, "p-1", "j-1", _NOW)
        assert bound is None

    async def test_bind_transfer_maps_bound_row(self) -> None:
        db = _db_returning(
            one=_participation_row(status="OPTED_IN", wallet_journal_ref="j-1", validated_at=_NOW)
        )
        bound = await ParticipationRepository().bind_transfer(db, "p-1", "j-1", _NOW)
        assert bound is not None
        assert bound.status == "OPTED_IN"
        assert bound.wallet_journal_ref == "j-1"
        assert bound.profit_share_pct == Decimal("0.5")

    async def test_save_missing_row_raises_not_found(self) -> None:
        db = _db_returning(one=None)
        p = Participation(
            id="p-9",
            cycle_id="cyc-1",
            user_id=None,
            character_name="Ghost",
            amount_cents=1,
            profit_share_pct=Decimal("0.5"),
            status="OPTED_OUT",
        )
        with pytest.raises(ParticipationNotFoundError):
            await ParticipationRepository().save(db, p)


class TestFillRepository:
    async def test_stage_fill_duplicate_returns_false(self) -> None:
        db = _db_returning(one=None)
        fill = FillEvent(
            side="BUY",
            type_id=34,
            station_id=60003760,
            quantity=10,
            unit_price_cents=560,
            external_ref_id="tx-1",
            occurred_at=_NOW,
        )
        assert await FillRepository().stage_fill(db, fill) is False

    async def test_list_unmatched_carries_allocated_quantity(self) -> None:
        row = MagicMock()
        row.side = "SELL"
        row.type_id = 34
        row.station_id = 60003760
        row.quantity = 500
        row.unit_price_cents = 1400
        row.external_ref_id = "tx-9"
        row.occurred_at = _NOW
        row.character_id = None
        row.allocated = 200
        db = _db_returning(many=[row])
        unmatched = await FillRepository().list_unmatched(db, _NOW, None)
        assert len(unmatched) == 1
        assert unmatched[0].fill.external_ref_id == "tx-9"
        assert unmatched[0].allocated_quantity == 200


class TestLedgerRepository:
    async def test_append_maps_returned_row(self) -> None:
        row = MagicMock()
        row.id = 42
        row.cycle_id = "cyc-1"
        row.entry_type = "deposit"
        row.amount_cents = 500_000_000
        row.occurred_at = _NOW
        row.memo = "ARB-cyc-1-user-1"
        row.source = "system"
        row.match_status = "matched"
        row.plan_commit_id = None
        row.participation_id = "p-1"
        row.line_id = None
        row.character_name = "Alpha"
        row.type_id = None
        row.station_id = None
        row.external_ref_id = "j-1"
        row.created_at = _NOW
        db = _db_returning(one=row)
        entry = await LedgerRepository().append(
            db,
            NewLedgerEntry(
                cycle_id="cyc-1",
                entry_type="deposit",
                amount_cents=500_000_000,
                occurred_at=_NOW,
            ),
        )
        assert entry.id == 42
        assert entry.match_status == "matched"
        db.commit.assert_not_called()

    async def test_append_no_row_raises_internal(self) -> None:
        db = _db_returning(one=None)
        with pytest.raises(InternalError):
            await LedgerRepository().append(
                db,
                NewLedgerEntry(
                    cycle_id="cyc-1", entry_type="fee", amount_cents=-7, occurred_at=_NOW
                ),
            )
