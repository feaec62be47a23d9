"""CycleRepository / LineRepository — raw text() SQL implementations.

asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL required for None values.
Transaction ownership: the CALLER commits.
"""

from datetime import datetime
from typing import NoReturn

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.errors import (
    CycleBusyError,
    CycleNotFoundError,
    CycleStateConflictError,
    InternalError,
)
from src.cl_cycle.domain.models import (
    Allocation,
    Cycle,
    CycleFilter,
    CycleLine,
    CycleSnapshot,
    FeeEvent,
    PlanCommit,
)

# PostgreSQL lock_not_available
_LOCK_NOT_AVAILABLE = "55P03"

# ---------------------------------------------------------------------------
# SQL: cycles
# ---------------------------------------------------------------------------

_CYCLE_COLUMNS = """
    id, name, status, started_at, initial_injection_cents, initial_capital_cents,
    closed_at, created_at, updated_at
"""

_INSERT_CYCLE_SQL = text(f"""
    INSERT INTO cycles (id, name, status, started_at, initial_injection_cents)
    VALUES (:id, :name, :status, :started_at, :initial_injection_cents)
    RETURNING {_CYCLE_COLUMNS}
""")

_GET_CYCLE_SQL = text(f"SELECT {_CYCLE_COLUMNS} FROM cycles WHERE id = :cycle_id")

_LOCK_CYCLE_SQL = text(
    f"SELECT {_CYCLE_COLUMNS} FROM cycles WHERE id = :cycle_id FOR UPDATE NOWAIT"
)

_SHARE_LOCK_CYCLE_SQL = text(
    f"SELECT {_CYCLE_COLUMNS} FROM cycles WHERE id = :cycle_id FOR SHARE"
)

_LIST_CYCLES_SQL = text(f"""
    SELECT {_CYCLE_COLUMNS}
    FROM cycles
    WHERE (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
      AND (CAST(:id AS TEXT) IS NULL OR id = CAST(:id AS TEXT))
    ORDER BY started_at DESC, id DESC
""")

_GET_OPEN_CYCLE_SQL = text(
    f"SELECT {_CYCLE_COLUMNS} FROM cycles WHERE status = 'OPEN' LIMIT 1"
)

_NEXT_PLANNED_SQL = text(f"""
    SELECT {_CYCLE_COLUMNS}
    FROM cycles
    WHERE status = 'PLANNED' AND id <> :exclude_id
    ORDER BY started_at ASC, created_at ASC
    LIMIT 1
""")

_UPDATE_PLANNED_SQL = text(f"""
    UPDATE cycles
    SET name = :name,
        started_at = :started_at,
        initial_injection_cents = :initial_injection_cents
    WHERE id = :cycle_id AND status = 'PLANNED'
    RETURNING {_CYCLE_COLUMNS}
""")

_MARK_OPEN_SQL = text(f"""
    UPDATE cycles
    SET status = 'OPEN', initial_capital_cents = :initial_capital_cents
    WHERE id = :cycle_id AND status = 'PLANNED'
    RETURNING {_CYCLE_COLUMNS}
""")

_MARK_CLOSED_SQL = text(f"""
    UPDATE cycles
    SET status = 'CLOSED', closed_at = :closed_at
    WHERE id = :cycle_id AND status = 'OPEN'
    RETURNING {_CYCLE_COLUMNS}
""")

_INSERT_FEE_SQL = text("""
    INSERT INTO cycle_fee_events (cycle_id, fee_type, amount_cents, memo, occurred_at)
    VALUES (:cycle_id, :fee_type, :amount_cents, :memo, :occurred_at)
    RETURNING id, cycle_id, fee_type, amount_cents, memo, occurred_at
""")

_SUM_FEES_SQL = text("""
    SELECT COALESCE(SUM(amount_cents), 0)
    FROM cycle_fee_events
    WHERE cycle_id = :cycle_id AND fee_type = :fee_type
""")

_INSERT_SNAPSHOT_SQL = text("""
    INSERT INTO cycle_snapshots
        (cycle_id, wallet_cash_cents, inventory_cents, cycle_profit_cents, snapshot_at)
    VALUES
        (:cycle_id, :wallet_cash_cents, :inventory_cents, :cycle_profit_cents, :snapshot_at)
    RETURNING id, cycle_id, wallet_cash_cents, inventory_cents, cycle_profit_cents, snapshot_at
""")

_LIST_SNAPSHOTS_SQL = text("""
    SELECT id, cycle_id, wallet_cash_cents, inventory_cents, cycle_profit_cents, snapshot_at
    FROM cycle_snapshots
    WHERE cycle_id = :cycle_id
    ORDER BY snapshot_at ASC, id ASC
""")

# ---------------------------------------------------------------------------
# SQL: plan commits / lines / allocations
# ---------------------------------------------------------------------------

_LINE_COLUMNS = """
    id, cycle_id, type_id, destination_station_id, planned_units,
    units_bought, units_sold, listed_units, buy_cost_cents,
    sales_gross_cents, sales_tax_cents, sales_net_cents,
    broker_fees_cents, relist_fees_cents, is_rollover,
    rollover_from_cycle_id, rollover_from_line_id, plan_commit_id,
    created_at, updated_at
"""

# Allocation order: rollover lines first, then oldest, then id
_LINE_ORDER = "ORDER BY is_rollover DESC, created_at ASC, id ASC"

_INSERT_COMMIT_SQL = text("""
    INSERT INTO plan_commits (id, cycle_id, memo)
    VALUES (:id, :cycle_id, :memo)
    RETURNING id, cycle_id, memo, created_at
""")

_GET_COMMIT_SQL = text(
    "SELECT id, cycle_id, memo, created_at FROM plan_commits WHERE id = :commit_id"
)

_INSERT_LINE_SQL = text(f"""
    INSERT INTO cycle_lines
        (id, cycle_id, type_id, destination_station_id, planned_units,
         units_bought, units_sold, listed_units, buy_cost_cents,
         sales_gross_cents, sales_tax_cents, sales_net_cents,
         broker_fees_cents, relist_fees_cents, is_rollover,
         rollover_from_cycle_id, rollover_from_line_id, plan_commit_id)
    VALUES
        (:id, :cycle_id, :type_id, :destination_station_id, :planned_units,
         :units_bought, :units_sold, :listed_units, :buy_cost_cents,
         :sales_gross_cents, :sales_tax_cents, :sales_net_cents,
         :broker_fees_cents, :relist_fees_cents, :is_rollover,
         :rollover_from_cycle_id, :rollover_from_line_id, :plan_commit_id)
    RETURNING {_LINE_COLUMNS}
""")

_GET_LINE_SQL = text(f"SELECT {_LINE_COLUMNS} FROM cycle_lines WHERE id = :line_id")

_LOCK_LINE_SQL = text(
    f"SELECT {_LINE_COLUMNS} FROM cycle_lines WHERE id = :line_id FOR UPDATE"
)

_FIND_PLANNED_LINE_SQL = text(f"""
    SELECT {_LINE_COLUMNS}
    FROM cycle_lines
    WHERE cycle_id = :cycle_id
      AND type_id = :type_id
      AND destination_station_id = :station_id
      AND NOT is_rollover
""")

_LIST_LINES_SQL = text(f"""
    SELECT {_LINE_COLUMNS} FROM cycle_lines WHERE cycle_id = :cycle_id {_LINE_ORDER}
""")

_LIST_LINES_FOR_COMMIT_SQL = text(f"""
    SELECT {_LINE_COLUMNS} FROM cycle_lines WHERE plan_commit_id = :commit_id {_LINE_ORDER}
""")

_LOCK_CANDIDATES_SQL = text(f"""
    SELECT {_LINE_COLUMNS}
    FROM cycle_lines
    WHERE cycle_id = :cycle_id
      AND type_id = :type_id
      AND destination_station_id = :station_id
    {_LINE_ORDER}
    FOR UPDATE
""")

_SAVE_LINE_SQL = text(f"""
    UPDATE cycle_lines
    SET planned_units = :planned_units,
        units_bought = :units_bought,
        units_sold = :units_sold,
        listed_units = :listed_units,
        buy_cost_cents = :buy_cost_cents,
        sales_gross_cents = :sales_gross_cents,
        sales_tax_cents = :sales_tax_cents,
        sales_net_cents = :sales_net_cents,
        broker_fees_cents = :broker_fees_cents,
        relist_fees_cents = :relist_fees_cents
    WHERE id = :id
    RETURNING {_LINE_COLUMNS}
""")

_DELETE_ALLOCATIONS_SQL = text("DELETE FROM allocations WHERE line_id = :line_id")
_DELETE_LINE_SQL = text("DELETE FROM cycle_lines WHERE id = :line_id")

_ALLOC_COLUMNS = """
    id, side, line_id, external_ref_id, quantity, unit_price_cents,
    amount_cents, tax_cents, occurred_at, is_rollover, created_at
"""

# Re-running a partially allocated ref onto the same line tops up its row
_INSERT_ALLOCATION_SQL = text(f"""
    INSERT INTO allocations
        (side, line_id, external_ref_id, quantity, unit_price_cents,
         amount_cents, tax_cents, occurred_at, is_rollover)
    VALUES
        (:side, :line_id, :external_ref_id, :quantity, :unit_price_cents,
         :amount_cents, :tax_cents, :occurred_at, :is_rollover)
    ON CONFLICT (side, line_id, external_ref_id) DO UPDATE
    SET quantity = allocations.quantity + EXCLUDED.quantity,
        amount_cents = allocations.amount_cents + EXCLUDED.amount_cents,
        tax_cents = allocations.tax_cents + EXCLUDED.tax_cents
    RETURNING {_ALLOC_COLUMNS}
""")

_ALLOCATED_QTY_SQL = text("""
    SELECT COALESCE(SUM(quantity), 0)
    FROM allocations
    WHERE side = :side AND external_ref_id = :external_ref_id
""")

_LIST_ALLOCATIONS_SQL = text(f"""
    SELECT a.id, a.side, a.line_id, a.external_ref_id, a.quantity, a.unit_price_cents,
           a.amount_cents, a.tax_cents, a.occurred_at, a.is_rollover, a.created_at
    FROM allocations a
    JOIN cycle_lines l ON l.id = a.line_id
    WHERE l.cycle_id = :cycle_id
    ORDER BY a.id ASC
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_cycle(row: object) -> Cycle:
    return Cycle(
        id=row.id,  # type: ignore[attr-defined]
        name=row.name,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        started_at=row.started_at,  # type: ignore[attr-defined]
        initial_injection_cents=row.initial_injection_cents,  # type: ignore[attr-defined]
        initial_capital_cents=row.initial_capital_cents,  # type: ignore[attr-defined]
        closed_at=row.closed_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_line(row: object) -> CycleLine:
    return CycleLine(
        id=row.id,  # type: ignore[attr-defined]
        cycle_id=row.cycle_id,  # type: ignore[attr-defined]
        type_id=row.type_id,  # type: ignore[attr-defined]
        destination_station_id=row.destination_station_id,  # type: ignore[attr-defined]
        planned_units=row.planned_units,  # type: ignore[attr-defined]
        units_bought=row.units_bought,  # type: ignore[attr-defined]
        units_sold=row.units_sold,  # type: ignore[attr-defined]
        listed_units=row.listed_units,  # type: ignore[attr-defined]
        buy_cost_cents=row.buy_cost_cents,  # type: ignore[attr-defined]
        sales_gross_cents=row.sales_gross_cents,  # type: ignore[attr-defined]
        sales_tax_cents=row.sales_tax_cents,  # type: ignore[attr-defined]
        sales_net_cents=row.sales_net_cents,  # type: ignore[attr-defined]
        broker_fees_cents=row.broker_fees_cents,  # type: ignore[attr-defined]
        relist_fees_cents=row.relist_fees_cents,  # type: ignore[attr-defined]
        is_rollover=row.is_rollover,  # type: ignore[attr-defined]
        rollover_from_cycle_id=row.rollover_from_cycle_id,  # type: ignore[attr-defined]
        rollover_from_line_id=row.rollover_from_line_id,  # type: ignore[attr-defined]
        plan_commit_id=row.plan_commit_id,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_allocation(row: object) -> Allocation:
    return Allocation(
        id=row.id,  # type: ignore[attr-defined]
        side=row.side,  # type: ignore[attr-defined]
        line_id=row.line_id,  # type: ignore[attr-defined]
        external_ref_id=row.external_ref_id,  # type: ignore[attr-defined]
        quantity=row.quantity,  # type: ignore[attr-defined]
        unit_price_cents=row.unit_price_cents,  # type: ignore[attr-defined]
        amount_cents=row.amount_cents,  # type: ignore[attr-defined]
        tax_cents=row.tax_cents,  # type: ignore[attr-defined]
        occurred_at=row.occurred_at,  # type: ignore[attr-defined]
        is_rollover=row.is_rollover,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def _row_to_snapshot(row: object) -> CycleSnapshot:
    return CycleSnapshot(
        id=row.id,  # type: ignore[attr-defined]
        cycle_id=row.cycle_id,  # type: ignore[attr-defined]
        wallet_cash_cents=row.wallet_cash_cents,  # type: ignore[attr-defined]
        inventory_cents=row.inventory_cents,  # type: ignore[attr-defined]
        cycle_profit_cents=row.cycle_profit_cents,  # type: ignore[attr-defined]
        snapshot_at=row.snapshot_at,  # type: ignore[attr-defined]
    )


def _is_lock_not_available(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == _LOCK_NOT_AVAILABLE


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class CycleRepository:
    async def create_cycle(self, db: AsyncSession, cycle: Cycle) -> Cycle:
        result = await db.execute(
            _INSERT_CYCLE_SQL,
            {
                "id": cycle.id,
                "name": cycle.name,
                "status": cycle.status,
                "started_at": cycle.started_at,
                "initial_injection_cents": cycle.initial_injection_cents,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Cycle insert returned no rows")
        return _row_to_cycle(row)

    async def get_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle | None:
        row = (await db.execute(_GET_CYCLE_SQL, {"cycle_id": cycle_id})).fetchone()
        return _row_to_cycle(row) if row is not None else None

    async def lock_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle | None:
        try:
            row = (await db.execute(_LOCK_CYCLE_SQL, {"cycle_id": cycle_id})).fetchone()
        except DBAPIError as exc:
            if _is_lock_not_available(exc):
                raise CycleBusyError(cycle_id) from exc
            raise
        return _row_to_cycle(row) if row is not None else None

    async def share_lock_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle | None:
        row = (await db.execute(_SHARE_LOCK_CYCLE_SQL, {"cycle_id": cycle_id})).fetchone()
        return _row_to_cycle(row) if row is not None else None

    async def list_cycles(self, db: AsyncSession, flt: CycleFilter) -> list[Cycle]:
        result = await db.execute(_LIST_CYCLES_SQL, {"status": flt.status, "id": flt.id})
        return [_row_to_cycle(row) for row in result.fetchall()]

    async def get_open_cycle(self, db: AsyncSession) -> Cycle | None:
        row = (await db.execute(_GET_OPEN_CYCLE_SQL)).fetchone()
        return _row_to_cycle(row) if row is not None else None

    async def find_next_planned(self, db: AsyncSession, exclude_cycle_id: str) -> Cycle | None:
        row = (await db.execute(_NEXT_PLANNED_SQL, {"exclude_id": exclude_cycle_id})).fetchone()
        return _row_to_cycle(row) if row is not None else None

    async def _raise_guard_miss(
        self, db: AsyncSession, cycle_id: str, required: str, action: str
    ) -> NoReturn:
        """A status-guarded UPDATE matched nothing: missing row or a concurrent transition."""
        current = await self.get_cycle(db, cycle_id)
        if current is None:
            raise CycleNotFoundError(cycle_id)
        raise CycleStateConflictError(cycle_id, current.status, required, action)

    async def update_planned(
        self,
        db: AsyncSession,
        cycle_id: str,
        name: str | None,
        started_at: datetime,
        initial_injection_cents: int,
    ) -> Cycle:
        row = (
            await db.execute(
                _UPDATE_PLANNED_SQL,
                {
                    "cycle_id": cycle_id,
                    "name": name,
                    "started_at": started_at,
                    "initial_injection_cents": initial_injection_cents,
                },
            )
        ).fetchone()
        if row is None:
            await self._raise_guard_miss(db, cycle_id, "PLANNED", "edit")
        return _row_to_cycle(row)

    async def mark_open(
        self, db: AsyncSession, cycle_id: str, initial_capital_cents: int
    ) -> Cycle:
        row = (
            await db.execute(
                _MARK_OPEN_SQL,
                {"cycle_id": cycle_id, "initial_capital_cents": initial_capital_cents},
            )
        ).fetchone()
        if row is None:
            await self._raise_guard_miss(db, cycle_id, "PLANNED", "open")
        return _row_to_cycle(row)

    async def mark_closed(self, db: AsyncSession, cycle_id: str, closed_at: datetime) -> Cycle:
        row = (
            await db.execute(_MARK_CLOSED_SQL, {"cycle_id": cycle_id, "closed_at": closed_at})
        ).fetchone()
        if row is None:
            await self._raise_guard_miss(db, cycle_id, "OPEN", "close")
        return _row_to_cycle(row)

    async def add_fee_event(
        self,
        db: AsyncSession,
        cycle_id: str,
        fee_type: str,
        amount_cents: int,
        memo: str | None,
        occurred_at: datetime,
    ) -> FeeEvent:
        row = (
            await db.execute(
                _INSERT_FEE_SQL,
                {
                    "cycle_id": cycle_id,
                    "fee_type": fee_type,
                    "amount_cents": amount_cents,
                    "memo": memo,
                    "occurred_at": occurred_at,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError("Fee insert returned no rows")
        return FeeEvent(
            id=row.id,
            cycle_id=row.cycle_id,
            fee_type=row.fee_type,
            amount_cents=row.amount_cents,
            memo=row.memo,
            occurred_at=row.occurred_at,
        )

    async def sum_fees(self, db: AsyncSession, cycle_id: str, fee_type: str) -> int:
        result = await db.execute(_SUM_FEES_SQL, {"cycle_id": cycle_id, "fee_type": fee_type})
        return int(result.scalar_one())

    async def add_snapshot(
        self,
        db: AsyncSession,
        cycle_id: str,
        wallet_cash_cents: int,
        inventory_cents: int,
        cycle_profit_cents: int,
        snapshot_at: datetime,
    ) -> CycleSnapshot:
        row = (
            await db.execute(
                _INSERT_SNAPSHOT_SQL,
                {
                    "cycle_id": cycle_id,
                    "wallet_cash_cents": wallet_cash_cents,
                    "inventory_cents": inventory_cents,
                    "cycle_profit_cents": cycle_profit_cents,
                    "snapshot_at": snapshot_at,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError("Snapshot insert returned no rows")
        return _row_to_snapshot(row)

    async def list_snapshots(self, db: AsyncSession, cycle_id: str) -> list[CycleSnapshot]:
        result = await db.execute(_LIST_SNAPSHOTS_SQL, {"cycle_id": cycle_id})
        return [_row_to_snapshot(row) for row in result.fetchall()]


class LineRepository:
    async def create_plan_commit(self, db: AsyncSession, commit: PlanCommit) -> PlanCommit:
        row = (
            await db.execute(
                _INSERT_COMMIT_SQL,
                {"id": commit.id, "cycle_id": commit.cycle_id, "memo": commit.memo},
            )
        ).fetchone()
        if row is None:
            raise InternalError("Plan commit insert returned no rows")
        return PlanCommit(id=row.id, cycle_id=row.cycle_id, memo=row.memo, created_at=row.created_at)

    async def get_plan_commit(self, db: AsyncSession, commit_id: str) -> PlanCommit | None:
        row = (await db.execute(_GET_COMMIT_SQL, {"commit_id": commit_id})).fetchone()
        if row is None:
            return None
        return PlanCommit(id=row.id, cycle_id=row.cycle_id, memo=row.memo, created_at=row.created_at)

    async def create_line(self, db: AsyncSession, line: CycleLine) -> CycleLine:
        row = (
            await db.execute(
                _INSERT_LINE_SQL,
                {
                    "id": line.id,
                    "cycle_id": line.cycle_id,
                    "type_id": line.type_id,
                    "destination_station_id": line.destination_station_id,
                    "planned_units": line.planned_units,
                    "units_bought": line.units_bought,
                    "units_sold": line.units_sold,
                    "listed_units": line.listed_units,
                    "buy_cost_cents": line.buy_cost_cents,
                    "sales_gross_cents": line.sales_gross_cents,
                    "sales_tax_cents": line.sales_tax_cents,
                    "sales_net_cents": line.sales_net_cents,
                    "broker_fees_cents": line.broker_fees_cents,
                    "relist_fees_cents": line.relist_fees_cents,
                    "is_rollover": line.is_rollover,
                    "rollover_from_cycle_id": line.rollover_from_cycle_id,
                    "rollover_from_line_id": line.rollover_from_line_id,
                    "plan_commit_id": line.plan_commit_id,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError("Cycle line insert returned no rows")
        return _row_to_line(row)

    async def get_line(self, db: AsyncSession, line_id: str) -> CycleLine | None:
        row = (await db.execute(_GET_LINE_SQL, {"line_id": line_id})).fetchone()
        return _row_to_line(row) if row is not None else None

    async def lock_line(self, db: AsyncSession, line_id: str) -> CycleLine | None:
        row = (await db.execute(_LOCK_LINE_SQL, {"line_id": line_id})).fetchone()
        return _row_to_line(row) if row is not None else None

    async def find_planned_line(
        self, db: AsyncSession, cycle_id: str, type_id: int, station_id: int
    ) -> CycleLine | None:
        row = (
            await db.execute(
                _FIND_PLANNED_LINE_SQL,
                {"cycle_id": cycle_id, "type_id": type_id, "station_id": station_id},
            )
        ).fetchone()
        return _row_to_line(row) if row is not None else None

    async def list_lines(self, db: AsyncSession, cycle_id: str) -> list[CycleLine]:
        result = await db.execute(_LIST_LINES_SQL, {"cycle_id": cycle_id})
        return [_row_to_line(row) for row in result.fetchall()]

    async def list_lines_for_commit(self, db: AsyncSession, commit_id: str) -> list[CycleLine]:
        result = await db.execute(_LIST_LINES_FOR_COMMIT_SQL, {"commit_id": commit_id})
        return [_row_to_line(row) for row in result.fetchall()]

    async def lock_candidate_lines(
        self, db: AsyncSession, cycle_id: str, type_id: int, station_id: int
    ) -> list[CycleLine]:
        result = await db.execute(
            _LOCK_CANDIDATES_SQL,
            {"cycle_id": cycle_id, "type_id": type_id, "station_id": station_id},
        )
        return [_row_to_line(row) for row in result.fetchall()]

    async def save_line(self, db: AsyncSession, line: CycleLine) -> CycleLine:
        row = (
            await db.execute(
                _SAVE_LINE_SQL,
                {
                    "id": line.id,
                    "planned_units": line.planned_units,
                    "units_bought": line.units_bought,
                    "units_sold": line.units_sold,
                    "listed_units": line.listed_units,
                    "buy_cost_cents": line.buy_cost_cents,
                    "sales_gross_cents": line.sales_gross_cents,
                    "sales_tax_cents": line.sales_tax_cents,
                    "sales_net_cents": line.sales_net_cents,
                    "broker_fees_cents": line.broker_fees_cents,
                    "relist_fees_cents": line.relist_fees_cents,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError(f"Cycle line {line.id} vanished during update")
        return _row_to_line(row)

    async def delete_line(self, db: AsyncSession, line_id: str) -> None:
        await db.execute(_DELETE_ALLOCATIONS_SQL, {"line_id": line_id})
        await db.execute(_DELETE_LINE_SQL, {"line_id": line_id})

    async def insert_allocation(self, db: AsyncSession, alloc: Allocation) -> Allocation:
        row = (
            await db.execute(
                _INSERT_ALLOCATION_SQL,
                {
                    "side": alloc.side,
                    "line_id": alloc.line_id,
                    "external_ref_id": alloc.external_ref_id,
                    "quantity": alloc.quantity,
                    "unit_price_cents": alloc.unit_price_cents,
                    "amount_cents": alloc.amount_cents,
                    "tax_cents": alloc.tax_cents,
                    "occurred_at": alloc.occurred_at,
                    "is_rollover": alloc.is_rollover,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError("Allocation insert returned no rows")
        return _row_to_allocation(row)

    async def allocated_quantity(self, db: AsyncSession, side: str, external_ref_id: str) -> int:
        result = await db.execute(
            _ALLOCATED_QTY_SQL, {"side": side, "external_ref_id": external_ref_id}
        )
        return int(result.scalar_one())

    async def list_allocations(self, db: AsyncSession, cycle_id: str) -> list[Allocation]:
        result = await db.execute(_LIST_ALLOCATIONS_SQL, {"cycle_id": cycle_id})
        return [_row_to_allocation(row) for row in result.fetchall()]
