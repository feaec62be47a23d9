"""Repository Protocols for cycles, lines and their allocations.

Unit tests inject in-memory implementations; infrastructure provides the
PostgreSQL ones. Methods never commit: the application service owns the
transaction.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_cycle.domain.models import (
    Allocation,
    Cycle,
    CycleFilter,
    CycleLine,
    CycleSnapshot,
    FeeEvent,
    PlanCommit,
)


class CycleRepositoryProtocol(Protocol):
    async def create_cycle(self, db: AsyncSession, cycle: Cycle) -> Cycle: ...

    async def get_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle | None: ...

    async def lock_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle | None:
        """SELECT ... FOR UPDATE NOWAIT. Raises CycleBusyError if already locked."""
        ...

    async def share_lock_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle | None:
        """SELECT ... FOR SHARE: blocks a concurrent close, not other batches."""
        ...

    async def list_cycles(self, db: AsyncSession, flt: CycleFilter) -> list[Cycle]: ...

    async def get_open_cycle(self, db: AsyncSession) -> Cycle | None: ...

    async def find_next_planned(self, db: AsyncSession, exclude_cycle_id: str) -> Cycle | None: ...

    async def update_planned(
        self,
        db: AsyncSession,
        cycle_id: str,
        name: str | None,
        started_at: datetime,
        initial_injection_cents: int,
    ) -> Cycle: ...

    async def mark_open(
        self, db: AsyncSession, cycle_id: str, initial_capital_cents: int
    ) -> Cycle: ...

    async def mark_closed(self, db: AsyncSession, cycle_id: str, closed_at: datetime) -> Cycle: ...

    async def add_fee_event(
        self,
        db: AsyncSession,
        cycle_id: str,
        fee_type: str,
        amount_cents: int,
        memo: str | None,
        occurred_at: datetime,
    ) -> FeeEvent: ...

    async def sum_fees(self, db: AsyncSession, cycle_id: str, fee_type: str) -> int: ...

    async def add_snapshot(
        self,
        db: AsyncSession,
        cycle_id: str,
        wallet_cash_cents: int,
        inventory_cents: int,
        cycle_profit_cents: int,
        snapshot_at: datetime,
    ) -> CycleSnapshot: ...

    async def list_snapshots(self, db: AsyncSession, cycle_id: str) -> list[CycleSnapshot]: ...


class LineRepositoryProtocol(Protocol):
    async def create_plan_commit(self, db: AsyncSession, commit: PlanCommit) -> PlanCommit: ...

    async def get_plan_commit(self, db: AsyncSession, commit_id: str) -> PlanCommit | None: ...

    async def create_line(self, db: AsyncSession, line: CycleLine) -> CycleLine: ...

    async def get_line(self, db: AsyncSession, line_id: str) -> CycleLine | None: ...

    async def lock_line(self, db: AsyncSession, line_id: str) -> CycleLine | None: ...

    async def find_planned_line(
        self, db: AsyncSession, cycle_id: str, type_id: int, station_id: int
    ) -> CycleLine | None:
        """The non-rollover line for (type, station), if any."""
        ...

    async def list_lines(self, db: AsyncSession, cycle_id: str) -> list[CycleLine]:
        """Ordered rollover first, then created_at, then id."""
        ...

    async def list_lines_for_commit(self, db: AsyncSession, commit_id: str) -> list[CycleLine]: ...

    async def lock_candidate_lines(
        self, db: AsyncSession, cycle_id: str, type_id: int, station_id: int
    ) -> list[CycleLine]:
        """Lines for (type, station) locked FOR UPDATE, in allocation order."""
        ...

    async def save_line(self, db: AsyncSession, line: CycleLine) -> CycleLine: ...

    async def delete_line(self, db: AsyncSession, line_id: str) -> None:
        """Deletes the line's allocations first, then the line."""
        ...

    async def insert_allocation(self, db: AsyncSession, alloc: Allocation) -> Allocation: ...

    async def allocated_quantity(self, db: AsyncSession, side: str, external_ref_id: str) -> int: ...

    async def list_allocations(self, db: AsyncSession, cycle_id: str) -> list[Allocation]: ...
