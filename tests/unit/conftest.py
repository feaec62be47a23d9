"""In-memory repository fakes for service-level scenarios.

Each fake implements one repository Protocol over plain dicts. Reads and
writes go through dataclasses.replace so a service only changes stored state
by calling the repository, as it would against PostgreSQL.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from config.settings import Settings
from src.cl_allocation.application.service import AllocationService
from src.cl_allocation.domain.models import FillEvent, UnmatchedFill
from src.cl_common.enums import VALIDATED_PARTICIPATION_STATUSES, CycleStatus, ParticipationStatus
from src.cl_cycle.application.service import CycleLifecycleManager
from src.cl_cycle.domain.models import (
    Allocation,
    Cycle,
    CycleFilter,
    CycleLine,
    CycleSnapshot,
    FeeEvent,
    PlanCommit,
)
from src.cl_ledger.application.service import LedgerRecorder
from src.cl_ledger.domain.models import LedgerEntry, NewLedgerEntry
from src.cl_participation.application.service import ParticipationService
from src.cl_participation.domain.models import CashEvent, Participation
from src.cl_payout.application.service import PayoutService
from src.cl_rollover.application.service import RolloverProcessor

_T0 = datetime(2026, 1, 1, tzinfo=UTC)


class _Clock:
    """Strictly increasing created_at values so ordering is deterministic."""

    def __init__(self) -> None:
        self._n = 0

    def tick(self) -> datetime:
        self._n += 1
        return _T0 + timedelta(seconds=self._n)


class FakeCycleRepository:
    def __init__(self, clock: _Clock) -> None:
        self._clock = clock
        self.cycles: dict[str, Cycle] = {}
        self.fees: list[FeeEvent] = []
        self.snapshots: list[CycleSnapshot] = []

    async def create_cycle(self, db, cycle: Cycle) -> Cycle:
        stored = replace(cycle, created_at=self._clock.tick())
        self.cycles[cycle.id] = stored
        return replace(stored)

    async def get_cycle(self, db, cycle_id: str) -> Cycle | None:
        c = self.cycles.get(cycle_id)
        return replace(c) if c else None

    async def lock_cycle(self, db, cycle_id: str) -> Cycle | None:
        return await self.get_cycle(db, cycle_id)

    async def share_lock_cycle(self, db, cycle_id: str) -> Cycle | None:
        return await self.get_cycle(db, cycle_id)

    async def list_cycles(self, db, flt: CycleFilter) -> list[Cycle]:
        items = [
            replace(c)
            for c in self.cycles.values()
            if (flt.status is None or c.status == flt.status) and (flt.id is None or c.id == flt.id)
        ]
        return sorted(items, key=lambda c: (c.started_at, c.id), reverse=True)

    async def get_open_cycle(self, db) -> Cycle | None:
        for c in self.cycles.values():
            if c.status == CycleStatus.OPEN.value:
                return replace(c)
        return None

    async def find_next_planned(self, db, exclude_cycle_id: str) -> Cycle | None:
        planned = [
            c for c in self.cycles.values()
            if c.status == CycleStatus.PLANNED.value and c.id != exclude_cycle_id
        ]
        planned.sort(key=lambda c: (c.started_at, c.created_at))
        return replace(planned[0]) if planned else None

    async def update_planned(self, db, cycle_id, name, started_at, initial_injection_cents) -> Cycle:
        c = self.cycles[cycle_id]
        c.name, c.started_at, c.initial_injection_cents = name, started_at, initial_injection_cents
        return replace(c)

    async def mark_open(self, db, cycle_id: str, initial_capital_cents: int) -> Cycle:
        c = self.cycles[cycle_id]
        c.status = CycleStatus.OPEN.value
        c.initial_capital_cents = initial_capital_cents
        return replace(c)

    async def mark_closed(self, db, cycle_id: str, closed_at: datetime) -> Cycle:
        c = self.cycles[cycle_id]
        c.status = CycleStatus.CLOSED.value
        c.closed_at = closed_at
        return replace(c)

    async def add_fee_event(self, db, cycle_id, fee_type, amount_cents, memo, occurred_at) -> FeeEvent:
        fee = FeeEvent(len(self.fees) + 1, cycle_id, fee_type, amount_cents, memo, occurred_at)
        self.fees.append(fee)
        return fee

    async def sum_fees(self, db, cycle_id: str, fee_type: str) -> int:
        return sum(f.amount_cents for f in self.fees if f.cycle_id == cycle_id and f.fee_type == fee_type)

    async def add_snapshot(
        self, db, cycle_id, wallet_cash_cents, inventory_cents, cycle_profit_cents, snapshot_at
    ) -> CycleSnapshot:
        snap = CycleSnapshot(
            len(self.snapshots) + 1, cycle_id, wallet_cash_cents, inventory_cents,
            cycle_profit_cents, snapshot_at,
        )
        self.snapshots.append(snap)
        return snap

    async def list_snapshots(self, db, cycle_id: str) -> list[CycleSnapshot]:
        return [s for s in self.snapshots if s.cycle_id == cycle_id]


class FakeLineRepository:
    def __init__(self, clock: _Clock) -> None:
        self._clock = clock
        self.commits: dict[str, PlanCommit] = {}
        self.lines: dict[str, CycleLine] = {}
        self.allocations: list[Allocation] = []

    @staticmethod
    def _order(lines: list[CycleLine]) -> list[CycleLine]:
        return sorted(lines, key=lambda ln: (not ln.is_rollover, ln.created_at, ln.id))

    async def create_plan_commit(self, db, commit: PlanCommit) -> PlanCommit:
        stored = replace(commit, created_at=self._clock.tick())
        self.commits[commit.id] = stored
        return replace(stored)

    async def get_plan_commit(self, db, commit_id: str) -> PlanCommit | None:
        c = self.commits.get(commit_id)
        return replace(c) if c else None

    async def create_line(self, db, line: CycleLine) -> CycleLine:
        stored = replace(line, created_at=self._clock.tick())
        self.lines[line.id] = stored
        return replace(stored)

    async def get_line(self, db, line_id: str) -> CycleLine | None:
        ln = self.lines.get(line_id)
        return replace(ln) if ln else None

    async def lock_line(self, db, line_id: str) -> CycleLine | None:
        return await self.get_line(db, line_id)

    async def find_planned_line(self, db, cycle_id, type_id, station_id) -> CycleLine | None:
        for ln in self.lines.values():
            if (
                ln.cycle_id == cycle_id
                and ln.type_id == type_id
                and ln.destination_station_id == station_id
                and not ln.is_rollover
            ):
                return replace(ln)
        return None

    async def list_lines(self, db, cycle_id: str) -> list[CycleLine]:
        return [replace(ln) for ln in self._order([ln for ln in self.lines.values() if ln.cycle_id == cycle_id])]

    async def list_lines_for_commit(self, db, commit_id: str) -> list[CycleLine]:
        return [
            replace(ln)
            for ln in self._order([ln for ln in self.lines.values() if ln.plan_commit_id == commit_id])
        ]

    async def lock_candidate_lines(self, db, cycle_id, type_id, station_id) -> list[CycleLine]:
        return [
            replace(ln)
            for ln in self._order(
                [
                    ln for ln in self.lines.values()
                    if ln.cycle_id == cycle_id
                    and ln.type_id == type_id
                    and ln.destination_station_id == station_id
                ]
            )
        ]

    async def save_line(self, db, line: CycleLine) -> CycleLine:
        self.lines[line.id] = replace(line)
        return replace(line)

    async def delete_line(self, db, line_id: str) -> None:
        self.allocations = [a for a in self.allocations if a.line_id != line_id]
        self.lines.pop(line_id, None)

    async def insert_allocation(self, db, alloc: Allocation) -> Allocation:
        for existing in self.allocations:
            if (existing.side, existing.line_id, existing.external_ref_id) == (
                alloc.side, alloc.line_id, alloc.external_ref_id,
            ):
                existing.quantity += alloc.quantity
                existing.amount_cents += alloc.amount_cents
                existing.tax_cents += alloc.tax_cents
                return replace(existing)
        stored = replace(alloc, id=len(self.allocations) + 1, created_at=self._clock.tick())
        self.allocations.append(stored)
        return replace(stored)

    async def allocated_quantity(self, db, side: str, external_ref_id: str) -> int:
        return sum(
            a.quantity for a in self.allocations
            if a.side == side and a.external_ref_id == external_ref_id
        )

    async def list_allocations(self, db, cycle_id: str) -> list[Allocation]:
        ids = {ln.id for ln in self.lines.values() if ln.cycle_id == cycle_id}
        return [replace(a) for a in self.allocations if a.line_id in ids]


class FakeParticipationRepository:
    def __init__(self, clock: _Clock) -> None:
        self._clock = clock
        self.participations: dict[str, Participation] = {}
        self.transfers: dict[str, CashEvent] = {}

    def _sorted(self, items: list[Participation]) -> list[Participation]:
        return [replace(p) for p in sorted(items, key=lambda p: (p.created_at, p.id))]

    async def create(self, db, p: Participation) -> Participation:
        stored = replace(p, created_at=self._clock.tick())
        self.participations[p.id] = stored
        return replace(stored)

    async def get(self, db, participation_id: str) -> Participation | None:
        p = self.participations.get(participation_id)
        return replace(p) if p else None

    async def lock(self, db, participation_id: str) -> Participation | None:
        return await self.get(db, participation_id)

    async def get_by_user(self, db, cycle_id: str, user_id: str) -> Participation | None:
        for p in self.participations.values():
            if p.cycle_id == cycle_id and p.user_id == user_id and not p.is_rollover:
                return replace(p)
        return None

    async def list_by_cycle(self, db, cycle_id: str, status: str | None) -> list[Participation]:
        return self._sorted(
            [
                p for p in self.participations.values()
                if p.cycle_id == cycle_id and (status is None or p.status == status)
            ]
        )

    async def list_validated(self, db, cycle_id: str) -> list[Participation]:
        return self._sorted(
            [
                p for p in self.participations.values()
                if p.cycle_id == cycle_id
                and p.status in VALIDATED_PARTICIPATION_STATUSES
                and p.validated_at is not None
            ]
        )

    async def find_awaiting_by_amount(self, db, cycle_id: str, amount_cents: int) -> list[Participation]:
        return self._sorted(
            [
                p for p in self.participations.values()
                if p.cycle_id == cycle_id
                and p.status == ParticipationStatus.AWAITING_INVESTMENT.value
                and p.wallet_journal_ref is None
                and p.amount_cents == amount_cents
            ]
        )

    async def find_by_journal_ref(self, db, ref_id: str) -> Participation | None:
        for p in self.participations.values():
            if p.wallet_journal_ref == ref_id:
                return replace(p)
        return None

    async def bind_transfer(self, db, participation_id, ref_id, validated_at) -> Participation | None:
        p = self.participations.get(participation_id)
        if (
            p is None
            or p.status != ParticipationStatus.AWAITING_INVESTMENT.value
            or p.wallet_journal_ref is not None
        ):
            return None
        p.wallet_journal_ref = ref_id
        p.validated_at = validated_at
        p.status = ParticipationStatus.OPTED_IN.value
        return replace(p)

    async def save(self, db, p: Participation) -> Participation:
        self.participations[p.id] = replace(p)
        return replace(p)

    async def sum_validated_amount(self, db, cycle_id: str) -> int:
        return sum(p.amount_cents for p in await self.list_validated(db, cycle_id))

    async def insert_transfer(self, db, event: CashEvent) -> bool:
        if event.ref_id in self.transfers:
            return False
        self.transfers[event.ref_id] = replace(event, participation_id=None)
        return True

    async def get_transfer(self, db, ref_id: str) -> CashEvent | None:
        e = self.transfers.get(ref_id)
        return replace(e) if e else None

    async def list_unlinked_transfers(self, db, since: datetime | None) -> list[CashEvent]:
        items = [
            e for e in self.transfers.values()
            if e.participation_id is None and (since is None or e.occurred_at >= since)
        ]
        return [replace(e) for e in sorted(items, key=lambda e: (e.occurred_at, e.ref_id))]

    async def link_transfer(self, db, ref_id: str, participation_id: str) -> None:
        if ref_id in self.transfers:
            self.transfers[ref_id].participation_id = participation_id


class FakeLedgerRepository:
    def __init__(self) -> None:
        self.entries: list[LedgerEntry] = []

    async def append(self, db, entry: NewLedgerEntry) -> LedgerEntry:
        stored = LedgerEntry(id=len(self.entries) + 1, **vars(entry))
        self.entries.append(stored)
        return stored

    async def list_entries(self, db, cycle_id, cursor_id, limit, entry_type) -> list[LedgerEntry]:
        items = [
            e for e in reversed(self.entries)
            if e.cycle_id == cycle_id
            and (cursor_id is None or e.id < cursor_id)
            and (entry_type is None or e.entry_type == entry_type)
        ]
        return items[:limit]

    async def list_for_commit(self, db, plan_commit_id: str) -> list[LedgerEntry]:
        return [e for e in self.entries if e.plan_commit_id == plan_commit_id]

    def of_type(self, entry_type: str, cycle_id: str | None = None) -> list[LedgerEntry]:
        return [
            e for e in self.entries
            if e.entry_type == entry_type and (cycle_id is None or e.cycle_id == cycle_id)
        ]


class FakeFillRepository:
    def __init__(self, lines: FakeLineRepository) -> None:
        self._lines = lines
        self.fills: dict[tuple[str, str], FillEvent] = {}

    async def stage_fill(self, db, fill: FillEvent) -> bool:
        key = (fill.side, fill.external_ref_id)
        if key in self.fills:
            return False
        self.fills[key] = replace(fill)
        return True

    def _window(self, since: datetime, until: datetime | None) -> list[FillEvent]:
        items = [
            f for f in self.fills.values()
            if f.occurred_at >= since and (until is None or f.occurred_at < until)
        ]
        return sorted(items, key=lambda f: f.occurred_at)

    async def list_staged(self, db, since: datetime, until: datetime | None) -> list[FillEvent]:
        return [replace(f) for f in self._window(since, until)]

    async def list_unmatched(self, db, since: datetime, until: datetime | None) -> list[UnmatchedFill]:
        result = []
        for f in self._window(since, until):
            allocated = await self._lines.allocated_quantity(db, f.side, f.external_ref_id)
            if allocated < f.quantity:
                result.append(UnmatchedFill(fill=replace(f), allocated_quantity=allocated))
        return result


class Store:
    """All fakes plus services wired to them."""

    def __init__(self, tax_bps: int = 500, broker_bps: int = 300) -> None:
        clock = _Clock()
        self.cycles = FakeCycleRepository(clock)
        self.lines = FakeLineRepository(clock)
        self.participations = FakeParticipationRepository(clock)
        self.ledger_repo = FakeLedgerRepository()
        self.fills = FakeFillRepository(self.lines)
        self.recorder = LedgerRecorder(self.ledger_repo)
        self.rollover = RolloverProcessor(self.lines, self.participations, self.recorder)
        self.payouts = PayoutService(self.cycles, self.lines, self.participations, self.recorder)
        self.manager = CycleLifecycleManager(
            self.cycles, self.lines, self.participations, self.recorder, self.rollover, self.payouts
        )
        self.allocation = AllocationService(
            self.cycles,
            self.lines,
            self.fills,
            self.recorder,
            Settings(SALES_TAX_BPS=tax_bps, BROKER_FEE_BPS=broker_bps),
        )
        self.participation_service = ParticipationService(
            self.cycles, self.participations, self.recorder
        )

    def line(self, line_id: str) -> CycleLine:
        return self.lines.lines[line_id]

    def participation(self, participation_id: str) -> Participation:
        return self.participations.participations[participation_id]


@pytest.fixture
def db() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def store() -> Store:
    return Store()
