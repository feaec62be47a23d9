"""CycleLifecycleManager — cycle state machine, planning and the close fan-out.

Every public method owns its transaction: `try: ... await db.commit()
except Exception: await db.rollback(); raise`. close_cycle is one transaction
covering snapshot, rollover, payouts and the CLOSED stamp; it is exclusive per
cycle through an in-process lock plus `FOR UPDATE NOWAIT` on the cycle row.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.datetime_utils import ensure_utc, utc_now
from src.cl_common.enums import CycleStatus, FeeType, LedgerEntryType, LedgerSource
from src.cl_common.errors import (
    AnotherCycleOpenError,
    CycleBusyError,
    CycleLineNotFoundError,
    CycleNotFoundError,
    CycleStateConflictError,
    DuplicateCycleLineError,
    InvariantViolationError,
    NoSuccessorCycleError,
    PlanCommitNotFoundError,
)
from src.cl_common.id_generator import generate_id
from src.cl_common.money import format_isk, isk_to_cents
from src.cl_cycle.application.schemas import (
    CloseCycleResponse,
    CommitLineStatus,
    CommitPlanRequest,
    CommitStatusResponse,
    CreateLineRequest,
    CycleListResponse,
    CycleResponse,
    FeeResponse,
    InvariantReport,
    LineListResponse,
    LineResponse,
    PlanCommitResponse,
    PlanCycleRequest,
    ProfitResponse,
    SnapshotResponse,
    UpdatePlannedCycleRequest,
)
from src.cl_cycle.domain.invariants import audit_lines, check_line, check_rollover_name
from src.cl_cycle.domain.models import (
    Allocation,
    Cycle,
    CycleFilter,
    CycleLine,
    CycleSnapshot,
    PlanCommit,
)
from src.cl_cycle.domain.profit import compute_cycle_profit, inventory_value_cents
from src.cl_cycle.domain.repository import CycleRepositoryProtocol, LineRepositoryProtocol
from src.cl_cycle.domain.state_machine import require_status, require_transition
from src.cl_cycle.infrastructure.persistence import CycleRepository, LineRepository
from src.cl_ledger.application.service import LedgerRecorder
from src.cl_participation.domain.repository import ParticipationRepositoryProtocol
from src.cl_participation.infrastructure.persistence import ParticipationRepository
from src.cl_payout.application.service import PayoutService
from src.cl_rollover.application.service import (
    RolloverProcessor,
    lines_needing_rollover,
    participations_reinvesting,
)

logger = logging.getLogger(__name__)


def _pct(part: int, whole: int) -> str:
    if whole <= 0:
        return "0.00"
    return f"{part * 100 / whole:.2f}"


class CycleLifecycleManager:
    def __init__(
        self,
        cycle_repo: CycleRepositoryProtocol | None = None,
        line_repo: LineRepositoryProtocol | None = None,
        participation_repo: ParticipationRepositoryProtocol | None = None,
        recorder: LedgerRecorder | None = None,
        rollover: RolloverProcessor | None = None,
        payouts: PayoutService | None = None,
    ) -> None:
        self._cycles: CycleRepositoryProtocol = cycle_repo or CycleRepository()
        self._lines: LineRepositoryProtocol = line_repo or LineRepository()
        self._participations: ParticipationRepositoryProtocol = (
            participation_repo or ParticipationRepository()
        )
        self._recorder = recorder or LedgerRecorder()
        self._rollover = rollover or RolloverProcessor(
            self._lines, self._participations, self._recorder
        )
        self._payouts = payouts or PayoutService(
            self._cycles, self._lines, self._participations, self._recorder
        )
        self._close_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle:
        cycle = await self._cycles.get_cycle(db, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    async def _get_line(self, db: AsyncSession, line_id: str, lock: bool = False) -> CycleLine:
        line = await (self._lines.lock_line(db, line_id) if lock else self._lines.get_line(db, line_id))
        if line is None:
            raise CycleLineNotFoundError(line_id)
        return line

    @staticmethod
    def _require_editable(cycle: Cycle, action: str) -> None:
        """Lines may be planned and edited while the cycle is PLANNED or OPEN."""
        if cycle.status == CycleStatus.CLOSED.value:
            raise CycleStateConflictError(cycle.id, cycle.status, "PLANNED or OPEN", action)

    @staticmethod
    def _enforce_line(line: CycleLine) -> None:
        for violation in check_line(line):
            raise InvariantViolationError("line_units", violation)

    async def _insert_line(
        self, db: AsyncSession, cycle: Cycle, req: CreateLineRequest, plan_commit_id: str | None
    ) -> CycleLine:
        existing = await self._lines.find_planned_line(
            db, cycle.id, req.type_id, req.destination_station_id
        )
        if existing is not None:
            raise DuplicateCycleLineError(cycle.id, req.type_id, req.destination_station_id)
        return await self._lines.create_line(
            db,
            CycleLine(
                id=generate_id("line_"),
                cycle_id=cycle.id,
                type_id=req.type_id,
                destination_station_id=req.destination_station_id,
                planned_units=req.planned_units,
                plan_commit_id=plan_commit_id,
            ),
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def plan_cycle(self, db: AsyncSession, req: PlanCycleRequest) -> CycleResponse:
        try:
            cycle = await self._cycles.create_cycle(
                db,
                Cycle(
                    id=generate_id("cyc_"),
                    name=req.name,
                    status=CycleStatus.PLANNED.value,
                    started_at=ensure_utc(req.started_at),
                    initial_injection_cents=isk_to_cents(req.initial_injection_isk),
                    initial_capital_cents=None,
                    closed_at=None,
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("cycle %s planned, start=%s", cycle.id, cycle.started_at.isoformat())
        return CycleResponse.from_domain(cycle)

    async def update_planned_cycle(
        self, db: AsyncSession, cycle_id: str, req: UpdatePlannedCycleRequest
    ) -> CycleResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            require_status(cycle_id, cycle.status, CycleStatus.PLANNED, "edit")
            updated = await self._cycles.update_planned(
                db,
                cycle_id,
                req.name if req.name is not None else cycle.name,
                ensure_utc(req.started_at) if req.started_at is not None else cycle.started_at,
                (
                    isk_to_cents(req.initial_injection_isk)
                    if req.initial_injection_isk is not None
                    else cycle.initial_injection_cents
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return CycleResponse.from_domain(updated)

    async def open_cycle(self, db: AsyncSession, cycle_id: str) -> CycleResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            require_transition(cycle_id, cycle.status, CycleStatus.OPEN.value)
            current = await self._cycles.get_open_cycle(db)
            if current is not None and current.id != cycle_id:
                raise AnotherCycleOpenError(current.id)
            validated = await self._participations.sum_validated_amount(db, cycle_id)
            initial_capital = cycle.initial_injection_cents + validated
            opened = await self._cycles.mark_open(db, cycle_id, initial_capital)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("cycle %s opened, initial capital %s", cycle_id, format_isk(initial_capital))
        return CycleResponse.from_domain(opened)

    async def close_cycle(
        self, db: AsyncSession, cycle_id: str, successor_cycle_id: str | None = None
    ) -> CloseCycleResponse:
        lock = self._close_locks[cycle_id]
        if lock.locked():
            raise CycleBusyError(cycle_id)
        try:
            async with lock:
                try:
                    result = await self._close_inner(db, cycle_id, successor_cycle_id)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        finally:
            self._close_locks.pop(cycle_id, None)
        logger.info(
            "cycle %s closed: rollover_lines=%d rollover_participations=%d payouts=%d profit=%s",
            cycle_id,
            result.rollover_lines,
            result.rollover_participations,
            result.payouts,
            result.cycle_profit_isk,
        )
        return result

    async def _close_inner(
        self, db: AsyncSession, cycle_id: str, successor_cycle_id: str | None
    ) -> CloseCycleResponse:
        cycle = await self._cycles.lock_cycle(db, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        require_transition(cycle_id, cycle.status, CycleStatus.CLOSED.value)
        now = utc_now()

        lines = await self._lines.list_lines(db, cycle_id)
        participations = await self._participations.list_validated(db, cycle_id)
        needs_successor = bool(
            lines_needing_rollover(lines) or participations_reinvesting(participations)
        )

        successor: Cycle | None
        if successor_cycle_id is not None:
            successor = await self._get_cycle(db, successor_cycle_id)
            if successor.id == cycle_id:
                raise CycleStateConflictError(successor.id, successor.status, "PLANNED", "roll into")
            require_status(successor.id, successor.status, CycleStatus.PLANNED, "roll into")
        else:
            successor = await self._cycles.find_next_planned(db, cycle_id)
        if needs_successor and successor is None:
            raise NoSuccessorCycleError(cycle_id)

        # 1. Snapshot the closing state (inventory still on the books)
        snapshot = await self._snapshot(db, cycle, lines, now)

        # 2. Leftover inventory leaves at cost, enters the successor as listed stock
        rolled_lines: list[CycleLine] = []
        if successor is not None:
            rolled_lines = await self._rollover.roll_lines(db, lines, successor.id, now)

        # 3. Payouts on the final (post-buyback) profit
        plan, payout_participations = await self._payouts.apply_close_payouts(db, cycle_id)

        # 4. Reinvested payouts become successor participations
        rolled_participations = []
        if successor is not None:
            rolled_participations = await self._rollover.roll_participations(
                db, payout_participations, successor.id, now
            )

        closed = await self._cycles.mark_closed(db, cycle_id, now)
        await self._recorder.record(
            db,
            cycle_id,
            LedgerEntryType.ADJUSTMENT.value,
            0,
            occurred_at=now,
            memo=(
                f"cycle closed; profit {format_isk(plan.cycle_profit_cents)}, "
                f"successor {successor.id if successor else '-'}"
            ),
            source=LedgerSource.OPERATOR.value,
        )
        return CloseCycleResponse(
            cycle=CycleResponse.from_domain(closed),
            successor_cycle_id=successor.id if successor else None,
            snapshot=SnapshotResponse.from_domain(snapshot),
            cycle_profit_isk=format_isk(plan.cycle_profit_cents),
            rollover_lines=len(rolled_lines),
            rollover_participations=len(rolled_participations),
            payouts=len(payout_participations),
            total_payout_isk=format_isk(plan.total_payout_cents),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_cycles(self, db: AsyncSession, flt: CycleFilter) -> CycleListResponse:
        cycles = await self._cycles.list_cycles(db, flt)
        return CycleListResponse(items=[CycleResponse.from_domain(c) for c in cycles])

    async def get_cycle(self, db: AsyncSession, cycle_id: str) -> CycleResponse:
        return CycleResponse.from_domain(await self._get_cycle(db, cycle_id))

    async def list_lines(self, db: AsyncSession, cycle_id: str) -> LineListResponse:
        await self._get_cycle(db, cycle_id)
        lines = await self._lines.list_lines(db, cycle_id)
        return LineListResponse(items=[LineResponse.from_domain(ln) for ln in lines])

    # ------------------------------------------------------------------
    # Lines / plan commits
    # ------------------------------------------------------------------

    async def create_cycle_line(
        self, db: AsyncSession, cycle_id: str, req: CreateLineRequest
    ) -> LineResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            self._require_editable(cycle, "add lines to")
            line = await self._insert_line(db, cycle, req, None)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return LineResponse.from_domain(line)

    async def commit_plan(
        self, db: AsyncSession, cycle_id: str, req: CommitPlanRequest
    ) -> PlanCommitResponse:
        """Create a plan commit and its lines; an existing planned line grows instead."""
        try:
            cycle = await self._get_cycle(db, cycle_id)
            self._require_editable(cycle, "commit a plan to")
            commit = await self._lines.create_plan_commit(
                db, PlanCommit(id=generate_id("pc_"), cycle_id=cycle_id, memo=req.memo)
            )
            lines: list[CycleLine] = []
            for item in req.lines:
                existing = await self._lines.find_planned_line(
                    db, cycle_id, item.type_id, item.destination_station_id
                )
                if existing is None:
                    lines.append(await self._insert_line(db, cycle, item, commit.id))
                    continue
                existing.planned_units += item.planned_units
                lines.append(await self._lines.save_line(db, existing))
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("plan commit %s on cycle %s: %d lines", commit.id, cycle_id, len(lines))
        return PlanCommitResponse.from_domain(commit, lines)

    async def update_cycle_line(
        self, db: AsyncSession, line_id: str, planned_units: int
    ) -> LineResponse:
        try:
            line = await self._get_line(db, line_id, lock=True)
            self._require_editable(await self._get_cycle(db, line.cycle_id), "edit lines of")
            if planned_units < line.units_bought:
                raise InvariantViolationError(
                    "planned_covers_bought",
                    f"line {line_id}: planned_units {planned_units} < units_bought {line.units_bought}",
                )
            line.planned_units = planned_units
            saved = await self._lines.save_line(db, line)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return LineResponse.from_domain(saved)

    async def delete_cycle_line(self, db: AsyncSession, line_id: str) -> None:
        try:
            line = await self._get_line(db, line_id, lock=True)
            self._require_editable(await self._get_cycle(db, line.cycle_id), "delete lines of")
            await self._lines.delete_line(db, line_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("line %s deleted (allocations cascaded)", line_id)

    async def mark_listed(self, db: AsyncSession, line_id: str, units: int) -> LineResponse:
        try:
            line = await self._get_line(db, line_id, lock=True)
            self._require_editable(await self._get_cycle(db, line.cycle_id), "list units of")
            line.listed_units = units
            self._enforce_line(line)
            saved = await self._lines.save_line(db, line)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return LineResponse.from_domain(saved)

    async def _add_line_fee(
        self, db: AsyncSession, line_id: str, amount_cents: int, fee_type: FeeType, memo: str | None
    ) -> LineResponse:
        try:
            line = await self._get_line(db, line_id, lock=True)
            self._require_editable(await self._get_cycle(db, line.cycle_id), f"add {fee_type.value} fees to")
            if fee_type is FeeType.BROKER:
                line.broker_fees_cents += amount_cents
            else:
                line.relist_fees_cents += amount_cents
            saved = await self._lines.save_line(db, line)
            await self._recorder.record(
                db,
                line.cycle_id,
                LedgerEntryType.FEE.value,
                -amount_cents,
                memo=memo or f"{fee_type.value} fee",
                source=LedgerSource.OPERATOR.value,
                plan_commit_id=line.plan_commit_id,
                line_id=line.id,
                type_id=line.type_id,
                station_id=line.destination_station_id,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return LineResponse.from_domain(saved)

    async def add_broker_fee(
        self, db: AsyncSession, line_id: str, amount_cents: int, memo: str | None = None
    ) -> LineResponse:
        return await self._add_line_fee(db, line_id, amount_cents, FeeType.BROKER, memo)

    async def add_relist_fee(
        self, db: AsyncSession, line_id: str, amount_cents: int, memo: str | None = None
    ) -> LineResponse:
        return await self._add_line_fee(db, line_id, amount_cents, FeeType.RELIST, memo)

    async def add_transport_fee(
        self, db: AsyncSession, cycle_id: str, amount_cents: int, memo: str | None = None
    ) -> FeeResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            self._require_editable(cycle, "add transport fees to")
            now = utc_now()
            fee = await self._cycles.add_fee_event(
                db, cycle_id, FeeType.TRANSPORT.value, amount_cents, memo, now
            )
            await self._recorder.record(
                db,
                cycle_id,
                LedgerEntryType.FEE.value,
                -amount_cents,
                occurred_at=now,
                memo=memo or "transport fee",
                source=LedgerSource.OPERATOR.value,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return FeeResponse.from_event(fee)

    # ------------------------------------------------------------------
    # Profit / snapshots / audit
    # ------------------------------------------------------------------

    async def _snapshot(
        self, db: AsyncSession, cycle: Cycle, lines: list[CycleLine], at: datetime
    ) -> CycleSnapshot:
        transport = await self._cycles.sum_fees(db, cycle.id, FeeType.TRANSPORT.value)
        profit = compute_cycle_profit(lines, transport).cycle_profit_cents
        initial = cycle.initial_capital_cents or 0
        return await self._cycles.add_snapshot(
            db,
            cycle.id,
            wallet_cash_cents=initial + profit,
            inventory_cents=inventory_value_cents(lines),
            cycle_profit_cents=profit,
            snapshot_at=at,
        )

    async def create_snapshot(self, db: AsyncSession, cycle_id: str) -> SnapshotResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            lines = await self._lines.list_lines(db, cycle_id)
            snapshot = await self._snapshot(db, cycle, lines, utc_now())
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return SnapshotResponse.from_domain(snapshot)

    async def compute_profit(self, db: AsyncSession, cycle_id: str) -> ProfitResponse:
        await self._get_cycle(db, cycle_id)
        lines = await self._lines.list_lines(db, cycle_id)
        transport = await self._cycles.sum_fees(db, cycle_id, FeeType.TRANSPORT.value)
        return ProfitResponse.from_domain(cycle_id, compute_cycle_profit(lines, transport))

    async def get_commit_status(self, db: AsyncSession, commit_id: str) -> CommitStatusResponse:
        commit = await self._lines.get_plan_commit(db, commit_id)
        if commit is None:
            raise PlanCommitNotFoundError(commit_id)
        lines = await self._lines.list_lines_for_commit(db, commit_id)
        entries = await self._recorder.entries_for_commit(db, commit_id)
        buys = sells = fees = 0
        for e in entries:
            if e.entry_type == LedgerEntryType.EXECUTION.value:
                if e.amount_cents < 0:
                    buys += -e.amount_cents
                else:
                    sells += e.amount_cents
            elif e.entry_type == LedgerEntryType.FEE.value:
                fees += -e.amount_cents
        return CommitStatusResponse(
            commit_id=commit.id,
            cycle_id=commit.cycle_id,
            lines=[
                CommitLineStatus(
                    line_id=ln.id,
                    type_id=ln.type_id,
                    destination_station_id=ln.destination_station_id,
                    planned_units=ln.planned_units,
                    units_bought=ln.units_bought,
                    units_sold=ln.units_sold,
                    units_remaining=ln.units_remaining,
                    buy_progress_pct=_pct(ln.units_bought, ln.planned_units),
                    sell_progress_pct=_pct(ln.units_sold, ln.units_bought),
                )
                for ln in lines
            ],
            total_buys_isk=format_isk(buys),
            total_sells_isk=format_isk(sells),
            total_fees_isk=format_isk(fees),
            ledger_entries=len(entries),
        )

    async def verify_invariants(self, db: AsyncSession, cycle_id: str | None = None) -> InvariantReport:
        cycles = (
            [await self._get_cycle(db, cycle_id)]
            if cycle_id is not None
            else await self._cycles.list_cycles(db, CycleFilter())
        )
        violations: list[str] = []
        for cycle in cycles:
            lines = await self._lines.list_lines(db, cycle.id)
            allocations = await self._lines.list_allocations(db, cycle.id)
            by_line: dict[str, list[Allocation]] = defaultdict(list)
            for alloc in allocations:
                by_line[alloc.line_id].append(alloc)
            violations.extend(audit_lines(lines, by_line))
            violations.extend(await self._audit_rollover_names(db, cycle.id))
        return InvariantReport(cycles_checked=len(cycles), violations=violations, ok=not violations)

    async def _audit_rollover_names(self, db: AsyncSession, cycle_id: str) -> list[str]:
        violations: list[str] = []
        for p in await self._participations.list_by_cycle(db, cycle_id, None):
            if p.rollover_from_participation_id is None:
                continue
            source = await self._participations.get(db, p.rollover_from_participation_id)
            if source is None:
                continue
            for msg in check_rollover_name(p.id, p.character_name, source.character_name):
                logger.error(msg)
                violations.append(msg)
        return violations
