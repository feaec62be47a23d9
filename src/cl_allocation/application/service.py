"""AllocationService — binds market fills to cycle lines.

One transaction per batch. The cycle row is share-locked so a concurrent
close either waits for the batch or the batch sees the cycle CLOSED and is
rejected; rejected fills stay staged in fill_events and are never lost.
Candidate lines are locked FOR UPDATE before the already-allocated quantity
is read, which serializes batches touching the same (type, station).
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, settings as default_settings
from src.cl_common.enums import (
    AllocationStatus,
    CycleStatus,
    FillSide,
    LedgerEntryType,
    LedgerSource,
)
from src.cl_common.errors import CycleNotFoundError, MalformedEventError, NoOpenCycleError
from src.cl_cycle.domain.models import Cycle
from src.cl_cycle.domain.repository import CycleRepositoryProtocol, LineRepositoryProtocol
from src.cl_cycle.domain.state_machine import require_status
from src.cl_cycle.infrastructure.persistence import CycleRepository, LineRepository
from src.cl_ledger.application.service import LedgerRecorder
from src.cl_allocation.application.schemas import (
    AllocationOutcomeResponse,
    FillIn,
    IngestFillsResponse,
    ReconcileSummaryResponse,
    UnmatchedFillItem,
    UnmatchedFillListResponse,
)
from src.cl_allocation.domain.allocator import allocate_fill
from src.cl_allocation.domain.models import AllocationOutcome, FillEvent, ReconcileSummary
from src.cl_allocation.domain.repository import FillRepositoryProtocol
from src.cl_allocation.domain.validation import parse_fill
from src.cl_allocation.infrastructure.persistence import FillRepository

logger = logging.getLogger(__name__)


def to_fill_event(raw: FillIn | FillEvent) -> FillEvent:
    if isinstance(raw, FillEvent):
        return raw
    return parse_fill(
        side=raw.side,
        type_id=raw.type_id,
        station_id=raw.station_id,
        quantity=raw.quantity,
        unit_price_isk=raw.unit_price_isk,
        external_ref_id=raw.external_ref_id,
        occurred_at=raw.occurred_at,
        character_id=raw.character_id,
    )


def _tally(summary: ReconcileSummary, outcome: AllocationOutcome) -> None:
    summary.outcomes.append(outcome)
    is_buy = outcome.side == FillSide.BUY.value
    if outcome.status == AllocationStatus.MALFORMED.value:
        summary.malformed += 1
    elif outcome.status == AllocationStatus.DUPLICATE.value:
        summary.duplicates += 1
    if outcome.slices:
        if is_buy:
            summary.buys_allocated += 1
        else:
            summary.sells_allocated += 1
    if outcome.status in (AllocationStatus.UNMATCHED.value, AllocationStatus.PARTIAL.value):
        if is_buy:
            summary.unmatched_buys += 1
        else:
            summary.unmatched_sells += 1


class AllocationService:
    def __init__(
        self,
        cycle_repo: CycleRepositoryProtocol | None = None,
        line_repo: LineRepositoryProtocol | None = None,
        fill_repo: FillRepositoryProtocol | None = None,
        recorder: LedgerRecorder | None = None,
        config: Settings | None = None,
    ) -> None:
        self._cycles: CycleRepositoryProtocol = cycle_repo or CycleRepository()
        self._lines: LineRepositoryProtocol = line_repo or LineRepository()
        self._fills: FillRepositoryProtocol = fill_repo or FillRepository()
        self._recorder = recorder or LedgerRecorder()
        cfg = config or default_settings
        self._tax_bps = cfg.SALES_TAX_BPS
        self._broker_bps = cfg.BROKER_FEE_BPS

    async def _lock_open_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle:
        cycle = await self._cycles.share_lock_cycle(db, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        require_status(cycle_id, cycle.status, CycleStatus.OPEN, "allocate fills to")
        return cycle

    async def _allocate_one(self, db: AsyncSession, cycle: Cycle, fill: FillEvent) -> AllocationOutcome:
        candidates = await self._lines.lock_candidate_lines(db, cycle.id, fill.type_id, fill.station_id)
        already = await self._lines.allocated_quantity(db, fill.side, fill.external_ref_id)
        outcome, rows = allocate_fill(fill, candidates, already, self._tax_bps, self._broker_bps)
        if not rows:
            logger.debug("fill %s %s: %s", fill.side, fill.external_ref_id, outcome.status)
            return outcome

        by_id = {line.id: line for line in candidates}
        for row, piece in zip(rows, outcome.slices):
            line = by_id[row.line_id]
            await self._lines.insert_allocation(db, row)
            await self._lines.save_line(db, line)
            is_buy = fill.side == FillSide.BUY.value
            await self._recorder.record(
                db,
                cycle.id,
                LedgerEntryType.EXECUTION.value,
                -piece.amount_cents if is_buy else piece.amount_cents - piece.tax_cents,
                occurred_at=fill.occurred_at,
                memo=f"{fill.side} {piece.quantity} @ {fill.unit_price_cents}c",
                source=LedgerSource.WALLET_TRANSACTIONS.value,
                plan_commit_id=line.plan_commit_id,
                line_id=line.id,
                type_id=line.type_id,
                station_id=line.destination_station_id,
                external_ref_id=fill.external_ref_id,
            )
            if piece.broker_fee_cents:
                await self._recorder.record(
                    db,
                    cycle.id,
                    LedgerEntryType.FEE.value,
                    -piece.broker_fee_cents,
                    occurred_at=fill.occurred_at,
                    memo="broker fee",
                    plan_commit_id=line.plan_commit_id,
                    line_id=line.id,
                    type_id=line.type_id,
                    station_id=line.destination_station_id,
                    external_ref_id=fill.external_ref_id,
                )
        return outcome

    async def _apply_batch(
        self, db: AsyncSession, cycle: Cycle, fills: list[FillIn | FillEvent]
    ) -> ReconcileSummary:
        summary = ReconcileSummary()
        for raw in fills:
            try:
                fill = to_fill_event(raw)
            except MalformedEventError as exc:
                ref = getattr(raw, "external_ref_id", None) or ""
                logger.debug("malformed fill %r: %s", ref, exc.message)
                _tally(
                    summary,
                    AllocationOutcome(
                        external_ref_id=ref,
                        side=None,
                        status=AllocationStatus.MALFORMED.value,
                        reason=exc.message,
                    ),
                )
                continue
            _tally(summary, await self._allocate_one(db, cycle, fill))
        return summary

    async def allocate(
        self, db: AsyncSession, cycle_id: str, fill: FillIn | FillEvent
    ) -> AllocationOutcomeResponse:
        summary = await self._run_batch(db, cycle_id, [fill])
        return AllocationOutcomeResponse.from_domain(summary.outcomes[0])

    async def allocate_batch(
        self, db: AsyncSession, cycle_id: str, fills: list[FillIn | FillEvent]
    ) -> ReconcileSummaryResponse:
        summary = await self._run_batch(db, cycle_id, fills)
        return ReconcileSummaryResponse.from_domain(cycle_id, summary)

    async def _stage(self, db: AsyncSession, fills: list[FillIn | FillEvent]) -> None:
        events: list[FillEvent] = []
        for raw in fills:
            try:
                events.append(to_fill_event(raw))
            except MalformedEventError:
                continue
        if not events:
            return
        try:
            for fill in events:
                await self._fills.stage_fill(db, fill)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    async def _run_batch(
        self,
        db: AsyncSession,
        cycle_id: str,
        fills: list[FillIn | FillEvent],
        stage: bool = True,
    ) -> ReconcileSummary:
        # Own transaction: fills stay queued even when the batch is rejected
        if stage:
            await self._stage(db, fills)
        try:
            cycle = await self._lock_open_cycle(db, cycle_id)
            summary = await self._apply_batch(db, cycle, fills)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "cycle %s allocation: buys=%d sells=%d unmatched_buys=%d unmatched_sells=%d "
            "duplicates=%d malformed=%d",
            cycle_id,
            summary.buys_allocated,
            summary.sells_allocated,
            summary.unmatched_buys,
            summary.unmatched_sells,
            summary.duplicates,
            summary.malformed,
        )
        return summary

    async def _resolve_cycle(self, db: AsyncSession, cycle_id: str | None) -> Cycle:
        if cycle_id is None:
            cycle = await self._cycles.get_open_cycle(db)
            if cycle is None:
                raise NoOpenCycleError()
            return cycle
        cycle = await self._cycles.get_cycle(db, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    async def reconcile(
        self, db: AsyncSession, cycle_id: str | None = None
    ) -> ReconcileSummaryResponse:
        """Allocate every staged fill inside the cycle's window. Safe to re-run."""
        cycle = await self._resolve_cycle(db, cycle_id)
        require_status(cycle.id, cycle.status, CycleStatus.OPEN, "reconcile")
        fills = await self._fills.list_staged(db, cycle.started_at, cycle.closed_at)
        summary = await self._run_batch(db, cycle.id, list(fills), stage=False)
        return ReconcileSummaryResponse.from_domain(cycle.id, summary)

    async def ingest_fills(self, db: AsyncSession, fills: list[FillIn]) -> IngestFillsResponse:
        inserted = duplicates = malformed = 0
        errors: list[str] = []
        try:
            for raw in fills:
                try:
                    fill = to_fill_event(raw)
                except MalformedEventError as exc:
                    malformed += 1
                    errors.append(exc.message)
                    continue
                if await self._fills.stage_fill(db, fill):
                    inserted += 1
                else:
                    duplicates += 1
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("fills staged: inserted=%d duplicates=%d malformed=%d", inserted, duplicates, malformed)
        return IngestFillsResponse(
            inserted=inserted, duplicates=duplicates, malformed=malformed, errors=errors
        )

    async def list_unmatched_fills(self, db: AsyncSession, cycle_id: str) -> UnmatchedFillListResponse:
        cycle = await self._resolve_cycle(db, cycle_id)
        unmatched = await self._fills.list_unmatched(db, cycle.started_at, cycle.closed_at)
        return UnmatchedFillListResponse(
            cycle_id=cycle.id, items=[UnmatchedFillItem.from_domain(u) for u in unmatched]
        )
