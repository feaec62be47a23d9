"""PayoutService — suggest, persist and settle per-participation payouts.

close_cycle calls apply_close_payouts inside its own transaction; every other
public method owns its transaction (commit / rollback).
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.datetime_utils import utc_now
from src.cl_common.enums import (
    CycleStatus,
    FeeType,
    LedgerEntryType,
    LedgerSource,
    ParticipationStatus,
)
from src.cl_common.errors import (
    CycleNotFoundError,
    ParticipationNotFoundError,
    ParticipationStateError,
    PayoutAlreadySentError,
    PayoutNotComputedError,
)
from src.cl_common.money import format_isk, isk_to_cents
from src.cl_cycle.domain.models import Cycle
from src.cl_cycle.domain.profit import compute_cycle_profit
from src.cl_cycle.domain.repository import CycleRepositoryProtocol, LineRepositoryProtocol
from src.cl_cycle.domain.state_machine import require_status
from src.cl_cycle.infrastructure.persistence import CycleRepository, LineRepository
from src.cl_ledger.application.service import LedgerRecorder
from src.cl_participation.application.schemas import ParticipationResponse
from src.cl_participation.domain.models import Participation
from src.cl_participation.domain.repository import ParticipationRepositoryProtocol
from src.cl_participation.infrastructure.persistence import ParticipationRepository
from src.cl_payout.application.schemas import (
    ApprovedPayout,
    FinalizedPayout,
    FinalizePayoutsResponse,
    PayoutSuggestionResponse,
)
from src.cl_payout.domain.calculator import PayoutPlan, compute_payouts, validate_pct

logger = logging.getLogger(__name__)

_UNPAID_STATUSES = (ParticipationStatus.OPTED_IN.value, ParticipationStatus.AWAITING_PAYOUT.value)


class PayoutService:
    def __init__(
        self,
        cycle_repo: CycleRepositoryProtocol | None = None,
        line_repo: LineRepositoryProtocol | None = None,
        participation_repo: ParticipationRepositoryProtocol | None = None,
        recorder: LedgerRecorder | None = None,
    ) -> None:
        self._cycles: CycleRepositoryProtocol = cycle_repo or CycleRepository()
        self._lines: LineRepositoryProtocol = line_repo or LineRepository()
        self._participations: ParticipationRepositoryProtocol = (
            participation_repo or ParticipationRepository()
        )
        self._recorder = recorder or LedgerRecorder()

    async def _get_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle:
        cycle = await self._cycles.get_cycle(db, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    async def compute_plan(
        self,
        db: AsyncSession,
        cycle_id: str,
        pct_override: Decimal | None = None,
        closed_at: datetime | None = None,
    ) -> tuple[PayoutPlan, list[Participation]]:
        lines = await self._lines.list_lines(db, cycle_id)
        transport = await self._cycles.sum_fees(db, cycle_id, FeeType.TRANSPORT.value)
        profit = compute_cycle_profit(lines, transport)
        participations = await self._participations.list_validated(db, cycle_id)
        if closed_at is not None:
            # Capital validated after the close never traded in this cycle
            participations = [
                p for p in participations
                if p.validated_at is not None and p.validated_at <= closed_at
            ]
        plan = compute_payouts(participations, profit.cycle_profit_cents, pct_override)
        return plan, participations

    async def suggest(
        self, db: AsyncSession, cycle_id: str, profit_share_pct: Decimal | None = None
    ) -> PayoutSuggestionResponse:
        cycle = await self._get_cycle(db, cycle_id)
        pct = validate_pct(profit_share_pct) if profit_share_pct is not None else None
        plan, _ = await self.compute_plan(db, cycle_id, pct, cycle.closed_at)
        return PayoutSuggestionResponse.from_plan(cycle_id, plan)

    async def apply_close_payouts(
        self, db: AsyncSession, cycle_id: str
    ) -> tuple[PayoutPlan, list[Participation]]:
        """Persist computed payouts (AWAITING_PAYOUT). Caller owns the transaction."""
        plan, participations = await self.compute_plan(db, cycle_id)
        by_id = {p.id: p for p in participations}
        updated: list[Participation] = []
        for line in plan.lines:
            p = by_id[line.participation_id]
            if p.payout_paid_at is not None:
                continue
            p.payout_amount_cents = line.total_payout_cents
            p.status = ParticipationStatus.AWAITING_PAYOUT.value
            updated.append(await self._participations.save(db, p))
        logger.info(
            "cycle %s payouts computed: %d participations, profit=%s pool=%s",
            cycle_id, len(updated), format_isk(plan.cycle_profit_cents), format_isk(plan.pool_cents),
        )
        return plan, updated

    async def finalize(
        self, db: AsyncSession, cycle_id: str, approved: list[ApprovedPayout]
    ) -> FinalizePayoutsResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            require_status(cycle_id, cycle.status, CycleStatus.CLOSED, "finalize payouts for")
            plan, participations = await self.compute_plan(db, cycle_id, closed_at=cycle.closed_at)
            computed = {ln.participation_id: ln.total_payout_cents for ln in plan.lines}
            all_by_id = {p.id: p for p in participations}
            eligible = {
                p.id: p
                for p in participations
                if p.payout_paid_at is None and p.status in _UNPAID_STATUSES
            }
            overrides: dict[str, int] = {}
            for item in approved:
                if item.participation_id not in eligible:
                    if item.participation_id not in all_by_id:
                        raise ParticipationNotFoundError(item.participation_id)
                    raise PayoutAlreadySentError(item.participation_id)
                overrides[item.participation_id] = isk_to_cents(item.amount_isk)

            finalized: list[FinalizedPayout] = []
            total = 0
            for pid, p in eligible.items():
                if pid in overrides:
                    amount = overrides[pid]
                else:
                    amount = max(0, computed.get(pid, p.amount_cents) - p.rollover_deducted_cents)
                p.payout_amount_cents = amount
                p.status = ParticipationStatus.AWAITING_PAYOUT.value
                saved = await self._participations.save(db, p)
                total += amount
                finalized.append(
                    FinalizedPayout(
                        participation_id=saved.id,
                        payout_amount_isk=format_isk(amount),
                        rollover_deducted_isk=format_isk(saved.rollover_deducted_cents),
                        status=saved.status,
                    )
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("cycle %s payouts finalized: %d, total=%s", cycle_id, len(finalized), format_isk(total))
        return FinalizePayoutsResponse(
            cycle_id=cycle_id, finalized=finalized, total_payout_isk=format_isk(total)
        )

    async def mark_payout_sent(self, db: AsyncSession, participation_id: str) -> ParticipationResponse:
        try:
            p = await self._participations.lock(db, participation_id)
            if p is None:
                raise ParticipationNotFoundError(participation_id)
            if p.payout_paid_at is not None:
                raise PayoutAlreadySentError(participation_id)
            if p.payout_amount_cents is None:
                raise PayoutNotComputedError(participation_id)
            if p.status != ParticipationStatus.AWAITING_PAYOUT.value:
                raise ParticipationStateError(
                    participation_id, p.status, ParticipationStatus.AWAITING_PAYOUT.value
                )
            now = utc_now()
            p.payout_paid_at = now
            p.status = ParticipationStatus.COMPLETED.value
            saved = await self._participations.save(db, p)
            await self._recorder.record(
                db,
                p.cycle_id,
                LedgerEntryType.PAYOUT.value,
                -p.payout_amount_cents,
                occurred_at=now,
                memo=f"payout to {p.character_name}",
                source=LedgerSource.OPERATOR.value,
                participation_id=p.id,
                character_name=p.character_name,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("payout sent participation=%s amount=%s", participation_id, format_isk(p.payout_amount_cents))
        return ParticipationResponse.from_domain(saved)
