"""RolloverProcessor — carries unsold inventory and reinvested payouts forward.

Runs inside close_cycle's transaction and never commits. Both rollover
invariants are checked before anything is written: a rollover line is fully
listed, and a rollover participation keeps its source's character_name.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cl_common.enums import LedgerEntryType, ParticipationStatus
from src.cl_common.errors import InvariantViolationError
from src.cl_common.id_generator import generate_id
from src.cl_common.money import format_isk, isk_to_cents
from src.cl_cycle.domain.invariants import check_line, check_rollover_line, check_rollover_name
from src.cl_cycle.domain.models import CycleLine
from src.cl_cycle.domain.repository import LineRepositoryProtocol
from src.cl_cycle.infrastructure.persistence import LineRepository
from src.cl_ledger.application.service import LedgerRecorder
from src.cl_participation.domain.models import Participation
from src.cl_participation.domain.repository import ParticipationRepositoryProtocol
from src.cl_participation.infrastructure.persistence import ParticipationRepository
from src.cl_rollover.domain.rollover import (
    apply_buyback,
    buyback_allocation,
    reinvest_amount,
    successor_line,
    successor_participation,
)

logger = logging.getLogger(__name__)


def lines_needing_rollover(lines: list[CycleLine]) -> list[CycleLine]:
    return [ln for ln in lines if ln.units_remaining > 0]


def participations_reinvesting(participations: list[Participation]) -> list[Participation]:
    return [p for p in participations if p.rollover_type is not None]


class RolloverProcessor:
    def __init__(
        self,
        line_repo: LineRepositoryProtocol | None = None,
        participation_repo: ParticipationRepositoryProtocol | None = None,
        recorder: LedgerRecorder | None = None,
        rollover_cap_cents: int | None = None,
    ) -> None:
        self._lines: LineRepositoryProtocol = line_repo or LineRepository()
        self._participations: ParticipationRepositoryProtocol = (
            participation_repo or ParticipationRepository()
        )
        self._recorder = recorder or LedgerRecorder()
        self._cap_cents = (
            rollover_cap_cents
            if rollover_cap_cents is not None
            else isk_to_cents(settings.ROLLOVER_CAP_ISK)
        )

    async def roll_lines(
        self,
        db: AsyncSession,
        lines: list[CycleLine],
        successor_cycle_id: str,
        at: datetime,
    ) -> list[CycleLine]:
        """Buy back unsold units at cost and open matching rollover lines in the successor."""
        created: list[CycleLine] = []
        for source in lines_needing_rollover(lines):
            new_line, buy_alloc = successor_line(source, successor_cycle_id, generate_id("line_"), at)
            for violation in check_rollover_line(new_line):
                raise InvariantViolationError("rollover_line_listed", violation)

            out_alloc = buyback_allocation(source, at)
            apply_buyback(source, out_alloc)
            for violation in check_line(source):
                raise InvariantViolationError("line_units", violation)

            await self._lines.insert_allocation(db, out_alloc)
            await self._lines.save_line(db, source)
            saved = await self._lines.create_line(db, new_line)
            await self._lines.insert_allocation(db, buy_alloc)

            await self._recorder.record(
                db,
                source.cycle_id,
                LedgerEntryType.ROLLOVER.value,
                out_alloc.amount_cents,
                occurred_at=at,
                memo=f"rollover out {out_alloc.quantity} units to {successor_cycle_id}",
                plan_commit_id=source.plan_commit_id,
                line_id=source.id,
                type_id=source.type_id,
                station_id=source.destination_station_id,
                external_ref_id=out_alloc.external_ref_id,
            )
            await self._recorder.record(
                db,
                successor_cycle_id,
                LedgerEntryType.ROLLOVER.value,
                -buy_alloc.amount_cents,
                occurred_at=at,
                memo=f"rollover in {buy_alloc.quantity} units from {source.cycle_id}",
                line_id=saved.id,
                type_id=saved.type_id,
                station_id=saved.destination_station_id,
                external_ref_id=buy_alloc.external_ref_id,
            )
            logger.debug(
                "rolled line %s -> %s: %d units, cost %s",
                source.id, saved.id, saved.units_bought, format_isk(saved.buy_cost_cents),
            )
            created.append(saved)
        return created

    async def roll_participations(
        self,
        db: AsyncSession,
        participations: list[Participation],
        successor_cycle_id: str,
        at: datetime,
    ) -> list[Participation]:
        """Reinvest payouts per rollover_type; participations carry computed payouts."""
        created: list[Participation] = []
        for source in participations_reinvesting(participations):
            payout = source.payout_amount_cents or 0
            amount = reinvest_amount(source, payout, self._cap_cents)
            if amount <= 0:
                continue
            new_p = successor_participation(
                source, successor_cycle_id, generate_id("part_"), amount, at
            )
            for violation in check_rollover_name(new_p.id, new_p.character_name, source.character_name):
                raise InvariantViolationError("rollover_character_name", violation)
            saved = await self._participations.create(db, new_p)

            source.payout_amount_cents = payout - amount
            source.rollover_deducted_cents = amount
            if source.payout_amount_cents == 0:
                source.status = ParticipationStatus.COMPLETED.value
                source.payout_paid_at = at
            await self._participations.save(db, source)

            await self._recorder.record(
                db,
                source.cycle_id,
                LedgerEntryType.ROLLOVER.value,
                -amount,
                occurred_at=at,
                memo=f"reinvested into {successor_cycle_id}",
                participation_id=source.id,
                character_name=source.character_name,
            )
            await self._recorder.record(
                db,
                successor_cycle_id,
                LedgerEntryType.ROLLOVER.value,
                amount,
                occurred_at=at,
                memo=saved.memo,
                participation_id=saved.id,
                character_name=saved.character_name,
            )
            created.append(saved)
        return created
