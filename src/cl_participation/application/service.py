"""ParticipationService — opt-ins, cash-transfer matching and refunds.

Every public method owns its transaction. A cash event binds at most one
participation: bind_transfer is a conditional UPDATE on an unbound
AWAITING_INVESTMENT row and wallet_journal_ref is unique in the store.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cl_common.datetime_utils import ensure_utc, utc_now
from src.cl_common.enums import (
    CycleStatus,
    LedgerEntryType,
    LedgerSource,
    MatchOutcomeStatus,
    MatchStatus,
    ParticipationStatus,
    RolloverType,
)
from src.cl_common.errors import (
    AmountMismatchError,
    AppError,
    CycleNotFoundError,
    CycleStateConflictError,
    DuplicateParticipationError,
    NoOpenCycleError,
    ParticipationNotFoundError,
    ParticipationStateError,
    TransferAlreadyMatchedError,
    TransferNotFoundError,
)
from src.cl_common.id_generator import generate_id
from src.cl_common.money import format_isk, isk_to_cents
from src.cl_cycle.domain.models import Cycle
from src.cl_cycle.domain.repository import CycleRepositoryProtocol
from src.cl_cycle.domain.state_machine import require_status
from src.cl_cycle.infrastructure.persistence import CycleRepository
from src.cl_ledger.application.service import LedgerRecorder
from src.cl_participation.application.schemas import (
    CashEventIn,
    CreateParticipationRequest,
    IngestTransfersResponse,
    MatchOutcomeResponse,
    MatchSummaryResponse,
    ParticipationListResponse,
    ParticipationResponse,
    RolloverRequest,
    TransferListResponse,
    TransferResponse,
)
from src.cl_participation.domain.matcher import decide_match
from src.cl_participation.domain.models import CashEvent, MatchOutcome, MatchSummary, Participation
from src.cl_participation.domain.repository import ParticipationRepositoryProtocol
from src.cl_participation.infrastructure.persistence import ParticipationRepository

logger = logging.getLogger(__name__)

_AWAITING = ParticipationStatus.AWAITING_INVESTMENT.value
_OPTED_IN = ParticipationStatus.OPTED_IN.value
_OPTED_OUT = ParticipationStatus.OPTED_OUT.value


def _deposit_source(event: CashEvent) -> str:
    if event.is_wallet_journal:
        return LedgerSource.WALLET_JOURNAL.value
    return LedgerSource.WALLET_TRANSACTIONS.value


def to_cash_event(raw: CashEventIn) -> CashEvent:
    """Raises ValueError for a non-finite or non-positive amount."""
    amount = isk_to_cents(raw.amount_isk)
    if amount <= 0:
        raise ValueError(f"{raw.ref_id}: amount must be positive, got {raw.amount_isk}")
    name = raw.character_name.strip() if raw.character_name else None
    return CashEvent(
        ref_id=raw.ref_id.strip(),
        amount_cents=amount,
        occurred_at=ensure_utc(raw.occurred_at),
        character_id=raw.character_id,
        character_name=name or None,
        is_wallet_journal=raw.is_wallet_journal,
    )


class ParticipationService:
    def __init__(
        self,
        cycle_repo: CycleRepositoryProtocol | None = None,
        participation_repo: ParticipationRepositoryProtocol | None = None,
        recorder: LedgerRecorder | None = None,
    ) -> None:
        self._cycles: CycleRepositoryProtocol = cycle_repo or CycleRepository()
        self._participations: ParticipationRepositoryProtocol = (
            participation_repo or ParticipationRepository()
        )
        self._recorder = recorder or LedgerRecorder()

    async def _get_cycle(self, db: AsyncSession, cycle_id: str) -> Cycle:
        cycle = await self._cycles.get_cycle(db, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    async def _lock_participation(self, db: AsyncSession, participation_id: str) -> Participation:
        p = await self._participations.lock(db, participation_id)
        if p is None:
            raise ParticipationNotFoundError(participation_id)
        return p

    # ------------------------------------------------------------------
    # Opt-in lifecycle
    # ------------------------------------------------------------------

    async def create_participation(
        self, db: AsyncSession, cycle_id: str, req: CreateParticipationRequest
    ) -> ParticipationResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            require_status(cycle_id, cycle.status, CycleStatus.PLANNED, "join")
            if req.user_id is not None:
                existing = await self._participations.get_by_user(db, cycle_id, req.user_id)
                if existing is not None:
                    raise DuplicateParticipationError(cycle_id, req.user_id)
            pct = req.profit_share_pct
            if pct is None:
                pct = Decimal(str(settings.DEFAULT_PROFIT_SHARE_PCT))
            p = await self._participations.create(
                db,
                Participation(
                    id=generate_id("part_"),
                    cycle_id=cycle_id,
                    user_id=req.user_id,
                    character_name=req.character_name,
                    character_id=req.character_id,
                    amount_cents=isk_to_cents(req.amount_isk),
                    profit_share_pct=pct,
                    status=_AWAITING,
                    rollover_type=req.rollover_type.value if req.rollover_type else None,
                    rollover_requested_cents=(
                        isk_to_cents(req.rollover_requested_isk)
                        if req.rollover_type == RolloverType.CUSTOM_AMOUNT
                        else None
                    ),
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "participation %s created cycle=%s character=%s amount=%s",
            p.id, cycle_id, p.character_name, format_isk(p.amount_cents),
        )
        return ParticipationResponse.from_domain(p)

    async def get_participation(self, db: AsyncSession, participation_id: str) -> ParticipationResponse:
        p = await self._participations.get(db, participation_id)
        if p is None:
            raise ParticipationNotFoundError(participation_id)
        return ParticipationResponse.from_domain(p)

    async def list_participations(
        self, db: AsyncSession, cycle_id: str, status: ParticipationStatus | None = None
    ) -> ParticipationListResponse:
        await self._get_cycle(db, cycle_id)
        items = await self._participations.list_by_cycle(
            db, cycle_id, status.value if status else None
        )
        return ParticipationListResponse(items=[ParticipationResponse.from_domain(p) for p in items])

    async def validate_participation(
        self, db: AsyncSession, participation_id: str
    ) -> ParticipationResponse:
        """Operator confirms the investment arrived without a staged transfer."""
        try:
            p = await self._lock_participation(db, participation_id)
            self._ensure_matchable(await self._get_cycle(db, p.cycle_id), "validate investments for")
            if p.status != _AWAITING:
                raise ParticipationStateError(participation_id, p.status, _AWAITING)
            now = utc_now()
            p.status = _OPTED_IN
            p.validated_at = now
            saved = await self._participations.save(db, p)
            await self._recorder.record(
                db,
                p.cycle_id,
                LedgerEntryType.DEPOSIT.value,
                p.amount_cents,
                occurred_at=now,
                memo=f"investment confirmed by operator for {p.character_name}",
                source=LedgerSource.OPERATOR.value,
                match_status=MatchStatus.MATCHED.value,
                participation_id=p.id,
                character_name=p.character_name,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("participation %s validated by operator", participation_id)
        return ParticipationResponse.from_domain(saved)

    async def opt_out(self, db: AsyncSession, participation_id: str) -> ParticipationResponse:
        try:
            p = await self._lock_participation(db, participation_id)
            cycle = await self._get_cycle(db, p.cycle_id)
            require_status(p.cycle_id, cycle.status, CycleStatus.PLANNED, "opt out of")
            if p.status not in (_AWAITING, _OPTED_IN):
                raise ParticipationStateError(
                    participation_id, p.status, f"{_AWAITING} or {_OPTED_IN}"
                )
            p.status = _OPTED_OUT
            p.opted_out_at = utc_now()
            saved = await self._participations.save(db, p)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "participation %s opted out (refund due: %s)",
            participation_id, p.validated_at is not None,
        )
        return ParticipationResponse.from_domain(saved)

    async def refund_participation(
        self, db: AsyncSession, participation_id: str
    ) -> ParticipationResponse:
        """Record that an opted-out participation's validated investment was sent back."""
        try:
            p = await self._lock_participation(db, participation_id)
            if p.status != _OPTED_OUT or p.refunded_at is not None:
                raise ParticipationStateError(participation_id, p.status, _OPTED_OUT)
            if p.validated_at is None:
                raise ParticipationStateError(participation_id, "never validated", "validated")
            now = utc_now()
            p.status = ParticipationStatus.REFUNDED.value
            p.refunded_at = now
            saved = await self._participations.save(db, p)
            await self._recorder.record(
                db,
                p.cycle_id,
                LedgerEntryType.REFUND.value,
                -p.amount_cents,
                occurred_at=now,
                memo=f"refund to {p.character_name}",
                source=LedgerSource.OPERATOR.value,
                participation_id=p.id,
                character_name=p.character_name,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("participation %s refunded %s", participation_id, format_isk(p.amount_cents))
        return ParticipationResponse.from_domain(saved)

    async def request_rollover(
        self, db: AsyncSession, participation_id: str, req: RolloverRequest
    ) -> ParticipationResponse:
        try:
            p = await self._lock_participation(db, participation_id)
            cycle = await self._get_cycle(db, p.cycle_id)
            if cycle.status == CycleStatus.CLOSED.value:
                raise CycleStateConflictError(
                    p.cycle_id, cycle.status, "PLANNED or OPEN", "request rollover in"
                )
            if p.status not in (_AWAITING, _OPTED_IN):
                raise ParticipationStateError(
                    participation_id, p.status, f"{_AWAITING} or {_OPTED_IN}"
                )
            p.rollover_type = req.rollover_type.value if req.rollover_type else None
            p.rollover_requested_cents = (
                isk_to_cents(req.amount_isk)
                if req.rollover_type == RolloverType.CUSTOM_AMOUNT
                else None
            )
            saved = await self._participations.save(db, p)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("participation %s rollover set to %s", participation_id, p.rollover_type)
        return ParticipationResponse.from_domain(saved)

    # ------------------------------------------------------------------
    # Cash transfers
    # ------------------------------------------------------------------

    async def ingest_transfers(
        self, db: AsyncSession, events: list[CashEventIn]
    ) -> IngestTransfersResponse:
        inserted = duplicates = malformed = 0
        errors: list[str] = []
        try:
            for raw in events:
                try:
                    event = to_cash_event(raw)
                except ValueError as exc:
                    malformed += 1
                    errors.append(str(exc))
                    continue
                if await self._participations.insert_transfer(db, event):
                    inserted += 1
                else:
                    duplicates += 1
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "transfers staged: inserted=%d duplicates=%d malformed=%d", inserted, duplicates, malformed
        )
        return IngestTransfersResponse(
            inserted=inserted, duplicates=duplicates, malformed=malformed, errors=errors
        )

    async def _bind(
        self, db: AsyncSession, p: Participation, event: CashEvent, match_status: str
    ) -> Participation | None:
        bound = await self._participations.bind_transfer(db, p.id, event.ref_id, utc_now())
        if bound is None:
            return None
        await self._participations.link_transfer(db, event.ref_id, bound.id)
        await self._recorder.record(
            db,
            bound.cycle_id,
            LedgerEntryType.DEPOSIT.value,
            event.amount_cents,
            occurred_at=event.occurred_at,
            memo=f"investment from {bound.character_name}",
            source=_deposit_source(event),
            match_status=match_status,
            participation_id=bound.id,
            character_name=bound.character_name,
            external_ref_id=event.ref_id,
        )
        return bound

    async def _match_one(self, db: AsyncSession, cycle_id: str, event: CashEvent) -> MatchOutcome:
        bound_to = event.participation_id
        if bound_to is None:
            owner = await self._participations.find_by_journal_ref(db, event.ref_id)
            bound_to = owner.id if owner is not None else None
        if bound_to is not None:
            logger.debug("transfer %s already bound to %s", event.ref_id, bound_to)
            return MatchOutcome(
                ref_id=event.ref_id,
                status=MatchOutcomeStatus.DUPLICATE.value,
                participation_id=bound_to,
                reason="already bound",
            )

        candidates = await self._participations.find_awaiting_by_amount(
            db, cycle_id, event.amount_cents
        )
        outcome = decide_match(event, candidates)
        if outcome.status != MatchOutcomeStatus.MATCHED.value:
            logger.debug("transfer %s: %s (%s)", event.ref_id, outcome.status, outcome.reason)
            return outcome

        bound = await self._bind(db, candidates[0], event, MatchStatus.LINKED.value)
        if bound is None:
            return MatchOutcome(
                ref_id=event.ref_id,
                status=MatchOutcomeStatus.UNMATCHED.value,
                candidate_ids=outcome.candidate_ids,
                reason="participation was bound by another transfer",
            )
        return outcome

    def _ensure_matchable(self, cycle: Cycle, action: str = "match transfers for") -> None:
        if cycle.status == CycleStatus.CLOSED.value:
            raise CycleStateConflictError(cycle.id, cycle.status, "PLANNED or OPEN", action)

    async def match(self, db: AsyncSession, cycle_id: str, event: CashEvent) -> MatchOutcomeResponse:
        try:
            cycle = await self._get_cycle(db, cycle_id)
            self._ensure_matchable(cycle)
            await self._participations.insert_transfer(db, event)
            staged = await self._participations.get_transfer(db, event.ref_id)
            outcome = await self._match_one(db, cycle_id, staged or event)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("transfer %s match: %s", event.ref_id, outcome.status)
        return MatchOutcomeResponse.from_domain(outcome)

    async def _resolve_matching_cycle(self, db: AsyncSession, cycle_id: str | None) -> Cycle:
        if cycle_id is not None:
            return await self._get_cycle(db, cycle_id)
        # Investments are collected while a cycle is PLANNED
        cycle = await self._cycles.find_next_planned(db, "")
        if cycle is None:
            cycle = await self._cycles.get_open_cycle(db)
        if cycle is None:
            raise NoOpenCycleError()
        return cycle

    async def match_pending(
        self, db: AsyncSession, cycle_id: str | None = None
    ) -> MatchSummaryResponse:
        summary = MatchSummary()
        try:
            cycle = await self._resolve_matching_cycle(db, cycle_id)
            self._ensure_matchable(cycle)
            for event in await self._participations.list_unlinked_transfers(db, None):
                summary.add(await self._match_one(db, cycle.id, event))
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "cycle %s transfer matching: matched=%d ambiguous=%d unmatched=%d "
            "incompatible=%d duplicates=%d",
            cycle.id,
            summary.matched,
            summary.ambiguous,
            summary.unmatched,
            summary.incompatible,
            summary.duplicates,
        )
        return MatchSummaryResponse.from_domain(cycle.id, summary)

    async def list_unmatched_donations(self, db: AsyncSession) -> TransferListResponse:
        events = await self._participations.list_unlinked_transfers(db, None)
        return TransferListResponse(items=[TransferResponse.from_domain(e) for e in events])

    async def match_participation(
        self,
        db: AsyncSession,
        participation_id: str,
        ref_id: str,
        amount_isk: Decimal | None = None,
    ) -> ParticipationResponse:
        """Operator binds a specific transfer to a specific participation.

        Every attempt is written to the ledger as a match_attempt entry; a
        rejected attempt is recorded in its own transaction after rollback.
        """
        try:
            p = await self._lock_participation(db, participation_id)
            self._ensure_matchable(await self._get_cycle(db, p.cycle_id))
            if p.status != _AWAITING or p.wallet_journal_ref is not None:
                raise ParticipationStateError(participation_id, p.status, _AWAITING)
            transfer = await self._participations.get_transfer(db, ref_id)
            if transfer is None:
                raise TransferNotFoundError(ref_id)
            owner = await self._participations.find_by_journal_ref(db, ref_id)
            bound_to = transfer.participation_id or (owner.id if owner is not None else None)
            if bound_to is not None:
                raise TransferAlreadyMatchedError(ref_id, bound_to)
            if amount_isk is not None and isk_to_cents(amount_isk) != transfer.amount_cents:
                raise AmountMismatchError(format_isk(transfer.amount_cents), str(amount_isk))
            if transfer.amount_cents != p.amount_cents:
                raise AmountMismatchError(
                    format_isk(p.amount_cents), format_isk(transfer.amount_cents)
                )
            bound = await self._bind(db, p, transfer, MatchStatus.MATCHED.value)
            if bound is None:
                raise ParticipationStateError(participation_id, "already bound", _AWAITING)
            await self._recorder.record(
                db,
                p.cycle_id,
                LedgerEntryType.MATCH_ATTEMPT.value,
                0,
                memo=f"manual match {ref_id} -> {participation_id}",
                source=LedgerSource.OPERATOR.value,
                match_status=MatchStatus.MATCHED.value,
                participation_id=p.id,
                character_name=p.character_name,
                external_ref_id=ref_id,
            )
            await db.commit()
        except AppError as exc:
            await db.rollback()
            await self._record_rejected_attempt(db, participation_id, ref_id, exc.message)
            raise
        except Exception:
            await db.rollback()
            raise
        logger.info("participation %s manually matched to transfer %s", participation_id, ref_id)
        return ParticipationResponse.from_domain(bound)

    async def _record_rejected_attempt(
        self, db: AsyncSession, participation_id: str, ref_id: str, reason: str
    ) -> None:
        try:
            p = await self._participations.get(db, participation_id)
            if p is None:
                # No cycle to attach a ledger entry to
                logger.warning(
                    "manual match %s -> unknown participation %s: %s", ref_id, participation_id, reason
                )
                return
            await self._recorder.record(
                db,
                p.cycle_id,
                LedgerEntryType.MATCH_ATTEMPT.value,
                0,
                memo=f"rejected manual match {ref_id} -> {participation_id}: {reason}",
                source=LedgerSource.OPERATOR.value,
                match_status=MatchStatus.REJECTED.value,
                participation_id=p.id,
                character_name=p.character_name,
                external_ref_id=ref_id,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("could not record rejected match attempt for %s", participation_id)
        logger.warning("manual match %s -> %s rejected: %s", ref_id, participation_id, reason)
