"""ParticipationRepository — raw text() SQL implementation.

A cash transfer binds at most one participation: wallet_journal_ref is UNIQUE
and bind_transfer only touches unbound AWAITING_INVESTMENT rows.
"""

from datetime import datetime

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.enums import VALIDATED_PARTICIPATION_STATUSES
from src.cl_common.errors import InternalError, ParticipationNotFoundError
from src.cl_participation.domain.models import CashEvent, Participation

_COLUMNS = """
    id, cycle_id, user_id, character_name, character_id, amount_cents,
    profit_share_pct, status, memo, wallet_journal_ref, validated_at,
    rollover_type, rollover_requested_cents, rollover_from_participation_id,
    rollover_deducted_cents, payout_amount_cents, payout_paid_at,
    refunded_at, opted_out_at, created_at, updated_at
"""

_ORDER = "ORDER BY created_at ASC, id ASC"

_INSERT_SQL = text(f"""
    INSERT INTO participations
        (id, cycle_id, user_id, character_name, character_id, amount_cents,
         profit_share_pct, status, memo, wallet_journal_ref, validated_at,
         rollover_type, rollover_requested_cents, rollover_from_participation_id)
    VALUES
        (:id, :cycle_id, :user_id, :character_name, :character_id, :amount_cents,
         :profit_share_pct, :status, :memo, :wallet_journal_ref, :validated_at,
         :rollover_type, :rollover_requested_cents, :rollover_from_participation_id)
    RETURNING {_COLUMNS}
""")

_GET_SQL = text(f"SELECT {_COLUMNS} FROM participations WHERE id = :id")

_LOCK_SQL = text(f"SELECT {_COLUMNS} FROM participations WHERE id = :id FOR UPDATE")

_GET_BY_USER_SQL = text(f"""
    SELECT {_COLUMNS} FROM participations
    WHERE cycle_id = :cycle_id AND user_id = :user_id
      AND rollover_from_participation_id IS NULL
""")

_LIST_BY_CYCLE_SQL = text(f"""
    SELECT {_COLUMNS} FROM participations
    WHERE cycle_id = :cycle_id
      AND (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
    {_ORDER}
""")

_LIST_VALIDATED_SQL = text(f"""
    SELECT {_COLUMNS} FROM participations
    WHERE cycle_id = :cycle_id
      AND status IN :statuses
      AND validated_at IS NOT NULL
    {_ORDER}
""").bindparams(bindparam("statuses", expanding=True))

_FIND_AWAITING_BY_AMOUNT_SQL = text(f"""
    SELECT {_COLUMNS} FROM participations
    WHERE cycle_id = :cycle_id
      AND status = 'AWAITING_INVESTMENT'
      AND wallet_journal_ref IS NULL
      AND amount_cents = :amount_cents
    {_ORDER}
""")

_FIND_BY_REF_SQL = text(f"SELECT {_COLUMNS} FROM participations WHERE wallet_journal_ref = :ref_id")

_BIND_SQL = text(f"""
    UPDATE participations
    SET wallet_journal_ref = :ref_id,
        validated_at = :validated_at,
        status = 'OPTED_IN'
    WHERE id = :id
      AND status = 'AWAITING_INVESTMENT'
      AND wallet_journal_ref IS NULL
    RETURNING {_COLUMNS}
""")

_SAVE_SQL = text(f"""
    UPDATE participations
    SET status = :status,
        memo = :memo,
        validated_at = :validated_at,
        rollover_type = :rollover_type,
        rollover_requested_cents = :rollover_requested_cents,
        rollover_deducted_cents = :rollover_deducted_cents,
        payout_amount_cents = :payout_amount_cents,
        payout_paid_at = :payout_paid_at,
        refunded_at = :refunded_at,
        opted_out_at = :opted_out_at
    WHERE id = :id
    RETURNING {_COLUMNS}
""")

_SUM_VALIDATED_SQL = text("""
    SELECT COALESCE(SUM(amount_cents), 0) FROM participations
    WHERE cycle_id = :cycle_id AND status IN :statuses AND validated_at IS NOT NULL
""").bindparams(bindparam("statuses", expanding=True))

_TRANSFER_COLUMNS = """
    ref_id, amount_cents, occurred_at, character_id, character_name,
    is_wallet_journal, participation_id
"""

_INSERT_TRANSFER_SQL = text("""
    INSERT INTO wallet_transfers
        (ref_id, amount_cents, occurred_at, character_id, character_name, is_wallet_journal)
    VALUES
        (:ref_id, :amount_cents, :occurred_at, :character_id, :character_name, :is_wallet_journal)
    ON CONFLICT (ref_id) DO NOTHING
    RETURNING ref_id
""")

_GET_TRANSFER_SQL = text(f"SELECT {_TRANSFER_COLUMNS} FROM wallet_transfers WHERE ref_id = :ref_id")

_LIST_UNLINKED_SQL = text(f"""
    SELECT {_TRANSFER_COLUMNS} FROM wallet_transfers
    WHERE participation_id IS NULL
      AND (CAST(:since AS TIMESTAMPTZ) IS NULL OR occurred_at >= CAST(:since AS TIMESTAMPTZ))
    ORDER BY occurred_at ASC, ref_id ASC
""")

_LINK_TRANSFER_SQL = text("""
    UPDATE wallet_transfers SET participation_id = :participation_id WHERE ref_id = :ref_id
""")


def _row_to_participation(row: object) -> Participation:
    return Participation(
        id=row.id,  # type: ignore[attr-defined]
        cycle_id=row.cycle_id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        character_name=row.character_name,  # type: ignore[attr-defined]
        character_id=row.character_id,  # type: ignore[attr-defined]
        amount_cents=row.amount_cents,  # type: ignore[attr-defined]
        profit_share_pct=row.profit_share_pct,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        memo=row.memo,  # type: ignore[attr-defined]
        wallet_journal_ref=row.wallet_journal_ref,  # type: ignore[attr-defined]
        validated_at=row.validated_at,  # type: ignore[attr-defined]
        rollover_type=row.rollover_type,  # type: ignore[attr-defined]
        rollover_requested_cents=row.rollover_requested_cents,  # type: ignore[attr-defined]
        rollover_from_participation_id=row.rollover_from_participation_id,  # type: ignore[attr-defined]
        rollover_deducted_cents=row.rollover_deducted_cents,  # type: ignore[attr-defined]
        payout_amount_cents=row.payout_amount_cents,  # type: ignore[attr-defined]
        payout_paid_at=row.payout_paid_at,  # type: ignore[attr-defined]
        refunded_at=row.refunded_at,  # type: ignore[attr-defined]
        opted_out_at=row.opted_out_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_transfer(row: object) -> CashEvent:
    return CashEvent(
        ref_id=row.ref_id,  # type: ignore[attr-defined]
        amount_cents=row.amount_cents,  # type: ignore[attr-defined]
        occurred_at=row.occurred_at,  # type: ignore[attr-defined]
        character_id=row.character_id,  # type: ignore[attr-defined]
        character_name=row.character_name,  # type: ignore[attr-defined]
        is_wallet_journal=row.is_wallet_journal,  # type: ignore[attr-defined]
        participation_id=row.participation_id,  # type: ignore[attr-defined]
    )


class ParticipationRepository:
    async def create(self, db: AsyncSession, p: Participation) -> Participation:
        row = (
            await db.execute(
                _INSERT_SQL,
                {
                    "id": p.id,
                    "cycle_id": p.cycle_id,
                    "user_id": p.user_id,
                    "character_name": p.character_name,
                    "character_id": p.character_id,
                    "amount_cents": p.amount_cents,
                    "profit_share_pct": p.profit_share_pct,
                    "status": p.status,
                    "memo": p.memo,
                    "wallet_journal_ref": p.wallet_journal_ref,
                    "validated_at": p.validated_at,
                    "rollover_type": p.rollover_type,
                    "rollover_requested_cents": p.rollover_requested_cents,
                    "rollover_from_participation_id": p.rollover_from_participation_id,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError("Participation insert returned no rows")
        return _row_to_participation(row)

    async def get(self, db: AsyncSession, participation_id: str) -> Participation | None:
        row = (await db.execute(_GET_SQL, {"id": participation_id})).fetchone()
        return _row_to_participation(row) if row is not None else None

    async def lock(self, db: AsyncSession, participation_id: str) -> Participation | None:
        row = (await db.execute(_LOCK_SQL, {"id": participation_id})).fetchone()
        return _row_to_participation(row) if row is not None else None

    async def get_by_user(
        self, db: AsyncSession, cycle_id: str, user_id: str
    ) -> Participation | None:
        row = (
            await db.execute(_GET_BY_USER_SQL, {"cycle_id": cycle_id, "user_id": user_id})
        ).fetchone()
        return _row_to_participation(row) if row is not None else None

    async def list_by_cycle(
        self, db: AsyncSession, cycle_id: str, status: str | None
    ) -> list[Participation]:
        result = await db.execute(_LIST_BY_CYCLE_SQL, {"cycle_id": cycle_id, "status": status})
        return [_row_to_participation(row) for row in result.fetchall()]

    async def list_validated(self, db: AsyncSession, cycle_id: str) -> list[Participation]:
        result = await db.execute(
            _LIST_VALIDATED_SQL,
            {"cycle_id": cycle_id, "statuses": VALIDATED_PARTICIPATION_STATUSES},
        )
        return [_row_to_participation(row) for row in result.fetchall()]

    async def find_awaiting_by_amount(
        self, db: AsyncSession, cycle_id: str, amount_cents: int
    ) -> list[Participation]:
        result = await db.execute(
            _FIND_AWAITING_BY_AMOUNT_SQL, {"cycle_id": cycle_id, "amount_cents": amount_cents}
        )
        return [_row_to_participation(row) for row in result.fetchall()]

    async def find_by_journal_ref(self, db: AsyncSession, ref_id: str) -> Participation | None:
        row = (await db.execute(_FIND_BY_REF_SQL, {"ref_id": ref_id})).fetchone()
        return _row_to_participation(row) if row is not None else None

    async def bind_transfer(
        self, db: AsyncSession, participation_id: str, ref_id: str, validated_at: datetime
    ) -> Participation | None:
        row = (
            await db.execute(
                _BIND_SQL,
                {"id": participation_id, "ref_id": ref_id, "validated_at": validated_at},
            )
        ).fetchone()
        return _row_to_participation(row) if row is not None else None

    async def save(self, db: AsyncSession, p: Participation) -> Participation:
        row = (
            await db.execute(
                _SAVE_SQL,
                {
                    "id": p.id,
                    "status": p.status,
                    "memo": p.memo,
                    "validated_at": p.validated_at,
                    "rollover_type": p.rollover_type,
                    "rollover_requested_cents": p.rollover_requested_cents,
                    "rollover_deducted_cents": p.rollover_deducted_cents,
                    "payout_amount_cents": p.payout_amount_cents,
                    "payout_paid_at": p.payout_paid_at,
                    "refunded_at": p.refunded_at,
                    "opted_out_at": p.opted_out_at,
                },
            )
        ).fetchone()
        if row is None:
            raise ParticipationNotFoundError(p.id)
        return _row_to_participation(row)

    async def sum_validated_amount(self, db: AsyncSession, cycle_id: str) -> int:
        result = await db.execute(
            _SUM_VALIDATED_SQL,
            {"cycle_id": cycle_id, "statuses": VALIDATED_PARTICIPATION_STATUSES},
        )
        return int(result.scalar_one())

    async def insert_transfer(self, db: AsyncSession, event: CashEvent) -> bool:
        row = (
            await db.execute(
                _INSERT_TRANSFER_SQL,
                {
                    "ref_id": event.ref_id,
                    "amount_cents": event.amount_cents,
                    "occurred_at": event.occurred_at,
                    "character_id": event.character_id,
                    "character_name": event.character_name,
                    "is_wallet_journal": event.is_wallet_journal,
                },
            )
        ).fetchone()
        return row is not None

    async def get_transfer(self, db: AsyncSession, ref_id: str) -> CashEvent | None:
        row = (await db.execute(_GET_TRANSFER_SQL, {"ref_id": ref_id})).fetchone()
        return _row_to_transfer(row) if row is not None else None

    async def list_unlinked_transfers(
        self, db: AsyncSession, since: datetime | None
    ) -> list[CashEvent]:
        result = await db.execute(_LIST_UNLINKED_SQL, {"since": since})
        return [_row_to_transfer(row) for row in result.fetchall()]

    async def link_transfer(self, db: AsyncSession, ref_id: str, participation_id: str) -> None:
        await db.execute(_LINK_TRANSFER_SQL, {"ref_id": ref_id, "participation_id": participation_id})
