"""LedgerRepository — concrete implementation of LedgerRepositoryProtocol.

ledger_entries is append-only: there is no UPDATE or DELETE statement here.
Transaction ownership: the CALLER commits.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.errors import InternalError
from src.cl_ledger.domain.models import LedgerEntry, NewLedgerEntry

_COLUMNS = """
    id, cycle_id, entry_type, amount_cents, occurred_at, memo, source,
    match_status, plan_commit_id, participation_id, line_id, character_name,
    type_id, station_id, external_ref_id, created_at
"""

_INSERT_LEDGER_SQL = text(f"""
    INSERT INTO ledger_entries
        (cycle_id, entry_type, amount_cents, occurred_at, memo, source,
         match_status, plan_commit_id, participation_id, line_id,
         character_name, type_id, station_id, external_ref_id)
    VALUES
        (:cycle_id, :entry_type, :amount_cents, :occurred_at, :memo, :source,
         :match_status, :plan_commit_id, :participation_id, :line_id,
         :character_name, :type_id, :station_id, :external_ref_id)
    RETURNING {_COLUMNS}
""")

# asyncpg NULL parameter pattern: CAST(:param AS TYPE) IS NULL
_LIST_LEDGER_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM ledger_entries
    WHERE cycle_id = :cycle_id
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < CAST(:cursor_id AS BIGINT))
      AND (CAST(:entry_type AS TEXT) IS NULL OR entry_type = CAST(:entry_type AS TEXT))
    ORDER BY id DESC
    LIMIT :limit
""")

_LIST_FOR_COMMIT_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM ledger_entries
    WHERE plan_commit_id = :plan_commit_id
    ORDER BY id ASC
""")


def _row_to_entry(row: object) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,  # type: ignore[attr-defined]
        cycle_id=row.cycle_id,  # type: ignore[attr-defined]
        entry_type=row.entry_type,  # type: ignore[attr-defined]
        amount_cents=row.amount_cents,  # type: ignore[attr-defined]
        occurred_at=row.occurred_at,  # type: ignore[attr-defined]
        memo=row.memo,  # type: ignore[attr-defined]
        source=row.source,  # type: ignore[attr-defined]
        match_status=row.match_status,  # type: ignore[attr-defined]
        plan_commit_id=row.plan_commit_id,  # type: ignore[attr-defined]
        participation_id=row.participation_id,  # type: ignore[attr-defined]
        line_id=row.line_id,  # type: ignore[attr-defined]
        character_name=row.character_name,  # type: ignore[attr-defined]
        type_id=row.type_id,  # type: ignore[attr-defined]
        station_id=row.station_id,  # type: ignore[attr-defined]
        external_ref_id=row.external_ref_id,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class LedgerRepository:
    async def append(self, db: AsyncSession, entry: NewLedgerEntry) -> LedgerEntry:
        result = await db.execute(
            _INSERT_LEDGER_SQL,
            {
                "cycle_id": entry.cycle_id,
                "entry_type": entry.entry_type,
                "amount_cents": entry.amount_cents,
                "occurred_at": entry.occurred_at,
                "memo": entry.memo,
                "source": entry.source,
                "match_status": entry.match_status,
                "plan_commit_id": entry.plan_commit_id,
                "participation_id": entry.participation_id,
                "line_id": entry.line_id,
                "character_name": entry.character_name,
                "type_id": entry.type_id,
                "station_id": entry.station_id,
                "external_ref_id": entry.external_ref_id,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Ledger insert returned no rows")
        return _row_to_entry(row)

    async def list_entries(
        self,
        db: AsyncSession,
        cycle_id: str,
        cursor_id: int | None,
        limit: int,
        entry_type: str | None,
    ) -> list[LedgerEntry]:
        result = await db.execute(
            _LIST_LEDGER_SQL,
            {
                "cycle_id": cycle_id,
                "cursor_id": cursor_id,
                "entry_type": entry_type,
                "limit": limit,
            },
        )
        return [_row_to_entry(row) for row in result.fetchall()]

    async def list_for_commit(self, db: AsyncSession, plan_commit_id: str) -> list[LedgerEntry]:
        result = await db.execute(_LIST_FOR_COMMIT_SQL, {"plan_commit_id": plan_commit_id})
        return [_row_to_entry(row) for row in result.fetchall()]
