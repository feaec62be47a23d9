"""FillRepository — staging table for normalized fills.

Staging is idempotent on (side, external_ref_id): redelivered fills are
reported as duplicates and never staged twice.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_allocation.domain.models import FillEvent, UnmatchedFill

_FILL_COLUMNS = """
    f.side, f.type_id, f.station_id, f.quantity, f.unit_price_cents,
    f.external_ref_id, f.occurred_at, f.character_id
"""

_STAGE_FILL_SQL = text("""
    INSERT INTO fill_events
        (side, type_id, station_id, quantity, unit_price_cents,
         external_ref_id, occurred_at, character_id)
    VALUES
        (:side, :type_id, :station_id, :quantity, :unit_price_cents,
         :external_ref_id, :occurred_at, :character_id)
    ON CONFLICT (side, external_ref_id) DO NOTHING
    RETURNING id
""")

_LIST_STAGED_SQL = text(f"""
    SELECT {_FILL_COLUMNS}
    FROM fill_events f
    WHERE f.occurred_at >= :since
      AND (CAST(:until AS TIMESTAMPTZ) IS NULL OR f.occurred_at < CAST(:until AS TIMESTAMPTZ))
    ORDER BY f.occurred_at ASC, f.id ASC
""")

_LIST_UNMATCHED_SQL = text(f"""
    SELECT {_FILL_COLUMNS}, COALESCE(a.allocated, 0) AS allocated
    FROM fill_events f
    LEFT JOIN (
        SELECT side, external_ref_id, SUM(quantity) AS allocated
        FROM allocations
        GROUP BY side, external_ref_id
    ) a ON a.side = f.side AND a.external_ref_id = f.external_ref_id
    WHERE f.occurred_at >= :since
      AND (CAST(:until AS TIMESTAMPTZ) IS NULL OR f.occurred_at < CAST(:until AS TIMESTAMPTZ))
      AND COALESCE(a.allocated, 0) < f.quantity
    ORDER BY f.occurred_at ASC, f.id ASC
""")


def _row_to_fill(row: object) -> FillEvent:
    return FillEvent(
        side=row.side,  # type: ignore[attr-defined]
        type_id=row.type_id,  # type: ignore[attr-defined]
        station_id=row.station_id,  # type: ignore[attr-defined]
        quantity=row.quantity,  # type: ignore[attr-defined]
        unit_price_cents=row.unit_price_cents,  # type: ignore[attr-defined]
        external_ref_id=row.external_ref_id,  # type: ignore[attr-defined]
        occurred_at=row.occurred_at,  # type: ignore[attr-defined]
        character_id=row.character_id,  # type: ignore[attr-defined]
    )


class FillRepository:
    async def stage_fill(self, db: AsyncSession, fill: FillEvent) -> bool:
        row = (
            await db.execute(
                _STAGE_FILL_SQL,
                {
                    "side": fill.side,
                    "type_id": fill.type_id,
                    "station_id": fill.station_id,
                    "quantity": fill.quantity,
                    "unit_price_cents": fill.unit_price_cents,
                    "external_ref_id": fill.external_ref_id,
                    "occurred_at": fill.occurred_at,
                    "character_id": fill.character_id,
                },
            )
        ).fetchone()
        return row is not None

    async def list_staged(
        self, db: AsyncSession, since: datetime, until: datetime | None
    ) -> list[FillEvent]:
        result = await db.execute(_LIST_STAGED_SQL, {"since": since, "until": until})
        return [_row_to_fill(row) for row in result.fetchall()]

    async def list_unmatched(
        self, db: AsyncSession, since: datetime, until: datetime | None
    ) -> list[UnmatchedFill]:
        result = await db.execute(_LIST_UNMATCHED_SQL, {"since": since, "until": until})
        return [
            UnmatchedFill(fill=_row_to_fill(row), allocated_quantity=int(row.allocated))
            for row in result.fetchall()
        ]
