"""Pydantic schemas and cursor utilities for the ledger API."""

import base64
import json

from pydantic import BaseModel

from src.cl_common.money import cents_to_display
from src.cl_ledger.domain.models import LedgerEntry

# ---------------------------------------------------------------------------
# Cursor-based pagination utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_id: int) -> str:
    """Encode a BIGINT primary key into an opaque Base64 cursor string."""
    payload = json.dumps({"id": last_id})
    return base64.b64encode(payload.encode()).decode()


def cursor_decode(cursor: str | None) -> int | None:
    """Decode a cursor string back to the last seen id. Returns None on error."""
    if cursor is None:
        return None
    try:
        payload = json.loads(base64.b64decode(cursor.encode()).decode())
        return int(payload["id"])
    except Exception:
        return None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LedgerEntryItem(BaseModel):
    id: int
    cycle_id: str
    entry_type: str
    amount_cents: int
    amount_display: str
    occurred_at: str  # ISO8601 string
    memo: str | None
    source: str
    match_status: str | None
    plan_commit_id: str | None
    participation_id: str | None
    line_id: str | None
    character_name: str | None
    type_id: int | None
    station_id: int | None
    external_ref_id: str | None

    @classmethod
    def from_domain(cls, e: LedgerEntry) -> "LedgerEntryItem":
        return cls(
            id=e.id,
            cycle_id=e.cycle_id,
            entry_type=e.entry_type,
            amount_cents=e.amount_cents,
            amount_display=cents_to_display(e.amount_cents),
            occurred_at=e.occurred_at.isoformat(),
            memo=e.memo,
            source=e.source,
            match_status=e.match_status,
            plan_commit_id=e.plan_commit_id,
            participation_id=e.participation_id,
            line_id=e.line_id,
            character_name=e.character_name,
            type_id=e.type_id,
            station_id=e.station_id,
            external_ref_id=e.external_ref_id,
        )


class LedgerResponse(BaseModel):
    items: list[LedgerEntryItem]
    next_cursor: str | None
    has_more: bool
