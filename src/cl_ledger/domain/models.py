"""Ledger domain models — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class LedgerEntry:
    id: int                          # BIGSERIAL
    cycle_id: str
    entry_type: str                  # LedgerEntryType value
    amount_cents: int                # signed: buys/payouts negative, sells/deposits positive
    occurred_at: datetime
    memo: str | None = None
    source: str = "system"           # LedgerSource value
    match_status: str | None = None  # MatchStatus value
    plan_commit_id: str | None = None
    participation_id: str | None = None
    line_id: str | None = None
    character_name: str | None = None
    type_id: int | None = None
    station_id: int | None = None
    external_ref_id: str | None = None
    created_at: datetime | None = None


@dataclass
class NewLedgerEntry:
    """Insert payload; id/created_at are assigned by the store."""

    cycle_id: str
    entry_type: str
    amount_cents: int
    occurred_at: datetime
    memo: str | None = None
    source: str = "system"
    match_status: str | None = None
    plan_commit_id: str | None = None
    participation_id: str | None = None
    line_id: str | None = None
    character_name: str | None = None
    type_id: int | None = None
    station_id: int | None = None
    external_ref_id: str | None = None
