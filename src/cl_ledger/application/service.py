"""LedgerRecorder — appends ledger entries and pages through a cycle's trail.

`record()` runs inside the caller's transaction and never commits: every
ledger row is written atomically with the state change it describes.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.datetime_utils import utc_now
from src.cl_common.enums import LedgerSource
from src.cl_ledger.application.schemas import (
    LedgerEntryItem,
    LedgerResponse,
    cursor_decode,
    cursor_encode,
)
from src.cl_ledger.domain.models import LedgerEntry, NewLedgerEntry
from src.cl_ledger.domain.repository import LedgerRepositoryProtocol
from src.cl_ledger.infrastructure.persistence import LedgerRepository

logger = logging.getLogger(__name__)


class LedgerRecorder:
    def __init__(self, repo: LedgerRepositoryProtocol | None = None) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()

    async def record(
        self,
        db: AsyncSession,
        cycle_id: str,
        entry_type: str,
        amount_cents: int,
        *,
        occurred_at: datetime | None = None,
        memo: str | None = None,
        source: str = LedgerSource.SYSTEM.value,
        match_status: str | None = None,
        plan_commit_id: str | None = None,
        participation_id: str | None = None,
        line_id: str | None = None,
        character_name: str | None = None,
        type_id: int | None = None,
        station_id: int | None = None,
        external_ref_id: str | None = None,
    ) -> LedgerEntry:
        entry = await self._repo.append(
            db,
            NewLedgerEntry(
                cycle_id=cycle_id,
                entry_type=entry_type,
                amount_cents=amount_cents,
                occurred_at=occurred_at or utc_now(),
                memo=memo,
                source=source,
                match_status=match_status,
                plan_commit_id=plan_commit_id,
                participation_id=participation_id,
                line_id=line_id,
                character_name=character_name,
                type_id=type_id,
                station_id=station_id,
                external_ref_id=external_ref_id,
            ),
        )
        logger.debug(
            "ledger %s cycle=%s amount=%d ref=%s",
            entry_type, cycle_id, amount_cents, external_ref_id,
        )
        return entry

    async def list_ledger(
        self,
        db: AsyncSession,
        cycle_id: str,
        cursor: str | None,
        limit: int,
        entry_type: str | None,
    ) -> LedgerResponse:
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        entries = await self._repo.list_entries(db, cycle_id, cursor_id, limit + 1, entry_type)
        has_more = len(entries) > limit
        page = entries[:limit]
        next_cursor = cursor_encode(page[-1].id) if has_more and page else None
        return LedgerResponse(
            items=[LedgerEntryItem.from_domain(e) for e in page],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def entries_for_commit(self, db: AsyncSession, plan_commit_id: str) -> list[LedgerEntry]:
        return await self._repo.list_for_commit(db, plan_commit_id)
