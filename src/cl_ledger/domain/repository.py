"""Repository Protocol for the append-only ledger trail."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_ledger.domain.models import LedgerEntry, NewLedgerEntry


class LedgerRepositoryProtocol(Protocol):
    async def append(self, db: AsyncSession, entry: NewLedgerEntry) -> LedgerEntry: ...

    async def list_entries(
        self,
        db: AsyncSession,
        cycle_id: str,
        cursor_id: int | None,
        limit: int,
        entry_type: str | None,
    ) -> list[LedgerEntry]: ...

    async def list_for_commit(self, db: AsyncSession, plan_commit_id: str) -> list[LedgerEntry]: ...
