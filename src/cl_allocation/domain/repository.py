"""Repository Protocol for staged fill events."""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_allocation.domain.models import FillEvent, UnmatchedFill


class FillRepositoryProtocol(Protocol):
    async def stage_fill(self, db: AsyncSession, fill: FillEvent) -> bool:
        """Insert into fill_events; False when (side, external_ref_id) is already staged."""
        ...

    async def list_staged(
        self, db: AsyncSession, since: datetime, until: datetime | None
    ) -> list[FillEvent]:
        """Fills with since <= occurred_at (< until), oldest first."""
        ...

    async def list_unmatched(
        self, db: AsyncSession, since: datetime, until: datetime | None
    ) -> list[UnmatchedFill]:
        """Staged fills in the window whose allocated quantity is below their quantity."""
        ...
