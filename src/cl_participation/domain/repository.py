"""Repository Protocol for participations and staged cash transfers."""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_participation.domain.models import CashEvent, Participation


class ParticipationRepositoryProtocol(Protocol):
    async def create(self, db: AsyncSession, p: Participation) -> Participation: ...

    async def get(self, db: AsyncSession, participation_id: str) -> Participation | None: ...

    async def lock(self, db: AsyncSession, participation_id: str) -> Participation | None: ...

    async def get_by_user(
        self, db: AsyncSession, cycle_id: str, user_id: str
    ) -> Participation | None: ...

    async def list_by_cycle(
        self, db: AsyncSession, cycle_id: str, status: str | None
    ) -> list[Participation]:
        """Ordered by created_at, id."""
        ...

    async def list_validated(self, db: AsyncSession, cycle_id: str) -> list[Participation]: ...

    async def find_awaiting_by_amount(
        self, db: AsyncSession, cycle_id: str, amount_cents: int
    ) -> list[Participation]: ...

    async def find_by_journal_ref(self, db: AsyncSession, ref_id: str) -> Participation | None: ...

    async def bind_transfer(
        self, db: AsyncSession, participation_id: str, ref_id: str, validated_at: datetime
    ) -> Participation | None:
        """Conditional update: only an unbound AWAITING_INVESTMENT row is bound.

        Returns None when another writer got there first.
        """
        ...

    async def save(self, db: AsyncSession, p: Participation) -> Participation:
        """Persist status, rollover and payout fields."""
        ...

    async def sum_validated_amount(self, db: AsyncSession, cycle_id: str) -> int: ...

    async def insert_transfer(self, db: AsyncSession, event: CashEvent) -> bool:
        """Stage a transfer; False when the ref_id is already staged."""
        ...

    async def get_transfer(self, db: AsyncSession, ref_id: str) -> CashEvent | None: ...

    async def list_unlinked_transfers(
        self, db: AsyncSession, since: datetime | None
    ) -> list[CashEvent]: ...

    async def link_transfer(self, db: AsyncSession, ref_id: str, participation_id: str) -> None: ...
