"""Payout REST API."""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.database import get_db_session
from src.cl_common.response import ApiResponse, success_response
from src.cl_payout.application.schemas import FinalizePayoutsRequest
from src.cl_payout.application.service import PayoutService

router = APIRouter(tags=["payouts"])

_service = PayoutService()


def get_payout_service() -> PayoutService:
    return _service


@router.get("/cycles/{cycle_id}/payouts/suggest")
async def suggest_payouts(
    cycle_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PayoutService, Depends(get_payout_service)],
    request: Request,
    profit_share_pct: Decimal | None = Query(None, description="Override every participation's share, 0..1"),
) -> ApiResponse:
    data = await service.suggest(db, cycle_id, profit_share_pct)
    return success_response(data, request)


@router.post("/cycles/{cycle_id}/payouts/finalize")
async def finalize_payouts(
    cycle_id: str,
    req: FinalizePayoutsRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PayoutService, Depends(get_payout_service)],
    request: Request,
) -> ApiResponse:
    data = await service.finalize(db, cycle_id, req.approved)
    return success_response(data, request)


@router.post("/participations/{participation_id}/payout-sent")
async def mark_payout_sent(
    participation_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[PayoutService, Depends(get_payout_service)],
    request: Request,
) -> ApiResponse:
    data = await service.mark_payout_sent(db, participation_id)
    return success_response(data, request)
