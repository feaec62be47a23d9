"""Ledger REST API — read-only, cursor-paginated."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.database import get_db_session
from src.cl_common.response import ApiResponse, success_response
from src.cl_ledger.application.service import LedgerRecorder

router = APIRouter(tags=["ledger"])

_recorder = LedgerRecorder()


def get_ledger_recorder() -> LedgerRecorder:
    return _recorder


@router.get("/cycles/{cycle_id}/ledger")
async def list_ledger(
    cycle_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    recorder: Annotated[LedgerRecorder, Depends(get_ledger_recorder)],
    request: Request,
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    entry_type: str | None = Query(None, description="Filter by LedgerEntryType"),
) -> ApiResponse:
    data = await recorder.list_ledger(db, cycle_id, cursor, limit, entry_type)
    return success_response(data, request)
