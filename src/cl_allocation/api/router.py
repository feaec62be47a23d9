"""Fill ingestion and reconciliation REST API."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.database import get_db_session
from src.cl_common.response import ApiResponse, success_response
from src.cl_allocation.application.schemas import IngestFillsRequest, ReconcileRequest
from src.cl_allocation.application.service import AllocationService

router = APIRouter(tags=["allocation"])

_service = AllocationService()


def get_allocation_service() -> AllocationService:
    return _service


@router.post("/fills", status_code=201)
async def ingest_fills(
    req: IngestFillsRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AllocationService, Depends(get_allocation_service)],
    request: Request,
) -> ApiResponse:
    data = await service.ingest_fills(db, req.fills)
    return success_response(data, request)


@router.post("/reconcile")
async def reconcile(
    req: ReconcileRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AllocationService, Depends(get_allocation_service)],
    request: Request,
) -> ApiResponse:
    data = await service.reconcile(db, req.cycle_id)
    return success_response(data, request)


@router.post("/cycles/{cycle_id}/fills")
async def allocate_fills(
    cycle_id: str,
    req: IngestFillsRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AllocationService, Depends(get_allocation_service)],
    request: Request,
) -> ApiResponse:
    data = await service.allocate_batch(db, cycle_id, list(req.fills))
    return success_response(data, request)


@router.get("/cycles/{cycle_id}/unmatched-fills")
async def list_unmatched_fills(
    cycle_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AllocationService, Depends(get_allocation_service)],
    request: Request,
) -> ApiResponse:
    data = await service.list_unmatched_fills(db, cycle_id)
    return success_response(data, request)
