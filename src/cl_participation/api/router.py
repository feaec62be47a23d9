"""Participation and cash-transfer REST API."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.database import get_db_session
from src.cl_common.enums import ParticipationStatus
from src.cl_common.response import ApiResponse, success_response
from src.cl_participation.application.schemas import (
    CreateParticipationRequest,
    IngestTransfersRequest,
    ManualMatchRequest,
    MatchPendingRequest,
    RolloverRequest,
)
from src.cl_participation.application.service import ParticipationService

router = APIRouter(tags=["participations"])

_service = ParticipationService()


def get_participation_service() -> ParticipationService:
    return _service


Service = Annotated[ParticipationService, Depends(get_participation_service)]
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


@router.post("/cycles/{cycle_id}/participations", status_code=201)
async def create_participation(
    cycle_id: str, req: CreateParticipationRequest, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.create_participation(db, cycle_id, req)
    return success_response(data, request)


@router.get("/cycles/{cycle_id}/participations")
async def list_participations(
    cycle_id: str,
    db: DbSession,
    service: Service,
    request: Request,
    status: ParticipationStatus | None = Query(None, description="Filter by status"),
) -> ApiResponse:
    data = await service.list_participations(db, cycle_id, status)
    return success_response(data, request)


@router.get("/participations/{participation_id}")
async def get_participation(
    participation_id: str, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.get_participation(db, participation_id)
    return success_response(data, request)


@router.post("/participations/{participation_id}/validate")
async def validate_participation(
    participation_id: str, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.validate_participation(db, participation_id)
    return success_response(data, request)


@router.post("/participations/{participation_id}/refund")
async def refund_participation(
    participation_id: str, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.refund_participation(db, participation_id)
    return success_response(data, request)


@router.post("/participations/{participation_id}/opt-out")
async def opt_out(
    participation_id: str, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.opt_out(db, participation_id)
    return success_response(data, request)


@router.post("/participations/{participation_id}/rollover")
async def request_rollover(
    participation_id: str, req: RolloverRequest, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.request_rollover(db, participation_id, req)
    return success_response(data, request)


@router.post("/participations/{participation_id}/match")
async def match_participation(
    participation_id: str, req: ManualMatchRequest, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.match_participation(db, participation_id, req.ref_id, req.amount_isk)
    return success_response(data, request)


@router.post("/transfers", status_code=201)
async def ingest_transfers(
    req: IngestTransfersRequest, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.ingest_transfers(db, req.events)
    return success_response(data, request)


@router.post("/transfers/match")
async def match_pending(
    req: MatchPendingRequest, db: DbSession, service: Service, request: Request
) -> ApiResponse:
    data = await service.match_pending(db, req.cycle_id)
    return success_response(data, request)


@router.get("/transfers/unmatched")
async def list_unmatched_donations(db: DbSession, service: Service, request: Request) -> ApiResponse:
    data = await service.list_unmatched_donations(db)
    return success_response(data, request)
