"""Cycle lifecycle, planning, fees and audit REST API."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cl_common.database import get_db_session
from src.cl_common.enums import CycleStatus
from src.cl_common.money import isk_to_cents
from src.cl_common.response import ApiResponse, success_response
from src.cl_cycle.application.schemas import (
    CloseCycleRequest,
    CommitPlanRequest,
    CreateLineRequest,
    FeeRequest,
    MarkListedRequest,
    PlanCycleRequest,
    UpdateLineRequest,
    UpdatePlannedCycleRequest,
)
from src.cl_cycle.application.service import CycleLifecycleManager
from src.cl_cycle.domain.models import CycleFilter

router = APIRouter(tags=["cycles"])

_manager = CycleLifecycleManager()


def get_cycle_manager() -> CycleLifecycleManager:
    return _manager


Manager = Annotated[CycleLifecycleManager, Depends(get_cycle_manager)]
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


# ---------------------------------------------------------------------------
# Cycles
# ---------------------------------------------------------------------------


@router.post("/cycles", status_code=201)
async def plan_cycle(
    req: PlanCycleRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    return success_response(await manager.plan_cycle(db, req), request)


@router.get("/cycles")
async def list_cycles(
    db: DbSession,
    manager: Manager,
    request: Request,
    status: CycleStatus | None = Query(None, description="Filter by cycle status"),
) -> ApiResponse:
    flt = CycleFilter(status=status.value if status else None)
    return success_response(await manager.list_cycles(db, flt), request)


@router.get("/cycles/{cycle_id}")
async def get_cycle(cycle_id: str, db: DbSession, manager: Manager, request: Request) -> ApiResponse:
    return success_response(await manager.get_cycle(db, cycle_id), request)


@router.patch("/cycles/{cycle_id}")
async def update_planned_cycle(
    cycle_id: str, req: UpdatePlannedCycleRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    return success_response(await manager.update_planned_cycle(db, cycle_id, req), request)


@router.post("/cycles/{cycle_id}/open")
async def open_cycle(cycle_id: str, db: DbSession, manager: Manager, request: Request) -> ApiResponse:
    return success_response(await manager.open_cycle(db, cycle_id), request)


@router.post("/cycles/{cycle_id}/close")
async def close_cycle(
    cycle_id: str,
    db: DbSession,
    manager: Manager,
    request: Request,
    req: CloseCycleRequest | None = None,
) -> ApiResponse:
    successor = req.successor_cycle_id if req is not None else None
    return success_response(await manager.close_cycle(db, cycle_id, successor), request)


# ---------------------------------------------------------------------------
# Lines / plan commits
# ---------------------------------------------------------------------------


@router.get("/cycles/{cycle_id}/lines")
async def list_lines(cycle_id: str, db: DbSession, manager: Manager, request: Request) -> ApiResponse:
    return success_response(await manager.list_lines(db, cycle_id), request)


@router.post("/cycles/{cycle_id}/lines", status_code=201)
async def create_cycle_line(
    cycle_id: str, req: CreateLineRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    return success_response(await manager.create_cycle_line(db, cycle_id, req), request)


@router.post("/cycles/{cycle_id}/commits", status_code=201)
async def commit_plan(
    cycle_id: str, req: CommitPlanRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    return success_response(await manager.commit_plan(db, cycle_id, req), request)


@router.get("/commits/{commit_id}/status")
async def get_commit_status(
    commit_id: str, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    return success_response(await manager.get_commit_status(db, commit_id), request)


@router.patch("/lines/{line_id}")
async def update_cycle_line(
    line_id: str, req: UpdateLineRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    return success_response(await manager.update_cycle_line(db, line_id, req.planned_units), request)


@router.delete("/lines/{line_id}")
async def delete_cycle_line(line_id: str, db: DbSession, manager: Manager, request: Request) -> ApiResponse:
    await manager.delete_cycle_line(db, line_id)
    return success_response({"line_id": line_id, "deleted": True}, request)


@router.post("/lines/{line_id}/listed")
async def mark_listed(
    line_id: str, req: MarkListedRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    return success_response(await manager.mark_listed(db, line_id, req.units), request)


@router.post("/lines/{line_id}/broker-fee")
async def add_broker_fee(
    line_id: str, req: FeeRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    data = await manager.add_broker_fee(db, line_id, isk_to_cents(req.amount_isk), req.memo)
    return success_response(data, request)


@router.post("/lines/{line_id}/relist-fee")
async def add_relist_fee(
    line_id: str, req: FeeRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    data = await manager.add_relist_fee(db, line_id, isk_to_cents(req.amount_isk), req.memo)
    return success_response(data, request)


# ---------------------------------------------------------------------------
# Fees / snapshots / profit / audit
# ---------------------------------------------------------------------------


@router.post("/cycles/{cycle_id}/transport-fee", status_code=201)
async def add_transport_fee(
    cycle_id: str, req: FeeRequest, db: DbSession, manager: Manager, request: Request
) -> ApiResponse:
    data = await manager.add_transport_fee(db, cycle_id, isk_to_cents(req.amount_isk), req.memo)
    return success_response(data, request)


@router.post("/cycles/{cycle_id}/snapshots", status_code=201)
async def create_snapshot(cycle_id: str, db: DbSession, manager: Manager, request: Request) -> ApiResponse:
    return success_response(await manager.create_snapshot(db, cycle_id), request)


@router.get("/cycles/{cycle_id}/profit")
async def compute_profit(cycle_id: str, db: DbSession, manager: Manager, request: Request) -> ApiResponse:
    return success_response(await manager.compute_profit(db, cycle_id), request)


@router.get("/admin/invariants")
async def verify_invariants(
    db: DbSession,
    manager: Manager,
    request: Request,
    cycle_id: str | None = Query(None, description="Audit a single cycle"),
) -> ApiResponse:
    return success_response(await manager.verify_invariants(db, cycle_id), request)
