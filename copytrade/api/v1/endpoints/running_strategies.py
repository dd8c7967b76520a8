"""v1 running strategy endpoints (user view + admin execution status)."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.core.dependencies import get_current_user, require_admin
from copytrade.database import get_db
from copytrade.models import RunningStrategy, RunningStrategyModification, User
from copytrade.schemas import (
    AdminRunningStrategyResponse,
    BrokerAccountUpdate,
    ExecutionStatusUpdateRequest,
    ModificationResponse,
    RunningStrategyResponse,
    SuccessResponse,
)
from copytrade.services import running_strategy_service
from copytrade.services.status import renewal_expiry, validity_label

router = APIRouter()
admin_router = APIRouter()


def _running_fields(rs: RunningStrategy, strategy_name: Optional[str]) -> dict:
    return dict(
        id=rs.id,
        user_id=rs.user_id,
        strategy_id=rs.strategy_id,
        strategy_name=strategy_name,
        payment_id=rs.payment_id,
        plan=rs.plan,
        capital=rs.capital,
        execution_status=rs.execution_status,
        platform=rs.platform,
        mt_account_id=rs.mt_account_id,
        mt_account_server=rs.mt_account_server,
        activated_at=rs.activated_at,
        last_approved_at=rs.last_approved_at,
        expires_at=renewal_expiry(rs.last_approved_at) if rs.last_approved_at else None,
        validity=validity_label(rs.last_approved_at),
    )


def _modification_response(mod: RunningStrategyModification) -> ModificationResponse:
    return ModificationResponse(
        id=mod.id,
        running_strategy_id=mod.running_strategy_id,
        user_id=mod.user_id,
        platform=mod.platform,
        mt_account_id=mod.mt_account_id,
        mt_account_server=mod.mt_account_server,
        status=mod.status,
        resolved_by=mod.resolved_by,
        resolved_at=mod.resolved_at,
        created_at=mod.created_at,
    )


@router.get("", response_model=List[RunningStrategyResponse])
async def my_running_strategies(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await running_strategy_service.list_for_user(db, current_user.id)
    return [RunningStrategyResponse(**_running_fields(rs, name)) for rs, name in rows]


@router.post("/{running_id}/modification", response_model=SuccessResponse)
async def request_modification(
    running_id: int,
    payload: BrokerAccountUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    mod = await running_strategy_service.create_modification_request(db, current_user, running_id, payload)
    await db.commit()
    return SuccessResponse(message=f"Modification request {mod.id} submitted")


@admin_router.get("", response_model=List[AdminRunningStrategyResponse])
async def all_running_strategies(
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await running_strategy_service.list_for_admin(db)
    open_counts = await running_strategy_service.count_open_modifications(db)
    user_ids = {rs.user_id for rs, _ in rows}
    emails = {}
    if user_ids:
        result = await db.execute(select(User.id, User.email).where(User.id.in_(user_ids)))
        emails = {row[0]: row[1] for row in result.all()}
    return [
        AdminRunningStrategyResponse(
            **_running_fields(rs, name),
            user_email=emails.get(rs.user_id),
            mt_account_password=rs.mt_account_password,
            pending_modifications=open_counts.get(rs.id, 0),
        )
        for rs, name in rows
    ]


@admin_router.get("/modifications", response_model=List[ModificationResponse])
async def all_modifications(
    status: Optional[str] = Query(default=None),
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await running_strategy_service.list_modifications(db, status)
    return [_modification_response(m) for m in rows]


@admin_router.patch("/{running_id}/status", response_model=SuccessResponse)
async def set_running_status(
    running_id: int,
    payload: ExecutionStatusUpdateRequest,
    admin_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await running_strategy_service.set_execution_status(db, running_id, admin_user, payload.status)
    await db.commit()
    return SuccessResponse()


@admin_router.patch("/{running_id}/details", response_model=SuccessResponse)
async def update_running_details(
    running_id: int,
    payload: BrokerAccountUpdate,
    admin_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await running_strategy_service.update_broker_details(db, running_id, admin_user, payload)
    await db.commit()
    return SuccessResponse()
