"""Running strategy subscriptions, execution-health status and modification requests."""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.core.exceptions import PaymentNotFoundError
from copytrade.models import PaymentIntent, RunningStrategy, RunningStrategyModification, Strategy, User
from copytrade.schemas import BrokerAccountUpdate
from copytrade.services import audit_service
from copytrade.services.status import ExecutionStatus, parse_execution_status

logger = logging.getLogger(__name__)

BROKER_FIELDS = ("platform", "mt_account_id", "mt_account_password", "mt_account_server")


def _apply_broker_fields(target, source) -> None:
    for field in BROKER_FIELDS:
        value = getattr(source, field, None)
        if value is not None and str(value).strip():
            setattr(target, field, str(value).strip())


async def activate_for_payment(
    db: AsyncSession,
    intent: PaymentIntent,
    now: Optional[datetime] = None,
) -> Optional[RunningStrategy]:
    """Create the running subscription on first approval, refresh it on later ones."""
    if intent.strategy_id is None:
        return None
    now = now or intent.approved_at or datetime.utcnow()

    result = await db.execute(
        select(RunningStrategy).where(
            RunningStrategy.user_id == intent.user_id,
            RunningStrategy.strategy_id == intent.strategy_id,
        )
    )
    running = result.scalar_one_or_none()
    if running is None:
        running = RunningStrategy(
            user_id=intent.user_id,
            strategy_id=intent.strategy_id,
            execution_status=ExecutionStatus.IN_PROCESS.value,
            activated_at=now,
        )
        db.add(running)
        logger.info("Activating strategy %s for user %s", intent.strategy_id, intent.user_id)

    running.payment_id = intent.id
    running.plan = intent.plan
    running.capital = intent.capital
    running.last_approved_at = now
    _apply_broker_fields(running, intent)
    await db.flush()
    return running


async def _running_with_name(db: AsyncSession, stmt) -> List[Tuple[RunningStrategy, Optional[str]]]:
    result = await db.execute(
        stmt.add_columns(Strategy.name).outerjoin(Strategy, Strategy.id == RunningStrategy.strategy_id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def list_for_user(db: AsyncSession, user_id: int) -> List[Tuple[RunningStrategy, Optional[str]]]:
    stmt = (
        select(RunningStrategy)
        .where(RunningStrategy.user_id == user_id)
        .order_by(RunningStrategy.last_approved_at.desc())
    )
    return await _running_with_name(db, stmt)


async def list_for_admin(db: AsyncSession) -> List[Tuple[RunningStrategy, Optional[str]]]:
    stmt = select(RunningStrategy).order_by(RunningStrategy.last_approved_at.desc())
    return await _running_with_name(db, stmt)


async def count_open_modifications(db: AsyncSession) -> dict:
    result = await db.execute(
        select(RunningStrategyModification.running_strategy_id, func.count())
        .where(RunningStrategyModification.status == ExecutionStatus.IN_PROCESS.value)
        .group_by(RunningStrategyModification.running_strategy_id)
    )
    return {row[0]: row[1] for row in result.all()}


async def list_modifications(db: AsyncSession, status: Optional[str] = None) -> List[RunningStrategyModification]:
    stmt = select(RunningStrategyModification)
    if status:
        stmt = stmt.where(RunningStrategyModification.status == parse_execution_status(status).value)
    result = await db.execute(stmt.order_by(RunningStrategyModification.created_at.desc()))
    return list(result.scalars().all())


async def get_running(db: AsyncSession, running_id: int) -> RunningStrategy:
    running = await db.get(RunningStrategy, running_id)
    if running is None:
        raise PaymentNotFoundError("Running strategy not found")
    return running


async def set_execution_status(db: AsyncSession, running_id: int, admin: User, status: str) -> RunningStrategy:
    """Admin sets execution health; open modification requests resolve with the same status."""
    new_status = parse_execution_status(status)
    running = await get_running(db, running_id)
    now = datetime.utcnow()

    result = await db.execute(
        select(RunningStrategyModification)
        .where(
            RunningStrategyModification.running_strategy_id == running.id,
            RunningStrategyModification.status == ExecutionStatus.IN_PROCESS.value,
        )
        .order_by(RunningStrategyModification.created_at.asc())
    )
    open_mods = list(result.scalars().all())
    if new_status is not ExecutionStatus.IN_PROCESS:
        for mod in open_mods:
            if new_status is ExecutionStatus.RUNNING:
                _apply_broker_fields(running, mod)
            mod.status = new_status.value
            mod.resolved_by = admin.id
            mod.resolved_at = now

    running.execution_status = new_status.value
    running.updated_at = now
    await db.flush()

    await audit_service.record(
        db,
        action="running_strategy.status",
        entity_type="running_strategy",
        entity_id=str(running.id),
        actor_user_id=admin.id,
        metadata={"status": new_status.value, "resolved_modifications": len(open_mods)},
    )
    logger.info("Running strategy %s set to %s by admin %s", running.id, new_status.value, admin.id)
    return running


async def update_broker_details(
    db: AsyncSession,
    running_id: int,
    admin: User,
    fields: BrokerAccountUpdate,
) -> RunningStrategy:
    running = await get_running(db, running_id)
    _apply_broker_fields(running, fields)
    running.updated_at = datetime.utcnow()
    await db.flush()
    await audit_service.record(
        db,
        action="running_strategy.details",
        entity_type="running_strategy",
        entity_id=str(running.id),
        actor_user_id=admin.id,
        metadata={"fields": [f for f in BROKER_FIELDS if getattr(fields, f, None)]},
    )
    return running


async def create_modification_request(
    db: AsyncSession,
    user: User,
    running_id: int,
    fields: BrokerAccountUpdate,
) -> RunningStrategyModification:
    running = await get_running(db, running_id)
    if running.user_id != user.id:
        raise PaymentNotFoundError("Running strategy not found")

    mod = RunningStrategyModification(
        running_strategy_id=running.id,
        user_id=user.id,
        platform=fields.platform,
        mt_account_id=fields.mt_account_id,
        mt_account_password=fields.mt_account_password,
        mt_account_server=fields.mt_account_server,
        proposed_json=fields.model_dump(exclude_none=True, exclude={"mt_account_password"}),
        status=ExecutionStatus.IN_PROCESS.value,
        created_at=datetime.utcnow(),
    )
    db.add(mod)
    running.execution_status = ExecutionStatus.IN_PROCESS.value
    running.updated_at = datetime.utcnow()
    await db.flush()
    await db.refresh(mod)
    logger.info("Modification %s requested for running strategy %s", mod.id, running.id)
    return mod
