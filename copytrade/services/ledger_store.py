"""Payment intent persistence: lookups, listing and guarded status transitions."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.core.exceptions import PaymentNotFoundError
from copytrade.models import PaymentIntent, User
from copytrade.services.status import OPEN_OUTCOMES, PaymentStatus, outcomes_for_status


def is_admin(user: User) -> bool:
    return (user.role or "").upper() == "ADMIN"


async def get_payment(db: AsyncSession, payment_id: str) -> PaymentIntent:
    intent = await db.get(PaymentIntent, payment_id)
    if intent is None:
        raise PaymentNotFoundError()
    return intent


async def get_payment_for_user(db: AsyncSession, user: User, payment_id: str) -> PaymentIntent:
    """Owner or admin only; other users get the same 404 as a missing id."""
    intent = await get_payment(db, payment_id)
    if intent.user_id != user.id and not is_admin(user):
        raise PaymentNotFoundError()
    return intent


async def list_payments(
    db: AsyncSession,
    user_id: Optional[int] = None,
    renewal: Optional[bool] = None,
    status: Optional[PaymentStatus] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[PaymentIntent]:
    stmt = select(PaymentIntent)
    if user_id is not None:
        stmt = stmt.where(PaymentIntent.user_id == user_id)
    if status is not None:
        outcomes, status_renewal = outcomes_for_status(status)
        stmt = stmt.where(PaymentIntent.outcome.in_(outcomes))
        if status_renewal is not None:
            if renewal is not None and renewal != status_renewal:
                # contradictory filters
                return []
            renewal = status_renewal
    if renewal is not None:
        stmt = stmt.where(PaymentIntent.is_renewal == renewal)
    stmt = stmt.order_by(PaymentIntent.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_updated_since(db: AsyncSession, since: datetime, limit: int = 100) -> List[PaymentIntent]:
    result = await db.execute(
        select(PaymentIntent)
        .where(PaymentIntent.updated_at > since)
        .order_by(PaymentIntent.updated_at.asc(), PaymentIntent.id.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def transition_open(db: AsyncSession, intent: PaymentIntent, **values) -> bool:
    """Apply ``values`` only while the intent is still pending/in_process.

    Single conditional UPDATE; returns False when another transaction already
    moved the intent to a terminal outcome.
    """
    values.setdefault("updated_at", datetime.utcnow())
    result = await db.execute(
        update(PaymentIntent)
        .where(PaymentIntent.id == intent.id, PaymentIntent.outcome.in_(OPEN_OUTCOMES))
        .values(**values)
        .returning(PaymentIntent.id)
        .execution_options(synchronize_session=False)
    )
    changed = result.scalar_one_or_none() is not None
    await db.refresh(intent)
    return changed
