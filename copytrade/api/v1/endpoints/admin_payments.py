"""v1 admin payment verification endpoints."""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.api.v1.endpoints.payments import notify_verified, payment_response
from copytrade.core.dependencies import require_admin
from copytrade.database import get_db
from copytrade.models import User
from copytrade.schemas import AdminMessageRequest, AdminNotificationsResponse, PaymentResponse, RejectRequest
from copytrade.services import verification_service
from copytrade.services.ledger_store import list_updated_since
from copytrade.services.status import PaymentStatus

router = APIRouter()


@router.post("/{payment_id}/approve", response_model=PaymentResponse)
async def approve_payment(
    payment_id: str,
    admin_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    intent = await verification_service.approve_payment(db, payment_id, admin_user)
    await db.commit()
    await notify_verified(db, intent, PaymentStatus.COMPLETED.value)
    return payment_response(intent)


@router.post("/{payment_id}/reject", response_model=PaymentResponse)
async def reject_payment(
    payment_id: str,
    payload: RejectRequest,
    admin_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    intent = await verification_service.reject_payment(db, payment_id, admin_user, payload.reason)
    await db.commit()
    await notify_verified(db, intent, PaymentStatus.FAILED.value)
    return payment_response(intent)


@router.post("/{payment_id}/message", response_model=PaymentResponse)
async def message_payment(
    payment_id: str,
    payload: AdminMessageRequest,
    admin_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    intent = await verification_service.message_payment(db, payment_id, admin_user, payload.message)
    await db.commit()
    return payment_response(intent)


@router.get("/notifications", response_model=AdminNotificationsResponse)
async def payment_notifications(
    since: Optional[datetime] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Payments changed after ``since``; pass back ``serverTime`` on the next poll.

    A full batch moves the cursor only to its last row so the rest is served next time.
    """
    server_time = datetime.utcnow()
    if since is None:
        since = server_time - timedelta(days=1)
    elif since.tzinfo is not None:
        since = since.replace(tzinfo=None) - (since.utcoffset() or timedelta(0))
    rows = await list_updated_since(db, since, limit=limit)
    has_more = len(rows) == limit
    cursor = rows[-1].updated_at if has_more else server_time
    return AdminNotificationsResponse(
        payments=[payment_response(p) for p in rows], server_time=cursor, has_more=has_more
    )
