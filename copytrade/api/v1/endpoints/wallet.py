"""v1 wallet and ledger endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.api.v1.endpoints.payments import checkout_rate, payment_created_response
from copytrade.core.dependencies import get_current_user, rate_limited
from copytrade.database import get_db
from copytrade.models import User
from copytrade.schemas import (
    PaymentCreateResponse,
    WalletLedgerEntryResponse,
    WalletLedgerListResponse,
    WalletResponse,
    WalletTopupRequest,
)
from copytrade.services import intake_service
from copytrade.services.wallet_service import get_wallet, list_ledger

router = APIRouter()


@router.get("", response_model=WalletResponse)
async def wallet_balance(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await get_wallet(db, current_user.id)
    await db.commit()
    return WalletResponse(balance=wallet.balance)


@router.get("/ledger", response_model=WalletLedgerListResponse)
async def wallet_ledger(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    wallet = await get_wallet(db, current_user.id)
    await db.commit()
    rows = await list_ledger(db, current_user.id, limit=limit, offset=offset)
    entries = [
        WalletLedgerEntryResponse(
            id=r.id,
            direction=r.direction,
            reason=r.reason,
            reference_type=r.reference_type,
            reference_id=r.reference_id,
            delta=r.delta,
            before_balance=r.before_balance,
            after_balance=r.after_balance,
            created_at=r.created_at,
        )
        for r in rows
    ]
    return WalletLedgerListResponse(balance=wallet.balance, entries=entries)


@router.post("/topups", response_model=PaymentCreateResponse)
async def create_topup(
    payload: WalletTopupRequest,
    current_user: User = Depends(rate_limited("payments", "RATE_LIMIT_PAYMENTS_PER_MINUTE")),
    db: AsyncSession = Depends(get_db),
):
    """Open a wallet deposit/charge; proof and verification use the payment routes."""
    rate = await checkout_rate(payload.usd_to_inr_rate)
    intent = await intake_service.create_topup(db, current_user, payload, rate)
    await db.commit()
    return payment_created_response(intent)
