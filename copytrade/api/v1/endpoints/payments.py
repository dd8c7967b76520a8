"""v1 payment intent endpoints (user checkout + admin status form)."""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.config import get_settings
from copytrade.core.dependencies import get_current_user, rate_limited, require_admin
from copytrade.core.exceptions import AuthorizationError
from copytrade.database import get_db
from copytrade.models import PaymentIntent, User
from copytrade.schemas import (
    AdminPaymentUpdateRequest,
    PaymentCreateRequest,
    PaymentCreateResponse,
    PaymentHistoryEntry,
    PaymentListResponse,
    PaymentResponse,
    PaymentStatusUpdateRequest,
    ProofAttachRequest,
)
from copytrade.services import audit_service, intake_service, notification_service, verification_service
from copytrade.services.ledger_store import get_payment_for_user, is_admin, list_payments
from copytrade.services.payment_service import get_destination_provider
from copytrade.services.pricing_service import PaymentMethod
from copytrade.services.rate_service import get_rate
from copytrade.services.status import (
    TERMINAL_STATUSES,
    ClientTerminalStatus,
    OutcomeKind,
    parse_client_terminal_status,
    parse_status,
    renewal_expiry,
    validity_label,
)
from copytrade.workers.tasks_notify import queue_email

router = APIRouter()
settings = get_settings()

_CLIENT_STATUSES = {s.value for s in ClientTerminalStatus}


def payment_response(intent: PaymentIntent) -> PaymentResponse:
    expires_at = None
    validity = None
    if intent.outcome == OutcomeKind.SUCCESS.value and intent.approved_at:
        expires_at = renewal_expiry(intent.approved_at)
        validity = validity_label(intent.approved_at)
    return PaymentResponse(
        id=intent.id,
        user_id=intent.user_id,
        strategy_id=intent.strategy_id,
        plan=intent.plan,
        capital=intent.capital,
        payable=intent.payable,
        currency=intent.currency,
        method=intent.method,
        kind=intent.kind,
        is_renewal=bool(intent.is_renewal),
        renewal_of_id=intent.renewal_of_id,
        status=intent.status,
        failure_kind=intent.failure_kind,
        platform=intent.platform,
        mt_account_id=intent.mt_account_id,
        mt_account_server=intent.mt_account_server,
        tx_id=intent.external_tx_id,
        proof_url=intent.proof_url,
        proof_degraded=bool(intent.proof_degraded),
        fx_rate=intent.fx_rate,
        secondary_amount=intent.secondary_amount,
        secondary_currency=intent.secondary_currency,
        crypto_network=intent.crypto_network,
        pay_to_address=intent.pay_to_address,
        rejection_reason=intent.rejection_reason,
        admin_message=intent.admin_message,
        admin_message_status=intent.admin_message_status,
        verified_by=intent.verified_by,
        approved_at=intent.approved_at,
        expires_at=expires_at,
        validity=validity,
        created_at=intent.created_at,
        updated_at=intent.updated_at,
    )


def payment_created_response(intent: PaymentIntent) -> PaymentCreateResponse:
    destination = get_destination_provider().destination_for(PaymentMethod(intent.method))
    return PaymentCreateResponse(
        transaction_id=intent.id,
        status=intent.status,
        payable=intent.payable,
        secondary_amount=intent.secondary_amount,
        secondary_currency=intent.secondary_currency,
        crypto_network=intent.crypto_network,
        pay_to_address=intent.pay_to_address,
        wallet_app_link=destination.wallet_app_link,
        expires_in_seconds=settings.CHECKOUT_SESSION_SECONDS,
    )


async def checkout_rate(client_rate: Optional[Decimal]) -> Decimal:
    """Rate the client displayed, else the current USD/INR rate."""
    if client_rate is not None and client_rate > 0:
        return Decimal(client_rate)
    return await get_rate(settings.RATE_BASE, settings.RATE_QUOTE)


async def notify_verified(db: AsyncSession, intent: PaymentIntent, status: str) -> None:
    """Queue the completed/rejected email once a verification is committed."""
    if parse_status(status) not in TERMINAL_STATUSES:
        return
    user = await db.get(User, intent.user_id)
    if user is None:
        return
    message = notification_service.payment_email(intent, user)
    if message:
        subject, html = message
        queue_email(user.email, subject, html)


@router.post("", response_model=PaymentCreateResponse)
async def create_payment(
    payload: PaymentCreateRequest,
    current_user: User = Depends(rate_limited("payments", "RATE_LIMIT_PAYMENTS_PER_MINUTE")),
    db: AsyncSession = Depends(get_db),
):
    rate = await checkout_rate(payload.usd_to_inr_rate)
    intent = await intake_service.create_intent(db, current_user, payload, rate)
    await db.commit()
    return payment_created_response(intent)


@router.get("", response_model=PaymentListResponse)
async def list_my_payments(
    renewal: Optional[bool] = Query(default=None),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    status_filter = parse_status(status) if status else None
    rows = await list_payments(
        db,
        user_id=None if is_admin(current_user) else current_user.id,
        renewal=renewal,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return PaymentListResponse(payments=[payment_response(p) for p in rows])


@router.patch("", response_model=PaymentResponse)
async def admin_update_payment(
    payload: AdminPaymentUpdateRequest,
    admin_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    intent = await verification_service.apply_admin_status(
        db, payload.payment_id, admin_user, payload.status, payload.message
    )
    await db.commit()
    await notify_verified(db, intent, payload.status)
    return payment_response(intent)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    intent = await get_payment_for_user(db, current_user, payment_id)
    return payment_response(intent)


@router.get("/{payment_id}/history", response_model=List[PaymentHistoryEntry])
async def payment_history(
    payment_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    intent = await get_payment_for_user(db, current_user, payment_id)
    rows = await audit_service.list_for_entity(db, "payment", intent.id)
    return [
        PaymentHistoryEntry(
            id=r.id,
            action=r.action,
            actor_user_id=r.actor_user_id,
            metadata=r.metadata_json,
            created_at=r.created_at,
        )
        for r in rows
    ]


@router.put("/{payment_id}", response_model=PaymentResponse)
async def attach_proof(
    payment_id: str,
    payload: ProofAttachRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    intent = await intake_service.attach_proof(db, current_user, payment_id, payload.tx_id, payload.proof_url)
    await db.commit()
    return payment_response(intent)


@router.patch("/{payment_id}", response_model=PaymentResponse)
async def update_payment_status(
    payment_id: str,
    payload: PaymentStatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Client termination (EXPIRED/CANCELLED/FAILED) or, for admins, a verification status.

    Admins only take the client path for their own intents, so ``failed`` from
    an admin on someone else's payment is a rejection.
    """
    client_status = payload.status.strip().upper() in _CLIENT_STATUSES
    if client_status:
        own = not is_admin(current_user)
        if not own:
            intent = await get_payment_for_user(db, current_user, payment_id)
            own = intent.user_id == current_user.id
        if own:
            status = parse_client_terminal_status(payload.status)
            intent = await intake_service.mark_terminal_client_side(db, current_user, payment_id, status)
            await db.commit()
            return payment_response(intent)

    if not is_admin(current_user):
        raise AuthorizationError("Admin access required")

    intent = await verification_service.apply_admin_status(
        db, payment_id, current_user, payload.status, payload.message
    )
    await db.commit()
    await notify_verified(db, intent, payload.status)
    return payment_response(intent)
