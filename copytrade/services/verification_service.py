"""Admin verification of payment intents: approve, reject, message."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.core.exceptions import AuthorizationError, PaymentConflictError, PaymentValidationError
from copytrade.models import PaymentIntent, User
from copytrade.services import audit_service, running_strategy_service, wallet_service
from copytrade.services.intake_service import TOPUP_PLAN
from copytrade.services.ledger_store import get_payment, is_admin, transition_open
from copytrade.services.status import FailureKind, OutcomeKind, PaymentStatus, parse_status

logger = logging.getLogger(__name__)

DEPOSIT_REASON = "payment_deposit"
CHARGE_REASON = "payment_charge"

_FRESH_ONLY = {PaymentStatus.PENDING, PaymentStatus.IN_PROCESS, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
_RENEWAL_ONLY = {PaymentStatus.RENEWAL_PENDING, PaymentStatus.RENEWAL_APPROVED, PaymentStatus.REJECTED}


def _require_admin(admin: User) -> None:
    if admin is None or not is_admin(admin):
        raise AuthorizationError("Admin access required")


async def approve_payment(db: AsyncSession, payment_id: str, admin: User) -> PaymentIntent:
    """pending/in_process -> success; credits fresh deposits, debits fresh charges.

    Runs inside the caller's transaction so the status change, wallet credit and
    subscription activation commit or roll back together.
    """
    _require_admin(admin)
    intent = await get_payment(db, payment_id)
    now = datetime.utcnow()

    changed = await transition_open(
        db,
        intent,
        outcome=OutcomeKind.SUCCESS.value,
        failure_kind=None,
        approved_at=now,
        verified_by=admin.id,
        rejection_reason=None,
    )
    if not changed:
        logger.info("Approve of payment %s by admin %s rejected: already %s", intent.id, admin.id, intent.outcome)
        raise PaymentConflictError()

    if not intent.is_renewal and intent.kind == "deposit":
        await wallet_service.credit(
            db,
            user_id=intent.user_id,
            amount=intent.payable,
            reason=DEPOSIT_REASON,
            reference_type="payment",
            reference_id=intent.id,
            metadata={"verified_by": admin.id, "method": intent.method},
        )
    elif not intent.is_renewal and intent.kind == "charge":
        await wallet_service.debit(
            db,
            user_id=intent.user_id,
            amount=intent.payable,
            reason=CHARGE_REASON,
            reference_type="payment",
            reference_id=intent.id,
            metadata={"verified_by": admin.id, "method": intent.method},
        )

    if intent.plan != TOPUP_PLAN:
        await running_strategy_service.activate_for_payment(db, intent, now)
    await audit_service.record(
        db,
        action="payment.approved",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=admin.id,
        metadata={"payable": str(intent.payable), "renewal": intent.is_renewal},
    )
    logger.info("Payment %s approved by admin %s", intent.id, admin.id)
    return intent


async def reject_payment(db: AsyncSession, payment_id: str, admin: User, reason: Optional[str]) -> PaymentIntent:
    _require_admin(admin)
    reason = (reason or "").strip()
    if not reason:
        raise PaymentValidationError("A rejection reason is required")

    intent = await get_payment(db, payment_id)
    changed = await transition_open(
        db,
        intent,
        outcome=OutcomeKind.REJECTED.value,
        failure_kind=FailureKind.REJECTED.value,
        rejection_reason=reason,
        verified_by=admin.id,
    )
    if not changed:
        logger.info("Reject of payment %s by admin %s rejected: already %s", intent.id, admin.id, intent.outcome)
        raise PaymentConflictError()

    await audit_service.record(
        db,
        action="payment.rejected",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=admin.id,
        metadata={"reason": reason},
    )
    logger.info("Payment %s rejected by admin %s", intent.id, admin.id)
    return intent


async def message_payment(db: AsyncSession, payment_id: str, admin: User, text: Optional[str]) -> PaymentIntent:
    """Attach an admin note without touching the outcome; allowed in any state."""
    _require_admin(admin)
    text = (text or "").strip()
    if not text:
        raise PaymentValidationError("Message must not be empty")

    intent = await get_payment(db, payment_id)
    intent.admin_message = text
    intent.admin_message_status = "sent"
    intent.updated_at = datetime.utcnow()
    await db.flush()

    await audit_service.record(
        db,
        action="payment.message",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=admin.id,
        metadata={"message": text},
    )
    logger.info("Admin %s messaged payment %s", admin.id, intent.id)
    return intent


async def _set_open_outcome(db: AsyncSession, intent: PaymentIntent, admin: User, outcome: OutcomeKind) -> PaymentIntent:
    if intent.outcome == outcome.value:
        return intent
    if not await transition_open(db, intent, outcome=outcome.value):
        raise PaymentConflictError()
    await audit_service.record(
        db,
        action=f"payment.{outcome.value}",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=admin.id,
    )
    return intent


async def apply_admin_status(
    db: AsyncSession,
    payment_id: str,
    admin: User,
    status: str,
    message: Optional[str] = None,
) -> PaymentIntent:
    """Admin status form: every accepted value goes through the shared allow-list."""
    _require_admin(admin)
    target = parse_status(status)
    intent = await get_payment(db, payment_id)

    if intent.is_renewal and target in _FRESH_ONLY:
        raise PaymentValidationError(f"Status '{target.value}' does not apply to renewal payments")
    if not intent.is_renewal and target in _RENEWAL_ONLY:
        raise PaymentValidationError(f"Status '{target.value}' only applies to renewal payments")

    if target in (PaymentStatus.COMPLETED, PaymentStatus.RENEWAL_APPROVED):
        intent = await approve_payment(db, payment_id, admin)
    elif target in (PaymentStatus.FAILED, PaymentStatus.REJECTED):
        return await reject_payment(db, payment_id, admin, message)
    elif target is PaymentStatus.IN_PROCESS:
        intent = await _set_open_outcome(db, intent, admin, OutcomeKind.IN_PROCESS)
    elif intent.is_renewal:
        # renewal_pending covers both open outcomes
        if intent.outcome not in (OutcomeKind.PENDING.value, OutcomeKind.IN_PROCESS.value):
            raise PaymentConflictError()
    else:
        intent = await _set_open_outcome(db, intent, admin, OutcomeKind.PENDING)

    if message and message.strip():
        intent = await message_payment(db, payment_id, admin, message)
    return intent
