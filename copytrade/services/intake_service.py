"""Payment intake: intent creation, proof submission and client-side termination."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.config import get_settings
from copytrade.core.exceptions import (
    PaymentConflictError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from copytrade.models import PaymentIntent, Strategy, User
from copytrade.schemas import PaymentCreateRequest, WalletTopupRequest
from copytrade.services import audit_service, storage_service
from copytrade.services.ledger_store import get_payment, get_payment_for_user, transition_open
from copytrade.services.payment_service import get_destination_provider
from copytrade.services.pricing_service import CENTS, convert, quote_payable
from copytrade.services.status import (
    CLIENT_FAILURE_KINDS,
    ClientTerminalStatus,
    FailureKind,
    OutcomeKind,
)

logger = logging.getLogger(__name__)
settings = get_settings()

PAYABLE_TOLERANCE = Decimal("0.01")

# plan recorded on standalone wallet transactions
TOPUP_PLAN = "Wallet"


async def _require_enabled_strategy(db: AsyncSession, strategy_id: int) -> Strategy:
    strategy = await db.get(Strategy, strategy_id)
    if strategy is None:
        raise PaymentNotFoundError("Strategy not found")
    if not strategy.is_enabled:
        raise PaymentValidationError("Strategy is not available for subscription")
    return strategy


async def _require_renewable(db: AsyncSession, user: User, payload: PaymentCreateRequest) -> None:
    try:
        prior = await get_payment(db, payload.renewal_of_id)
    except PaymentNotFoundError:
        raise PaymentValidationError("renewalOfId does not reference an existing payment") from None
    if (
        prior.user_id != user.id
        or prior.strategy_id != payload.strategy_id
        or prior.outcome != OutcomeKind.SUCCESS.value
    ):
        raise PaymentValidationError("renewalOfId must reference an approved payment for this strategy")


async def create_intent(
    db: AsyncSession,
    user: User,
    payload: PaymentCreateRequest,
    rate: Decimal,
) -> PaymentIntent:
    await _require_enabled_strategy(db, payload.strategy_id)

    quote = quote_payable(payload.plan, payload.capital)
    if payload.payable is not None and abs(payload.payable - quote.payable) > PAYABLE_TOLERANCE:
        raise PaymentValidationError(
            f"payable {payload.payable} does not match {quote.fee_percent}% of capital ({quote.payable})"
        )

    if payload.is_renewal and payload.renewal_of_id:
        await _require_renewable(db, user, payload)
    elif payload.renewal_of_id:
        raise PaymentValidationError("renewalOfId is only valid for renewals")

    destination = get_destination_provider().destination_for(payload.method)
    broker = payload.mt4mt5

    intent = PaymentIntent(
        user_id=user.id,
        strategy_id=payload.strategy_id,
        plan=quote.plan.value,
        capital=quote.capital.quantize(CENTS),
        payable=quote.payable,
        currency="USD",
        method=payload.method.value,
        kind=payload.kind,
        is_renewal=payload.is_renewal,
        renewal_of_id=payload.renewal_of_id,
        outcome=OutcomeKind.PENDING.value,
        platform=broker.type if broker else None,
        mt_account_id=broker.id if broker else None,
        mt_account_password=broker.password if broker else None,
        mt_account_server=broker.server if broker else None,
        fx_rate=rate,
        secondary_amount=convert(quote.payable, rate),
        secondary_currency=settings.RATE_QUOTE,
        crypto_network=destination.network,
        pay_to_address=destination.address,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(intent)
    await db.flush()
    await db.refresh(intent)

    await audit_service.record(
        db,
        action="payment.created",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=user.id,
        metadata={"plan": intent.plan, "payable": str(intent.payable), "method": intent.method, "renewal": intent.is_renewal},
    )
    logger.info(
        "Payment %s created for user %s (%s %s, renewal=%s)",
        intent.id,
        user.id,
        intent.plan,
        intent.payable,
        intent.is_renewal,
    )
    return intent


async def create_topup(
    db: AsyncSession,
    user: User,
    payload: WalletTopupRequest,
    rate: Decimal,
) -> PaymentIntent:
    """Wallet deposit or charge of any positive amount.

    Goes through the same proof and verification steps as a subscription
    payment; approval credits or debits the wallet and activates nothing.
    """
    if payload.strategy_id is not None:
        await _require_enabled_strategy(db, payload.strategy_id)

    amount = payload.amount.quantize(CENTS)
    if payload.inr_amount is not None:
        secondary_amount = payload.inr_amount.quantize(CENTS)
    else:
        secondary_amount = convert(amount, rate)
    destination = get_destination_provider().destination_for(payload.method)

    intent = PaymentIntent(
        user_id=user.id,
        strategy_id=payload.strategy_id,
        plan=TOPUP_PLAN,
        capital=amount,
        payable=amount,
        currency="USD",
        method=payload.method.value,
        kind=payload.kind,
        is_renewal=False,
        outcome=OutcomeKind.PENDING.value,
        fx_rate=rate,
        secondary_amount=secondary_amount,
        secondary_currency=settings.RATE_QUOTE,
        crypto_network=destination.network,
        pay_to_address=destination.address,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(intent)
    await db.flush()
    await db.refresh(intent)

    await audit_service.record(
        db,
        action="payment.created",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=user.id,
        metadata={"plan": TOPUP_PLAN, "kind": intent.kind, "payable": str(amount), "method": intent.method},
    )
    logger.info("Wallet %s %s created for user %s (%s)", intent.kind, intent.id, user.id, amount)
    return intent


def _validate_proof_url(user: User, payment_id: str, proof_url: str) -> None:
    key = storage_service.key_from_proof_url(proof_url)
    if key is None:
        raise PaymentValidationError("proofUrl must reference an uploaded proof")
    if not storage_service.ensure_file_owned_by_user(key, user.id) or f"/{payment_id}/" not in f"/{key}":
        raise PaymentValidationError("proofUrl does not belong to this payment")
    if not storage_service.proof_exists(key):
        raise PaymentValidationError("Uploaded proof not found")


async def attach_proof(
    db: AsyncSession,
    user: User,
    payment_id: str,
    external_tx_id: str,
    proof_url: Optional[str],
) -> PaymentIntent:
    """Move pending -> in_process with the claimed transaction reference and receipt.

    Resubmission while still in_process replaces the proof; terminal intents conflict.
    """
    intent = await get_payment_for_user(db, user, payment_id)
    if intent.user_id != user.id:
        raise PaymentNotFoundError()

    external_tx_id = (external_tx_id or "").strip()
    if not external_tx_id:
        raise PaymentValidationError("txId is required")

    degraded = False
    if proof_url and proof_url.strip():
        proof_url = proof_url.strip()
        _validate_proof_url(user, intent.id, proof_url)
    elif settings.ALLOW_UNVERIFIED_PROOF:
        degraded = True
        proof_url = None
        logger.warning("Payment %s accepted without an uploaded proof (unverified proof mode)", intent.id)
    else:
        raise PaymentValidationError("proofUrl is required")

    changed = await transition_open(
        db,
        intent,
        outcome=OutcomeKind.IN_PROCESS.value,
        external_tx_id=external_tx_id,
        proof_url=proof_url,
        proof_degraded=degraded,
    )
    if not changed:
        raise PaymentConflictError()

    await audit_service.record(
        db,
        action="payment.proof_attached",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=user.id,
        metadata={"tx_id": external_tx_id, "proof_degraded": degraded},
    )
    logger.info("Proof attached to payment %s (tx %s)", intent.id, external_tx_id)
    return intent


async def mark_terminal_client_side(
    db: AsyncSession,
    user: User,
    payment_id: str,
    status: ClientTerminalStatus,
) -> PaymentIntent:
    """Fail an open intent on expiry, cancel or submission failure. No-op once terminal."""
    intent = await get_payment_for_user(db, user, payment_id)
    if intent.user_id != user.id:
        raise PaymentNotFoundError()

    kind = CLIENT_FAILURE_KINDS[status]
    changed = await transition_open(
        db,
        intent,
        outcome=OutcomeKind.REJECTED.value,
        failure_kind=kind.value,
    )
    if not changed:
        logger.info("Payment %s already terminal; ignoring client %s", intent.id, status.value)
        return intent

    await audit_service.record(
        db,
        action=f"payment.{kind.value}",
        entity_type="payment",
        entity_id=intent.id,
        actor_user_id=user.id,
    )
    logger.info("Payment %s marked %s by client", intent.id, status.value)
    return intent


async def expire_stale_intents(db: AsyncSession, now: Optional[datetime] = None) -> List[str]:
    """Expire pending intents without proof that outlived the checkout window."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(seconds=settings.CHECKOUT_SESSION_SECONDS + settings.STALE_INTENT_GRACE_SECONDS)
    result = await db.execute(
        update(PaymentIntent)
        .where(
            PaymentIntent.outcome == OutcomeKind.PENDING.value,
            PaymentIntent.proof_url.is_(None),
            PaymentIntent.external_tx_id.is_(None),
            PaymentIntent.created_at < cutoff,
        )
        .values(
            outcome=OutcomeKind.REJECTED.value,
            failure_kind=FailureKind.EXPIRED.value,
            updated_at=now,
        )
        .returning(PaymentIntent.id)
        .execution_options(synchronize_session=False)
    )
    expired = list(result.scalars().all())
    for payment_id in expired:
        await audit_service.record(db, action="payment.expired", entity_type="payment", entity_id=payment_id)
    if expired:
        logger.info("Expired %d stale payment intents", len(expired))
    return expired
