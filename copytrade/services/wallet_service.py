"""Wallet balance and ledger operations."""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.core.exceptions import PaymentValidationError
from copytrade.models import WalletAccount, WalletEntry
from copytrade.services.pricing_service import CENTS, Number, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENTS)


def _positive(amount: Number, label: str) -> Decimal:
    value = to_decimal(amount).quantize(CENTS)
    if value <= 0:
        raise PaymentValidationError(f"{label} amount must be positive")
    return value


async def ensure_wallet(db: AsyncSession, user_id: int) -> WalletAccount:
    result = await db.execute(
        select(WalletAccount)
        .where(WalletAccount.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    wallet = result.scalar_one_or_none()
    if wallet:
        return wallet

    wallet = WalletAccount(user_id=user_id, balance=ZERO, version=0)
    db.add(wallet)
    await db.flush()
    await db.refresh(wallet)
    return wallet


async def get_wallet(db: AsyncSession, user_id: int) -> WalletAccount:
    return await ensure_wallet(db, user_id)


async def list_ledger(db: AsyncSession, user_id: int, limit: int = 50, offset: int = 0) -> List[WalletEntry]:
    result = await db.execute(
        select(WalletEntry)
        .where(WalletEntry.user_id == user_id)
        .order_by(WalletEntry.created_at.desc(), WalletEntry.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def _find_entry(
    db: AsyncSession,
    user_id: int,
    reason: str,
    reference_type: str,
    reference_id: str,
) -> Optional[WalletEntry]:
    result = await db.execute(
        select(WalletEntry).where(
            WalletEntry.user_id == user_id,
            WalletEntry.reason == reason,
            WalletEntry.reference_type == reference_type,
            WalletEntry.reference_id == str(reference_id),
        )
    )
    return result.scalar_one_or_none()


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: Number,
    reason: str,
    reference_type: str,
    reference_id: str,
    metadata: Optional[dict] = None,
) -> WalletEntry:
    """Add to the balance with an in-database increment. One entry per reference."""
    value = _positive(amount, "Credit")

    found = await _find_entry(db, user_id, reason, reference_type, reference_id)
    if found:
        return found

    wallet = await ensure_wallet(db, user_id)
    result = await db.execute(
        update(WalletAccount)
        .where(WalletAccount.id == wallet.id)
        .values(balance=WalletAccount.balance + value, version=WalletAccount.version + 1)
        .returning(WalletAccount.balance)
        .execution_options(synchronize_session=False)
    )
    after_balance = _money(result.scalar_one())
    before_balance = after_balance - value

    entry = WalletEntry(
        wallet_id=wallet.id,
        user_id=user_id,
        direction="credit",
        reason=reason,
        reference_type=reference_type,
        reference_id=str(reference_id),
        delta=value,
        before_balance=before_balance,
        after_balance=after_balance,
        metadata_json=metadata,
    )
    db.add(entry)
    await db.flush()
    await db.refresh(entry)
    logger.info("Wallet of user %s credited %s (%s/%s)", user_id, value, reference_type, reference_id)
    return entry


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: Number,
    reason: str,
    reference_type: str,
    reference_id: str,
    metadata: Optional[dict] = None,
) -> WalletEntry:
    """Subtract from the balance, clamping at zero instead of rejecting a shortfall.

    The entry's ``delta`` is what was actually taken; the requested amount is
    kept in metadata so shortfalls stay visible.
    """
    value = _positive(amount, "Debit")

    found = await _find_entry(db, user_id, reason, reference_type, reference_id)
    if found:
        return found

    await ensure_wallet(db, user_id)
    locked = await db.execute(
        select(WalletAccount.id, WalletAccount.balance)
        .where(WalletAccount.user_id == user_id)
        .with_for_update()
    )
    wallet_id, before = locked.one()
    before_balance = _money(before)

    result = await db.execute(
        update(WalletAccount)
        .where(WalletAccount.id == wallet_id)
        .values(
            balance=case(
                (WalletAccount.balance >= value, WalletAccount.balance - value),
                else_=ZERO,
            ),
            version=WalletAccount.version + 1,
        )
        .returning(WalletAccount.balance)
        .execution_options(synchronize_session=False)
    )
    after_balance = _money(result.scalar_one())
    applied = before_balance - after_balance
    if applied < value:
        logger.warning(
            "Debit of %s for user %s clamped to %s (balance %s)",
            value,
            user_id,
            applied,
            before_balance,
        )

    entry = WalletEntry(
        wallet_id=wallet_id,
        user_id=user_id,
        direction="debit",
        reason=reason,
        reference_type=reference_type,
        reference_id=str(reference_id),
        delta=applied,
        before_balance=before_balance,
        after_balance=after_balance,
        metadata_json={**(metadata or {}), "requested_amount": str(value)},
    )
    db.add(entry)
    await db.flush()
    await db.refresh(entry)
    return entry


async def recompute_balance(db: AsyncSession, user_id: int) -> Decimal:
    """Balance derived from the ledger: credits minus applied debits."""
    result = await db.execute(
        select(
            func.coalesce(
                func.sum(case((WalletEntry.direction == "credit", WalletEntry.delta), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((WalletEntry.direction == "debit", WalletEntry.delta), else_=0)), 0
            ),
        ).where(WalletEntry.user_id == user_id)
    )
    credits, debits = result.one()
    return _money(credits) - _money(debits)


async def reconcile_wallet(db: AsyncSession, user_id: int) -> Tuple[WalletAccount, Decimal]:
    """Rewrite the cached balance from the ledger. Returns the wallet and the drift that was fixed.

    The wallet row stays locked from before the ledger sum until commit, so a
    concurrent credit or debit either lands in the sum or waits for the rewrite.
    """
    await ensure_wallet(db, user_id)
    locked = await db.execute(
        select(WalletAccount)
        .where(WalletAccount.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    wallet = locked.scalar_one()
    expected = await recompute_balance(db, user_id)
    drift = _money(wallet.balance) - expected
    if drift != 0:
        logger.warning(
            "Wallet %s of user %s drifted by %s (cached %s, ledger %s)",
            wallet.id,
            user_id,
            drift,
            wallet.balance,
            expected,
        )
        wallet.balance = expected
        wallet.version = (wallet.version or 0) + 1
        await db.flush()
    return wallet, drift


async def reconcile_all(db: AsyncSession) -> int:
    result = await db.execute(select(WalletAccount.user_id))
    repaired = 0
    for user_id in result.scalars().all():
        _, drift = await reconcile_wallet(db, user_id)
        if drift != 0:
            repaired += 1
    return repaired
