import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from copytrade.core.exceptions import (
    AuthorizationError,
    PaymentConflictError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from copytrade.database import AsyncSessionLocal, Base
from copytrade.models import PaymentIntent, Strategy, User
from copytrade.schemas import PaymentCreateRequest
from copytrade.services import (
    audit_service,
    intake_service,
    running_strategy_service,
    storage_service,
    verification_service,
    wallet_service,
)
from copytrade.services.status import ClientTerminalStatus, validity_label

RATE = Decimal("83")


def _payload(strategy, **overrides):
    body = dict(
        strategy_id=strategy.id,
        plan="Pro",
        capital="1500",
        payable="255.00",
        method="UPI",
        mt4mt5={"type": "MT5", "id": "5001234", "password": "s3cret", "server": "Broker-Live"},
    )
    body.update(overrides)
    return PaymentCreateRequest(**body)


async def _chunks(data):
    yield data


async def _submit(db, user, intent, tx_id="UTR-001"):
    key = storage_service.new_proof_key(user.id, intent.id)
    await storage_service.save_proof_stream(_chunks(b"%PDF-receipt"), key)
    return await intake_service.attach_proof(db, user, intent.id, tx_id, storage_service.proof_url_for(key))


async def test_fresh_payment_approval_credits_wallet_once(db, user, admin, strategy):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    assert intent.status == "pending"
    assert intent.payable == Decimal("255.00")
    assert intent.secondary_amount == Decimal("21165.00")

    await _submit(db, user, intent)
    assert intent.status == "in_process"
    assert intent.external_tx_id == "UTR-001"
    assert not intent.proof_degraded

    await verification_service.approve_payment(db, intent.id, admin)
    await db.commit()

    assert intent.status == "completed"
    assert intent.verified_by == admin.id
    wallet = await wallet_service.get_wallet(db, user.id)
    assert wallet.balance == Decimal("255.00")

    with pytest.raises(PaymentConflictError):
        await verification_service.approve_payment(db, intent.id, admin)
    with pytest.raises(PaymentConflictError):
        await verification_service.reject_payment(db, intent.id, admin, "late")

    wallet = await wallet_service.get_wallet(db, user.id)
    assert wallet.balance == Decimal("255.00")
    assert len(await wallet_service.list_ledger(db, user.id)) == 1

    running = await running_strategy_service.list_for_user(db, user.id)
    assert len(running) == 1
    rs, name = running[0]
    assert name == "Trend Rider"
    assert rs.execution_status == "in-process"
    assert rs.mt_account_id == "5001234"

    actions = [row.action for row in await audit_service.list_for_entity(db, "payment", intent.id)]
    assert actions == ["payment.created", "payment.proof_attached", "payment.approved"]


async def test_payable_mismatch_and_disabled_strategy(db, user, strategy):
    with pytest.raises(PaymentValidationError):
        await intake_service.create_intent(db, user, _payload(strategy, payable="250.00"), RATE)

    strategy.is_enabled = False
    await db.commit()
    with pytest.raises(PaymentValidationError):
        await intake_service.create_intent(db, user, _payload(strategy), RATE)


async def test_reject_requires_reason_and_keeps_first_reason(db, user, admin, strategy):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    await _submit(db, user, intent)

    with pytest.raises(PaymentValidationError):
        await verification_service.reject_payment(db, intent.id, admin, "   ")

    await verification_service.reject_payment(db, intent.id, admin, "Transaction not found")
    await db.commit()
    assert intent.status == "failed"

    with pytest.raises(PaymentConflictError):
        await verification_service.reject_payment(db, intent.id, admin, "Second reason")
    await db.refresh(intent)
    assert intent.rejection_reason == "Transaction not found"
    assert (await wallet_service.get_wallet(db, user.id)).balance == Decimal("0.00")


async def test_non_admin_cannot_verify(db, user, strategy):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    with pytest.raises(AuthorizationError):
        await verification_service.approve_payment(db, intent.id, user)


async def test_renewal_approval_extends_validity_without_credit(db, user, admin, strategy):
    fresh = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    await _submit(db, user, fresh)
    await verification_service.approve_payment(db, fresh.id, admin)
    await db.commit()

    renewal = await intake_service.create_intent(
        db,
        user,
        _payload(strategy, is_renewal=True, renewal_of_id=fresh.id, mt4mt5=None),
        RATE,
    )
    assert renewal.status == "renewal_pending"
    await _submit(db, user, renewal, tx_id="UTR-002")
    assert renewal.status == "renewal_pending"

    await verification_service.approve_payment(db, renewal.id, admin)
    await db.commit()

    assert renewal.status == "renewal_approved"
    assert validity_label(renewal.approved_at) == "Active"
    assert len(await wallet_service.list_ledger(db, user.id)) == 1
    rs, _ = (await running_strategy_service.list_for_user(db, user.id))[0]
    assert rs.payment_id == renewal.id
    assert rs.last_approved_at == renewal.approved_at


async def test_renewal_must_reference_own_approved_payment(db, user, other_user, strategy):
    pending = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    with pytest.raises(PaymentValidationError):
        await intake_service.create_intent(
            db, user, _payload(strategy, is_renewal=True, renewal_of_id=pending.id), RATE
        )
    with pytest.raises(PaymentValidationError):
        await intake_service.create_intent(
            db, other_user, _payload(strategy, is_renewal=True, renewal_of_id=pending.id), RATE
        )
    with pytest.raises(PaymentValidationError):
        await intake_service.create_intent(db, user, _payload(strategy, renewal_of_id=pending.id), RATE)


async def test_client_termination_is_idempotent(db, user, other_user, strategy):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)

    with pytest.raises(PaymentNotFoundError):
        await intake_service.mark_terminal_client_side(db, other_user, intent.id, ClientTerminalStatus.EXPIRED)

    await intake_service.mark_terminal_client_side(db, user, intent.id, ClientTerminalStatus.EXPIRED)
    await intake_service.mark_terminal_client_side(db, user, intent.id, ClientTerminalStatus.CANCELLED)
    await db.commit()

    assert intent.status == "failed"
    assert intent.failure_kind == "expired"

    with pytest.raises(PaymentConflictError):
        await _submit(db, user, intent)


async def test_proof_must_belong_to_payment(db, user, other_user, strategy):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    other = await intake_service.create_intent(db, user, _payload(strategy), RATE)

    foreign_key = storage_service.new_proof_key(other_user.id, intent.id)
    await storage_service.save_proof_stream(_chunks(b"x"), foreign_key)
    with pytest.raises(PaymentValidationError):
        await intake_service.attach_proof(db, user, intent.id, "T1", storage_service.proof_url_for(foreign_key))

    wrong_payment = storage_service.new_proof_key(user.id, other.id)
    await storage_service.save_proof_stream(_chunks(b"x"), wrong_payment)
    with pytest.raises(PaymentValidationError):
        await intake_service.attach_proof(db, user, intent.id, "T1", storage_service.proof_url_for(wrong_payment))

    with pytest.raises(PaymentValidationError):
        await intake_service.attach_proof(db, user, intent.id, "T1", None)


async def test_unverified_proof_mode(db, user, strategy, monkeypatch):
    monkeypatch.setattr(intake_service.settings, "ALLOW_UNVERIFIED_PROOF", True)
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)

    await intake_service.attach_proof(db, user, intent.id, "UTR-9", None)

    assert intent.status == "in_process"
    assert intent.proof_degraded
    assert intent.proof_url is None


async def test_concurrent_verifications_apply_once(db, user, admin, strategy):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    await _submit(db, user, intent)
    await db.commit()

    async with AsyncSessionLocal() as first, AsyncSessionLocal() as second:
        # both sessions hold a pre-verification copy
        await first.get(type(intent), intent.id)
        await second.get(type(intent), intent.id)

        await verification_service.approve_payment(first, intent.id, admin)
        await first.commit()

        with pytest.raises(PaymentConflictError):
            await verification_service.reject_payment(second, intent.id, admin, "duplicate")
        await second.rollback()

    await db.refresh(intent)
    assert intent.status == "completed"
    assert intent.rejection_reason is None
    assert (await wallet_service.get_wallet(db, user.id)).balance == Decimal("255.00")


async def test_admin_status_form_follows_allow_list(db, user, admin, strategy):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)

    with pytest.raises(PaymentValidationError):
        await verification_service.apply_admin_status(db, intent.id, admin, "renewal_approved")
    with pytest.raises(PaymentValidationError):
        await verification_service.apply_admin_status(db, intent.id, admin, "shipped")

    await verification_service.apply_admin_status(db, intent.id, admin, "in-process", "Checking with bank")
    assert intent.status == "in_process"
    assert intent.admin_message == "Checking with bank"

    await verification_service.apply_admin_status(db, intent.id, admin, "approved")
    await db.commit()
    assert intent.status == "completed"


async def test_expire_stale_intents(db, user, strategy):
    stale = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    submitted = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    await _submit(db, user, submitted)
    await db.commit()

    expired = await intake_service.expire_stale_intents(db, now=datetime.utcnow() + timedelta(hours=1))
    await db.commit()

    assert expired == [stale.id]
    await db.refresh(stale)
    await db.refresh(submitted)
    assert stale.failure_kind == "expired"
    assert submitted.status == "in_process"
    assert await intake_service.expire_stale_intents(db) == []


async def test_charge_approval_debits_wallet(db, user, admin, strategy):
    await wallet_service.credit(db, user.id, "500", "manual_adjustment", "admin", "seed-1")
    intent = await intake_service.create_intent(db, user, _payload(strategy, kind="charge"), RATE)
    await _submit(db, user, intent)

    await verification_service.approve_payment(db, intent.id, admin)
    await db.commit()

    wallet = await wallet_service.get_wallet(db, user.id)
    assert wallet.balance == Decimal("245.00")
    debits = [e for e in await wallet_service.list_ledger(db, user.id) if e.direction == "debit"]
    assert len(debits) == 1
    assert debits[0].delta == Decimal("255.00")
    assert debits[0].reason == verification_service.CHARGE_REASON
    assert debits[0].reference_id == intent.id


async def test_failed_credit_leaves_payment_in_process(db, user, admin, strategy, monkeypatch):
    intent = await intake_service.create_intent(db, user, _payload(strategy), RATE)
    await _submit(db, user, intent)
    await db.commit()

    async def broken_credit(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(wallet_service, "credit", broken_credit)

    async with AsyncSessionLocal() as session:
        with pytest.raises(RuntimeError):
            await verification_service.approve_payment(session, intent.id, admin)
        await session.rollback()

    async with AsyncSessionLocal() as session:
        stored = await session.get(PaymentIntent, intent.id)
        assert stored.outcome == "in_process"
        assert stored.status == "in_process"
        assert stored.approved_at is None
        assert stored.verified_by is None
        assert await wallet_service.list_ledger(session, user.id) == []
        assert await running_strategy_service.list_for_user(session, user.id) == []


async def test_parallel_approvals_credit_once(tmp_path):
    race_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 15},
    )

    @event.listens_for(race_engine.sync_engine, "connect")
    def _manual_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(race_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        # writers queue on the database lock, like row locks on a server
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    sessions = async_sessionmaker(race_engine, expire_on_commit=False)
    try:
        async with race_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with sessions() as setup:
            user = User(email="racer@example.com", name="racer", role="USER", is_active=True)
            admin = User(email="boss@example.com", name="boss", role="ADMIN", is_active=True)
            strategy = Strategy(name="Trend Rider", is_enabled=True)
            setup.add_all([user, admin, strategy])
            await setup.commit()
            intent = await intake_service.create_intent(setup, user, _payload(strategy), RATE)
            await _submit(setup, user, intent)
            await setup.commit()

        async def approve():
            async with sessions() as session:
                try:
                    await verification_service.approve_payment(session, intent.id, admin)
                    await session.commit()
                    return "approved"
                except PaymentConflictError:
                    await session.rollback()
                    return "conflict"

        outcomes = await asyncio.gather(approve(), approve())

        async with sessions() as check:
            balance = (await wallet_service.get_wallet(check, user.id)).balance
            entries = await wallet_service.list_ledger(check, user.id)
            await check.commit()
    finally:
        await race_engine.dispose()

    assert sorted(outcomes) == ["approved", "conflict"]
    assert balance == Decimal("255.00")
    assert len(entries) == 1
