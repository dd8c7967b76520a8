"""SQLAlchemy database models for the payment ledger."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from copytrade.database import Base
from copytrade.services.status import OutcomeKind, wire_status

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(18, 2)


def _new_payment_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """Projection of the user directory (role + enable flag)."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="USER")  # USER | ADMIN
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    wallet = relationship("WalletAccount", back_populates="user", uselist=False)
    payments = relationship(
        "PaymentIntent",
        back_populates="user",
        foreign_keys="[PaymentIntent.user_id]",
    )
    running_strategies = relationship("RunningStrategy", back_populates="user")


class Strategy(Base):
    """Projection of the strategy catalog."""

    __tablename__ = "strategies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PaymentIntent(Base):
    """One attempted payment (fresh subscription or renewal)."""

    __tablename__ = "payment_intents"

    id = Column(String(36), primary_key=True, default=_new_payment_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    strategy_id = Column(Integer, ForeignKey("strategies.id"), nullable=True)
    plan = Column(String(20), nullable=False)  # Pro | Expert | Premium | Wallet
    capital = Column(Money, nullable=False)
    payable = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    method = Column(String(20), nullable=False)  # USDT_ERC20 | USDT_TRC20 | UPI
    kind = Column(String(10), nullable=False, default="deposit")  # deposit | charge
    is_renewal = Column(Boolean, nullable=False, default=False)
    renewal_of_id = Column(String(36), ForeignKey("payment_intents.id"), nullable=True)

    outcome = Column(String(20), nullable=False, default=OutcomeKind.PENDING.value)
    failure_kind = Column(String(30), nullable=True)

    platform = Column(String(5), nullable=True)  # MT4 | MT5
    mt_account_id = Column(String(100), nullable=True)
    mt_account_password = Column(String(255), nullable=True)
    mt_account_server = Column(String(255), nullable=True)

    external_tx_id = Column(String(255), nullable=True)
    proof_url = Column(String(1000), nullable=True)
    proof_degraded = Column(Boolean, nullable=False, default=False)

    fx_rate = Column(Numeric(18, 6), nullable=True)
    secondary_amount = Column(Money, nullable=True)
    secondary_currency = Column(String(3), nullable=True)
    crypto_network = Column(String(10), nullable=True)
    pay_to_address = Column(String(255), nullable=True)

    rejection_reason = Column(Text, nullable=True)
    admin_message = Column(Text, nullable=True)
    admin_message_status = Column(String(20), nullable=True)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="payments", foreign_keys=[user_id])
    strategy = relationship("Strategy")

    __table_args__ = (
        Index("idx_payment_user_outcome", "user_id", "outcome"),
        Index("idx_payment_renewal_outcome", "is_renewal", "outcome"),
        Index("idx_payment_created", "created_at"),
    )

    @property
    def status(self) -> str:
        return wire_status(self.outcome, bool(self.is_renewal)).value


class WalletAccount(Base):
    """Cached running balance per user; the ledger is the source of truth."""

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    balance = Column(Money, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="wallet")
    entries = relationship("WalletEntry", back_populates="wallet")


class WalletEntry(Base):
    """Immutable wallet ledger entry."""

    __tablename__ = "wallet_entries"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    direction = Column(String(10), nullable=False)  # credit | debit
    reason = Column(String(50), nullable=False)
    reference_type = Column(String(50), nullable=False)
    reference_id = Column(String(255), nullable=False)
    delta = Column(Money, nullable=False)
    before_balance = Column(Money, nullable=False)
    after_balance = Column(Money, nullable=False)
    metadata_json = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    wallet = relationship("WalletAccount", back_populates="entries")

    __table_args__ = (
        UniqueConstraint("user_id", "reason", "reference_type", "reference_id", name="uq_wallet_entry_ref"),
        Index("idx_wallet_entry_user_created", "user_id", "created_at"),
    )


class RunningStrategy(Base):
    """A strategy a user is running after a successful payment."""

    __tablename__ = "running_strategies"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    strategy_id = Column(Integer, ForeignKey("strategies.id"), nullable=False)
    payment_id = Column(String(36), ForeignKey("payment_intents.id"), nullable=True)
    plan = Column(String(20), nullable=True)
    capital = Column(Money, nullable=True)
    execution_status = Column(String(40), nullable=False, default="in-process")
    platform = Column(String(5), nullable=True)
    mt_account_id = Column(String(100), nullable=True)
    mt_account_password = Column(String(255), nullable=True)
    mt_account_server = Column(String(255), nullable=True)
    activated_at = Column(DateTime, nullable=True)
    last_approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="running_strategies")
    strategy = relationship("Strategy")
    modifications = relationship("RunningStrategyModification", back_populates="running_strategy")

    __table_args__ = (
        UniqueConstraint("user_id", "strategy_id", name="uq_running_user_strategy"),
    )


class RunningStrategyModification(Base):
    """User-proposed broker account change awaiting admin action."""

    __tablename__ = "running_strategy_modifications"

    id = Column(Integer, primary_key=True, index=True)
    running_strategy_id = Column(Integer, ForeignKey("running_strategies.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    platform = Column(String(5), nullable=True)
    mt_account_id = Column(String(100), nullable=True)
    mt_account_password = Column(String(255), nullable=True)
    mt_account_server = Column(String(255), nullable=True)
    proposed_json = Column(JSONType, nullable=True)
    status = Column(String(40), nullable=False, default="in-process")
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    running_strategy = relationship("RunningStrategy", back_populates="modifications")

    __table_args__ = (
        Index("idx_modification_running_status", "running_strategy_id", "status"),
    )


class AuditLog(Base):
    """Append-only history of payment transitions and admin actions."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(255), nullable=True)
    metadata_json = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_audit_actor_created", "actor_user_id", "created_at"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )
