"""Payment ledger schema (users, strategies, intents, wallet, running strategies, audit)

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="USER"),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "strategies",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=True, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )

    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("strategy_id", sa.Integer(), sa.ForeignKey("strategies.id"), nullable=True),
        sa.Column("plan", sa.String(length=20), nullable=False),
        sa.Column("capital", sa.Numeric(18, 2), nullable=False),
        sa.Column("payable", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("kind", sa.String(length=10), nullable=False, server_default="deposit"),
        sa.Column("is_renewal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("renewal_of_id", sa.String(length=36), sa.ForeignKey("payment_intents.id"), nullable=True),
        sa.Column("outcome", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("failure_kind", sa.String(length=30), nullable=True),
        sa.Column("platform", sa.String(length=5), nullable=True),
        sa.Column("mt_account_id", sa.String(length=100), nullable=True),
        sa.Column("mt_account_password", sa.String(length=255), nullable=True),
        sa.Column("mt_account_server", sa.String(length=255), nullable=True),
        sa.Column("external_tx_id", sa.String(length=255), nullable=True),
        sa.Column("proof_url", sa.String(length=1000), nullable=True),
        sa.Column("proof_degraded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("fx_rate", sa.Numeric(18, 6), nullable=True),
        sa.Column("secondary_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("secondary_currency", sa.String(length=3), nullable=True),
        sa.Column("crypto_network", sa.String(length=10), nullable=True),
        sa.Column("pay_to_address", sa.String(length=255), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("admin_message", sa.Text(), nullable=True),
        sa.Column("admin_message_status", sa.String(length=20), nullable=True),
        sa.Column("verified_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index("idx_payment_user_outcome", "payment_intents", ["user_id", "outcome"], unique=False)
    op.create_index("idx_payment_renewal_outcome", "payment_intents", ["is_renewal", "outcome"], unique=False)
    op.create_index("idx_payment_created", "payment_intents", ["created_at"], unique=False)

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("balance", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )

    op.create_table(
        "wallet_entries",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("reason", sa.String(length=50), nullable=False),
        sa.Column("reference_type", sa.String(length=50), nullable=False),
        sa.Column("reference_id", sa.String(length=255), nullable=False),
        sa.Column("delta", sa.Numeric(18, 2), nullable=False),
        sa.Column("before_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("after_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "reason", "reference_type", "reference_id", name="uq_wallet_entry_ref"),
    )
    op.create_index("idx_wallet_entry_user_created", "wallet_entries", ["user_id", "created_at"], unique=False)

    op.create_table(
        "running_strategies",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("strategy_id", sa.Integer(), sa.ForeignKey("strategies.id"), nullable=False),
        sa.Column("payment_id", sa.String(length=36), sa.ForeignKey("payment_intents.id"), nullable=True),
        sa.Column("plan", sa.String(length=20), nullable=True),
        sa.Column("capital", sa.Numeric(18, 2), nullable=True),
        sa.Column("execution_status", sa.String(length=40), nullable=False, server_default="in-process"),
        sa.Column("platform", sa.String(length=5), nullable=True),
        sa.Column("mt_account_id", sa.String(length=100), nullable=True),
        sa.Column("mt_account_password", sa.String(length=255), nullable=True),
        sa.Column("mt_account_server", sa.String(length=255), nullable=True),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("last_approved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "strategy_id", name="uq_running_user_strategy"),
    )

    op.create_table(
        "running_strategy_modifications",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("running_strategy_id", sa.Integer(), sa.ForeignKey("running_strategies.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("platform", sa.String(length=5), nullable=True),
        sa.Column("mt_account_id", sa.String(length=100), nullable=True),
        sa.Column("mt_account_password", sa.String(length=255), nullable=True),
        sa.Column("mt_account_server", sa.String(length=255), nullable=True),
        sa.Column("proposed_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="in-process"),
        sa.Column("resolved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_modification_running_status",
        "running_strategy_modifications",
        ["running_strategy_id", "status"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index("idx_audit_actor_created", "audit_logs", ["actor_user_id", "created_at"], unique=False)
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_audit_entity", table_name="audit_logs")
    op.drop_index("idx_audit_actor_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_modification_running_status", table_name="running_strategy_modifications")
    op.drop_table("running_strategy_modifications")
    op.drop_table("running_strategies")
    op.drop_index("idx_wallet_entry_user_created", table_name="wallet_entries")
    op.drop_table("wallet_entries")
    op.drop_table("wallets")
    op.drop_index("idx_payment_created", table_name="payment_intents")
    op.drop_index("idx_payment_renewal_outcome", table_name="payment_intents")
    op.drop_index("idx_payment_user_outcome", table_name="payment_intents")
    op.drop_table("payment_intents")
    op.drop_table("strategies")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
