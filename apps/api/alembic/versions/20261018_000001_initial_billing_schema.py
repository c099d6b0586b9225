"""initial billing schema: accounts, ledger journal, recharges, consumption, grants

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "accounts",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("frozen_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        sa.CheckConstraint("frozen_balance >= 0", name="ck_accounts_frozen_balance_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "ledger_operations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ledger_operations_idempotency_key", "ledger_operations", ["idempotency_key"], unique=True)
    op.create_index("ix_ledger_operations_user_id", "ledger_operations", ["user_id"], unique=False)
    op.create_index("ix_ledger_operations_reference_id", "ledger_operations", ["reference_id"], unique=False)
    op.create_index("ix_ledger_operations_created_at", "ledger_operations", ["created_at"], unique=False)

    op.create_table(
        "recharge_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("payment_id", sa.String(), nullable=True),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recharge_records_user_id", "recharge_records", ["user_id"], unique=False)
    op.create_index("ix_recharge_records_status", "recharge_records", ["status"], unique=False)
    op.create_index("ix_recharge_records_payment_id", "recharge_records", ["payment_id"], unique=False)
    op.create_index("ix_recharge_records_created_at", "recharge_records", ["created_at"], unique=False)

    op.create_table(
        "consumption_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("product_type", sa.String(), nullable=False),
        sa.Column("product_id", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_consumption_records_user_id", "consumption_records", ["user_id"], unique=False)
    op.create_index("ix_consumption_records_product_type", "consumption_records", ["product_type"], unique=False)
    op.create_index("ix_consumption_records_product_id", "consumption_records", ["product_id"], unique=False)
    op.create_index("ix_consumption_records_created_at", "consumption_records", ["created_at"], unique=False)

    op.create_table(
        "withdrawal_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("withdrawal_method", sa.String(), nullable=False),
        sa.Column("withdrawal_address", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_withdrawal_records_user_id", "withdrawal_records", ["user_id"], unique=False)
    op.create_index("ix_withdrawal_records_status", "withdrawal_records", ["status"], unique=False)
    op.create_index("ix_withdrawal_records_created_at", "withdrawal_records", ["created_at"], unique=False)

    op.create_table(
        "artifacts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("artifact_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("file_url", sa.String(), nullable=True),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_artifacts_owner_id", "artifacts", ["owner_id"], unique=False)
    op.create_index("ix_artifacts_artifact_type", "artifacts", ["artifact_type"], unique=False)
    op.create_index("ix_artifacts_status", "artifacts", ["status"], unique=False)

    op.create_table(
        "artifact_grants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("artifact_id", sa.String(), nullable=False),
        sa.Column("artifact_type", sa.String(), nullable=False),
        sa.Column("price_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("consumption_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["artifact_id"], ["artifacts.id"]),
        sa.ForeignKeyConstraint(["consumption_id"], ["consumption_records.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "artifact_id", name="uq_artifact_grants_user_artifact"),
    )
    op.create_index("ix_artifact_grants_user_id", "artifact_grants", ["user_id"], unique=False)
    op.create_index("ix_artifact_grants_artifact_id", "artifact_grants", ["artifact_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_artifact_grants_artifact_id", table_name="artifact_grants")
    op.drop_index("ix_artifact_grants_user_id", table_name="artifact_grants")
    op.drop_table("artifact_grants")

    op.drop_index("ix_artifacts_status", table_name="artifacts")
    op.drop_index("ix_artifacts_artifact_type", table_name="artifacts")
    op.drop_index("ix_artifacts_owner_id", table_name="artifacts")
    op.drop_table("artifacts")

    op.drop_index("ix_withdrawal_records_created_at", table_name="withdrawal_records")
    op.drop_index("ix_withdrawal_records_status", table_name="withdrawal_records")
    op.drop_index("ix_withdrawal_records_user_id", table_name="withdrawal_records")
    op.drop_table("withdrawal_records")

    op.drop_index("ix_consumption_records_created_at", table_name="consumption_records")
    op.drop_index("ix_consumption_records_product_id", table_name="consumption_records")
    op.drop_index("ix_consumption_records_product_type", table_name="consumption_records")
    op.drop_index("ix_consumption_records_user_id", table_name="consumption_records")
    op.drop_table("consumption_records")

    op.drop_index("ix_recharge_records_created_at", table_name="recharge_records")
    op.drop_index("ix_recharge_records_payment_id", table_name="recharge_records")
    op.drop_index("ix_recharge_records_status", table_name="recharge_records")
    op.drop_index("ix_recharge_records_user_id", table_name="recharge_records")
    op.drop_table("recharge_records")

    op.drop_index("ix_ledger_operations_created_at", table_name="ledger_operations")
    op.drop_index("ix_ledger_operations_reference_id", table_name="ledger_operations")
    op.drop_index("ix_ledger_operations_user_id", table_name="ledger_operations")
    op.drop_index("ix_ledger_operations_idempotency_key", table_name="ledger_operations")
    op.drop_table("ledger_operations")

    op.drop_table("accounts")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
