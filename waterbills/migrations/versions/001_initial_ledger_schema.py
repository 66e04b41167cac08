"""Initial schema: water bills, credit ledgers, ledger transactions, cache, audit log.

Revision ID: 001_initial_ledger_schema
Revises:
Create Date: 2025-08-01 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


def upgrade() -> None:
    # Create bills table
    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column(
            "period_id",
            sa.String(length=7),
            nullable=False,
            comment="Fiscal period id 'YYYY-MM' (MM = fiscal month 00-11)",
        ),
        sa.Column("unit_id", sa.String(length=32), nullable=False),
        sa.Column("base_charge_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("penalty_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("paid_base_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("paid_penalty_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum("UNPAID", "PARTIAL", "PAID", name="billstatus"),
            nullable=False,
        ),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("penalty_applied", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("last_penalty_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "fiscal_year", "period_id", "unit_id", name="uq_bill_key"),
        sa.Index("ix_bills_client_id", "client_id"),
        sa.Index("ix_bills_unit_id", "unit_id"),
        sa.Index("idx_bill_client_unit", "client_id", "unit_id"),
        sa.Index("idx_bill_client_year", "client_id", "fiscal_year"),
    )

    # Create bill_payments table
    op.create_table(
        "bill_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.Column("base_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("penalty_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("penalty_before_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("penalty_after_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_bill_payments_bill_id", "bill_id"),
        sa.Index("ix_bill_payments_transaction_id", "transaction_id"),
    )

    # Create credit_ledgers table
    op.create_table(
        "credit_ledgers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("unit_id", sa.String(length=32), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("balance_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "unit_id", "fiscal_year", name="uq_credit_ledger_key"),
    )

    # Create credit_history_entries table
    op.create_table(
        "credit_history_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.String(length=64), nullable=False),
        sa.Column("ledger_id", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("delta_cents", sa.BigInteger(), nullable=False),
        sa.Column("resulting_balance_cents", sa.BigInteger(), nullable=False),
        sa.Column("transaction_id", sa.String(length=64), nullable=True),
        sa.Column("reason", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("source", sa.String(length=50), nullable=False, server_default="waterBills"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["ledger_id"], ["credit_ledgers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id"),
        sa.Index("ix_credit_history_entries_ledger_id", "ledger_id"),
        sa.Index("ix_credit_history_entries_transaction_id", "transaction_id"),
        sa.Index("idx_credit_entry_ledger_seq", "ledger_id", "sequence"),
    )

    # Create ledger_transactions table
    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("unit_id", sa.String(length=32), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("credit_used_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("credit_created_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("credit_fiscal_year", sa.Integer(), nullable=False),
        sa.Column(
            "credit_history_refs",
            sa.JSON(),
            nullable=False,
            comment="Entry ids of credit history entries created by this payment",
        ),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=False, server_default="cash"),
        sa.Column("reference", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("notes", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("description", sa.String(length=255), nullable=False, server_default=""),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
        sa.Index("ix_ledger_transactions_client_id", "client_id"),
        sa.Index("ix_ledger_transactions_unit_id", "unit_id"),
    )

    # Create transaction_allocations table
    op.create_table(
        "transaction_allocations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_pk", sa.Integer(), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.String(length=7), nullable=False),
        sa.Column("base_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("penalty_cents", sa.BigInteger(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["transaction_pk"], ["ledger_transactions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_transaction_allocations_transaction_pk", "transaction_pk"),
    )

    # Create aggregation cache tables
    op.create_table(
        "aggregated_views",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("last_recomputed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "fiscal_year", name="uq_aggregated_view_key"),
    )
    op.create_table(
        "aggregated_view_cells",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.String(length=7), nullable=False),
        sa.Column("unit_id", sa.String(length=32), nullable=False),
        sa.Column("display_due_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("display_penalty_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("unpaid_base_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("recomputed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "client_id", "fiscal_year", "period_id", "unit_id", name="uq_aggregated_view_cell"
        ),
    )

    # Create audit_logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_audit_logs_client_id", "client_id"),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("aggregated_view_cells")
    op.drop_table("aggregated_views")
    op.drop_table("transaction_allocations")
    op.drop_table("ledger_transactions")
    op.drop_table("credit_history_entries")
    op.drop_table("credit_ledgers")
    op.drop_table("bill_payments")
    op.drop_table("bills")
