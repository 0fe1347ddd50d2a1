"""Add loan harmonization columns and idempotency keys.

Revision ID: 001
Revises:
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


_LOAN_COLUMNS = [
    ("calculated_outstanding_balance", sa.Numeric(15, 2)),
    ("corrected_interest_rate", sa.Numeric(7, 4)),
    ("days_in_arrears", sa.Integer()),
    ("schedule_consistent", sa.Boolean()),
    ("total_scheduled_amount", sa.Numeric(15, 2)),
    ("total_paid_amount", sa.Numeric(15, 2)),
    ("last_payment_date", sa.Date()),
    ("next_payment_date", sa.Date()),
    ("next_repayment_amount", sa.Numeric(15, 2)),
    ("loan_product_snapshot", sa.JSON()),
    ("grace_period_days", sa.Integer()),
    ("grace_period_type", sa.String(20)),
    ("migration_status", sa.String(20)),
    ("migration_date", sa.DateTime(timezone=True)),
    ("migration_notes", sa.Text()),
    ("harmonized_at", sa.DateTime(timezone=True)),
]


def upgrade() -> None:
    for name, type_ in _LOAN_COLUMNS:
        op.add_column("loans", sa.Column(name, type_, nullable=True))
    op.create_index("ix_loans_migration_status", "loans", ["migration_status"])

    op.create_unique_constraint(
        "uq_je_reference", "journal_entries", ["reference_type", "reference_id"]
    )
    op.create_unique_constraint(
        "uq_transaction_loan_external", "transactions", ["loan_id", "external_transaction_id"]
    )


def downgrade() -> None:
    op.drop_constraint("uq_transaction_loan_external", "transactions", type_="unique")
    op.drop_constraint("uq_je_reference", "journal_entries", type_="unique")
    op.drop_index("ix_loans_migration_status", table_name="loans")
    for name, _ in reversed(_LOAN_COLUMNS):
        op.drop_column("loans", name)
