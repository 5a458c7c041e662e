"""cached settled amount on invoices

Backfilled from the allocation table, which stays the source of truth.

Revision ID: 0005_invoice_amount_settled
Revises: 0004_allocation_applies_to
Create Date: 2026-01-12 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = "0005_invoice_amount_settled"
down_revision = "0004_allocation_applies_to"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("invoices") as batch_op:
        batch_op.add_column(
            sa.Column("amount_settled", sa.Numeric(14, 2), nullable=False, server_default="0")
        )

    op.execute(
        """
        UPDATE invoices
        SET amount_settled = COALESCE(
            (
                SELECT SUM(a.amount_applied)
                FROM allocations a
                WHERE a.invoice_id = invoices.id AND a.applies_to = 'INVOICE'
            ),
            0
        )
        """
    )

    with op.batch_alter_table("invoices") as batch_op:
        batch_op.create_check_constraint("ck_invoices_settled_non_negative", "amount_settled >= 0")


def downgrade() -> None:
    with op.batch_alter_table("invoices") as batch_op:
        batch_op.drop_constraint("ck_invoices_settled_non_negative", type_="check")
        batch_op.drop_column("amount_settled")
