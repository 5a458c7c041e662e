"""allocation target discriminator

Null-invoice allocations written before this revision were always banked
credit, so they are backfilled as CREDIT.

Revision ID: 0004_allocation_applies_to
Revises: 0003_collections_allocations
Create Date: 2025-11-18 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = "0004_allocation_applies_to"
down_revision = "0003_collections_allocations"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("allocations") as batch_op:
        batch_op.add_column(sa.Column("applies_to", sa.String(length=20), nullable=True))

    op.execute("UPDATE allocations SET applies_to = 'INVOICE' WHERE invoice_id IS NOT NULL")
    op.execute("UPDATE allocations SET applies_to = 'CREDIT' WHERE invoice_id IS NULL")

    with op.batch_alter_table("allocations") as batch_op:
        batch_op.alter_column(
            "applies_to",
            existing_type=sa.String(length=20),
            nullable=False,
            server_default="INVOICE",
        )
        batch_op.create_check_constraint(
            "ck_allocations_applies_to",
            "(invoice_id IS NOT NULL AND applies_to = 'INVOICE') "
            "OR (invoice_id IS NULL AND applies_to IN ('CREDIT', 'PRIOR_BALANCE'))",
        )
    op.create_index(
        "idx_allocations_null_applies_to",
        "allocations",
        ["invoice_id", "applies_to", "collection_id"],
    )


def downgrade() -> None:
    op.drop_index("idx_allocations_null_applies_to", table_name="allocations")
    with op.batch_alter_table("allocations") as batch_op:
        batch_op.drop_constraint("ck_allocations_applies_to", type_="check")
        batch_op.drop_column("applies_to")
