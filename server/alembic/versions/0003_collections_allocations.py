"""collections and their allocations

Revision ID: 0003_collections_allocations
Revises: 0002_invoices_and_ledger
Create Date: 2025-09-10 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = "0003_collections_allocations"
down_revision = "0002_invoices_and_ledger"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "collections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("sellers.id")),
        sa.Column("collection_date", sa.Date(), nullable=False),
        sa.Column("total_collected", sa.Numeric(14, 2), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("total_collected > 0", name="ck_collections_total_positive"),
    )
    op.create_index("ix_collections_client_id", "collections", ["client_id"])
    # null invoice_id means the money was banked as credit
    op.create_table(
        "allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "collection_id",
            sa.Integer(),
            sa.ForeignKey("collections.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id")),
        sa.Column("amount_applied", sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint("amount_applied > 0", name="ck_allocations_amount_positive"),
    )
    op.create_index("ix_allocations_collection_id", "allocations", ["collection_id"])
    op.create_index("idx_allocations_invoice", "allocations", ["invoice_id"])


def downgrade() -> None:
    op.drop_index("idx_allocations_invoice", table_name="allocations")
    op.drop_index("ix_allocations_collection_id", table_name="allocations")
    op.drop_table("allocations")
    op.drop_index("ix_collections_client_id", table_name="collections")
    op.drop_table("collections")
