"""invoices, invoice lines and the client ledger

Revision ID: 0002_invoices_and_ledger
Revises: 0001_initial
Create Date: 2025-09-03 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = "0002_invoices_and_ledger"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("sellers.id")),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("CASH", "ON_CREDIT", "PARTIAL_UPFRONT", name="invoice_kind"),
            nullable=False,
        ),
        sa.Column("status", sa.Enum("CONFIRMED", "VOIDED", name="invoice_status"), nullable=False),
        sa.Column("total", sa.Numeric(14, 2), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("total >= 0", name="ck_invoices_total_non_negative"),
    )
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])
    op.create_index("idx_invoices_client_date", "invoices", ["client_id", "invoice_date", "id"])
    op.create_table(
        "invoice_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("quantity", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(14, 2), nullable=False),
    )
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("sign", sa.SmallInteger(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column(
            "origin_kind",
            sa.Enum(
                "INVOICE",
                "COLLECTION",
                "ADJUSTMENT",
                "CREDIT_NOTE",
                "DEBIT_NOTE",
                "PRIOR_BALANCE",
                name="ledger_origin_kind",
            ),
            nullable=False,
        ),
        sa.Column("origin_id", sa.Integer()),
        sa.Column("description", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("origin_kind", "origin_id", name="uq_ledger_origin"),
        sa.CheckConstraint("sign IN (1, -1)", name="ck_ledger_sign"),
        sa.CheckConstraint("amount >= 0", name="ck_ledger_amount_non_negative"),
    )
    op.create_index("idx_ledger_client_date", "ledger_entries", ["client_id", "entry_date"])


def downgrade() -> None:
    op.drop_index("idx_ledger_client_date", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_table("invoice_lines")
    op.drop_index("idx_invoices_client_date", table_name="invoices")
    op.drop_index("ix_invoices_client_id", table_name="invoices")
    op.drop_table("invoices")
    sa.Enum(name="ledger_origin_kind").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="invoice_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="invoice_kind").drop(op.get_bind(), checkfirst=True)
