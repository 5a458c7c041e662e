from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


INVOICE_KIND_CASH = "CASH"
INVOICE_KIND_ON_CREDIT = "ON_CREDIT"
INVOICE_KIND_PARTIAL_UPFRONT = "PARTIAL_UPFRONT"
RECEIVABLE_INVOICE_KINDS = (INVOICE_KIND_ON_CREDIT, INVOICE_KIND_PARTIAL_UPFRONT)

INVOICE_CONFIRMED = "CONFIRMED"
INVOICE_VOIDED = "VOIDED"

ORIGIN_INVOICE = "INVOICE"
ORIGIN_COLLECTION = "COLLECTION"
ORIGIN_ADJUSTMENT = "ADJUSTMENT"
ORIGIN_CREDIT_NOTE = "CREDIT_NOTE"
ORIGIN_DEBIT_NOTE = "DEBIT_NOTE"
ORIGIN_PRIOR_BALANCE = "PRIOR_BALANCE"

APPLIES_TO_INVOICE = "INVOICE"
APPLIES_TO_CREDIT = "CREDIT"
APPLIES_TO_PRIOR_BALANCE = "PRIOR_BALANCE"

SIGN_DEBIT = 1
SIGN_CREDIT = -1


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(200), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="employee")
    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    module_access = relationship("UserModuleAccess", back_populates="user", cascade="all, delete-orphan")


class Module(Base):
    __tablename__ = "modules"

    id = Column(Integer, primary_key=True)
    key = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)


class UserModuleAccess(Base):
    __tablename__ = "user_module_access"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False)

    user = relationship("User", back_populates="module_access")
    module = relationship("Module")

    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_user_module_access"),
    )


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    document = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    invoices = relationship("Invoice", back_populates="client")
    collections = relationship("Collection", back_populates="client")


class Seller(Base):
    __tablename__ = "sellers"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("sellers.id"), nullable=True)
    invoice_date = Column(Date, nullable=False)
    kind = Column(
        Enum(INVOICE_KIND_CASH, INVOICE_KIND_ON_CREDIT, INVOICE_KIND_PARTIAL_UPFRONT, name="invoice_kind"),
        nullable=False,
        default=INVOICE_KIND_ON_CREDIT,
    )
    status = Column(
        Enum(INVOICE_CONFIRMED, INVOICE_VOIDED, name="invoice_status"),
        nullable=False,
        default=INVOICE_CONFIRMED,
    )
    total = Column(Numeric(14, 2), nullable=False, default=0)
    amount_settled = Column(Numeric(14, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    client = relationship("Client", back_populates="invoices")
    seller = relationship("Seller")
    lines = relationship("InvoiceLine", back_populates="invoice", cascade="all, delete-orphan")
    allocations = relationship("Allocation", back_populates="invoice")

    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_invoices_total_non_negative"),
        CheckConstraint("amount_settled >= 0", name="ck_invoices_settled_non_negative"),
        Index("idx_invoices_client_date", "client_id", "invoice_date", "id"),
    )

    @property
    def is_receivable(self) -> bool:
        return self.status == INVOICE_CONFIRMED and self.kind in RECEIVABLE_INVOICE_KINDS


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(14, 2), nullable=False, default=1)
    unit_price = Column(Numeric(14, 2), nullable=False)
    line_total = Column(Numeric(14, 2), nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="lines")


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    entry_date = Column(Date, nullable=False)
    sign = Column(SmallInteger, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    origin_kind = Column(
        Enum(
            ORIGIN_INVOICE,
            ORIGIN_COLLECTION,
            ORIGIN_ADJUSTMENT,
            ORIGIN_CREDIT_NOTE,
            ORIGIN_DEBIT_NOTE,
            ORIGIN_PRIOR_BALANCE,
            name="ledger_origin_kind",
        ),
        nullable=False,
    )
    origin_id = Column(Integer, nullable=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    client = relationship("Client")

    __table_args__ = (
        UniqueConstraint("origin_kind", "origin_id", name="uq_ledger_origin"),
        CheckConstraint("sign IN (1, -1)", name="ck_ledger_sign"),
        CheckConstraint("amount >= 0", name="ck_ledger_amount_non_negative"),
        Index("idx_ledger_client_date", "client_id", "entry_date"),
    )

    @property
    def signed_amount(self) -> Decimal:
        return Decimal(self.amount or 0) * self.sign


class Collection(Base):
    __tablename__ = "collections"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("sellers.id"), nullable=True)
    collection_date = Column(Date, nullable=False)
    total_collected = Column(Numeric(14, 2), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    client = relationship("Client", back_populates="collections")
    seller = relationship("Seller")
    allocations = relationship(
        "Allocation",
        back_populates="collection",
        cascade="all, delete-orphan",
        order_by="Allocation.id",
    )

    __table_args__ = (
        CheckConstraint("total_collected > 0", name="ck_collections_total_positive"),
    )


class Allocation(Base):
    __tablename__ = "allocations"

    id = Column(Integer, primary_key=True)
    collection_id = Column(Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    amount_applied = Column(Numeric(14, 2), nullable=False)
    applies_to = Column(String(20), nullable=False, default=APPLIES_TO_INVOICE)

    collection = relationship("Collection", back_populates="allocations")
    invoice = relationship("Invoice", back_populates="allocations")

    __table_args__ = (
        CheckConstraint("amount_applied > 0", name="ck_allocations_amount_positive"),
        CheckConstraint(
            "(invoice_id IS NOT NULL AND applies_to = 'INVOICE') "
            "OR (invoice_id IS NULL AND applies_to IN ('CREDIT', 'PRIOR_BALANCE'))",
            name="ck_allocations_applies_to",
        ),
        Index("idx_allocations_invoice", "invoice_id"),
        Index("idx_allocations_null_applies_to", "invoice_id", "applies_to", "collection_id"),
    )
