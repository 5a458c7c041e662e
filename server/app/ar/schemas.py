from datetime import date, datetime
from decimal import Decimal
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, condecimal, field_validator


DecimalValue = condecimal(max_digits=14, decimal_places=2)

T = TypeVar("T")


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class Page(BaseModel, Generic[T]):
    data: List[T]
    meta: PageMeta


# Collections

class AllocationIn(BaseModel):
    invoice_id: Optional[int] = Field(None, gt=0)
    amount: DecimalValue = Field(..., ge=0)
    applies_to: Optional[str] = Field(None, max_length=20)


class CollectionCreate(BaseModel):
    client_id: int = Field(..., gt=0)
    seller_id: Optional[int] = Field(None, gt=0)
    collection_date: Optional[date] = None
    total_collected: DecimalValue = Field(..., gt=0)
    notes: Optional[str] = None
    allocations: List[AllocationIn] = Field(default_factory=list)


class AllocationResponse(BaseModel):
    id: int
    invoice_id: Optional[int]
    amount_applied: Decimal
    applies_to: str

    model_config = ConfigDict(from_attributes=True)


class CollectionResponse(BaseModel):
    id: int
    client_id: int
    seller_id: Optional[int]
    collection_date: date
    total_collected: Decimal
    notes: Optional[str]
    created_at: datetime
    allocations: List[AllocationResponse]

    model_config = ConfigDict(from_attributes=True)


class CollectionDetailResponse(CollectionResponse):
    applied_to_invoices: Decimal
    applied_to_prior_balance: Decimal
    unassigned_credit: Decimal


class CollectionDeleteResponse(BaseModel):
    id: int
    client_id: int
    reversed_invoice_ids: List[int]
    allocations_removed: int
    ledger_entries_removed: int


# Invoices

class InvoiceLineCreate(BaseModel):
    description: Optional[str] = None
    quantity: DecimalValue = Field(1, gt=0)
    unit_price: DecimalValue = Field(..., ge=0)


class InvoiceCreate(BaseModel):
    client_id: int = Field(..., gt=0)
    seller_id: Optional[int] = Field(None, gt=0)
    invoice_date: Optional[date] = None
    kind: Literal["CASH", "ON_CREDIT", "PARTIAL_UPFRONT"] = "ON_CREDIT"
    total: Optional[DecimalValue] = Field(None, ge=0)
    upfront_amount: DecimalValue = Field(0, ge=0)
    notes: Optional[str] = None
    lines: List[InvoiceLineCreate] = Field(default_factory=list)

    @field_validator("kind", mode="before")
    @classmethod
    def upper_kind(cls, value):
        return value.upper() if isinstance(value, str) else value


class InvoiceLineResponse(BaseModel):
    id: int
    description: Optional[str]
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(BaseModel):
    id: int
    client_id: int
    seller_id: Optional[int]
    invoice_date: date
    kind: str
    status: str
    total: Decimal
    amount_settled: Decimal
    allocated: Decimal
    outstanding: Decimal
    notes: Optional[str]


class InvoicePayment(BaseModel):
    allocation_id: int
    collection_id: int
    collection_date: date
    amount_applied: Decimal


class InvoiceDetailResponse(InvoiceResponse):
    lines: List[InvoiceLineResponse]
    payments: List[InvoicePayment]


class InvoiceStatusResponse(BaseModel):
    id: int
    status: str
    total: Decimal
    amount_settled: Decimal

    model_config = ConfigDict(from_attributes=True)


# Ledger

class LedgerEntryResponse(BaseModel):
    id: int
    client_id: int
    entry_date: date
    sign: int
    amount: Decimal
    origin_kind: str
    origin_id: Optional[int]
    description: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerPage(Page[LedgerEntryResponse]):
    balance: Decimal


class AdjustmentCreate(BaseModel):
    client_id: int = Field(..., gt=0)
    origin_kind: Literal["ADJUSTMENT", "CREDIT_NOTE", "DEBIT_NOTE"] = "ADJUSTMENT"
    origin_id: Optional[int] = Field(None, gt=0)
    sign: Optional[Literal[1, -1]] = None
    amount: DecimalValue = Field(..., gt=0)
    entry_date: Optional[date] = None
    description: Optional[str] = Field(None, max_length=255)


# Prior balances

class PriorBalanceCreate(BaseModel):
    client_id: int = Field(..., gt=0)
    amount: DecimalValue = Field(..., gt=0)
    entry_date: Optional[date] = None
    seller_id: Optional[int] = Field(None, gt=0)
    description: Optional[str] = Field(None, max_length=255)


class PriorBalanceResponse(BaseModel):
    id: int
    client_id: int
    entry_date: date
    amount: Decimal
    origin_kind: str
    description: Optional[str]
    ledger_balance: Decimal


class PriorBalanceItem(BaseModel):
    client_id: int = Field(..., gt=0)
    amount: DecimalValue = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=255)


class PriorBalanceBulkCreate(BaseModel):
    entry_date: Optional[date] = None
    seller_id: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = Field(None, max_length=255)
    items: List[PriorBalanceItem] = Field(..., min_length=1)


class PriorBalanceBulkRow(BaseModel):
    id: int
    client_id: int
    amount: Decimal


class PriorBalanceBulkMeta(BaseModel):
    records: int
    total_loaded: Decimal
    seller_id: Optional[int]


class PriorBalanceBulkResponse(BaseModel):
    data: List[PriorBalanceBulkRow]
    meta: PriorBalanceBulkMeta


# Debt

class PendingInvoice(BaseModel):
    invoice_id: int
    invoice_date: date
    kind: str
    total: Decimal
    amount_settled: Decimal
    outstanding: Decimal
    days_overdue: int


class ClientDebtResponse(BaseModel):
    client_id: int
    client_name: str
    invoices: List[PendingInvoice]
    invoice_debt: Decimal
    prior_balance_pending: Decimal
    prior_balance_allocated: Decimal
    unassigned_credit: Decimal
    ledger_balance: Decimal
    total_debt: Decimal


class DebtRow(BaseModel):
    client_id: int
    client_name: str
    client_document: Optional[str]
    invoice_debt: Decimal
    prior_balance_debt: Decimal
    total_debt: Decimal
    open_invoices: int
    oldest_invoice_date: Optional[date]
    oldest_prior_balance_date: Optional[date]
    days_overdue: int


class DebtTotals(BaseModel):
    invoice_debt: Decimal
    prior_balance_debt: Decimal
    total_debt: Decimal


class DebtSummaryResponse(Page[DebtRow]):
    totals: DebtTotals


# Reconciliation

class SettlementDriftRow(BaseModel):
    invoice_id: int
    client_id: int
    total: Decimal
    amount_settled: Decimal
    allocated: Decimal
    difference: Decimal


class RebuildResponse(BaseModel):
    updated_invoice_ids: List[int]
    needs_review_invoice_ids: List[int]
