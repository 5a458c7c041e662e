from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from app.ar.errors import (
    InvalidAmount,
    InvoiceHasPayments,
    InvoiceNotConfirmed,
    InvoiceNotFound,
    OverpaymentRejected,
)
from app.ar.ledger import find_or_create_entry, remove_entries_for_origin
from app.directory.service import get_client, require_active_seller
from app.models import (
    APPLIES_TO_INVOICE,
    INVOICE_CONFIRMED,
    INVOICE_KIND_CASH,
    INVOICE_KIND_ON_CREDIT,
    INVOICE_KIND_PARTIAL_UPFRONT,
    INVOICE_VOIDED,
    ORIGIN_INVOICE,
    SIGN_DEBIT,
    Allocation,
    Collection,
    Invoice,
    InvoiceLine,
)
from app.utils import ZERO, exceeds, paginate, quantize_money


logger = logging.getLogger(__name__)


def outstanding(invoice: Invoice) -> Decimal:
    balance = quantize_money(Decimal(invoice.total or 0) - Decimal(invoice.amount_settled or 0))
    return max(ZERO, balance)


def overpays(invoice: Invoice, amount: Decimal) -> bool:
    """True when adding ``amount`` would take the settled total past ``total + 0.01``."""
    settled_after = quantize_money(Decimal(invoice.amount_settled or 0) + quantize_money(amount))
    return exceeds(settled_after, Decimal(invoice.total or 0))


def lock_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id).with_for_update().first()
    if not invoice:
        raise InvoiceNotFound(invoice_id)
    return invoice


def apply_payment(db: Session, invoice_id: int, amount: Decimal) -> Decimal:
    """Add ``amount`` to the invoice's settled total and return what is still owed."""
    invoice = lock_invoice(db, invoice_id)
    if invoice.status != INVOICE_CONFIRMED:
        raise InvoiceNotConfirmed(f"Invoice #{invoice.id} is not confirmed.")
    amount = quantize_money(amount)
    if overpays(invoice, amount):
        raise OverpaymentRejected(
            f"Amount {amount} exceeds the outstanding balance of invoice #{invoice.id} ({outstanding(invoice)})."
        )
    invoice.amount_settled = quantize_money(Decimal(invoice.amount_settled or 0) + amount)
    invoice.updated_at = datetime.utcnow()
    db.flush()
    return outstanding(invoice)


def reverse_payment(db: Session, invoice_id: int, amount: Decimal) -> Optional[Decimal]:
    """Take ``amount`` back off the invoice; never fails on missing invoices."""
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id).with_for_update().first()
    if not invoice:
        logger.warning("Invoice %s no longer exists; nothing to reverse", invoice_id)
        return None
    settled = quantize_money(Decimal(invoice.amount_settled or 0) - quantize_money(amount))
    invoice.amount_settled = max(ZERO, settled)
    invoice.updated_at = datetime.utcnow()
    db.flush()
    return outstanding(invoice)


def allocated_totals(db: Session, invoice_ids: Iterable[int]) -> dict[int, Decimal]:
    """Sum of invoice allocations per invoice id, read from the allocation table."""
    ids = list(set(invoice_ids))
    if not ids:
        return {}
    rows = (
        db.query(Allocation.invoice_id, func.coalesce(func.sum(Allocation.amount_applied), 0))
        .filter(Allocation.invoice_id.in_(ids), Allocation.applies_to == APPLIES_TO_INVOICE)
        .group_by(Allocation.invoice_id)
        .all()
    )
    return {invoice_id: quantize_money(total) for invoice_id, total in rows}


def effective_settled(invoice: Invoice, allocated: Decimal) -> Decimal:
    """Settled amount used by reads while the cached column and allocations coexist."""
    return max(quantize_money(invoice.amount_settled or 0), quantize_money(allocated or 0))


def _line_total(line: dict) -> Decimal:
    quantity = Decimal(str(line.get("quantity") or 1))
    unit_price = Decimal(str(line["unit_price"]))
    if quantity <= 0 or unit_price < 0:
        raise InvalidAmount("Invoice lines need a positive quantity and a non-negative price.")
    return quantize_money(quantity * unit_price)


def _normalize(item: Any) -> dict:
    if hasattr(item, "model_dump"):
        return item.model_dump()
    return dict(item)


def confirm_invoice(db: Session, payload: dict) -> Invoice:
    """Create a confirmed invoice with its ledger effect.

    Credit-bearing invoices get one INVOICE ledger entry. An ``upfront_amount``
    is recorded as a collection applied to the new invoice in the same
    transaction, and turns the invoice into a partial-upfront sale.
    """
    client = get_client(db, payload["client_id"])
    seller_id = payload.get("seller_id")
    require_active_seller(db, seller_id)

    lines = [_normalize(line) for line in payload.get("lines") or []]
    if lines:
        total = quantize_money(sum((_line_total(line) for line in lines), ZERO))
    elif payload.get("total") is not None:
        total = quantize_money(payload["total"])
    else:
        raise InvalidAmount("An invoice needs either lines or a total.")
    if total < 0:
        raise InvalidAmount("Invoice total must be zero or greater.")

    kind = (payload.get("kind") or INVOICE_KIND_ON_CREDIT).upper()
    upfront = quantize_money(payload.get("upfront_amount") or 0)
    if upfront < 0:
        raise InvalidAmount("Upfront amount must be zero or greater.")
    if upfront > 0:
        if kind == INVOICE_KIND_CASH:
            raise InvalidAmount("Cash invoices cannot carry an upfront payment.")
        if exceeds(upfront, total):
            raise InvalidAmount(f"Upfront amount {upfront} exceeds the invoice total {total}.")
        kind = INVOICE_KIND_PARTIAL_UPFRONT

    invoice_date = payload.get("invoice_date") or date.today()
    invoice = Invoice(
        client_id=client.id,
        seller_id=seller_id,
        invoice_date=invoice_date,
        kind=kind,
        status=INVOICE_CONFIRMED,
        total=total,
        amount_settled=ZERO,
        notes=payload.get("notes"),
    )
    invoice.lines = [
        InvoiceLine(
            description=line.get("description"),
            quantity=quantize_money(line.get("quantity") or 1),
            unit_price=quantize_money(line["unit_price"]),
            line_total=_line_total(line),
        )
        for line in lines
    ]
    db.add(invoice)
    db.flush()

    if invoice.is_receivable:
        find_or_create_entry(
            db,
            client_id=client.id,
            entry_date=invoice_date,
            sign=SIGN_DEBIT,
            amount=total,
            origin_kind=ORIGIN_INVOICE,
            origin_id=invoice.id,
            description=f"Invoice #{invoice.id}",
        )

    if upfront > 0:
        from app.ar.collections import create_collection

        create_collection(
            db,
            client_id=client.id,
            seller_id=seller_id,
            collection_date=invoice_date,
            total_collected=upfront,
            allocations=[{"invoice_id": invoice.id, "amount": upfront}],
            notes=f"Upfront payment on invoice #{invoice.id}",
        )

    logger.info(
        "Confirmed invoice %s for client %s: %s %s (upfront %s)",
        invoice.id,
        client.id,
        kind,
        total,
        upfront,
    )
    return invoice


def void_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = lock_invoice(db, invoice_id)
    if invoice.status == INVOICE_VOIDED:
        return invoice
    has_allocations = db.query(Allocation.id).filter(Allocation.invoice_id == invoice.id).first() is not None
    if has_allocations:
        logger.warning("Refused to void invoice %s: it has payments applied", invoice.id)
        raise InvoiceHasPayments(
            f"Invoice #{invoice.id} has payments applied.",
            tips=["Delete the collections applied to it first."],
        )
    invoice.status = INVOICE_VOIDED
    invoice.updated_at = datetime.utcnow()
    remove_entries_for_origin(db, ORIGIN_INVOICE, invoice.id)
    db.flush()
    logger.info("Voided invoice %s", invoice.id)
    return invoice


def list_invoices(
    db: Session,
    *,
    client_id: Optional[int] = None,
    status: Optional[str] = None,
    kind: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    open_only: bool = False,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    query = db.query(Invoice)
    if client_id:
        query = query.filter(Invoice.client_id == client_id)
    if status:
        query = query.filter(Invoice.status == status.upper())
    if kind:
        query = query.filter(Invoice.kind == kind.upper())
    if start_date:
        query = query.filter(Invoice.invoice_date >= start_date)
    if end_date:
        query = query.filter(Invoice.invoice_date <= end_date)
    if open_only:
        query = query.filter(
            Invoice.status == INVOICE_CONFIRMED,
            Invoice.kind != INVOICE_KIND_CASH,
            Invoice.total - Invoice.amount_settled > 0,
        )
    query = query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())

    result = paginate(query, page, limit)
    allocated = allocated_totals(db, [invoice.id for invoice in result["data"]])
    result["data"] = [_invoice_row(invoice, allocated.get(invoice.id, ZERO)) for invoice in result["data"]]
    return result


def _invoice_row(invoice: Invoice, allocated: Decimal) -> dict[str, Any]:
    settled = effective_settled(invoice, allocated)
    balance = max(ZERO, quantize_money(Decimal(invoice.total) - settled)) if invoice.is_receivable else ZERO
    return {
        "id": invoice.id,
        "client_id": invoice.client_id,
        "seller_id": invoice.seller_id,
        "invoice_date": invoice.invoice_date,
        "kind": invoice.kind,
        "status": invoice.status,
        "total": quantize_money(invoice.total),
        "amount_settled": quantize_money(invoice.amount_settled),
        "allocated": quantize_money(allocated),
        "outstanding": balance,
        "notes": invoice.notes,
    }


def get_invoice(db: Session, invoice_id: int) -> dict[str, Any]:
    invoice = (
        db.query(Invoice)
        .options(selectinload(Invoice.lines))
        .filter(Invoice.id == invoice_id)
        .first()
    )
    if not invoice:
        raise InvoiceNotFound(invoice_id)

    history = (
        db.query(Allocation, Collection)
        .join(Collection, Collection.id == Allocation.collection_id)
        .filter(Allocation.invoice_id == invoice.id)
        .order_by(Collection.collection_date.asc(), Allocation.id.asc())
        .all()
    )
    allocated = quantize_money(sum((Decimal(allocation.amount_applied) for allocation, _ in history), ZERO))

    row = _invoice_row(invoice, allocated)
    row["lines"] = invoice.lines
    row["payments"] = [
        {
            "allocation_id": allocation.id,
            "collection_id": collection.id,
            "collection_date": collection.collection_date,
            "amount_applied": quantize_money(allocation.amount_applied),
        }
        for allocation, collection in history
    ]
    return row
