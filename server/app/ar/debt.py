from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.ar.invoices import allocated_totals, effective_settled
from app.ar.ledger import balance_for
from app.ar.prior_balances import allocated_to_prior_balance, pending_prior_balance
from app.directory.service import get_client
from app.models import (
    APPLIES_TO_CREDIT,
    APPLIES_TO_INVOICE,
    APPLIES_TO_PRIOR_BALANCE,
    INVOICE_CONFIRMED,
    ORIGIN_PRIOR_BALANCE,
    RECEIVABLE_INVOICE_KINDS,
    SIGN_DEBIT,
    Allocation,
    Client,
    Collection,
    Invoice,
    LedgerEntry,
)
from app.utils import MONEY_TOLERANCE, ZERO, page_meta, page_window, quantize_money


logger = logging.getLogger(__name__)


def _days_between(start: Optional[date], end: date) -> int:
    if not start:
        return 0
    return max((end - start).days, 0)


def invoice_outstanding(total: Decimal, cached_settled: Decimal, allocated: Decimal) -> Decimal:
    """Outstanding balance using the larger of the two settled figures."""
    settled = max(quantize_money(cached_settled or 0), quantize_money(allocated or 0))
    return max(ZERO, quantize_money(Decimal(total or 0) - settled))


def summarize_debts(
    invoice_rows: Iterable[dict],
    prior_rows: Iterable[dict],
    today: date,
) -> dict[int, dict[str, Any]]:
    """Fold open invoices and pending prior balances into one row per client.

    ``invoice_rows`` carry ``client_id, invoice_date, total, amount_settled,
    allocated``; ``prior_rows`` carry ``client_id, pending, first_date``.
    """
    rows: dict[int, dict[str, Any]] = {}

    def row_for(client_id: int) -> dict[str, Any]:
        if client_id not in rows:
            rows[client_id] = {
                "client_id": client_id,
                "invoice_debt": ZERO,
                "prior_balance_debt": ZERO,
                "total_debt": ZERO,
                "open_invoices": 0,
                "oldest_invoice_date": None,
                "oldest_prior_balance_date": None,
                "days_overdue": 0,
            }
        return rows[client_id]

    for invoice in invoice_rows:
        balance = invoice_outstanding(invoice["total"], invoice["amount_settled"], invoice["allocated"])
        if balance <= 0:
            continue
        row = row_for(invoice["client_id"])
        row["invoice_debt"] = quantize_money(row["invoice_debt"] + balance)
        row["open_invoices"] += 1
        if row["oldest_invoice_date"] is None or invoice["invoice_date"] < row["oldest_invoice_date"]:
            row["oldest_invoice_date"] = invoice["invoice_date"]

    for prior in prior_rows:
        pending = quantize_money(prior["pending"])
        if pending <= 0:
            continue
        row = row_for(prior["client_id"])
        row["prior_balance_debt"] = pending
        row["oldest_prior_balance_date"] = prior.get("first_date")

    for row in rows.values():
        row["total_debt"] = quantize_money(row["invoice_debt"] + row["prior_balance_debt"])
        # legacy debt only drives the age when no invoice is open
        row["days_overdue"] = _days_between(
            row["oldest_invoice_date"] or row["oldest_prior_balance_date"],
            today,
        )
    return rows


def _receivable_invoice_query(db: Session):
    return db.query(Invoice).filter(
        Invoice.status == INVOICE_CONFIRMED,
        Invoice.kind.in_(RECEIVABLE_INVOICE_KINDS),
    )


def client_debt(db: Session, client_id: int, today: Optional[date] = None) -> dict[str, Any]:
    client = get_client(db, client_id)
    today = today or date.today()

    invoices = (
        _receivable_invoice_query(db)
        .filter(Invoice.client_id == client.id)
        .order_by(Invoice.invoice_date.asc(), Invoice.id.asc())
        .all()
    )
    allocated = allocated_totals(db, [invoice.id for invoice in invoices])

    pending_invoices = []
    invoice_debt = ZERO
    for invoice in invoices:
        invoice_allocated = allocated.get(invoice.id, ZERO)
        balance = invoice_outstanding(invoice.total, invoice.amount_settled, invoice_allocated)
        if balance <= 0:
            continue
        invoice_debt = quantize_money(invoice_debt + balance)
        pending_invoices.append(
            {
                "invoice_id": invoice.id,
                "invoice_date": invoice.invoice_date,
                "kind": invoice.kind,
                "total": quantize_money(invoice.total),
                "amount_settled": effective_settled(invoice, invoice_allocated),
                "outstanding": balance,
                "days_overdue": _days_between(invoice.invoice_date, today),
            }
        )

    prior_pending = pending_prior_balance(db, client.id)
    credit_banked = (
        db.query(func.coalesce(func.sum(Allocation.amount_applied), 0))
        .join(Collection, Collection.id == Allocation.collection_id)
        .filter(Collection.client_id == client.id, Allocation.applies_to == APPLIES_TO_CREDIT)
        .scalar()
    )
    return {
        "client_id": client.id,
        "client_name": client.name,
        "invoices": pending_invoices,
        "invoice_debt": invoice_debt,
        "prior_balance_pending": prior_pending,
        "prior_balance_allocated": allocated_to_prior_balance(db, client.id),
        "unassigned_credit": quantize_money(credit_banked or ZERO),
        "ledger_balance": balance_for(db, client.id),
        "total_debt": quantize_money(invoice_debt + prior_pending),
    }


def _invoice_rows(db: Session, start: Optional[date] = None, end: Optional[date] = None) -> list[dict]:
    allocation_totals = (
        db.query(
            Allocation.invoice_id.label("invoice_id"),
            func.sum(Allocation.amount_applied).label("allocated"),
        )
        .filter(Allocation.applies_to == APPLIES_TO_INVOICE)
        .group_by(Allocation.invoice_id)
        .subquery()
    )
    query = (
        db.query(
            Invoice.client_id,
            Invoice.invoice_date,
            Invoice.total,
            Invoice.amount_settled,
            func.coalesce(allocation_totals.c.allocated, 0).label("allocated"),
        )
        .outerjoin(allocation_totals, allocation_totals.c.invoice_id == Invoice.id)
        .filter(
            Invoice.status == INVOICE_CONFIRMED,
            Invoice.kind.in_(RECEIVABLE_INVOICE_KINDS),
        )
    )
    if start:
        query = query.filter(Invoice.invoice_date >= start)
    if end:
        query = query.filter(Invoice.invoice_date <= end)
    rows = query.all()
    return [
        {
            "client_id": row.client_id,
            "invoice_date": row.invoice_date,
            "total": row.total,
            "amount_settled": row.amount_settled,
            "allocated": row.allocated,
        }
        for row in rows
    ]


def _prior_rows(db: Session, start: Optional[date] = None, end: Optional[date] = None) -> list[dict]:
    """Pending legacy debt per client; a date window applies to loads and to collections alike."""
    loaded = db.query(
        LedgerEntry.client_id,
        func.sum(LedgerEntry.amount).label("loaded"),
        func.min(LedgerEntry.entry_date).label("first_date"),
    ).filter(LedgerEntry.origin_kind == ORIGIN_PRIOR_BALANCE, LedgerEntry.sign == SIGN_DEBIT)
    applied = (
        db.query(Collection.client_id, func.sum(Allocation.amount_applied))
        .join(Allocation, Allocation.collection_id == Collection.id)
        .filter(Allocation.invoice_id.is_(None), Allocation.applies_to == APPLIES_TO_PRIOR_BALANCE)
    )
    if start:
        loaded = loaded.filter(LedgerEntry.entry_date >= start)
        applied = applied.filter(Collection.collection_date >= start)
    if end:
        loaded = loaded.filter(LedgerEntry.entry_date <= end)
        applied = applied.filter(Collection.collection_date <= end)
    loaded = loaded.group_by(LedgerEntry.client_id).all()
    applied = dict(applied.group_by(Collection.client_id).all())
    return [
        {
            "client_id": row.client_id,
            "pending": max(ZERO, quantize_money(Decimal(row.loaded or 0) - Decimal(applied.get(row.client_id) or 0))),
            "first_date": row.first_date,
        }
        for row in loaded
    ]


def debt_summary(
    db: Session,
    *,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    min_balance: Decimal = MONEY_TOLERANCE,
    page: int = 1,
    limit: int = 20,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Per-client debt, largest first.

    ``search`` matches client name, document or email. ``start_date`` and
    ``end_date`` limit the invoices, prior-balance loads and collections that
    are counted.
    """
    today = today or date.today()
    rows = summarize_debts(
        _invoice_rows(db, start_date, end_date),
        _prior_rows(db, start_date, end_date),
        today,
    )
    threshold = quantize_money(min_balance)

    clients_query = db.query(Client.id, Client.name, Client.document).filter(Client.id.in_(list(rows)))
    if search:
        like = f"%{search.strip()}%"
        clients_query = clients_query.filter(
            Client.name.ilike(like) | Client.document.ilike(like) | Client.email.ilike(like)
        )
    clients = {client.id: client for client in clients_query.all()}

    selected = []
    for client_id, row in rows.items():
        client = clients.get(client_id)
        if not client or row["total_debt"] < threshold:
            continue
        selected.append({**row, "client_name": client.name, "client_document": client.document})
    selected.sort(key=lambda row: (-row["total_debt"], row["client_id"]))

    size, offset = page_window(page, limit)
    return {
        "data": selected[offset : offset + size],
        "meta": page_meta(len(selected), page, size),
        "totals": {
            "invoice_debt": quantize_money(sum((row["invoice_debt"] for row in selected), ZERO)),
            "prior_balance_debt": quantize_money(sum((row["prior_balance_debt"] for row in selected), ZERO)),
            "total_debt": quantize_money(sum((row["total_debt"] for row in selected), ZERO)),
        },
    }


def settlement_drift(db: Session) -> list[dict[str, Any]]:
    """Invoices whose cached settled amount disagrees with their allocations."""
    invoices = db.query(Invoice).order_by(Invoice.id.asc()).all()
    allocated = allocated_totals(db, [invoice.id for invoice in invoices])
    drift = []
    for invoice in invoices:
        cached = quantize_money(invoice.amount_settled or 0)
        from_allocations = allocated.get(invoice.id, ZERO)
        if cached == from_allocations:
            continue
        drift.append(
            {
                "invoice_id": invoice.id,
                "client_id": invoice.client_id,
                "total": quantize_money(invoice.total),
                "amount_settled": cached,
                "allocated": from_allocations,
                "difference": quantize_money(cached - from_allocations),
            }
        )
    return drift


def rebuild_amount_settled(db: Session, *, include_unbacked: bool = False) -> dict[str, Any]:
    """Rewrite the cached settled column from the allocation table.

    Invoices whose cached amount is higher than their allocations carry
    payments that predate the allocation table; they are only overwritten
    with ``include_unbacked`` and are otherwise returned for review.
    """
    updated = []
    needs_review = []
    for row in settlement_drift(db):
        if row["difference"] > 0 and not include_unbacked:
            needs_review.append(row["invoice_id"])
            continue
        invoice = db.query(Invoice).filter(Invoice.id == row["invoice_id"]).with_for_update().one()
        invoice.amount_settled = min(row["allocated"], quantize_money(invoice.total) + MONEY_TOLERANCE)
        updated.append(invoice.id)
    db.flush()
    logger.info(
        "Rebuilt settled amounts from allocations: %s updated, %s left for review",
        len(updated),
        len(needs_review),
    )
    return {"updated_invoice_ids": updated, "needs_review_invoice_ids": needs_review}
