"""Collections: payment documents and the allocation engine behind them.

A collection is applied either automatically, oldest open invoice first, or
exactly as the caller lists it. Both modes validate every rule before the
first write and end with one credit ledger entry for the collected total.
Deleting a collection undoes all of it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session, selectinload

from app.ar.allocation import (
    ExplicitPlan,
    build_requests,
    fifo_take,
    group_explicit_requests,
    remainder_to_credit,
)
from app.ar.errors import (
    AllocationExceedsTotal,
    CollectionNotFound,
    ExceedsPriorBalance,
    InvalidAmount,
    InvoiceNotConfirmed,
    InvoiceNotOwnedByClient,
    InvoiceNotReceivable,
    OverpaymentRejected,
    ReceivablesError,
)
from app.ar.invoices import apply_payment, lock_invoice, outstanding, overpays, reverse_payment
from app.ar.ledger import append_entry, remove_entries_for_origin
from app.ar.prior_balances import prior_balance_headroom
from app.directory.service import lock_client, require_active_seller
from app.models import (
    APPLIES_TO_CREDIT,
    APPLIES_TO_INVOICE,
    APPLIES_TO_PRIOR_BALANCE,
    INVOICE_CONFIRMED,
    ORIGIN_COLLECTION,
    RECEIVABLE_INVOICE_KINDS,
    SIGN_CREDIT,
    Allocation,
    Client,
    Collection,
    Invoice,
)
from app.utils import MONEY_TOLERANCE, ZERO, exceeds, is_settled, paginate, quantize_money


logger = logging.getLogger(__name__)

MODE_FIFO = "FIFO"
MODE_EXPLICIT = "EXPLICIT"


@dataclass(frozen=True)
class PlannedAllocation:
    applies_to: str
    amount: Decimal
    invoice_id: Optional[int] = None


def _open_invoice_ids(db: Session, client_id: int) -> list[int]:
    rows = (
        db.query(Invoice.id)
        .filter(
            Invoice.client_id == client_id,
            Invoice.status == INVOICE_CONFIRMED,
            Invoice.kind.in_(RECEIVABLE_INVOICE_KINDS),
            Invoice.total - Invoice.amount_settled > 0,
        )
        .order_by(Invoice.invoice_date.asc(), Invoice.id.asc())
        .all()
    )
    return [row.id for row in rows]


def _allocate_fifo(db: Session, client_id: int, total: Decimal) -> list[PlannedAllocation]:
    """Fill the oldest open invoices first and bank whatever is left as credit.

    Candidate ids are read without locks; each row is locked only when it is
    about to receive money, and its balance is re-read under that lock.
    """
    planned: list[PlannedAllocation] = []
    remaining = total
    for invoice_id in _open_invoice_ids(db, client_id):
        if is_settled(remaining):
            break
        invoice = lock_invoice(db, invoice_id)
        if invoice.status != INVOICE_CONFIRMED:
            continue
        take = fifo_take(remaining, outstanding(invoice))
        if take <= 0:
            continue
        apply_payment(db, invoice.id, take)
        planned.append(PlannedAllocation(APPLIES_TO_INVOICE, take, invoice.id))
        remaining = quantize_money(remaining - take)

    if remaining > MONEY_TOLERANCE:
        planned.append(PlannedAllocation(APPLIES_TO_CREDIT, remaining))
    return planned


def _validate_invoice_target(invoice: Invoice, client_id: int, amount: Decimal) -> None:
    if invoice.client_id != client_id:
        raise InvoiceNotOwnedByClient(f"Invoice #{invoice.id} does not belong to client {client_id}.")
    if invoice.status != INVOICE_CONFIRMED:
        raise InvoiceNotConfirmed(f"Invoice #{invoice.id} is not confirmed.")
    if invoice.kind not in RECEIVABLE_INVOICE_KINDS:
        raise InvoiceNotReceivable(f"Invoice #{invoice.id} was not sold on credit.")
    if overpays(invoice, amount):
        balance = outstanding(invoice)
        raise OverpaymentRejected(
            f"Amount {amount} exceeds the outstanding balance of invoice #{invoice.id} ({balance}).",
            tips=[f"Outstanding balance: {balance}"],
        )


def _allocate_explicit(
    db: Session,
    client_id: int,
    total: Decimal,
    plan: ExplicitPlan,
) -> list[PlannedAllocation]:
    requested = plan.requested_total
    if exceeds(requested, total):
        raise AllocationExceedsTotal(
            f"Allocations add up to {requested}, more than the {total} collected."
        )

    targets = plan.invoice_targets()
    for invoice_id, amount in targets:
        _validate_invoice_target(lock_invoice(db, invoice_id), client_id, amount)

    prior_amount = plan.prior_balance
    if prior_amount > 0:
        headroom = prior_balance_headroom(db, client_id)
        if headroom <= 0 or exceeds(prior_amount, headroom):
            pending = max(ZERO, headroom)
            raise ExceedsPriorBalance(
                f"Amount {prior_amount} exceeds the pending prior balance ({pending}).",
                tips=[f"Pending prior balance: {pending}"],
            )
        # allocations never pass the loaded total, even inside the tolerance
        prior_amount = min(prior_amount, headroom)

    planned: list[PlannedAllocation] = []
    for invoice_id, amount in targets:
        apply_payment(db, invoice_id, amount)
        planned.append(PlannedAllocation(APPLIES_TO_INVOICE, amount, invoice_id))

    if prior_amount > 0:
        planned.append(PlannedAllocation(APPLIES_TO_PRIOR_BALANCE, prior_amount))

    trimmed = quantize_money(plan.prior_balance - prior_amount)
    credit = quantize_money(plan.credit + trimmed + remainder_to_credit(total, requested))
    if credit > MONEY_TOLERANCE:
        planned.append(PlannedAllocation(APPLIES_TO_CREDIT, credit))
    return planned


def create_collection(
    db: Session,
    *,
    client_id: int,
    total_collected: Decimal,
    seller_id: Optional[int] = None,
    collection_date: Optional[date] = None,
    allocations: Optional[Iterable[object]] = None,
    notes: Optional[str] = None,
) -> Collection:
    """Record a payment and apply it.

    Explicit mode runs when any listed allocation carries an amount above
    zero; otherwise the payment is applied FIFO.
    """
    total = quantize_money(total_collected)
    if total is None or total <= 0:
        raise InvalidAmount("Collected total must be greater than zero.")
    requests = build_requests(allocations or [])

    lock_client(db, client_id)
    require_active_seller(db, seller_id)

    plan = group_explicit_requests(requests)
    mode = MODE_FIFO if plan.is_empty else MODE_EXPLICIT
    try:
        if mode == MODE_FIFO:
            planned = _allocate_fifo(db, client_id, total)
        else:
            planned = _allocate_explicit(db, client_id, total, plan)
    except ReceivablesError as exc:
        logger.warning("Rejected %s collection of %s for client %s: %s", mode, total, client_id, exc)
        raise

    when = collection_date or date.today()
    collection = Collection(
        client_id=client_id,
        seller_id=seller_id,
        collection_date=when,
        total_collected=total,
        notes=notes,
    )
    collection.allocations = [
        Allocation(invoice_id=item.invoice_id, amount_applied=item.amount, applies_to=item.applies_to)
        for item in planned
    ]
    db.add(collection)
    db.flush()

    append_entry(
        db,
        client_id=client_id,
        entry_date=when,
        sign=SIGN_CREDIT,
        amount=total,
        origin_kind=ORIGIN_COLLECTION,
        origin_id=collection.id,
        description=f"Collection #{collection.id}",
    )
    logger.info(
        "Recorded collection %s for client %s: %s applied %s across %s allocation(s)",
        collection.id,
        client_id,
        total,
        mode,
        len(planned),
    )
    return collection


def delete_collection(db: Session, collection_id: int) -> dict[str, Any]:
    """Reverse a collection: give invoices their balance back and drop its ledger effect."""
    collection = (
        db.query(Collection)
        .options(selectinload(Collection.allocations))
        .filter(Collection.id == collection_id)
        .with_for_update()
        .first()
    )
    if not collection:
        raise CollectionNotFound(collection_id)

    reversed_invoices = []
    for allocation in collection.allocations:
        if allocation.invoice_id is None:
            continue
        if reverse_payment(db, allocation.invoice_id, allocation.amount_applied) is not None:
            reversed_invoices.append(allocation.invoice_id)

    allocation_count = len(collection.allocations)
    removed_entries = remove_entries_for_origin(db, ORIGIN_COLLECTION, collection.id)
    db.delete(collection)
    db.flush()

    logger.info(
        "Reversed collection %s for client %s: %s allocation(s), %s invoice(s) restored",
        collection_id,
        collection.client_id,
        allocation_count,
        len(reversed_invoices),
    )
    return {
        "id": collection_id,
        "client_id": collection.client_id,
        "reversed_invoice_ids": reversed_invoices,
        "allocations_removed": allocation_count,
        "ledger_entries_removed": removed_entries,
    }


def list_collections(
    db: Session,
    *,
    client_id: Optional[int] = None,
    seller_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    query = db.query(Collection).options(selectinload(Collection.allocations))
    if search and search.strip():
        like = f"%{search.strip()}%"
        query = query.join(Client, Client.id == Collection.client_id).filter(
            Client.name.ilike(like) | Client.document.ilike(like)
        )
    if client_id:
        query = query.filter(Collection.client_id == client_id)
    if seller_id:
        query = query.filter(Collection.seller_id == seller_id)
    if start_date:
        query = query.filter(Collection.collection_date >= start_date)
    if end_date:
        query = query.filter(Collection.collection_date <= end_date)
    query = query.order_by(Collection.collection_date.desc(), Collection.id.desc())
    return paginate(query, page, limit)


def get_collection(db: Session, collection_id: int) -> Collection:
    collection = (
        db.query(Collection)
        .options(selectinload(Collection.allocations))
        .filter(Collection.id == collection_id)
        .first()
    )
    if not collection:
        raise CollectionNotFound(collection_id)
    return collection


def allocation_summary(collection: Collection) -> dict[str, Decimal]:
    summary = {APPLIES_TO_INVOICE: ZERO, APPLIES_TO_CREDIT: ZERO, APPLIES_TO_PRIOR_BALANCE: ZERO}
    for allocation in collection.allocations:
        summary[allocation.applies_to] = quantize_money(summary[allocation.applies_to] + allocation.amount_applied)
    return summary
