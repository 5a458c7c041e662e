"""Legacy debt carried over from before the system went live.

Prior balances are plain ledger entries (origin PRIOR_BALANCE, sign +1, no
source document). Collections may reduce them through PRIOR_BALANCE
allocations, never beyond what was loaded.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.ar.errors import InvalidAmount, UnknownClients
from app.ar.ledger import append_entry, balance_for, prior_balance_total
from app.directory.service import get_client, require_active_seller
from app.models import APPLIES_TO_PRIOR_BALANCE, ORIGIN_PRIOR_BALANCE, SIGN_DEBIT, Allocation, Client, Collection
from app.utils import ZERO, quantize_money


logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Prior balance loaded into the system"


def _description(description: Optional[str], seller_id: Optional[int]) -> str:
    text = (description or "").strip()
    if text:
        return text
    parts = [DEFAULT_DESCRIPTION]
    if seller_id:
        parts.append(f"Seller {seller_id}")
    return " · ".join(parts)


def allocated_to_prior_balance(db: Session, client_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Allocation.amount_applied), 0))
        .join(Collection, Collection.id == Allocation.collection_id)
        .filter(
            Collection.client_id == client_id,
            Allocation.invoice_id.is_(None),
            Allocation.applies_to == APPLIES_TO_PRIOR_BALANCE,
        )
        .scalar()
    )
    return quantize_money(total or ZERO)


def prior_balance_headroom(db: Session, client_id: int) -> Decimal:
    """Loaded minus allocated, not floored; zero or less means nothing can be applied."""
    return quantize_money(prior_balance_total(db, client_id) - allocated_to_prior_balance(db, client_id))


def pending_prior_balance(db: Session, client_id: int) -> Decimal:
    return max(ZERO, prior_balance_headroom(db, client_id))


def _append_prior_balance(
    db: Session,
    client_id: int,
    amount: Decimal,
    entry_date: date,
    seller_id: Optional[int],
    description: Optional[str],
):
    amount = quantize_money(amount)
    if amount is None or amount <= 0:
        raise InvalidAmount("Prior balance amount must be greater than zero.")
    return append_entry(
        db,
        client_id=client_id,
        entry_date=entry_date,
        sign=SIGN_DEBIT,
        amount=amount,
        origin_kind=ORIGIN_PRIOR_BALANCE,
        origin_id=None,
        description=_description(description, seller_id),
    )


def load_prior_balance(
    db: Session,
    *,
    client_id: int,
    amount: Decimal,
    entry_date: Optional[date] = None,
    seller_id: Optional[int] = None,
    description: Optional[str] = None,
) -> dict[str, Any]:
    client = get_client(db, client_id)
    require_active_seller(db, seller_id)
    entry = _append_prior_balance(db, client.id, amount, entry_date or date.today(), seller_id, description)
    balance = balance_for(db, client.id)
    logger.info("Loaded prior balance of %s for client %s (ledger balance %s)", entry.amount, client.id, balance)
    return {
        "id": entry.id,
        "client_id": client.id,
        "entry_date": entry.entry_date,
        "amount": quantize_money(entry.amount),
        "origin_kind": entry.origin_kind,
        "description": entry.description,
        "ledger_balance": balance,
    }


def load_prior_balances_bulk(
    db: Session,
    items: Iterable[dict],
    *,
    entry_date: Optional[date] = None,
    seller_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> dict[str, Any]:
    """Load many prior balances at once; one bad item rejects the whole batch."""
    items = list(items)
    if not items:
        raise InvalidAmount("At least one prior balance item is required.")
    require_active_seller(db, seller_id)

    for index, item in enumerate(items, start=1):
        amount = quantize_money(item.get("amount"))
        if amount is None or amount <= 0:
            raise InvalidAmount(f"Item #{index}: amount must be greater than zero.")

    client_ids = {item["client_id"] for item in items}
    found = {row.id for row in db.query(Client.id).filter(Client.id.in_(client_ids)).all()}
    missing = sorted(client_ids - found)
    if missing:
        raise UnknownClients(missing)

    when = entry_date or date.today()
    created = []
    total_loaded = ZERO
    for item in items:
        entry = _append_prior_balance(
            db,
            item["client_id"],
            item["amount"],
            when,
            seller_id,
            item.get("description") or notes,
        )
        created.append({"id": entry.id, "client_id": entry.client_id, "amount": quantize_money(entry.amount)})
        total_loaded = quantize_money(total_loaded + entry.amount)

    logger.info("Loaded %s prior balances totalling %s", len(created), total_loaded)
    return {
        "data": created,
        "meta": {"records": len(created), "total_loaded": total_loaded, "seller_id": seller_id},
    }
