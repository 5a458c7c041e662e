from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ar.errors import ClientNotFound, DuplicateOrigin, InvalidAmount, InvalidAllocation
from app.models import (
    ORIGIN_ADJUSTMENT,
    ORIGIN_CREDIT_NOTE,
    ORIGIN_DEBIT_NOTE,
    ORIGIN_PRIOR_BALANCE,
    SIGN_CREDIT,
    SIGN_DEBIT,
    Client,
    LedgerEntry,
)
from app.utils import ZERO, paginate, quantize_money


logger = logging.getLogger(__name__)

MANUAL_ORIGIN_KINDS = (ORIGIN_ADJUSTMENT, ORIGIN_CREDIT_NOTE, ORIGIN_DEBIT_NOTE)
DEFAULT_SIGN_BY_ORIGIN = {
    ORIGIN_CREDIT_NOTE: SIGN_CREDIT,
    ORIGIN_DEBIT_NOTE: SIGN_DEBIT,
}


def _find_by_origin(db: Session, origin_kind: str, origin_id: int) -> Optional[LedgerEntry]:
    return (
        db.query(LedgerEntry)
        .filter(LedgerEntry.origin_kind == origin_kind, LedgerEntry.origin_id == origin_id)
        .first()
    )


def append_entry(
    db: Session,
    *,
    client_id: int,
    entry_date: date,
    sign: int,
    amount: Decimal,
    origin_kind: str,
    origin_id: Optional[int] = None,
    description: Optional[str] = None,
) -> LedgerEntry:
    """Insert one signed movement.

    ``(origin_kind, origin_id)`` is unique whenever ``origin_id`` is set; a
    second entry for the same source document raises ``DuplicateOrigin``.
    """
    if sign not in (SIGN_DEBIT, SIGN_CREDIT):
        raise InvalidAmount("Ledger sign must be 1 or -1.")
    amount = quantize_money(amount)
    if amount is None or amount < 0:
        raise InvalidAmount("Ledger amounts must be zero or greater.")

    if origin_id is not None and _find_by_origin(db, origin_kind, origin_id):
        raise DuplicateOrigin(origin_kind, origin_id)

    entry = LedgerEntry(
        client_id=client_id,
        entry_date=entry_date,
        sign=sign,
        amount=amount,
        origin_kind=origin_kind,
        origin_id=origin_id,
        description=description[:255] if description else None,
    )
    db.add(entry)
    try:
        db.flush()
    except IntegrityError as exc:
        if origin_id is None or not _is_origin_clash(exc):
            raise
        # a concurrent writer got there between the check and the insert
        raise DuplicateOrigin(origin_kind, origin_id) from exc
    return entry


def _is_origin_clash(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return "uq_ledger_origin" in message or ("UNIQUE" in message and "origin_id" in message)


def find_or_create_entry(
    db: Session,
    *,
    client_id: int,
    entry_date: date,
    sign: int,
    amount: Decimal,
    origin_kind: str,
    origin_id: int,
    description: Optional[str] = None,
) -> tuple[LedgerEntry, bool]:
    existing = _find_by_origin(db, origin_kind, origin_id)
    if existing:
        return existing, False
    entry = append_entry(
        db,
        client_id=client_id,
        entry_date=entry_date,
        sign=sign,
        amount=amount,
        origin_kind=origin_kind,
        origin_id=origin_id,
        description=description,
    )
    return entry, True


def balance_for(
    db: Session,
    client_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Decimal:
    query = db.query(func.coalesce(func.sum(LedgerEntry.sign * LedgerEntry.amount), 0)).filter(
        LedgerEntry.client_id == client_id
    )
    if start:
        query = query.filter(LedgerEntry.entry_date >= start)
    if end:
        query = query.filter(LedgerEntry.entry_date <= end)
    return quantize_money(query.scalar() or ZERO)


def remove_entries_for_origin(db: Session, origin_kind: str, origin_id: int) -> int:
    removed = (
        db.query(LedgerEntry)
        .filter(LedgerEntry.origin_kind == origin_kind, LedgerEntry.origin_id == origin_id)
        .delete(synchronize_session=False)
    )
    db.flush()
    return removed


def prior_balance_total(db: Session, client_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(LedgerEntry.amount), 0))
        .filter(
            LedgerEntry.client_id == client_id,
            LedgerEntry.origin_kind == ORIGIN_PRIOR_BALANCE,
            LedgerEntry.sign == SIGN_DEBIT,
        )
        .scalar()
    )
    return quantize_money(total or ZERO)


def list_entries(
    db: Session,
    client_id: int,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    if not db.query(Client.id).filter(Client.id == client_id).first():
        raise ClientNotFound(client_id)

    query = db.query(LedgerEntry).filter(LedgerEntry.client_id == client_id)
    if start:
        query = query.filter(LedgerEntry.entry_date >= start)
    if end:
        query = query.filter(LedgerEntry.entry_date <= end)
    query = query.order_by(LedgerEntry.entry_date.asc(), LedgerEntry.id.asc())

    result = paginate(query, page, limit)
    result["balance"] = balance_for(db, client_id, start, end)
    return result


def record_adjustment(db: Session, payload: dict) -> LedgerEntry:
    """Manual movement (adjustment, credit note or debit note) on a client account."""
    origin_kind = (payload.get("origin_kind") or ORIGIN_ADJUSTMENT).upper()
    if origin_kind not in MANUAL_ORIGIN_KINDS:
        raise InvalidAllocation(
            "Manual ledger entries must be ADJUSTMENT, CREDIT_NOTE or DEBIT_NOTE.",
            tips=["Invoices, collections and prior balances have their own endpoints."],
        )

    client_id = payload["client_id"]
    if not db.query(Client.id).filter(Client.id == client_id).first():
        raise ClientNotFound(client_id)

    sign = payload.get("sign") or DEFAULT_SIGN_BY_ORIGIN.get(origin_kind)
    if sign is None:
        raise InvalidAmount("Adjustments need an explicit sign (1 raises debt, -1 lowers it).")
    amount = quantize_money(payload["amount"])
    if amount <= 0:
        raise InvalidAmount("Adjustment amount must be greater than zero.")

    entry = append_entry(
        db,
        client_id=client_id,
        entry_date=payload.get("entry_date") or date.today(),
        sign=sign,
        amount=amount,
        origin_kind=origin_kind,
        origin_id=payload.get("origin_id"),
        description=payload.get("description"),
    )
    logger.info(
        "Recorded %s of %s (sign %s) for client %s",
        origin_kind.lower(),
        amount,
        sign,
        client_id,
    )
    return entry
