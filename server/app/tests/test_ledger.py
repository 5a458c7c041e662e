from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app.ar.errors import ClientNotFound, DuplicateOrigin, InvalidAllocation, InvalidAmount
from app.ar.ledger import (
    append_entry,
    balance_for,
    find_or_create_entry,
    list_entries,
    prior_balance_total,
    record_adjustment,
    remove_entries_for_origin,
)
from app.db import Base
from app.models import (
    ORIGIN_ADJUSTMENT,
    ORIGIN_COLLECTION,
    ORIGIN_INVOICE,
    ORIGIN_PRIOR_BALANCE,
    SIGN_CREDIT,
    SIGN_DEBIT,
    Client,
    LedgerEntry,
)


def create_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


def create_client(db, name="Almacen Norte"):
    client = Client(name=name)
    db.add(client)
    db.flush()
    return client


def add_entry(db, client_id, sign, amount, origin_kind, origin_id=None, day=1):
    return append_entry(
        db,
        client_id=client_id,
        entry_date=date(2025, 3, day),
        sign=sign,
        amount=Decimal(amount),
        origin_kind=origin_kind,
        origin_id=origin_id,
    )


def test_balance_is_signed_sum_with_optional_date_range():
    db = create_session()
    client = create_client(db)
    add_entry(db, client.id, SIGN_DEBIT, "100.00", ORIGIN_INVOICE, 1, day=1)
    add_entry(db, client.id, SIGN_DEBIT, "50.00", ORIGIN_INVOICE, 2, day=10)
    add_entry(db, client.id, SIGN_CREDIT, "30.00", ORIGIN_COLLECTION, 1, day=20)

    assert balance_for(db, client.id) == Decimal("120.00")
    assert balance_for(db, client.id, end=date(2025, 3, 15)) == Decimal("150.00")
    assert balance_for(db, client.id, start=date(2025, 3, 5)) == Decimal("20.00")

    recomputed = sum(entry.signed_amount for entry in db.query(LedgerEntry).all())
    assert balance_for(db, client.id) == recomputed


def test_balance_for_client_without_entries_is_zero():
    db = create_session()
    client = create_client(db)
    assert balance_for(db, client.id) == Decimal("0.00")


def test_duplicate_origin_is_rejected():
    db = create_session()
    client = create_client(db)
    add_entry(db, client.id, SIGN_DEBIT, "10.00", ORIGIN_INVOICE, 5)

    with pytest.raises(DuplicateOrigin) as exc_info:
        add_entry(db, client.id, SIGN_DEBIT, "10.00", ORIGIN_INVOICE, 5)
    assert exc_info.value.status_code == 409


def test_origin_clash_caught_at_flush_is_reported_as_duplicate(monkeypatch):
    db = create_session()
    client = create_client(db)
    add_entry(db, client.id, SIGN_DEBIT, "10.00", ORIGIN_INVOICE, 5)
    # another transaction inserted the same origin after the lookup
    monkeypatch.setattr("app.ar.ledger._find_by_origin", lambda *args: None)

    with pytest.raises(DuplicateOrigin):
        add_entry(db, client.id, SIGN_DEBIT, "10.00", ORIGIN_INVOICE, 5)


@pytest.mark.parametrize("origin_id", [None, 9])
def test_other_integrity_errors_are_not_reported_as_duplicates(origin_id):
    db = create_session()

    with pytest.raises(IntegrityError):
        add_entry(db, None, SIGN_DEBIT, "10.00", ORIGIN_ADJUSTMENT, origin_id)


def test_entries_without_origin_id_never_collide():
    db = create_session()
    client = create_client(db)
    add_entry(db, client.id, SIGN_DEBIT, "10.00", ORIGIN_PRIOR_BALANCE)
    add_entry(db, client.id, SIGN_DEBIT, "15.00", ORIGIN_PRIOR_BALANCE)

    assert prior_balance_total(db, client.id) == Decimal("25.00")


def test_find_or_create_returns_existing_entry_on_second_call():
    db = create_session()
    client = create_client(db)
    kwargs = dict(
        client_id=client.id,
        entry_date=date(2025, 3, 1),
        sign=SIGN_DEBIT,
        amount=Decimal("80.00"),
        origin_kind=ORIGIN_INVOICE,
        origin_id=42,
    )

    first, created = find_or_create_entry(db, **kwargs)
    second, created_again = find_or_create_entry(db, **kwargs)

    assert created is True
    assert created_again is False
    assert first.id == second.id
    assert db.query(LedgerEntry).count() == 1
    assert balance_for(db, client.id) == Decimal("80.00")


def test_remove_entries_for_origin_only_touches_that_document():
    db = create_session()
    client = create_client(db)
    add_entry(db, client.id, SIGN_DEBIT, "100.00", ORIGIN_INVOICE, 1)
    add_entry(db, client.id, SIGN_CREDIT, "40.00", ORIGIN_COLLECTION, 1)
    add_entry(db, client.id, SIGN_CREDIT, "10.00", ORIGIN_COLLECTION, 2)

    assert remove_entries_for_origin(db, ORIGIN_COLLECTION, 1) == 1
    assert balance_for(db, client.id) == Decimal("90.00")
    assert remove_entries_for_origin(db, ORIGIN_COLLECTION, 1) == 0


def test_append_entry_rejects_bad_sign_and_negative_amount():
    db = create_session()
    client = create_client(db)
    with pytest.raises(InvalidAmount):
        add_entry(db, client.id, 2, "10.00", ORIGIN_ADJUSTMENT)
    with pytest.raises(InvalidAmount):
        add_entry(db, client.id, SIGN_DEBIT, "-1.00", ORIGIN_ADJUSTMENT)


def test_record_adjustment_defaults_sign_for_notes():
    db = create_session()
    client = create_client(db)

    credit_note = record_adjustment(
        db, {"client_id": client.id, "origin_kind": "CREDIT_NOTE", "amount": Decimal("12.00"), "origin_id": 3}
    )
    debit_note = record_adjustment(db, {"client_id": client.id, "origin_kind": "DEBIT_NOTE", "amount": "20"})

    assert credit_note.sign == SIGN_CREDIT
    assert debit_note.sign == SIGN_DEBIT
    assert balance_for(db, client.id) == Decimal("8.00")


def test_record_adjustment_validates_kind_sign_and_client():
    db = create_session()
    client = create_client(db)
    with pytest.raises(InvalidAllocation):
        record_adjustment(db, {"client_id": client.id, "origin_kind": "INVOICE", "sign": 1, "amount": 5})
    with pytest.raises(InvalidAmount):
        record_adjustment(db, {"client_id": client.id, "origin_kind": "ADJUSTMENT", "amount": 5})
    with pytest.raises(ClientNotFound):
        record_adjustment(db, {"client_id": 999, "sign": 1, "amount": 5})


def test_list_entries_pages_in_date_order_with_balance():
    db = create_session()
    client = create_client(db)
    for day in (5, 1, 3):
        add_entry(db, client.id, SIGN_DEBIT, "10.00", ORIGIN_INVOICE, day, day=day)

    result = list_entries(db, client.id, page=1, limit=2)

    assert [entry.entry_date.day for entry in result["data"]] == [1, 3]
    assert result["meta"] == {"total": 3, "page": 1, "limit": 2, "total_pages": 2}
    assert result["balance"] == Decimal("30.00")
