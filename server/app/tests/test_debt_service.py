from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.ar.collections import create_collection
from app.ar.debt import (
    client_debt,
    debt_summary,
    invoice_outstanding,
    rebuild_amount_settled,
    settlement_drift,
    summarize_debts,
)
from app.ar.invoices import confirm_invoice
from app.ar.prior_balances import load_prior_balance
from app.db import Base, unit_of_work
from app.models import Client


TODAY = date(2025, 7, 1)


def create_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


def create_client(db, name, document=None):
    client = Client(name=name, document=document)
    db.add(client)
    db.flush()
    return client


def create_invoice(db, client_id, total, invoice_date=date(2025, 6, 1)):
    return confirm_invoice(db, {"client_id": client_id, "total": Decimal(total), "invoice_date": invoice_date})


def test_invoice_outstanding_takes_larger_settled_figure():
    assert invoice_outstanding(Decimal("100"), Decimal("30"), Decimal("50")) == Decimal("50.00")
    assert invoice_outstanding(Decimal("100"), Decimal("70"), Decimal("50")) == Decimal("30.00")
    assert invoice_outstanding(Decimal("100"), Decimal("120"), Decimal("0")) == Decimal("0.00")
    assert invoice_outstanding(Decimal("100"), None, None) == Decimal("100.00")


def test_summarize_debts_folds_invoices_and_prior_balances():
    invoice_rows = [
        {"client_id": 1, "invoice_date": date(2025, 6, 1), "total": Decimal("100"), "amount_settled": Decimal("0"), "allocated": Decimal("40")},
        {"client_id": 1, "invoice_date": date(2025, 5, 1), "total": Decimal("50"), "amount_settled": Decimal("0"), "allocated": Decimal("0")},
        {"client_id": 1, "invoice_date": date(2025, 4, 1), "total": Decimal("80"), "amount_settled": Decimal("80"), "allocated": Decimal("80")},
        {"client_id": 2, "invoice_date": date(2025, 6, 20), "total": Decimal("10"), "amount_settled": Decimal("10"), "allocated": Decimal("0")},
    ]
    prior_rows = [
        {"client_id": 1, "pending": Decimal("25"), "first_date": date(2024, 12, 31)},
        {"client_id": 3, "pending": Decimal("500"), "first_date": date(2025, 6, 21)},
        {"client_id": 4, "pending": Decimal("0"), "first_date": date(2025, 1, 1)},
    ]

    rows = summarize_debts(invoice_rows, prior_rows, TODAY)

    assert set(rows) == {1, 3}
    assert rows[1]["invoice_debt"] == Decimal("110.00")
    assert rows[1]["prior_balance_debt"] == Decimal("25.00")
    assert rows[1]["total_debt"] == Decimal("135.00")
    assert rows[1]["open_invoices"] == 2
    assert rows[1]["oldest_invoice_date"] == date(2025, 5, 1)
    assert rows[1]["days_overdue"] == 61
    assert rows[3]["invoice_debt"] == Decimal("0")
    assert rows[3]["days_overdue"] == 10


def test_client_debt_breakdown():
    db = create_session()
    client = create_client(db, "Despensa Lopez")
    first = create_invoice(db, client.id, "100.00", date(2025, 6, 1))
    second = create_invoice(db, client.id, "40.00", date(2025, 6, 11))
    load_prior_balance(db, client_id=client.id, amount=Decimal("50.00"), entry_date=date(2024, 12, 31))
    create_collection(
        db,
        client_id=client.id,
        total_collected=Decimal("60.00"),
        collection_date=date(2025, 6, 15),
        allocations=[
            {"invoice_id": first.id, "amount": "30"},
            {"invoice_id": None, "amount": "20", "applies_to": "PRIOR_BALANCE"},
        ],
    )
    db.commit()

    debt = client_debt(db, client.id, today=TODAY)

    assert [(row["invoice_id"], row["outstanding"], row["days_overdue"]) for row in debt["invoices"]] == [
        (first.id, Decimal("70.00"), 30),
        (second.id, Decimal("40.00"), 20),
    ]
    assert debt["invoice_debt"] == Decimal("110.00")
    assert debt["prior_balance_pending"] == Decimal("30.00")
    assert debt["prior_balance_allocated"] == Decimal("20.00")
    assert debt["unassigned_credit"] == Decimal("10.00")
    assert debt["total_debt"] == Decimal("140.00")
    assert debt["ledger_balance"] == Decimal("130.00")


def test_client_debt_honours_legacy_settled_amounts():
    db = create_session()
    client = create_client(db, "Kiosco Norte")
    invoice = create_invoice(db, client.id, "100.00")
    invoice.amount_settled = Decimal("60.00")
    db.commit()

    debt = client_debt(db, client.id, today=TODAY)

    assert debt["invoices"][0]["amount_settled"] == Decimal("60.00")
    assert debt["invoice_debt"] == Decimal("40.00")


def test_debt_summary_orders_filters_and_pages():
    db = create_session()
    small = create_client(db, "Almacen Sur", document="20-111")
    large = create_client(db, "Despensa Lopez", document="20-222")
    settled = create_client(db, "Kiosco Norte")
    legacy = create_client(db, "Mercado Lopez")
    create_invoice(db, small.id, "100.00")
    create_invoice(db, large.id, "300.00")
    create_invoice(db, settled.id, "50.00")
    create_collection(db, client_id=settled.id, total_collected=Decimal("50.00"))
    load_prior_balance(db, client_id=legacy.id, amount=Decimal("100.00"), entry_date=date(2025, 1, 1))
    db.commit()

    summary = debt_summary(db, today=TODAY)
    assert [row["client_id"] for row in summary["data"]] == [large.id, small.id, legacy.id]
    assert summary["meta"]["total"] == 3
    assert summary["totals"] == {
        "invoice_debt": Decimal("400.00"),
        "prior_balance_debt": Decimal("100.00"),
        "total_debt": Decimal("500.00"),
    }

    assert [row["client_id"] for row in debt_summary(db, min_balance=Decimal("150"), today=TODAY)["data"]] == [large.id]
    assert [row["client_id"] for row in debt_summary(db, search="lopez", today=TODAY)["data"]] == [large.id, legacy.id]
    assert [row["client_id"] for row in debt_summary(db, search="20-111", today=TODAY)["data"]] == [small.id]

    second_page = debt_summary(db, page=2, limit=1, today=TODAY)
    assert [row["client_id"] for row in second_page["data"]] == [small.id]
    assert second_page["meta"]["total_pages"] == 3


def test_settlement_drift_and_rebuild():
    db = create_session()
    client = create_client(db, "Despensa Lopez")
    backed = create_invoice(db, client.id, "100.00")
    legacy = create_invoice(db, client.id, "100.00")
    create_collection(
        db,
        client_id=client.id,
        total_collected=Decimal("40.00"),
        allocations=[{"invoice_id": backed.id, "amount": "40"}],
    )
    backed.amount_settled = Decimal("10.00")
    legacy.amount_settled = Decimal("25.00")
    db.commit()

    drift = settlement_drift(db)
    assert [(row["invoice_id"], row["difference"]) for row in drift] == [
        (backed.id, Decimal("-30.00")),
        (legacy.id, Decimal("25.00")),
    ]

    with unit_of_work(db):
        result = rebuild_amount_settled(db)
    assert result == {"updated_invoice_ids": [backed.id], "needs_review_invoice_ids": [legacy.id]}
    assert backed.amount_settled == Decimal("40.00")
    assert legacy.amount_settled == Decimal("25.00")

    with unit_of_work(db):
        forced = rebuild_amount_settled(db, include_unbacked=True)
    assert forced["updated_invoice_ids"] == [legacy.id]
    assert legacy.amount_settled == Decimal("0.00")
    assert settlement_drift(db) == []
