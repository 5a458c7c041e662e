from decimal import Decimal

import pytest

from app.ar.allocation import (
    InvoiceTarget,
    PriorBalance,
    UnassignedCredit,
    build_requests,
    fifo_take,
    group_explicit_requests,
    parse_target,
    remainder_to_credit,
)
from app.ar.errors import InvalidAllocation


def test_parse_target_defaults_null_invoice_to_credit():
    assert parse_target(None, None) == UnassignedCredit()
    assert parse_target(None, "credito") == UnassignedCredit()
    assert parse_target(None, "PRIOR_BALANCE") == PriorBalance()
    assert parse_target(None, "saldo_previo") == PriorBalance()
    assert parse_target(7, None) == InvoiceTarget(7)
    assert parse_target(7, "invoice") == InvoiceTarget(7)


def test_parse_target_rejects_unknown_or_conflicting_discriminators():
    with pytest.raises(InvalidAllocation):
        parse_target(None, "REFUND")
    with pytest.raises(InvalidAllocation):
        parse_target(3, "PRIOR_BALANCE")
    with pytest.raises(InvalidAllocation):
        parse_target(0, None)


def test_build_requests_rejects_negative_amounts():
    with pytest.raises(InvalidAllocation):
        build_requests([{"invoice_id": 1, "amount": Decimal("-1")}])


def test_group_explicit_requests_merges_targets_and_skips_zeros():
    requests = build_requests(
        [
            {"invoice_id": 9, "amount": "10.00"},
            {"invoice_id": 2, "amount": "5.005"},
            {"invoice_id": 9, "amount": "2.50"},
            {"invoice_id": 4, "amount": "0"},
            {"invoice_id": None, "amount": "30", "applies_to": "PRIOR_BALANCE"},
            {"invoice_id": None, "amount": "1.25"},
        ]
    )
    plan = group_explicit_requests(requests)

    assert plan.invoice_targets() == [(2, Decimal("5.01")), (9, Decimal("12.50"))]
    assert plan.prior_balance == Decimal("30.00")
    assert plan.credit == Decimal("1.25")
    assert plan.requested_total == Decimal("48.76")
    assert not plan.is_empty


def test_all_zero_requests_make_an_empty_plan():
    plan = group_explicit_requests(build_requests([{"invoice_id": 1, "amount": 0}]))
    assert plan.is_empty


def test_fifo_take_is_bounded_by_remaining_and_outstanding():
    assert fifo_take(Decimal("120"), Decimal("100")) == Decimal("100.00")
    assert fifo_take(Decimal("20"), Decimal("50")) == Decimal("20.00")
    assert fifo_take(Decimal("0.01"), Decimal("50")) == Decimal("0.00")
    assert fifo_take(Decimal("20"), Decimal("0")) == Decimal("0.00")


def test_remainder_to_credit_ignores_rounding_dust():
    assert remainder_to_credit(Decimal("100"), Decimal("60")) == Decimal("40.00")
    assert remainder_to_credit(Decimal("100"), Decimal("99.99")) == Decimal("0.00")
    assert remainder_to_credit(Decimal("100"), Decimal("100.01")) == Decimal("0.00")
