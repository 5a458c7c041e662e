"""Pure allocation planning, independent of the database.

A payment is split into allocation targets before anything is persisted:
explicit requests from the caller are parsed into a tagged union and grouped,
and the automatic mode decides, one invoice at a time, how much of the
remaining amount the next-oldest invoice can take.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Union

from app.ar.errors import InvalidAllocation
from app.models import APPLIES_TO_CREDIT, APPLIES_TO_INVOICE, APPLIES_TO_PRIOR_BALANCE
from app.utils import ZERO, is_settled, quantize_money


@dataclass(frozen=True)
class InvoiceTarget:
    invoice_id: int
    applies_to: str = field(default=APPLIES_TO_INVOICE, init=False)


@dataclass(frozen=True)
class UnassignedCredit:
    applies_to: str = field(default=APPLIES_TO_CREDIT, init=False)


@dataclass(frozen=True)
class PriorBalance:
    applies_to: str = field(default=APPLIES_TO_PRIOR_BALANCE, init=False)


AllocationTarget = Union[InvoiceTarget, UnassignedCredit, PriorBalance]

# Accepted spellings for the null-invoice discriminator; CREDITO is what the
# older delivery app still sends.
_NULL_TARGET_ALIASES = {
    "CREDIT": APPLIES_TO_CREDIT,
    "CREDITO": APPLIES_TO_CREDIT,
    "UNASSIGNED_CREDIT": APPLIES_TO_CREDIT,
    "PRIOR_BALANCE": APPLIES_TO_PRIOR_BALANCE,
    "SALDO_PREVIO": APPLIES_TO_PRIOR_BALANCE,
}


def parse_target(invoice_id: Optional[int], applies_to: Optional[str]) -> AllocationTarget:
    """Resolve one requested allocation into its target.

    A request with an invoice id always targets that invoice; ``applies_to``
    may only repeat ``INVOICE``. Without an invoice id the discriminator picks
    between legacy debt and unassigned credit, defaulting to credit.
    """
    label = (applies_to or "").strip().upper() or None
    if invoice_id is not None:
        if invoice_id <= 0:
            raise InvalidAllocation("invoice_id must be a positive integer or null.")
        if label not in (None, APPLIES_TO_INVOICE):
            raise InvalidAllocation(
                f"applies_to '{applies_to}' cannot be combined with an invoice_id."
            )
        return InvoiceTarget(invoice_id)

    resolved = _NULL_TARGET_ALIASES.get(label or APPLIES_TO_CREDIT)
    if resolved is None:
        raise InvalidAllocation(
            "applies_to must be 'CREDIT' or 'PRIOR_BALANCE' when invoice_id is null."
        )
    if resolved == APPLIES_TO_PRIOR_BALANCE:
        return PriorBalance()
    return UnassignedCredit()


@dataclass(frozen=True)
class AllocationRequest:
    target: AllocationTarget
    amount: Decimal


@dataclass
class ExplicitPlan:
    invoice_amounts: dict[int, Decimal] = field(default_factory=dict)
    prior_balance: Decimal = ZERO
    credit: Decimal = ZERO

    @property
    def requested_total(self) -> Decimal:
        return quantize_money(sum(self.invoice_amounts.values(), ZERO) + self.prior_balance + self.credit)

    @property
    def is_empty(self) -> bool:
        return not self.invoice_amounts and self.prior_balance <= 0 and self.credit <= 0

    def invoice_targets(self) -> list[tuple[int, Decimal]]:
        # ascending id keeps row-lock acquisition order stable across payments
        return sorted(self.invoice_amounts.items())


def build_requests(raw_allocations: Iterable[object]) -> list[AllocationRequest]:
    """Normalize caller payloads (dicts or pydantic models) into requests."""
    requests: list[AllocationRequest] = []
    for raw in raw_allocations:
        if hasattr(raw, "model_dump"):
            data = raw.model_dump()
        elif isinstance(raw, Mapping):
            data = raw
        else:
            raise InvalidAllocation("Invalid allocation payload.")

        amount = data.get("amount")
        if amount is None:
            raise InvalidAllocation("Every allocation needs an amount.")
        amount = quantize_money(amount)
        if amount < 0:
            raise InvalidAllocation("Allocation amounts must be zero or greater.")
        requests.append(
            AllocationRequest(
                target=parse_target(data.get("invoice_id"), data.get("applies_to")),
                amount=amount,
            )
        )
    return requests


def group_explicit_requests(requests: Iterable[AllocationRequest]) -> ExplicitPlan:
    """Merge requests per target; zero amounts carry no allocation."""
    plan = ExplicitPlan()
    for request in requests:
        if request.amount <= 0:
            continue
        target = request.target
        if isinstance(target, InvoiceTarget):
            current = plan.invoice_amounts.get(target.invoice_id, ZERO)
            plan.invoice_amounts[target.invoice_id] = quantize_money(current + request.amount)
        elif isinstance(target, PriorBalance):
            plan.prior_balance = quantize_money(plan.prior_balance + request.amount)
        else:
            plan.credit = quantize_money(plan.credit + request.amount)
    return plan


def fifo_take(remaining: Decimal, outstanding: Decimal) -> Decimal:
    """Amount the next invoice receives in automatic mode."""
    if is_settled(remaining) or outstanding <= 0:
        return ZERO
    return quantize_money(min(remaining, outstanding))


def remainder_to_credit(total_collected: Decimal, applied: Decimal) -> Decimal:
    """Positive remainder that must be banked as unassigned credit, else zero."""
    rest = quantize_money(total_collected - applied)
    if is_settled(rest):
        return ZERO
    return rest
