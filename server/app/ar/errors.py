"""Domain errors raised by the receivables services.

Every error is a ``ValueError`` so callers that only care about "the request
was rejected" can keep catching that. Routers rely on ``status_code`` and
``code`` to render a response.
"""

from typing import Iterable, Optional


class ReceivablesError(ValueError):
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, tips: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.tips = list(tips or [])


# Validation

class InvalidAmount(ReceivablesError):
    code = "INVALID_AMOUNT"


class InvalidAllocation(ReceivablesError):
    code = "INVALID_ALLOCATION"


class AllocationExceedsTotal(ReceivablesError):
    code = "ALLOCATION_EXCEEDS_TOTAL"


class UnknownClients(ReceivablesError):
    code = "UNKNOWN_CLIENTS"

    def __init__(self, client_ids):
        ids = ", ".join(str(client_id) for client_id in client_ids)
        super().__init__("Some clients do not exist.", tips=[f"Unknown client ids: {ids}"])
        self.client_ids = list(client_ids)


# Not found

class NotFoundError(ReceivablesError):
    status_code = 404
    code = "NOT_FOUND"


class ClientNotFound(NotFoundError):
    def __init__(self, client_id: int):
        super().__init__("Client not found.")
        self.client_id = client_id


class SellerNotFound(NotFoundError):
    def __init__(self, seller_id: int):
        super().__init__("Seller not found.")
        self.seller_id = seller_id


class InvoiceNotFound(NotFoundError):
    def __init__(self, invoice_id: int):
        super().__init__(f"Invoice #{invoice_id} not found.")
        self.invoice_id = invoice_id


class CollectionNotFound(NotFoundError):
    def __init__(self, collection_id: int):
        super().__init__("Collection not found.")
        self.collection_id = collection_id


# Business rules

class OverpaymentRejected(ReceivablesError):
    code = "OVERPAYMENT_REJECTED"


class InvoiceNotOwnedByClient(ReceivablesError):
    code = "INVOICE_NOT_OWNED_BY_CLIENT"


class InvoiceNotConfirmed(ReceivablesError):
    code = "INVOICE_NOT_CONFIRMED"


class InvoiceNotReceivable(ReceivablesError):
    code = "INVOICE_NOT_RECEIVABLE"


class InvoiceHasPayments(ReceivablesError):
    code = "INVOICE_HAS_PAYMENTS"


class ExceedsPriorBalance(ReceivablesError):
    code = "EXCEEDS_PRIOR_BALANCE"


class SellerInactive(ReceivablesError):
    code = "SELLER_INACTIVE"


# Uniqueness

class ConflictError(ReceivablesError):
    status_code = 409
    code = "CONFLICT"


class DuplicateOrigin(ConflictError):
    code = "DUPLICATE_ORIGIN"

    def __init__(self, origin_kind: str, origin_id: int):
        super().__init__(f"A ledger entry for {origin_kind} #{origin_id} already exists.")
        self.origin_kind = origin_kind
        self.origin_id = origin_id


class ClientInUse(ConflictError):
    code = "CLIENT_IN_USE"
