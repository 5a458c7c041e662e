from .money import MONEY_TOLERANCE, ZERO, exceeds, is_settled, quantize_money
from .pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, page_meta, page_window, paginate

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "MONEY_TOLERANCE",
    "ZERO",
    "exceeds",
    "is_settled",
    "page_meta",
    "page_window",
    "paginate",
    "quantize_money",
]
