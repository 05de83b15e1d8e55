"""Tally sales voucher extraction, reconciliation and paginated caching."""

from tally_sales.errors import ParseError, TallyError, TransportError, ValidationError, VoucherNotFound
from tally_sales.models import LineItem, PageResult, QueryWindow, TaxBreakdown, Voucher
from tally_sales.service import SalesService

__all__ = [
    "LineItem",
    "PageResult",
    "ParseError",
    "QueryWindow",
    "SalesService",
    "TallyError",
    "TaxBreakdown",
    "TransportError",
    "ValidationError",
    "Voucher",
    "VoucherNotFound",
]
