from collections import defaultdict
from typing import Dict, Iterable

from tally_sales.models import SalesStatistics, Voucher
from tally_sales.reconstruction import round2

TOP_PARTIES = 5


def compute_statistics(vouchers: Iterable[Voucher], top_n: int = TOP_PARTIES) -> SalesStatistics:
    """Totals for a date range, plus the parties that bought the most."""
    by_party: Dict[str, float] = defaultdict(float)
    count = 0
    total_sales = total_taxable = total_tax = total_discount = 0.0

    for vch in vouchers:
        count += 1
        total_sales += vch.amount
        total_taxable += vch.taxable_amount
        total_tax += vch.tax.total_tax
        total_discount += vch.total_discount
        by_party[vch.party_name or "Unknown Customer"] += vch.amount

    top = sorted(by_party.items(), key=lambda kv: (-kv[1], kv[0]))[:top_n]
    return SalesStatistics(
        voucher_count=count,
        total_sales=round2(total_sales),
        total_taxable=round2(total_taxable),
        total_tax=round2(total_tax),
        total_discount=round2(total_discount),
        average_voucher_value=round2(total_sales / count) if count else 0.0,
        unique_parties=len(by_party),
        top_parties=[(party, round2(total)) for party, total in top],
    )
