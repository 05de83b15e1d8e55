"""
Ledger-name classification for GST and rounding lines.

Tally does not tag ledger entries with a tax head; the only signal is the
ledger name the accountant chose ("CGST @9%", "Output SGST", "Round Off").
Rules are evaluated top to bottom and the first match wins, so "cgst" must be
checked before the broader heads.
"""

import re
from enum import Enum
from typing import Optional, Tuple


class LedgerBucket(str, Enum):
    CGST = "cgst"
    SGST = "sgst"
    IGST = "igst"
    ROUND_OFF = "round_off"


# (substrings, bucket); matched against the lower-cased ledger name
LEDGER_RULES: Tuple[Tuple[Tuple[str, ...], LedgerBucket], ...] = (
    (("cgst",), LedgerBucket.CGST),
    (("sgst", "utgst"), LedgerBucket.SGST),
    (("igst",), LedgerBucket.IGST),
    (("round", "rounding"), LedgerBucket.ROUND_OFF),
)

TAX_BUCKETS = frozenset((LedgerBucket.CGST, LedgerBucket.SGST, LedgerBucket.IGST))

# GSTRATEDUTYHEAD values inside an item's RATEDETAILS.LIST; cess heads are ignored
DUTY_HEADS = {
    "CGST": LedgerBucket.CGST,
    "SGST/UTGST": LedgerBucket.SGST,
    "IGST": LedgerBucket.IGST,
}

_RATE_PATTERN = re.compile(r"@\s*(\d+(?:\.\d+)?)\s*%")


def classify_ledger(ledger_name: str) -> Optional[LedgerBucket]:
    """Bucket for a ledger name, or None for ordinary ledgers."""
    name = (ledger_name or "").lower()
    for needles, bucket in LEDGER_RULES:
        if any(needle in name for needle in needles):
            return bucket
    return None


def extract_rate(ledger_name: str) -> Optional[float]:
    """Rate embedded as ``@<number>%`` ("CGST @9%" -> 9.0)."""
    match = _RATE_PATTERN.search(ledger_name or "")
    return float(match.group(1)) if match else None
