"""
Voucher reconstruction from Tally collection exports.

A sales voucher as Tally exports it (abridged):

    <VOUCHER REMOTEID="..." VCHTYPE="Tax Invoice">
        <DATE>20250401</DATE>
        <GUID>...</GUID>
        <VOUCHERTYPENAME>Tax Invoice</VOUCHERTYPENAME>
        <VOUCHERNUMBER>19</VOUCHERNUMBER>
        <PARTYLEDGERNAME>Godrej Properties Limited</PARTYLEDGERNAME>
        <AMOUNT>-35400.00</AMOUNT>
        <ALLINVENTORYENTRIES.LIST>
            <STOCKITEMNAME>Basin Mixer</STOCKITEMNAME>
            <RATE>1000.00/Pcs</RATE>
            <DISCOUNT>10</DISCOUNT>
            <BILLEDQTY>30 Pcs</BILLEDQTY>
            <AMOUNT>27000.00</AMOUNT>
        </ALLINVENTORYENTRIES.LIST>
        <LEDGERENTRIES.LIST>
            <LEDGERNAME>CGST @9%</LEDGERNAME>
            <AMOUNT>2430.00</AMOUNT>
        </LEDGERENTRIES.LIST>
        ...
    </VOUCHER>

Nothing in that shape is guaranteed. The total may be missing (then it is
re-derived from the ledger entries), tax heads are only recognisable by
ledger name, and rate/quantity carry their units inline. Each voucher is
reconstructed in isolation: one malformed record is logged and skipped, the
rest of the batch still comes back.

When both LEDGERENTRIES.LIST and ALLLEDGERENTRIES.LIST are fetched, Tally
repeats the same lines under both tags. Only one of the two is ever read for
a given purpose: tax heads come from LEDGERENTRIES.LIST, the amount fallback
from ALLLEDGERENTRIES.LIST, each falling back to the other tag when absent.
"""

import logging
import xml.etree.ElementTree as ET
from decimal import ROUND_HALF_UP, Decimal
from typing import AbstractSet, Dict, Iterable, List, Optional, Tuple

from tally_sales.models import LineItem, TaxBreakdown, Voucher
from tally_sales.tax_rules import DUTY_HEADS, LedgerBucket, classify_ledger, extract_rate
from tally_sales.xml_tree import (
    child_text,
    format_tally_date,
    iter_tags,
    parse_amount,
    parse_number,
)

logger = logging.getLogger("TallyReconstruction")

DEFAULT_ALLOWED_TYPES = frozenset({"Tax Invoice"})

VOUCHER_TAG = "VOUCHER"
TAX_LEDGER_TAGS = ("LEDGERENTRIES.LIST", "ALLLEDGERENTRIES.LIST")
TOTAL_LEDGER_TAGS = ("ALLLEDGERENTRIES.LIST", "LEDGERENTRIES.LIST")
INVENTORY_ENTRY_TAGS = ("ALLINVENTORYENTRIES.LIST", "INVENTORYENTRIES.LIST")
RATE_DETAIL_TAG = "RATEDETAILS.LIST"


def round2(value: float) -> float:
    """Half-up rounding to paise, matching how Tally prints amounts."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def voucher_type_of(vch_elem: ET.Element) -> str:
    return (
        vch_elem.get("VCHTYPE")
        or vch_elem.get("TYPE")
        or child_text(vch_elem, "VOUCHERTYPENAME", "VOUCHERTYPE")
    ).strip()


def ledger_entries(vch_elem: ET.Element, tags: Tuple[str, ...]) -> List[ET.Element]:
    """Entries under the first tag in ``tags`` that occurs in the voucher."""
    for tag in tags:
        entries = list(iter_tags(vch_elem, tag))
        if entries:
            return entries
    return []


def resolve_amount(vch_elem: ET.Element) -> float:
    """
    Voucher total, always positive.

    Debit/credit signs are not consistent across voucher types, so the sign
    is dropped. Without a usable top-level AMOUNT the total falls back to the
    sum of the voucher's ledger entries.
    """
    amount = abs(parse_amount(child_text(vch_elem, "AMOUNT")))
    if amount:
        return amount
    return sum(
        abs(parse_amount(child_text(entry, "AMOUNT")))
        for entry in ledger_entries(vch_elem, TOTAL_LEDGER_TAGS)
    )


def _split_quantity(text: str) -> Tuple[float, str]:
    """"30 Pcs" -> (30.0, "Pcs")"""
    quantity = parse_number(text)
    unit = "".join(ch for ch in text if ch.isalpha() or ch == " ").strip()
    return quantity, unit


def item_gst_rates(entry: ET.Element) -> Dict[LedgerBucket, float]:
    """Per-head GST rates from an item's RATEDETAILS.LIST blocks."""
    rates = {}
    for detail in iter_tags(entry, RATE_DETAIL_TAG):
        bucket = DUTY_HEADS.get(child_text(detail, "GSTRATEDUTYHEAD"))
        if bucket is not None:
            rates[bucket] = parse_number(child_text(detail, "GSTRATE"))
    return rates


def parse_line_item(entry: ET.Element) -> Optional[LineItem]:
    name = child_text(entry, "STOCKITEMNAME")
    if not name:
        return None

    qty_text = child_text(entry, "BILLEDQTY", "ACTUALQTY")
    quantity, unit = _split_quantity(qty_text)
    rate = parse_number(child_text(entry, "RATE"))
    discount_percent = parse_number(child_text(entry, "DISCOUNT"))

    discount_amount = None
    gross_amount = rate * quantity
    if discount_percent > 0 and gross_amount > 0:
        discount_amount = round2(gross_amount * discount_percent / 100)

    gst_rates = item_gst_rates(entry)
    return LineItem(
        name=name,
        quantity=quantity,
        unit=unit,
        rate=rate,
        amount=abs(parse_amount(child_text(entry, "AMOUNT"))),
        hsn_code=child_text(entry, "GSTHSNNAME", "HSNCODE"),
        discount_amount=discount_amount,
        discount_percent=round2(discount_percent) if discount_percent > 0 else 0.0,
        taxability=child_text(entry, "GSTOVRDNTAXABILITY"),
        type_of_supply=child_text(entry, "GSTOVRDNTYPEOFSUPPLY"),
        cgst_rate=gst_rates.get(LedgerBucket.CGST, 0.0),
        sgst_rate=gst_rates.get(LedgerBucket.SGST, 0.0),
        igst_rate=gst_rates.get(LedgerBucket.IGST, 0.0),
    )


def summarise_ledgers(entries: Iterable[ET.Element]) -> Tuple[TaxBreakdown, float]:
    """
    Fold ledger entries into a tax breakdown and a signed round-off.

    Several lines may land in the same head (one CGST ledger per rate slab),
    so amounts accumulate; the rate is whatever the first named ledger said.
    """
    amounts = {LedgerBucket.CGST: 0.0, LedgerBucket.SGST: 0.0, LedgerBucket.IGST: 0.0}
    rates = {LedgerBucket.CGST: None, LedgerBucket.SGST: None, LedgerBucket.IGST: None}
    round_off = 0.0

    for entry in entries:
        ledger_name = child_text(entry, "LEDGERNAME")
        bucket = classify_ledger(ledger_name)
        if bucket is None:
            continue
        amount = parse_amount(child_text(entry, "AMOUNT"))
        if bucket is LedgerBucket.ROUND_OFF:
            round_off += amount
            continue
        amounts[bucket] += abs(amount)
        if rates[bucket] is None:
            rates[bucket] = extract_rate(ledger_name)

    tax = TaxBreakdown(
        cgst_amount=amounts[LedgerBucket.CGST],
        sgst_amount=amounts[LedgerBucket.SGST],
        igst_amount=amounts[LedgerBucket.IGST],
        cgst_rate=rates[LedgerBucket.CGST],
        sgst_rate=rates[LedgerBucket.SGST],
        igst_rate=rates[LedgerBucket.IGST],
        total_tax=amounts[LedgerBucket.CGST] + amounts[LedgerBucket.SGST] + amounts[LedgerBucket.IGST],
    )
    return tax, round_off


def reconstruct_voucher(
    vch_elem: ET.Element,
    index: int,
    allowed_types: Optional[AbstractSet[str]] = DEFAULT_ALLOWED_TYPES,
) -> Optional[Voucher]:
    """
    Build one Voucher, or None when the record is noise or filtered out.
    ``allowed_types=None`` accepts every voucher type.
    """
    date = child_text(vch_elem, "DATE")
    voucher_number = child_text(vch_elem, "VOUCHERNUMBER")
    party_name = child_text(vch_elem, "PARTYLEDGERNAME", "PARTYNAME")
    amount = resolve_amount(vch_elem)

    if not date and not voucher_number and not party_name and amount == 0:
        return None

    voucher_type = voucher_type_of(vch_elem)
    if allowed_types is not None and voucher_type not in allowed_types:
        return None

    items: List[LineItem] = []
    for entry in iter_tags(vch_elem, *INVENTORY_ENTRY_TAGS):
        item = parse_line_item(entry)
        if item is not None:
            items.append(item)

    tax, round_off = summarise_ledgers(ledger_entries(vch_elem, TAX_LEDGER_TAGS))

    guid = child_text(vch_elem, "GUID")
    return Voucher(
        id=vch_elem.get("REMOTEID") or guid or f"voucher_{index}",
        voucher_number=voucher_number,
        date=format_tally_date(date),
        party_name=party_name,
        voucher_type=voucher_type,
        amount=amount,
        reference=child_text(vch_elem, "REFERENCE"),
        narration=child_text(vch_elem, "NARRATION", "BASICNARRATION"),
        guid=guid,
        items=items,
        tax=tax,
        round_off=round_off,
        total_discount=sum(item.discount_amount or 0.0 for item in items),
        taxable_amount=sum(item.amount for item in items),
    )


def reconstruct(
    doc: ET.Element,
    allowed_types: AbstractSet[str] = DEFAULT_ALLOWED_TYPES,
) -> List[Voucher]:
    """Every allowed-type voucher in the document, in document order."""
    vouchers: List[Voucher] = []
    skipped = 0
    for index, vch_elem in enumerate(doc.iter(VOUCHER_TAG)):
        try:
            vch = reconstruct_voucher(vch_elem, index, allowed_types)
        except Exception as exc:
            logger.warning("Skipping unreadable voucher #%d: %s", index, exc)
            skipped += 1
            continue
        if vch is None:
            skipped += 1
            continue
        vouchers.append(vch)

    logger.info(
        "Reconstructed %d vouchers (%d skipped, types=%s)",
        len(vouchers), skipped, ",".join(sorted(allowed_types)),
    )
    return vouchers


def voucher_guids(vch_elem: ET.Element) -> List[str]:
    return [
        value for value in (
            vch_elem.get("REMOTEID"),
            vch_elem.get("GUID"),
            child_text(vch_elem, "GUID"),
        ) if value
    ]


def find_voucher(doc: ET.Element, guid: str) -> Optional[Voucher]:
    """The voucher identified by ``guid`` regardless of its type, or None."""
    for index, vch_elem in enumerate(doc.iter(VOUCHER_TAG)):
        if guid in voucher_guids(vch_elem):
            return reconstruct_voucher(vch_elem, index, allowed_types=None)
    return None
