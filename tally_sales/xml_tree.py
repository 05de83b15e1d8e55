"""
Structural parsing of Tally XML plus the defensive lookups used on top of it.

Tally exports are loosely typed: any field may be missing, repeated, or
carry units and separators inside what should be a number. Every helper here
returns a zero value instead of raising.
"""

import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Iterator

from tally_sales.errors import ParseError
from tally_sales.sanitizer import sanitize

_NON_NUMERIC = re.compile(r"[^\d.-]")

DISPLAY_DATE_FORMAT = "%d/%m/%Y"


def parse(text: str) -> ET.Element:
    """Sanitize and parse a raw Tally response into an element tree root."""
    cleaned = sanitize(text or "")
    if not cleaned.strip():
        raise ParseError("Empty response from Tally")
    try:
        return ET.fromstring(cleaned)
    except ET.ParseError as exc:
        raise ParseError(f"Tally returned malformed XML: {exc}") from exc


def child_text(node: ET.Element, *tags: str) -> str:
    """Stripped text of the first direct child among ``tags`` that has any."""
    for tag in tags:
        child = node.find(tag)
        if child is not None and child.text and child.text.strip():
            return child.text.strip()
    return ""


def iter_tags(node: ET.Element, *tags: str) -> Iterator[ET.Element]:
    """Descendants of ``node`` whose tag is one of ``tags``, in document order."""
    wanted = set(tags)
    for elem in node.iter():
        if elem is not node and elem.tag in wanted:
            yield elem


def parse_number(text: str) -> float:
    """
    Pull a float out of Tally's decorated numbers.

    "100.50/Pcs" -> 100.5, "1,250.00" -> 1250.0, "" -> 0.0
    """
    if not text:
        return 0.0
    try:
        return float(_NON_NUMERIC.sub("", text))
    except ValueError:
        return 0.0


def parse_amount(text: str) -> float:
    """Signed amount; Tally marks debits negative in collection exports."""
    if not text:
        return 0.0
    try:
        return float(text.replace(",", "").strip())
    except ValueError:
        return parse_number(text)


def format_tally_date(date_str: str) -> str:
    """
    Render a Tally date as DD/MM/YYYY.
    Handles: YYYYMMDD, d-MMM-YY, d-MMM-YYYY, DD-MM-YYYY, YYYY-MM-DD.
    Anything unrecognised is returned as-is.
    """
    if not date_str:
        return ""
    date_str = date_str.strip()

    for fmt in ("%Y%m%d", "%d-%b-%Y", "%d-%b-%y", "%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(date_str, fmt).strftime(DISPLAY_DATE_FORMAT)
        except ValueError:
            continue

    return date_str
