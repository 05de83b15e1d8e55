"""
Tally response cleaning.

Tally happily emits character references such as ``&#4;`` (and the raw bytes
themselves) inside exported text fields. XML 1.0 forbids every control
character except tab, newline and carriage return, so ElementTree rejects the
whole document. Both forms are stripped here before parsing.
"""

import re

ALLOWED_CONTROL_CODES = frozenset((0x09, 0x0A, 0x0D))

_CHAR_REF = re.compile(r"&#(?:([0-9]+)|[xX]([0-9a-fA-F]+));")
_RAW_CONTROL = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


def _is_disallowed(code: int) -> bool:
    return code < 0x20 and code not in ALLOWED_CONTROL_CODES


def _drop_invalid_ref(match: "re.Match[str]") -> str:
    dec, hexa = match.groups()
    code = int(dec) if dec is not None else int(hexa, 16)
    return "" if _is_disallowed(code) else match.group(0)


def sanitize(raw: str) -> str:
    """Remove invalid control character references and raw control bytes."""
    if not raw:
        return raw

    # Removing one reference can splice a new one together ("&#&#4;4;"),
    # so strip until nothing changes.
    cleaned = raw
    while True:
        stripped = _RAW_CONTROL.sub("", _CHAR_REF.sub(_drop_invalid_ref, cleaned))
        if stripped == cleaned:
            return cleaned
        cleaned = stripped
