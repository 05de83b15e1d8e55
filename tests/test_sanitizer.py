import pytest

from tally_sales.sanitizer import sanitize


def test_strips_invalid_decimal_and_hex_references():
    raw = "<N>Acme&#4; Traders&#x1F;&#x0b;</N>"
    assert sanitize(raw) == "<N>Acme Traders</N>"


def test_keeps_tab_newline_and_carriage_return_references():
    raw = "<N>a&#9;b&#10;c&#13;d&#x0A;</N>"
    assert sanitize(raw) == raw


def test_strips_raw_control_bytes_but_not_whitespace():
    raw = "<N>a\x00b\x08c\x0bd\x1fe\tf\ng\rh</N>"
    assert sanitize(raw) == "<N>abcde\tf\ng\rh</N>"


def test_leaves_ordinary_references_alone():
    raw = "<N>Tom &amp; Jerry &#8377; &#65;</N>"
    assert sanitize(raw) == raw


@pytest.mark.parametrize("raw", ["", "<ENVELOPE/>"])
def test_clean_input_unchanged(raw):
    assert sanitize(raw) == raw


@pytest.mark.parametrize(
    "raw",
    [
        "&#&#4;4;",
        "&#\x014;",
        "<A>&#x&#5;1;</A>",
        "plain text",
        "&#3&#1;1;\x02",
    ],
)
def test_idempotent(raw):
    once = sanitize(raw)
    assert sanitize(once) == once


def test_spliced_reference_is_removed_too():
    assert sanitize("&#&#4;4;") == ""
