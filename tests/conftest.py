"""Shared fixtures: sample Tally exports and a fake clock."""

import os
import tempfile

# Keep log files out of the working tree when the API lifespan runs.
os.environ.setdefault("TALLY_LOG_DIR", os.path.join(tempfile.gettempdir(), "tally_sales_test_logs"))

import pytest


def voucher_xml(
    number,
    vch_type="Tax Invoice",
    party="Acme Traders",
    date="20250401",
    amount="-1180.00",
    remote_id=None,
    body="",
):
    remote = f' REMOTEID="{remote_id}"' if remote_id else ""
    amount_tag = f"<AMOUNT>{amount}</AMOUNT>" if amount is not None else ""
    return f"""
    <VOUCHER{remote} VCHTYPE="{vch_type}">
        <DATE>{date}</DATE>
        <VOUCHERTYPENAME>{vch_type}</VOUCHERTYPENAME>
        <VOUCHERNUMBER>{number}</VOUCHERNUMBER>
        <PARTYLEDGERNAME>{party}</PARTYLEDGERNAME>
        {amount_tag}
        {body}
    </VOUCHER>"""


def envelope(*vouchers):
    return (
        "<ENVELOPE><BODY><DATA><COLLECTION>"
        + "".join(vouchers)
        + "</COLLECTION></DATA></BODY></ENVELOPE>"
    )


def register_xml(count, vch_type="Tax Invoice"):
    return envelope(*(
        voucher_xml(str(i), vch_type=vch_type, remote_id=f"rid-{i}", amount=f"-{100 + i}.00")
        for i in range(1, count + 1)
    ))


SCENARIO_XML = envelope(
    voucher_xml("PF-1", vch_type="Proforma Invoice", remote_id="pf-1"),
    voucher_xml(
        "TI-1",
        remote_id="ti-1",
        amount="-354.00",
        body="""
        <ALLINVENTORYENTRIES.LIST>
            <STOCKITEMNAME>Basin Mixer</STOCKITEMNAME>
            <RATE>50.00/Pcs</RATE>
            <BILLEDQTY>2 Pcs</BILLEDQTY>
            <AMOUNT>100.00</AMOUNT>
        </ALLINVENTORYENTRIES.LIST>
        <ALLINVENTORYENTRIES.LIST>
            <STOCKITEMNAME>Angle Valve</STOCKITEMNAME>
            <RATE>100.00/Pcs</RATE>
            <BILLEDQTY>2 Pcs</BILLEDQTY>
            <AMOUNT>200.00</AMOUNT>
        </ALLINVENTORYENTRIES.LIST>
        <LEDGERENTRIES.LIST>
            <LEDGERNAME>Acme Traders</LEDGERNAME>
            <AMOUNT>-354.00</AMOUNT>
        </LEDGERENTRIES.LIST>
        <LEDGERENTRIES.LIST>
            <LEDGERNAME>CGST @9%</LEDGERNAME>
            <AMOUNT>27.00</AMOUNT>
        </LEDGERENTRIES.LIST>
        <LEDGERENTRIES.LIST>
            <LEDGERNAME>SGST @9%</LEDGERNAME>
            <AMOUNT>27.00</AMOUNT>
        </LEDGERENTRIES.LIST>
        """,
    ),
    voucher_xml("TI-2", remote_id="ti-2", party="Blue Hardware"),
)


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
