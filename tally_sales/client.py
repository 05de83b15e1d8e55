"""
Tally XML API transport.

Sales vouchers are pulled with a Collection export over ``Voucher`` (not a
TDL report and not "Export Data", which returns an import prompt on some
Tally releases). The FETCH list names the header fields explicitly and asks
for ledger and inventory entries; ``NATIVEMETHOD=*`` would drag in every
field and megabytes of invalid character references.
"""

import logging
import re
import time
from typing import Optional
from xml.sax.saxutils import escape

import requests

from tally_sales import config
from tally_sales.errors import TransportError
from tally_sales.models import QueryWindow

logger = logging.getLogger("TallyClient")

_MISSING_COMPANY = re.compile(r"Could not set 'SVCurrentCompany' to '([^']*)'")

SALES_COLLECTION_ID = "SalesVchCollection"
VOUCHER_DETAIL_COLLECTION_ID = "VchDetailCollection"


def build_sales_voucher_request(window: QueryWindow) -> str:
    return f"""
        <ENVELOPE>
            <HEADER>
                <VERSION>1</VERSION>
                <TALLYREQUEST>Export</TALLYREQUEST>
                <TYPE>Collection</TYPE>
                <ID>{SALES_COLLECTION_ID}</ID>
            </HEADER>
            <BODY>
                <DESC>
                    <STATICVARIABLES>
                        <SVEXPORTFORMAT>$$SysName:XML</SVEXPORTFORMAT>
                        <SVCURRENTCOMPANY>{escape(window.company_name)}</SVCURRENTCOMPANY>
                        <SVFROMDATE TYPE="Date">{window.from_date}</SVFROMDATE>
                        <SVTODATE TYPE="Date">{window.to_date}</SVTODATE>
                    </STATICVARIABLES>
                    <TDL>
                        <TDLMESSAGE>
                            <COLLECTION NAME="{SALES_COLLECTION_ID}" ISMODIFY="No">
                                <TYPE>Voucher</TYPE>
                                <FETCH>Date, VoucherNumber, VoucherTypeName, PartyLedgerName,
                                       Amount, Reference, Narration, GUID</FETCH>
                                <FETCH>LedgerEntries, AllLedgerEntries</FETCH>
                                <FETCH>AllInventoryEntries</FETCH>
                            </COLLECTION>
                        </TDLMESSAGE>
                    </TDL>
                </DESC>
            </BODY>
        </ENVELOPE>"""


def build_voucher_detail_request(company_name: str, guid: str) -> str:
    """One voucher by GUID (or remote id), with its items and rate details."""
    guid_literal = escape(guid.replace('"', ""))
    return f"""
        <ENVELOPE>
            <HEADER>
                <VERSION>1</VERSION>
                <TALLYREQUEST>Export</TALLYREQUEST>
                <TYPE>Collection</TYPE>
                <ID>{VOUCHER_DETAIL_COLLECTION_ID}</ID>
            </HEADER>
            <BODY>
                <DESC>
                    <STATICVARIABLES>
                        <SVEXPORTFORMAT>$$SysName:XML</SVEXPORTFORMAT>
                        <SVCURRENTCOMPANY>{escape(company_name)}</SVCURRENTCOMPANY>
                    </STATICVARIABLES>
                    <TDL>
                        <TDLMESSAGE>
                            <COLLECTION NAME="{VOUCHER_DETAIL_COLLECTION_ID}" ISMODIFY="No">
                                <TYPE>Voucher</TYPE>
                                <FETCH>Date, VoucherNumber, VoucherTypeName, PartyLedgerName,
                                       Amount, Reference, Narration, GUID</FETCH>
                                <FETCH>LedgerEntries</FETCH>
                                <FETCH>AllInventoryEntries, AllInventoryEntries.RateDetails</FETCH>
                                <FILTER>VchByGuid</FILTER>
                            </COLLECTION>
                            <SYSTEM TYPE="Formulae" NAME="VchByGuid">$GUID = "{guid_literal}" OR $RemoteID = "{guid_literal}"</SYSTEM>
                        </TDLMESSAGE>
                    </TDL>
                </DESC>
            </BODY>
        </ENVELOPE>"""


class TallyClient:
    """Posts XML envelopes to the Tally gateway and returns the raw body."""

    def __init__(
        self,
        url: str = config.TALLY_URL,
        timeout: int = config.TALLY_TIMEOUT,
        max_retries: int = config.TALLY_MAX_RETRIES,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.session = session or requests.Session()

        logger.info("TallyClient init | url=%s | timeout=%ss | attempts=%d", url, timeout, self.max_retries)

    def fetch_raw(self, xml_request: str) -> str:
        """POST ``xml_request``; return the body or raise TransportError."""
        headers = {"Content-Type": "application/xml", "Cache-Control": "no-cache"}
        last_error = "no attempt made"

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.session.post(
                    self.url, data=xml_request.encode("utf-8"), headers=headers, timeout=self.timeout
                )
            except requests.exceptions.ConnectionError:
                last_error = f"Unable to connect to Tally server at {self.url}"
                logger.warning("Connection failed to %s (attempt %d/%d)", self.url, attempt, self.max_retries)
            except requests.exceptions.Timeout:
                last_error = f"Connection timeout to {self.url} after {self.timeout}s"
                logger.warning("Timeout after %ds (attempt %d/%d)", self.timeout, attempt, self.max_retries)
            except requests.exceptions.RequestException as exc:
                last_error = f"Request to {self.url} failed: {exc}"
                logger.warning("Request error (attempt %d/%d): %s", attempt, self.max_retries, exc)
            else:
                body = resp.text
                missing = _MISSING_COMPANY.search(body)
                if missing:
                    raise TransportError(f'Company "{missing.group(1)}" does not exist in Tally or is not open')
                if resp.status_code == 200:
                    logger.debug("XML API OK (%d bytes) attempt=%d", len(body), attempt)
                    return body
                last_error = f"Tally API error: HTTP {resp.status_code}"
                logger.warning("Tally HTTP %d (attempt %d/%d)", resp.status_code, attempt, self.max_retries)

            if attempt < self.max_retries:
                time.sleep(attempt * 2)

        logger.error("All %d XML API attempts failed: %s", self.max_retries, last_error)
        raise TransportError(last_error)

    def fetch_sales_vouchers(self, window: QueryWindow) -> str:
        return self.fetch_raw(build_sales_voucher_request(window))

    def fetch_voucher_detail(self, company_name: str, guid: str) -> str:
        return self.fetch_raw(build_voucher_detail_request(company_name, guid))
