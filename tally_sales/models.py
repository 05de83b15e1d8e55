import re
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tally_sales.errors import ValidationError

_TALLY_DATE = re.compile(r"^\d{8}$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def normalise_tally_date(value: Union[str, date, None]) -> str:
    """Coerce dates and ISO strings to Tally's YYYYMMDD; other text is only stripped."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%Y%m%d")
    value = (value or "").strip()
    if _ISO_DATE.match(value):
        return value.replace("-", "")
    return value


# ============================================================================
# VOUCHER DOMAIN
# ============================================================================

class LineItem(BaseModel):
    """One inventory line (ALLINVENTORYENTRIES.LIST) of a voucher."""

    model_config = ConfigDict(frozen=True)

    name: str
    quantity: float = 0.0
    unit: str = ""
    rate: float = 0.0
    amount: float = 0.0
    hsn_code: str = ""
    discount_amount: Optional[float] = None
    discount_percent: float = 0.0
    taxability: str = ""
    type_of_supply: str = ""
    # from RATEDETAILS.LIST; 0.0 when the export carries no rate details
    cgst_rate: float = 0.0
    sgst_rate: float = 0.0
    igst_rate: float = 0.0

    @property
    def total_gst_rate(self) -> float:
        return self.cgst_rate + self.sgst_rate + self.igst_rate


class TaxBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    cgst_amount: float = 0.0
    sgst_amount: float = 0.0
    igst_amount: float = 0.0
    cgst_rate: Optional[float] = None
    sgst_rate: Optional[float] = None
    igst_rate: Optional[float] = None
    total_tax: float = 0.0


class Voucher(BaseModel):
    """A reconstructed sales voucher. Built once, never patched."""

    model_config = ConfigDict(frozen=True)

    id: str
    voucher_number: str = ""
    date: str = ""
    party_name: str = ""
    voucher_type: str = ""
    amount: float = 0.0
    reference: str = ""
    narration: str = ""
    guid: str = ""
    items: List[LineItem] = Field(default_factory=list)
    tax: TaxBreakdown = Field(default_factory=TaxBreakdown)
    round_off: float = 0.0
    total_discount: float = 0.0
    taxable_amount: float = 0.0


# ============================================================================
# QUERY WINDOW
# ============================================================================

class QueryWindow(BaseModel):
    """
    Identifies one paginated result set: date range, company, page size and
    search filter. Values are normalised on construction so that
    "2025-04-01" and "20250401" or " Acme " and "Acme" name the same window.
    """

    model_config = ConfigDict(frozen=True)

    from_date: str
    to_date: str
    company_name: str
    page_size: int = Field(default=50, ge=1)
    search_filter: str = ""

    @field_validator("from_date", "to_date", mode="before")
    @classmethod
    def _normalise_date(cls, value: Union[str, date, None]) -> str:
        return normalise_tally_date(value)

    @field_validator("company_name", "search_filter", mode="before")
    @classmethod
    def _strip(cls, value: Optional[str]) -> str:
        return (value or "").strip()

    def params(self) -> Dict[str, Union[str, int]]:
        return {
            "fromDate": self.from_date,
            "toDate": self.to_date,
            "companyName": self.company_name,
            "pageSize": self.page_size,
            "searchFilter": self.search_filter,
        }

    def cache_key(self, prefix: str, params: Optional[Dict[str, Union[str, int]]] = None) -> str:
        """``prefix:key:value|key:value...`` with keys sorted."""
        params = self.params() if params is None else params
        joined = "|".join(f"{key}:{params[key]}" for key in sorted(params))
        return f"{prefix}:{joined}"

    def stats_key(self) -> str:
        """Statistics do not depend on paging or search, only on the range."""
        params = self.params()
        return self.cache_key(
            "stats", {k: params[k] for k in ("fromDate", "toDate", "companyName")}
        )

    def validate_for_fetch(self) -> None:
        """Raise ValidationError unless the window can be sent to Tally."""
        if not self.company_name:
            raise ValidationError("No company selected. Please select a company first.")
        for label, value in (("from_date", self.from_date), ("to_date", self.to_date)):
            if not _TALLY_DATE.match(value):
                raise ValidationError(f"{label} must be YYYYMMDD, got {value!r}")
            try:
                datetime.strptime(value, "%Y%m%d")
            except ValueError as exc:
                raise ValidationError(f"{label} is not a calendar date: {value!r}") from exc
        if self.from_date > self.to_date:
            raise ValidationError(
                f"from_date {self.from_date} is after to_date {self.to_date}"
            )


# ============================================================================
# RESULTS
# ============================================================================

class PageResult(BaseModel):
    vouchers: List[Voucher]
    total_count: int
    page: int
    page_size: int
    has_more: bool


class SalesStatistics(BaseModel):
    voucher_count: int = 0
    total_sales: float = 0.0
    total_taxable: float = 0.0
    total_tax: float = 0.0
    total_discount: float = 0.0
    average_voucher_value: float = 0.0
    unique_parties: int = 0
    top_parties: List[Tuple[str, float]] = Field(default_factory=list)
