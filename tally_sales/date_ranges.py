"""
Named reporting periods for the sales register.

Financial years follow the Indian convention: 1 April to 31 March.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from tally_sales.errors import ValidationError

FY_START_MONTH = 4


class DateRangeOption(str, Enum):
    CURRENT_MONTH = "currentMonth"
    LAST_MONTH = "lastMonth"
    LAST_7_DAYS = "last7days"
    LAST_3_MONTHS = "last3months"
    CURRENT_YEAR = "currentYear"
    LAST_YEAR = "lastYear"
    CUSTOM = "custom"


# Offered to users, in display order; last7days is accepted but not listed
OPTION_LABELS = (
    (DateRangeOption.CURRENT_MONTH, "Current Month"),
    (DateRangeOption.LAST_MONTH, "Previous Month"),
    (DateRangeOption.LAST_3_MONTHS, "Last 3 Months"),
    (DateRangeOption.CURRENT_YEAR, "Current Year"),
    (DateRangeOption.LAST_YEAR, "Previous Year"),
    (DateRangeOption.CUSTOM, "Custom Range"),
)


@dataclass(frozen=True)
class DateRange:
    from_date: date
    to_date: date
    label: str

    @property
    def tally_from(self) -> str:
        return self.from_date.strftime("%Y%m%d")

    @property
    def tally_to(self) -> str:
        return self.to_date.strftime("%Y%m%d")


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def financial_year_start(today: date) -> int:
    """Calendar year in which the financial year containing ``today`` began."""
    return today.year if today.month >= FY_START_MONTH else today.year - 1


def _fy_label(start_year: int, suffix: str) -> str:
    return f"FY {start_year}-{str(start_year + 1)[-2:]} ({suffix})"


def resolve_date_range(
    option: Union[DateRangeOption, str],
    custom_from: Optional[date] = None,
    custom_to: Optional[date] = None,
    today: Optional[date] = None,
) -> DateRange:
    """Concrete from/to dates for a named period, relative to ``today``."""
    try:
        option = DateRangeOption(option)
    except ValueError:
        raise ValidationError(f"Unknown date range {option!r}") from None
    today = today or date.today()
    month_start = today.replace(day=1)

    if option is DateRangeOption.LAST_7_DAYS:
        return DateRange(today - timedelta(days=7), today, "Last 7 Days")

    if option is DateRangeOption.LAST_MONTH:
        year, month = _shift_month(today.year, today.month, -1)
        start = date(year, month, 1)
        return DateRange(start, _month_end(year, month), f"{start:%B %Y}")

    if option is DateRangeOption.CURRENT_MONTH:
        return DateRange(month_start, _month_end(today.year, today.month), f"{today:%B %Y} (Current)")

    if option is DateRangeOption.LAST_3_MONTHS:
        year, month = _shift_month(today.year, today.month, -3)
        return DateRange(date(year, month, 1), today, "Last 3 Months")

    if option is DateRangeOption.CURRENT_YEAR:
        start_year = financial_year_start(today)
        return DateRange(
            date(start_year, FY_START_MONTH, 1), today,
            _fy_label(start_year, "Current Financial Year"),
        )

    if option is DateRangeOption.LAST_YEAR:
        start_year = financial_year_start(today) - 1
        return DateRange(
            date(start_year, FY_START_MONTH, 1), date(start_year + 1, 3, 31),
            _fy_label(start_year, "Previous Financial Year"),
        )

    start = custom_from or month_start
    end = custom_to or today
    if start > end:
        raise ValidationError(f"Custom range starts after it ends: {start} > {end}")
    return DateRange(start, end, f"{start:%d/%m/%Y} - {end:%d/%m/%Y}")


def date_range_options(today: Optional[date] = None) -> List[Dict[str, str]]:
    """Listed presets with the dates each one resolves to today."""
    options = []
    for option, label in OPTION_LABELS:
        resolved = resolve_date_range(option, today=today)
        options.append({
            "value": option.value,
            "label": label,
            "description": resolved.label,
            "from_date": resolved.tally_from,
            "to_date": resolved.tally_to,
        })
    return options
