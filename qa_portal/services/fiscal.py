"""
Fiscal calendar helpers.

The fiscal year starts in October and is numbered in the Buddhist era.
October-December belong to the *next* fiscal year (calendar year + 544),
January-September to the current one (calendar year + 543).

Examples:
    2024-10-15 -> fiscal 2568, month index 0 (ตุลาคม)
    2025-01-15 -> fiscal 2568, month index 3 (มกราคม)
    2025-09-30 -> fiscal 2568, month index 11 (กันยายน)
    2025-10-01 -> fiscal 2569, month index 0
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from qa_portal.time_config import THAI_ERA_OFFSET, local_now, to_local

FISCAL_MONTHS = [
    "ตุลาคม",
    "พฤศจิกายน",
    "ธันวาคม",
    "มกราคม",
    "กุมภาพันธ์",
    "มีนาคม",
    "เมษายน",
    "พฤษภาคม",
    "มิถุนายน",
    "กรกฎาคม",
    "สิงหาคม",
    "กันยายน",
]

FISCAL_START_MONTH = 10  # October


@dataclass(frozen=True)
class FiscalPeriod:
    fiscal_year: int
    month_index: int
    month: str


def fiscal_period_for(moment: Union[date, datetime]) -> FiscalPeriod:
    """Map a calendar date to its fiscal (year, month)."""
    if moment.month >= FISCAL_START_MONTH:
        fiscal_year = moment.year + THAI_ERA_OFFSET + 1
        index = moment.month - FISCAL_START_MONTH
    else:
        fiscal_year = moment.year + THAI_ERA_OFFSET
        index = moment.month + 2

    return FiscalPeriod(fiscal_year=fiscal_year, month_index=index, month=FISCAL_MONTHS[index])


def current_fiscal_period(now: Optional[datetime] = None) -> FiscalPeriod:
    """Fiscal period for ``now`` in the app timezone (defaults to the current time)."""
    if now is None:
        now = local_now()
    elif now.tzinfo is not None:
        now = to_local(now)
    return fiscal_period_for(now)


def month_index(label: str) -> int:
    """Position of a month label in fiscal order. Raises ValueError if unknown."""
    try:
        return FISCAL_MONTHS.index(label)
    except ValueError:
        raise ValueError(f"Unknown fiscal month: {label!r}")


def is_fiscal_month(label: str) -> bool:
    return label in FISCAL_MONTHS


def month_sort_key(label: str) -> int:
    """Sort key that puts unknown labels after September."""
    if label in FISCAL_MONTHS:
        return FISCAL_MONTHS.index(label)
    return len(FISCAL_MONTHS)
