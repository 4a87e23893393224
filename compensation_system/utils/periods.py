# compensation_system/utils/periods.py
"""
Month and period arithmetic.
"""
from datetime import date, datetime
from typing import List

from dateutil.relativedelta import relativedelta


def parseMonth(month: str) -> date:
    """'2024-01' -> date(2024, 1, 1)."""
    try:
        return datetime.strptime(month, '%Y-%m').date()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid month '{month}', expected YYYY-MM")


def formatMonth(value) -> str:
    return value.strftime('%Y-%m')


def shiftMonth(month: str, months: int) -> str:
    return formatMonth(parseMonth(month) + relativedelta(months=months))


def previousMonth(month: str) -> str:
    return shiftMonth(month, -1)


def monthStart(month: str) -> datetime:
    first = parseMonth(month)
    return datetime(first.year, first.month, 1)


def nextMonthStart(month: str) -> datetime:
    """First instant after the month ends."""
    return monthStart(month) + relativedelta(months=1)


def monthRange(endMonth: str, count: int) -> List[str]:
    """`count` months ending with `endMonth`, oldest first."""
    return [shiftMonth(endMonth, -offset) for offset in range(count - 1, -1, -1)]


def addMonths(value: date, months: int) -> date:
    return value + relativedelta(months=months)


def wholeMonthsBetween(start: date, end: date) -> int:
    """Whole months from start to end, 0 when end is not after start."""
    if end <= start:
        return 0
    delta = relativedelta(end, start)
    return delta.years * 12 + delta.months
