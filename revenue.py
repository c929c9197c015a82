"""Revenue helpers shared by the payments, companies and dashboard routers."""

import math
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException

from database import parse_object_id

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

Period = Tuple[datetime, datetime]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percent_change(current: float, previous: float) -> int:
    """Period-over-period change in whole percent; 0 when there is no previous revenue."""
    if not previous or previous <= 0:
        return 0
    return round_half_up((current - previous) / previous * 100)


def format_change(change: int, suffix: str = "") -> str:
    text = f"{'+' if change > 0 else ''}{change}%"
    return f"{text} {suffix}" if suffix else text


def trend(change: int) -> str:
    return "up" if change >= 0 else "down"


def split_amount(amount: float, company_share_percent: float) -> Tuple[float, float]:
    """Split a payment into (company share, platform share)."""
    company = round(amount * company_share_percent / 100, 2)
    return company, round(amount - company, 2)


def month_bounds(year: int, month: int) -> Period:
    """Half-open range covering one calendar month (month is 1-indexed)."""
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def year_bounds(year: int) -> Period:
    return datetime(year, 1, 1), datetime(year + 1, 1, 1)


def _validate(month: Optional[int], year: Optional[int]) -> None:
    if month is not None and not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    if year is not None and not 1970 <= year <= 9999:
        raise HTTPException(status_code=400, detail="Invalid year")


def period_bounds(month: Optional[int], year: Optional[int], today: Optional[datetime] = None) -> Optional[Period]:
    """Date range for a month/year filter.

    month+year selects that month, month alone selects that month of the
    current year, year alone selects the whole year.
    """
    _validate(month, year)
    if month is None and year is None:
        return None
    if month is None:
        return year_bounds(year)
    return month_bounds(year if year is not None else (today or datetime.utcnow()).year, month)


def previous_period(month: Optional[int], year: Optional[int], today: Optional[datetime] = None) -> Optional[Period]:
    _validate(month, year)
    if month is None and year is None:
        return None
    if month is None:
        return year_bounds(year - 1)
    year = year if year is not None else (today or datetime.utcnow()).year
    if month == 1:
        return month_bounds(year - 1, 12)
    return month_bounds(year, month - 1)


def date_filter(period: Optional[Period], field: str = "date") -> Dict[str, Any]:
    if period is None:
        return {}
    return {field: {"$gte": period[0], "$lt": period[1]}}


def payment_scope(admin: dict, company_id: Optional[str] = None) -> Dict[str, Any]:
    """Payment filter restricting what an administrator may see.

    Company admins are pinned to their own company; asking for another one is
    a 403. Main admins may optionally narrow to a company.
    """
    if admin.get("adminRole") == "company":
        own = admin["companyId"]
        if company_id and parse_object_id(company_id, "company ID") != own:
            raise HTTPException(status_code=403, detail="Not authorized for this company")
        return {"companyId": own}
    if company_id:
        return {"companyId": parse_object_id(company_id, "company ID")}
    return {}


def revenue_field(admin: dict) -> str:
    return "$companyShare" if admin.get("adminRole") == "company" else "$amount"
