"""Unit tests for period filters, percentage change and revenue split."""

from datetime import datetime

import pytest
from bson import ObjectId
from fastapi import HTTPException

from revenue import (
    date_filter,
    format_change,
    payment_scope,
    percent_change,
    period_bounds,
    previous_period,
    revenue_field,
    split_amount,
    trend,
)


class TestPercentChange:
    def test_growth_and_decline(self):
        assert percent_change(150, 100) == 50
        assert percent_change(50, 100) == -50

    def test_no_previous_revenue_is_zero(self):
        assert percent_change(100, 0) == 0
        assert percent_change(0, 0) == 0

    def test_halves_round_up(self):
        assert percent_change(1005, 1000) == 1
        assert percent_change(995, 1000) == 0

    def test_format_and_trend(self):
        assert format_change(12) == "+12%"
        assert format_change(0) == "0%"
        assert format_change(-3, "from last month") == "-3% from last month"
        assert trend(0) == "up"
        assert trend(-1) == "down"


class TestPeriods:
    def test_month_and_year(self):
        assert period_bounds(3, 2024) == (datetime(2024, 3, 1), datetime(2024, 4, 1))

    def test_december_ends_next_year(self):
        assert period_bounds(12, 2024) == (datetime(2024, 12, 1), datetime(2025, 1, 1))

    def test_year_only(self):
        assert period_bounds(None, 2023) == (datetime(2023, 1, 1), datetime(2024, 1, 1))

    def test_month_only_uses_current_year(self):
        start, end = period_bounds(5, None, today=datetime(2025, 6, 10))
        assert (start, end) == (datetime(2025, 5, 1), datetime(2025, 6, 1))

    def test_no_filter(self):
        assert period_bounds(None, None) is None
        assert previous_period(None, None) is None
        assert date_filter(None) == {}

    @pytest.mark.parametrize("month", [0, 13, -1])
    def test_month_out_of_range(self, month):
        with pytest.raises(HTTPException) as exc_info:
            period_bounds(month, 2024)
        assert exc_info.value.status_code == 400

    def test_previous_of_january_is_december(self):
        assert previous_period(1, 2024) == (datetime(2023, 12, 1), datetime(2024, 1, 1))

    def test_previous_month(self):
        assert previous_period(7, 2024) == (datetime(2024, 6, 1), datetime(2024, 7, 1))

    def test_previous_year(self):
        assert previous_period(None, 2024) == (datetime(2023, 1, 1), datetime(2024, 1, 1))

    def test_date_filter_is_half_open(self):
        period = period_bounds(2, 2024)
        assert date_filter(period) == {"date": {"$gte": datetime(2024, 2, 1), "$lt": datetime(2024, 3, 1)}}
        assert date_filter(period, "createdAt") == {"createdAt": {"$gte": period[0], "$lt": period[1]}}


class TestSplit:
    def test_default_share(self):
        assert split_amount(100000, 70) == (70000.0, 30000.0)

    def test_shares_add_up(self):
        company, platform = split_amount(99.99, 33)
        assert company == 33.0
        assert round(company + platform, 2) == 99.99

    def test_free_course(self):
        assert split_amount(0, 70) == (0, 0)


class TestScope:
    def test_company_admin_pinned_to_own_company(self):
        company_id = ObjectId()
        admin = {"adminRole": "company", "companyId": company_id}
        assert payment_scope(admin) == {"companyId": company_id}
        assert payment_scope(admin, str(company_id)) == {"companyId": company_id}
        assert revenue_field(admin) == "$companyShare"

    def test_company_admin_cannot_read_other_company(self):
        admin = {"adminRole": "company", "companyId": ObjectId()}
        with pytest.raises(HTTPException) as exc_info:
            payment_scope(admin, str(ObjectId()))
        assert exc_info.value.status_code == 403

    def test_main_admin_may_narrow(self):
        admin = {"adminRole": "main"}
        company_id = ObjectId()
        assert payment_scope(admin) == {}
        assert payment_scope(admin, str(company_id)) == {"companyId": company_id}
        assert revenue_field(admin) == "$amount"

    def test_invalid_company_id(self):
        with pytest.raises(HTTPException) as exc_info:
            payment_scope({"adminRole": "main"}, "not-an-id")
        assert exc_info.value.status_code == 400
