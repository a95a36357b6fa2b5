"""
Test suite for date utilities and clocks
"""

import pytest
from datetime import date, datetime

from sales_cms.dates import parse_date, add_months, add_days, month_key, FixedClock, SystemClock
from sales_cms.errors import ValidationError


class TestParseDate:

    def test_accepts_date_datetime_and_iso_string(self):
        assert parse_date(date(2025, 3, 1)) == date(2025, 3, 1)
        assert parse_date(datetime(2025, 3, 1, 15, 30)) == date(2025, 3, 1)
        assert parse_date("2025-03-01") == date(2025, 3, 1)
        assert parse_date("2025-03-01T10:00:00") == date(2025, 3, 1)

    @pytest.mark.parametrize("bad", ["", "   ", "03/01/2025", "2025-13-01", None, 20250301])
    def test_rejects_unparseable_values(self, bad):
        with pytest.raises(ValidationError) as exc_info:
            parse_date(bad, "due_date")
        assert "due_date" in str(exc_info.value)


class TestMonthArithmetic:

    def test_add_months_simple(self):
        assert add_months(date(2025, 1, 15), 2) == date(2025, 3, 15)

    def test_add_months_crosses_year(self):
        assert add_months(date(2025, 11, 10), 3) == date(2026, 2, 10)

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2025, 3, 31), 1) == date(2025, 4, 30)

    def test_add_months_each_offset_from_the_anchor(self):
        # offsets from the same anchor do not drift after a short month
        start = date(2025, 1, 31)
        assert [add_months(start, i) for i in range(3)] == [
            date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31)
        ]

    def test_add_days(self):
        assert add_days(date(2025, 1, 15), 30) == date(2025, 2, 14)

    def test_month_key(self):
        assert month_key(date(2025, 3, 9)) == "2025-03"


class TestClocks:

    def test_fixed_clock(self):
        clock = FixedClock("2025-06-30")
        assert clock.today() == date(2025, 6, 30)
        assert clock.advance(1) == date(2025, 7, 1)
        assert clock.today() == date(2025, 7, 1)

    def test_system_clock(self):
        assert SystemClock().today() == date.today()
