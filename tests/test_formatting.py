"""
Tests for the formatting helpers
"""

import re
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import BASE_TIME
from whale_watch.processors.formatting import Formatter

ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"


def fixed_price(price):
    return Formatter(price_provider=lambda: price)


class TestToFiat:
    """Tests for Formatter.to_fiat"""

    def test_whole_dollars_and_cents(self):
        """price 2000, 1 ETH -> "$2,000" / "$2,000.00" """
        fmt = fixed_price(2000)
        assert fmt.to_fiat(1) == "$2,000"
        assert fmt.to_fiat(1, precise=True) == "$2,000.00"

    def test_rounds_half_up(self):
        fmt = fixed_price(1)
        assert fmt.to_fiat("2.5") == "$3"
        assert fmt.to_fiat("0.125", precise=True) == "$0.13"

    def test_no_price_yet(self):
        fmt = fixed_price(0.0)
        assert fmt.to_fiat(100) == "$0"
        assert Formatter(price_provider=lambda: None).to_fiat(100, True) == "$0.00"

    def test_reads_latest_price(self):
        prices = [1000.0]
        fmt = Formatter(price_provider=lambda: prices[-1])
        assert fmt.to_fiat(2) == "$2,000"
        prices.append(3000.0)
        assert fmt.to_fiat(2) == "$6,000"

    @pytest.mark.parametrize("amount, price", [
        (1.2345, 1999.99),
        (Decimal("0.01"), 3456.78),
        (12345.67, 2500.5),
        (0, 1800),
    ])
    def test_precise_parses_back(self, amount, price):
        text = fixed_price(price).to_fiat(amount, precise=True)
        assert re.fullmatch(r"\$\d{1,3}(,\d{3})*\.\d{2}", text)
        parsed = float(text.replace("$", "").replace(",", ""))
        assert parsed == pytest.approx(round(float(amount) * price, 2), abs=0.011)

    def test_negative_amount(self):
        assert fixed_price(10).to_fiat(-1.5, precise=True) == "-$15.00"


class TestDisplayAddress:
    """Tests for Formatter.to_display_address"""

    def test_wide_surface_shows_both_ends(self):
        fmt = Formatter(price_provider=lambda: 0, width_provider=lambda: 1024)
        assert fmt.to_display_address(ADDRESS) == "0x123...45678"

    def test_narrow_surface_shows_prefix(self):
        fmt = Formatter(price_provider=lambda: 0, width_provider=lambda: 500)
        assert fmt.to_display_address(ADDRESS) == "0x1234"

    def test_width_boundary(self):
        fmt = Formatter(price_provider=lambda: 0, width_provider=lambda: 768)
        assert fmt.is_wide()
        assert fmt.to_display_address(ADDRESS) == "0x123...45678"

    def test_non_dynamic_ignores_width(self):
        fmt = Formatter(price_provider=lambda: 0, width_provider=lambda: 4000)
        assert fmt.to_display_address(ADDRESS, dynamic=False) == "0x1234"

    def test_without_width_provider(self):
        assert fixed_price(0).to_display_address(ADDRESS) == "0x1234"
        assert Formatter(price_provider=lambda: 0, width_provider=lambda: None).to_display_address(ADDRESS) == "0x1234"

    def test_missing_address(self):
        assert fixed_price(0).to_display_address(None) == ""


class TestMisc:
    """Tests for time_ago, explorer_url and threshold_label"""

    @pytest.mark.parametrize("delta, expected", [
        (timedelta(seconds=0), "0s"),
        (timedelta(seconds=59), "59s"),
        (timedelta(minutes=2, seconds=10), "2m"),
        (timedelta(hours=3), "3h"),
        (timedelta(days=2), "2d"),
        (timedelta(days=45), "1mo"),
        (timedelta(days=400), "1y"),
        (timedelta(seconds=-5), "0s"),
    ])
    def test_time_ago(self, delta, expected):
        assert Formatter.time_ago(BASE_TIME, BASE_TIME + delta) == expected

    def test_explorer_url(self):
        assert fixed_price(0).explorer_url("0xabc") == "https://etherscan.io/tx/0xabc"

    def test_threshold_label(self):
        fmt = fixed_price(2000)
        assert fmt.threshold_label(10) == "10 ETH ($20,000.00)"
        assert fmt.threshold_label(Decimal("10.0")) == "10 ETH ($20,000.00)"
        assert fmt.threshold_label("0.5") == "0.5 ETH ($1,000.00)"
