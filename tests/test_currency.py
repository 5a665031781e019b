"""Currency conversion and the small helpers around amounts."""

from decimal import Decimal

import pytest

from common.helpers import format_ringgit, mask_secret, safe_decimal, truncate_text
from modules.payment.gateways import BaseGateway, to_major_units, to_minor_units


class TestMinorUnits:
    @pytest.mark.parametrize("amount,expected", [
        (Decimal("25.50"), 2550),
        ("25.5", 2550),
        (25.5, 2550),
        (10, 1000),
        (Decimal("0.01"), 1),
        (Decimal("1234.56"), 123456),
    ])
    def test_to_minor_units(self, amount, expected):
        assert to_minor_units(amount) == expected

    def test_rounds_half_up_to_nearest_sen(self):
        assert to_minor_units(Decimal("10.005")) == 1001
        assert to_minor_units(Decimal("10.004")) == 1000

    def test_float_input_does_not_drift(self):
        # 0.1 + 0.2 is 0.30000000000000004 as a float
        assert to_minor_units(0.1 + 0.2) == 30

    def test_to_major_units_has_two_places(self):
        assert to_major_units(2550) == Decimal("25.50")
        assert str(to_major_units(2550)) == "25.50"
        assert str(to_major_units("100")) == "1.00"

    def test_round_trip_for_two_decimal_amounts(self):
        for text in ("0.01", "0.10", "1.05", "25.50", "99999.99"):
            assert to_major_units(to_minor_units(Decimal(text))) == Decimal(text)

    def test_gateway_exposes_converters(self):
        assert BaseGateway.to_minor_units(Decimal("25.50")) == 2550
        assert BaseGateway.to_major_units(2550) == Decimal("25.50")


class TestHelpers:
    def test_safe_decimal(self):
        assert safe_decimal("25.50") == Decimal("25.50")
        assert safe_decimal(25.5) == Decimal("25.5")
        assert safe_decimal("abc") is None
        assert safe_decimal("") is None
        assert safe_decimal(None) is None

    def test_truncate_text_keeps_short_values(self):
        assert truncate_text("Khairat", 30) == "Khairat"
        assert truncate_text(None, 30) == ""

    def test_truncate_text_cuts_to_limit(self):
        value = truncate_text("Sumbangan khairat bulanan untuk keluarga Ahmad", 30)
        assert len(value) == 30
        assert value.endswith("...")
        assert value == "Sumbangan khairat bulanan u..."

    def test_format_ringgit(self):
        assert format_ringgit(Decimal("1234.5")) == "RM 1,234.50"
        assert format_ringgit(None) == "RM 0.00"

    def test_mask_secret(self):
        assert mask_secret("abcdefgh") == "abcd****"
        assert mask_secret("") == ""
