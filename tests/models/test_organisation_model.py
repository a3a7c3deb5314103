"""Tests for Organisation column validation and derived VAT rate."""

from decimal import Decimal

import pytest

from billing_kernel.db.types import validate_currency


class TestCurrencyCode:

    def test_normalised_on_assignment(self, make_org):
        org = make_org(currency_code=" eur ")

        assert org.currency_code == "EUR"

    @pytest.mark.parametrize("code", ["", "GB", "POUND", "G1P", None])
    def test_invalid_rejected(self, make_org, code):
        with pytest.raises(ValueError):
            make_org(currency_code=code)

    def test_validate_currency_accepts_iso_code(self):
        assert validate_currency("usd") == "USD"


class TestEffectiveVatRate:

    def test_zero_when_disabled(self, make_org):
        org = make_org(vat_enabled=False, vat_rate="20")

        assert org.effective_vat_rate == Decimal("0")

    def test_rate_when_enabled(self, make_org):
        org = make_org(vat_enabled=True, vat_rate="20")

        assert org.effective_vat_rate == Decimal("20")
