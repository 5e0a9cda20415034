"""Tests for the pricing module."""

from decimal import Decimal

import pytest

from models import Currency, Pricing
from pricing import (
    InvalidAmountError,
    PricingMissingError,
    compute_pricing,
    discount_percent,
    format_money,
    require_pricing,
    split_commission,
)

from .conftest import make_project


@pytest.mark.parametrize("amount,commission,seller", [
    ("100.00", "10.00", "90.00"),
    ("99.99", "10.00", "89.99"),
    ("33.33", "3.33", "30.00"),
    ("1000000.01", "100000.00", "900000.01"),
])
def test_split_commission(amount, commission, seller):
    """Commission is rounded to the cent and the seller gets the remainder."""
    split = split_commission(Decimal(amount), Decimal("0.10"))

    assert split.amount == Decimal(amount)
    assert split.commission_amount == Decimal(commission)
    assert split.seller_amount == Decimal(seller)
    assert split.commission_amount + split.seller_amount == split.amount


def test_split_commission_accepts_strings_and_floats():
    assert split_commission("0.05").commission_amount == Decimal("0.01")
    assert split_commission(19.99).seller_amount == Decimal("17.99")


def test_split_commission_zero_rate():
    split = split_commission(Decimal("50.00"), Decimal("0"))
    assert split.commission_amount == Decimal("0.00")
    assert split.seller_amount == Decimal("50.00")


@pytest.mark.parametrize("amount", [0, "-1.00", "abc", None])
def test_split_commission_rejects_bad_amounts(amount):
    with pytest.raises(InvalidAmountError):
        split_commission(amount)


def test_discount_percent():
    assert discount_percent(Decimal("75"), Decimal("100")) == 25
    assert discount_percent(Decimal("750"), Decimal("1000")) == 25
    assert discount_percent(Decimal("100"), Decimal("100")) == 0
    # 1/3 off rounds to 33, 2/3 off rounds to 67
    assert discount_percent(Decimal("200"), Decimal("300")) == 33
    assert discount_percent(Decimal("100"), Decimal("300")) == 67
    # 12.5% rounds half away from zero
    assert discount_percent(Decimal("87.50"), Decimal("100")) == 13


def test_discount_percent_degenerate_inputs():
    assert discount_percent(None, Decimal("100")) == 0
    assert discount_percent(Decimal("10"), None) == 0
    assert discount_percent(Decimal("10"), Decimal("0")) == 0
    # Sale price above original is a negative discount
    assert discount_percent(Decimal("110"), Decimal("100")) == -10


def test_compute_pricing():
    summary = compute_pricing(Pricing(sale_price="75", original_price="100", currency=Currency.USD))
    assert summary.sale_price == Decimal("75.00")
    assert summary.currency == Currency.USD
    assert summary.discount_percent == 25


def test_compute_pricing_without_pricing():
    summary = compute_pricing(None)
    assert summary.sale_price == Decimal("0.00")
    assert summary.original_price == Decimal("0.00")
    assert summary.currency == Currency.INR
    assert summary.discount_percent == 0


def test_require_pricing():
    project = make_project()
    assert require_pricing(project) is project.pricing

    with pytest.raises(PricingMissingError):
        require_pricing(make_project(pricing=None))


def test_pricing_money_fields_are_quantized():
    pricing = Pricing(sale_price=0.1 + 0.2, original_price="10.005")
    assert pricing.sale_price == Decimal("0.30")
    assert pricing.original_price == Decimal("10.01")
    assert format_money(Decimal("5")) == "5.00"
