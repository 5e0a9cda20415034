"""Pricing module for sale prices, discounts and commission splits.

All arithmetic is done in ``Decimal``. Commission is quantized to the cent and
the seller share is derived by subtraction, so the two always add back up to
the gross amount exactly.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

from pydantic import BaseModel

from errors import ValidationError
from models import CENT, Currency, Pricing, Project, to_money

logger = logging.getLogger(__name__)

# Default platform commission, overridden by settings.conf
DEFAULT_COMMISSION_RATE = Decimal('0.10')

ZERO = Decimal('0.00')


class PricingError(ValidationError):
    """Base exception for pricing errors."""
    pass


class PricingMissingError(PricingError):
    """Raised when a purchase or cart operation meets a project without pricing."""
    pass


class InvalidAmountError(PricingError):
    """Raised when a transaction amount is zero or negative."""
    pass


class PricingSummary(BaseModel):
    """Display view of a project's pricing."""
    sale_price: Decimal
    original_price: Decimal
    currency: Currency
    discount_percent: int


class CommissionSplit(BaseModel):
    """Gross amount divided into platform commission and seller payout."""
    amount: Decimal
    commission_amount: Decimal
    seller_amount: Decimal


def format_money(value: Decimal) -> str:
    """Render a money value as a fixed-scale decimal string."""
    return str(to_money(value))


def discount_percent(sale_price: Optional[Decimal], original_price: Optional[Decimal]) -> int:
    """Whole-number discount of sale price against original price.

    Rounds half away from zero. Returns 0 when either price is missing or the
    original price is not positive.
    """
    if sale_price is None or original_price is None or original_price <= 0:
        return 0
    percent = (Decimal(original_price) - Decimal(sale_price)) / Decimal(original_price) * 100
    return int(percent.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def compute_pricing(pricing: Optional[Pricing], default_currency: Currency = Currency.INR) -> PricingSummary:
    """Compute the display pricing for an optional pricing block.

    Absent pricing renders as zero prices with zero discount.
    """
    if pricing is None:
        return PricingSummary(
            sale_price=ZERO,
            original_price=ZERO,
            currency=default_currency,
            discount_percent=0
        )

    return PricingSummary(
        sale_price=pricing.sale_price,
        original_price=pricing.original_price,
        currency=pricing.currency,
        discount_percent=discount_percent(pricing.sale_price, pricing.original_price)
    )


def require_pricing(project: Project) -> Pricing:
    """Return the project's pricing or reject the purchase/cart attempt."""
    if project.pricing is None:
        logger.warning(f"Project {project.id} has no pricing, rejecting purchase action")
        raise PricingMissingError(f"Project {project.id} is not priced for sale")
    return project.pricing


def split_commission(amount: Any, rate: Any = DEFAULT_COMMISSION_RATE) -> CommissionSplit:
    """Split a gross amount into commission and seller share.

    Args:
        amount: Gross transaction amount (Decimal, int or decimal string)
        rate: Platform commission rate, e.g. Decimal('0.10')

    Returns:
        CommissionSplit where commission_amount + seller_amount == amount

    Raises:
        InvalidAmountError: If amount is not a positive money value
    """
    try:
        gross = to_money(amount)
    except ValueError as e:
        raise InvalidAmountError(str(e))

    if gross <= 0:
        raise InvalidAmountError(f"Amount must be greater than zero, got {gross}")

    commission = (gross * Decimal(str(rate))).quantize(CENT, rounding=ROUND_HALF_UP)
    seller = gross - commission

    return CommissionSplit(
        amount=gross,
        commission_amount=commission,
        seller_amount=seller
    )


__all__ = [
    'DEFAULT_COMMISSION_RATE',
    'PricingError',
    'PricingMissingError',
    'InvalidAmountError',
    'PricingSummary',
    'CommissionSplit',
    'format_money',
    'discount_percent',
    'compute_pricing',
    'require_pricing',
    'split_commission',
]
