"""Cart module for managing users' shopping carts.

Cart entries snapshot the project's sale price and currency when they are
added; later price changes on the project never touch existing entries.
Totals are kept per currency.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from database import get_store
from errors import ConflictError, MarketplaceError, NotFoundError, ValidationError
from models import CartItem, Currency, Principal, to_money
from pricing import require_pricing
from projects import (
    ProjectNotFoundError, ProjectNotPurchasableError, SelfPurchaseError, resolve_purchasable_status
)

logger = logging.getLogger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 10


class CartError(MarketplaceError):
    """Base exception for cart operations."""
    pass


class AlreadyInCartError(CartError, ConflictError):
    """Raised when the project is already in the user's cart."""
    pass


class CartItemNotFoundError(CartError, NotFoundError):
    """Raised when the cart has no entry for the project."""
    pass


class CartValidationError(CartError, ValidationError):
    """Raised when a cart update is invalid."""
    pass


class CartTotal(BaseModel):
    """Cart total for one currency."""
    currency: Currency
    total_items: int
    total_amount: Decimal


class Cart(BaseModel):
    items: List[CartItem]
    totals: List[CartTotal]


def cart_totals(items: List[CartItem]) -> List[CartTotal]:
    """Sum price_at_time * quantity per currency; never across currencies."""
    amounts: Dict[Currency, Decimal] = defaultdict(lambda: Decimal('0.00'))
    counts: Dict[Currency, int] = defaultdict(int)

    for item in items:
        amounts[item.currency] += item.line_total
        counts[item.currency] += item.quantity

    return [
        CartTotal(currency=currency, total_items=counts[currency], total_amount=amounts[currency])
        for currency in sorted(amounts, key=lambda c: c.value)
    ]


def _check_quantity(quantity: int) -> int:
    if not isinstance(quantity, int) or not MIN_QUANTITY <= quantity <= MAX_QUANTITY:
        raise CartValidationError(
            f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY}"
        )
    return quantity


class CartManager:
    """Manager class for handling cart operations."""

    def __init__(self, store=None, purchasable_status: Optional[str] = None):
        self.store = store
        self.purchasable_status = resolve_purchasable_status(purchasable_status)

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()
        return self.store

    async def add_to_cart(self, user: Principal, project_id: UUID, quantity: int = 1) -> CartItem:
        """Add a project to the user's cart with a price snapshot.

        Raises:
            CartValidationError: If quantity is out of range
            AlreadyInCartError: If the project is already in the cart
            ProjectNotFoundError: If the project does not exist
            ProjectNotPurchasableError: If the project is not purchasable
            SelfPurchaseError: If the user authored the project
            PricingMissingError: If the project has no pricing
        """
        await self.ensure_store()
        _check_quantity(quantity)

        if await self.store.get_cart_item(user.user_id, project_id) is not None:
            logger.warning(f"User {user.user_id} add_to_cart: project {project_id} already in cart")
            raise AlreadyInCartError("Project already in cart")

        project = await self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        if project.status != self.purchasable_status:
            logger.warning(
                f"User {user.user_id} add_to_cart: project {project_id} in status {project.status.value}"
            )
            raise ProjectNotPurchasableError("Project is not available for purchase")
        if project.author_id == user.user_id:
            logger.warning(f"User {user.user_id} add_to_cart: own project {project_id}")
            raise SelfPurchaseError("Cannot add your own project to cart")
        pricing = require_pricing(project)

        item = await self.store.insert_cart_item(CartItem(
            user_id=user.user_id,
            project_id=project_id,
            price_at_time=pricing.sale_price,
            currency=pricing.currency,
            quantity=quantity
        ))
        if item is None:
            # Lost the race against a concurrent add of the same project
            logger.warning(f"User {user.user_id} add_to_cart: concurrent add of project {project_id}")
            raise AlreadyInCartError("Project already in cart")

        logger.info(f"User {user.user_id} added project {project_id} to cart at {item.price_at_time}")
        return item

    async def update_cart_item(
        self,
        user: Principal,
        project_id: UUID,
        quantity: Optional[int] = None,
        price_at_time=None
    ) -> CartItem:
        """Update quantity or price snapshot of a cart entry.

        The HTTP route only forwards quantity; price_at_time is for internal
        repricing.
        """
        await self.ensure_store()

        fields = {}
        if quantity is not None:
            fields['quantity'] = _check_quantity(quantity)
        if price_at_time is not None:
            try:
                price = to_money(price_at_time)
            except ValueError as e:
                raise CartValidationError(str(e))
            if price < 0:
                raise CartValidationError("Price cannot be negative")
            fields['price_at_time'] = price
        if not fields:
            raise CartValidationError("No fields to update")

        item = await self.store.update_cart_item(user.user_id, project_id, fields)
        if item is None:
            logger.warning(f"User {user.user_id} update_cart_item: project {project_id} not in cart")
            raise CartItemNotFoundError("Cart item not found")
        return item

    async def remove_from_cart(self, user: Principal, project_id: UUID) -> None:
        await self.ensure_store()
        if not await self.store.delete_cart_item(user.user_id, project_id):
            logger.warning(f"User {user.user_id} remove_from_cart: project {project_id} not in cart")
            raise CartItemNotFoundError("Cart item not found")
        logger.info(f"User {user.user_id} removed project {project_id} from cart")

    async def clear_cart(self, user: Principal) -> int:
        await self.ensure_store()
        removed = await self.store.clear_cart(user.user_id)
        logger.info(f"User {user.user_id} cleared cart ({removed} items)")
        return removed

    async def is_in_cart(self, user: Principal, project_id: UUID) -> bool:
        await self.ensure_store()
        return await self.store.get_cart_item(user.user_id, project_id) is not None

    async def get_cart(self, user: Principal) -> Cart:
        await self.ensure_store()
        items = await self.store.list_cart_items(user.user_id)
        return Cart(items=items, totals=cart_totals(items))


__all__ = [
    'MIN_QUANTITY',
    'MAX_QUANTITY',
    'CartError',
    'AlreadyInCartError',
    'CartItemNotFoundError',
    'CartValidationError',
    'CartTotal',
    'Cart',
    'cart_totals',
    'CartManager',
]
