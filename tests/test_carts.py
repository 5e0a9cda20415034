"""Tests for the carts and wishlists modules."""

import uuid
from decimal import Decimal

import pytest

from carts import (
    AlreadyInCartError,
    CartItemNotFoundError,
    CartManager,
    CartValidationError,
    cart_totals,
)
from models import CartItem, Currency, ProjectStatus
from pricing import PricingMissingError
from projects import ProjectNotFoundError, ProjectNotPurchasableError, SelfPurchaseError
from wishlists import AlreadyInWishlistError, WishlistItemNotFoundError, WishlistManager

from .conftest import AUTHOR, BUYER, make_project


@pytest.fixture
def cart_manager(store):
    return CartManager(store=store)


@pytest.fixture
def wishlist_manager(store):
    return WishlistManager(store=store)


@pytest.mark.asyncio
async def test_add_to_cart_snapshots_price(store, cart_manager, project):
    item = await cart_manager.add_to_cart(BUYER, project.id, quantity=2)

    assert item.price_at_time == Decimal("75.00")
    assert item.currency == Currency.INR
    assert item.quantity == 2

    # Later price changes do not touch the snapshot
    await store.update_project(project.id, {"pricing": make_project(
        pricing={"sale_price": "90", "original_price": "100"}
    ).pricing})
    cart = await cart_manager.get_cart(BUYER)
    assert cart.items[0].price_at_time == Decimal("75.00")


@pytest.mark.asyncio
async def test_add_to_cart_duplicate_is_conflict(cart_manager, project):
    await cart_manager.add_to_cart(BUYER, project.id)
    with pytest.raises(AlreadyInCartError):
        await cart_manager.add_to_cart(BUYER, project.id)


@pytest.mark.asyncio
async def test_add_to_cart_gate(store, cart_manager, project):
    with pytest.raises(SelfPurchaseError):
        await cart_manager.add_to_cart(AUTHOR, project.id)

    with pytest.raises(ProjectNotFoundError):
        await cart_manager.add_to_cart(BUYER, uuid.uuid4())

    draft = await store.insert_project(make_project(status=ProjectStatus.DRAFT))
    with pytest.raises(ProjectNotPurchasableError):
        await cart_manager.add_to_cart(BUYER, draft.id)

    unpriced = await store.insert_project(make_project(pricing=None))
    with pytest.raises(PricingMissingError):
        await cart_manager.add_to_cart(BUYER, unpriced.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, 11, -1])
async def test_add_to_cart_quantity_bounds(cart_manager, project, quantity):
    with pytest.raises(CartValidationError):
        await cart_manager.add_to_cart(BUYER, project.id, quantity=quantity)


@pytest.mark.asyncio
async def test_update_cart_item(cart_manager, project):
    await cart_manager.add_to_cart(BUYER, project.id)

    item = await cart_manager.update_cart_item(BUYER, project.id, quantity=3, price_at_time="70")
    assert item.quantity == 3
    assert item.price_at_time == Decimal("70.00")

    with pytest.raises(CartValidationError):
        await cart_manager.update_cart_item(BUYER, project.id)
    with pytest.raises(CartValidationError):
        await cart_manager.update_cart_item(BUYER, project.id, price_at_time="-5")
    with pytest.raises(CartItemNotFoundError):
        await cart_manager.update_cart_item(BUYER, uuid.uuid4(), quantity=2)


@pytest.mark.asyncio
async def test_remove_and_clear_cart(store, cart_manager, project):
    second = await store.insert_project(make_project(title="Second"))
    await cart_manager.add_to_cart(BUYER, project.id)
    await cart_manager.add_to_cart(BUYER, second.id)

    await cart_manager.remove_from_cart(BUYER, project.id)
    assert await cart_manager.is_in_cart(BUYER, project.id) is False
    assert await cart_manager.is_in_cart(BUYER, second.id) is True

    with pytest.raises(CartItemNotFoundError):
        await cart_manager.remove_from_cart(BUYER, project.id)

    assert await cart_manager.clear_cart(BUYER) == 1
    assert (await cart_manager.get_cart(BUYER)).items == []


@pytest.mark.asyncio
async def test_cart_totals_per_currency(store, cart_manager, project):
    usd = await store.insert_project(make_project(
        title="USD project",
        pricing={"sale_price": "12.50", "original_price": "20", "currency": "USD"}
    ))
    await cart_manager.add_to_cart(BUYER, project.id, quantity=2)
    await cart_manager.add_to_cart(BUYER, usd.id)

    cart = await cart_manager.get_cart(BUYER)
    totals = {t.currency: (t.total_items, t.total_amount) for t in cart.totals}
    assert totals == {
        Currency.INR: (2, Decimal("150.00")),
        Currency.USD: (1, Decimal("12.50")),
    }


def test_cart_totals_empty():
    assert cart_totals([]) == []


def test_cart_item_line_total():
    item = CartItem(user_id=BUYER.user_id, project_id=uuid.uuid4(), price_at_time="9.99", quantity=3)
    assert item.line_total == Decimal("29.97")


@pytest.mark.asyncio
async def test_wishlist(wishlist_manager, project):
    item = await wishlist_manager.add_to_wishlist(BUYER, project.id)
    assert item.project_id == project.id
    assert await wishlist_manager.is_in_wishlist(BUYER, project.id) is True

    with pytest.raises(AlreadyInWishlistError):
        await wishlist_manager.add_to_wishlist(BUYER, project.id)

    assert [i.project_id for i in await wishlist_manager.get_wishlist(BUYER)] == [project.id]

    await wishlist_manager.remove_from_wishlist(BUYER, project.id)
    assert await wishlist_manager.is_in_wishlist(BUYER, project.id) is False
    with pytest.raises(WishlistItemNotFoundError):
        await wishlist_manager.remove_from_wishlist(BUYER, project.id)


@pytest.mark.asyncio
async def test_wishlist_requires_purchasable_project(store, wishlist_manager):
    draft = await store.insert_project(make_project(status=ProjectStatus.DRAFT))
    with pytest.raises(ProjectNotPurchasableError):
        await wishlist_manager.add_to_wishlist(BUYER, draft.id)
    with pytest.raises(ProjectNotFoundError):
        await wishlist_manager.add_to_wishlist(BUYER, uuid.uuid4())


@pytest.mark.asyncio
async def test_clear_wishlist(store, wishlist_manager, project):
    second = await store.insert_project(make_project(title="Second"))
    await wishlist_manager.add_to_wishlist(BUYER, project.id)
    await wishlist_manager.add_to_wishlist(BUYER, second.id)

    assert await wishlist_manager.clear_wishlist(BUYER) == 2
    assert await wishlist_manager.get_wishlist(BUYER) == []


@pytest.mark.asyncio
async def test_deleting_project_removes_cart_and_wishlist_entries(store, cart_manager, wishlist_manager, project):
    await cart_manager.add_to_cart(BUYER, project.id)
    await wishlist_manager.add_to_wishlist(BUYER, project.id)

    await store.delete_project(project.id)

    assert await cart_manager.is_in_cart(BUYER, project.id) is False
    assert await wishlist_manager.is_in_wishlist(BUYER, project.id) is False
