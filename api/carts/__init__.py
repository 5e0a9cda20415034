"""Cart API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from auth import get_current_user
from carts import CartManager, MAX_QUANTITY, MIN_QUANTITY
from errors import MarketplaceError
from models import Principal
from ratelimit import rate_limit

from ..errors import http_error

router = APIRouter(
    prefix="/cart",
    tags=["Cart"],
    dependencies=[Depends(rate_limit('general'))]
)


class AddToCartRequest(BaseModel):
    project_id: UUID
    quantity: int = Field(default=1, ge=MIN_QUANTITY, le=MAX_QUANTITY)


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(ge=MIN_QUANTITY, le=MAX_QUANTITY)


@router.get("")
async def get_cart(user: Principal = Depends(get_current_user)):
    """Get the caller's cart with one total per currency."""
    try:
        manager = CartManager()
        return await manager.get_cart(user)
    except MarketplaceError as e:
        raise http_error(e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    request: AddToCartRequest,
    user: Principal = Depends(get_current_user)
):
    """Add a project to the cart at its current sale price."""
    try:
        manager = CartManager()
        item = await manager.add_to_cart(user, request.project_id, request.quantity)
        return {"message": "Added to cart successfully", "item": item}
    except MarketplaceError as e:
        raise http_error(e)


@router.put("/{project_id}")
async def update_cart_item(
    project_id: UUID,
    request: UpdateCartItemRequest,
    user: Principal = Depends(get_current_user)
):
    """Change the quantity of a cart entry; the price snapshot is kept."""
    try:
        manager = CartManager()
        item = await manager.update_cart_item(user, project_id, quantity=request.quantity)
        return {"message": "Cart item updated successfully", "item": item}
    except MarketplaceError as e:
        raise http_error(e)


@router.delete("/{project_id}")
async def remove_from_cart(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = CartManager()
        await manager.remove_from_cart(user, project_id)
        return {"message": "Removed from cart successfully"}
    except MarketplaceError as e:
        raise http_error(e)


@router.delete("")
async def clear_cart(user: Principal = Depends(get_current_user)):
    try:
        manager = CartManager()
        removed = await manager.clear_cart(user)
        return {"message": "Cart cleared successfully", "removed": removed}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/status/{project_id}")
async def cart_status(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = CartManager()
        return {"in_cart": await manager.is_in_cart(user, project_id)}
    except MarketplaceError as e:
        raise http_error(e)
