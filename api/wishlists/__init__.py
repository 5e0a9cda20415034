"""Wishlist API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from auth import get_current_user
from errors import MarketplaceError
from models import Principal
from ratelimit import rate_limit
from wishlists import WishlistManager

from ..errors import http_error

router = APIRouter(
    prefix="/wishlist",
    tags=["Wishlist"],
    dependencies=[Depends(rate_limit('general'))]
)


class AddToWishlistRequest(BaseModel):
    project_id: UUID


@router.get("")
async def get_wishlist(user: Principal = Depends(get_current_user)):
    try:
        manager = WishlistManager()
        return {"items": await manager.get_wishlist(user)}
    except MarketplaceError as e:
        raise http_error(e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_to_wishlist(
    request: AddToWishlistRequest,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = WishlistManager()
        item = await manager.add_to_wishlist(user, request.project_id)
        return {"message": "Added to wishlist successfully", "item": item}
    except MarketplaceError as e:
        raise http_error(e)


@router.delete("/{project_id}")
async def remove_from_wishlist(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = WishlistManager()
        await manager.remove_from_wishlist(user, project_id)
        return {"message": "Removed from wishlist successfully"}
    except MarketplaceError as e:
        raise http_error(e)


@router.delete("")
async def clear_wishlist(user: Principal = Depends(get_current_user)):
    try:
        manager = WishlistManager()
        removed = await manager.clear_wishlist(user)
        return {"message": "Wishlist cleared successfully", "removed": removed}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/status/{project_id}")
async def wishlist_status(
    project_id: UUID,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = WishlistManager()
        return {"in_wishlist": await manager.is_in_wishlist(user, project_id)}
    except MarketplaceError as e:
        raise http_error(e)
