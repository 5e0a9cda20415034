"""Wishlist module for saving projects without a price snapshot."""

import logging
from typing import List, Optional
from uuid import UUID

from database import get_store
from errors import ConflictError, MarketplaceError, NotFoundError
from models import Principal, WishlistItem
from projects import ProjectNotFoundError, ProjectNotPurchasableError, resolve_purchasable_status

logger = logging.getLogger(__name__)


class WishlistError(MarketplaceError):
    """Base exception for wishlist operations."""
    pass


class AlreadyInWishlistError(WishlistError, ConflictError):
    """Raised when the project is already in the user's wishlist."""
    pass


class WishlistItemNotFoundError(WishlistError, NotFoundError):
    """Raised when the wishlist has no entry for the project."""
    pass


class WishlistManager:
    """Manager class for handling wishlist operations."""

    def __init__(self, store=None, purchasable_status: Optional[str] = None):
        self.store = store
        self.purchasable_status = resolve_purchasable_status(purchasable_status)

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()
        return self.store

    async def add_to_wishlist(self, user: Principal, project_id: UUID) -> WishlistItem:
        """Save a purchasable project to the user's wishlist.

        Raises:
            AlreadyInWishlistError: If the project is already saved
            ProjectNotFoundError: If the project does not exist
            ProjectNotPurchasableError: If the project is not purchasable
        """
        await self.ensure_store()

        if await self.store.get_wishlist_item(user.user_id, project_id) is not None:
            logger.warning(f"User {user.user_id} add_to_wishlist: project {project_id} already saved")
            raise AlreadyInWishlistError("Project already in wishlist")

        project = await self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        if project.status != self.purchasable_status:
            logger.warning(
                f"User {user.user_id} add_to_wishlist: project {project_id} in status {project.status.value}"
            )
            raise ProjectNotPurchasableError("Project is not available")

        item = await self.store.insert_wishlist_item(
            WishlistItem(user_id=user.user_id, project_id=project_id)
        )
        if item is None:
            logger.warning(f"User {user.user_id} add_to_wishlist: concurrent add of project {project_id}")
            raise AlreadyInWishlistError("Project already in wishlist")

        logger.info(f"User {user.user_id} added project {project_id} to wishlist")
        return item

    async def remove_from_wishlist(self, user: Principal, project_id: UUID) -> None:
        await self.ensure_store()
        if not await self.store.delete_wishlist_item(user.user_id, project_id):
            logger.warning(f"User {user.user_id} remove_from_wishlist: project {project_id} not saved")
            raise WishlistItemNotFoundError("Wishlist item not found")
        logger.info(f"User {user.user_id} removed project {project_id} from wishlist")

    async def clear_wishlist(self, user: Principal) -> int:
        await self.ensure_store()
        removed = await self.store.clear_wishlist(user.user_id)
        logger.info(f"User {user.user_id} cleared wishlist ({removed} items)")
        return removed

    async def is_in_wishlist(self, user: Principal, project_id: UUID) -> bool:
        await self.ensure_store()
        return await self.store.get_wishlist_item(user.user_id, project_id) is not None

    async def get_wishlist(self, user: Principal) -> List[WishlistItem]:
        await self.ensure_store()
        return await self.store.list_wishlist_items(user.user_id)


__all__ = [
    'WishlistError',
    'AlreadyInWishlistError',
    'WishlistItemNotFoundError',
    'WishlistManager',
]
