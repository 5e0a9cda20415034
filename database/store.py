"""Storage interface used by the marketplace managers.

Every method that combines a check with a write is a single atomic operation
in each implementation:

- ``add_buyer``: membership check, append and ``purchase_count`` increment
- ``insert_cart_item`` / ``insert_wishlist_item`` / ``insert_review``:
  insert if no row exists for (user, project), else return None
- ``apply_transaction_update``: status guard, update and optional buyer append
- ``record_download``: log row append and ``download_count`` increment
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from models import (
    CartItem, Download, Project, ProjectFilters, Review, Transaction,
    TransactionStatus, WishlistItem
)

# Counters that may be bumped with increment_project_counter
PROJECT_COUNTERS = {'view_count', 'download_count'}

# Sortable columns for project search, mapped to their SQL expressions
PROJECT_SORT_COLUMNS = {
    'created_at': 'created_at',
    'title': 'title',
    'price': 'sale_price',
    'view_count': 'view_count',
    'purchase_count': 'purchase_count',
    'download_count': 'download_count',
}

REVIEW_SORT_COLUMNS = {
    'created_at': 'created_at',
    'updated_at': 'updated_at',
    'rating': 'rating',
}


class MarketStore(ABC):
    """Persistence collaborator for projects, transactions, carts, wishlists, reviews and downloads."""

    async def close(self) -> None:
        """Release any held resources."""
        return None

    # Projects

    @abstractmethod
    async def get_project(self, project_id: UUID) -> Optional[Project]:
        ...

    @abstractmethod
    async def insert_project(self, project: Project) -> Project:
        ...

    @abstractmethod
    async def update_project(self, project_id: UUID, fields: Dict[str, Any]) -> Optional[Project]:
        ...

    @abstractmethod
    async def delete_project(self, project_id: UUID) -> bool:
        ...

    @abstractmethod
    async def search_projects(self, filters: ProjectFilters) -> Tuple[List[Project], int]:
        """Return one page of matching projects and the total match count."""
        ...

    @abstractmethod
    async def list_author_projects(self, author_id: str) -> List[Project]:
        """Every project of an author in any status, newest first."""
        ...

    @abstractmethod
    async def add_buyer(self, project_id: UUID, user_id: str) -> bool:
        """Append user to the buyer set; True only on first insertion."""
        ...

    @abstractmethod
    async def increment_project_counter(self, project_id: UUID, counter: str) -> None:
        ...

    # Transactions

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        """Insert a transaction, raising DuplicateKeyError on a repeated transaction_id."""
        ...

    @abstractmethod
    async def get_transaction(self, transaction_pk: UUID) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def get_transaction_by_external_id(self, transaction_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def apply_transaction_update(
        self,
        transaction_pk: UUID,
        expected_status: TransactionStatus,
        fields: Dict[str, Any],
        add_buyer: bool = False
    ) -> Optional[Transaction]:
        """Update a transaction whose status still equals expected_status.

        When add_buyer is set, the transaction's user is added to its project's
        buyer set in the same atomic unit. Raises ConcurrentModificationError if
        the status moved in the meantime; returns None if the row is missing.
        """
        ...

    @abstractmethod
    async def list_transactions(
        self,
        user_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        """List transactions newest first."""
        ...

    # Carts

    @abstractmethod
    async def get_cart_item(self, user_id: str, project_id: UUID) -> Optional[CartItem]:
        ...

    @abstractmethod
    async def insert_cart_item(self, item: CartItem) -> Optional[CartItem]:
        ...

    @abstractmethod
    async def update_cart_item(self, user_id: str, project_id: UUID, fields: Dict[str, Any]) -> Optional[CartItem]:
        ...

    @abstractmethod
    async def delete_cart_item(self, user_id: str, project_id: UUID) -> bool:
        ...

    @abstractmethod
    async def clear_cart(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def list_cart_items(self, user_id: str) -> List[CartItem]:
        ...

    # Wishlists

    @abstractmethod
    async def get_wishlist_item(self, user_id: str, project_id: UUID) -> Optional[WishlistItem]:
        ...

    @abstractmethod
    async def insert_wishlist_item(self, item: WishlistItem) -> Optional[WishlistItem]:
        ...

    @abstractmethod
    async def delete_wishlist_item(self, user_id: str, project_id: UUID) -> bool:
        ...

    @abstractmethod
    async def clear_wishlist(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def list_wishlist_items(self, user_id: str) -> List[WishlistItem]:
        ...

    @abstractmethod
    async def list_project_wishlists(self, project_id: UUID) -> List[WishlistItem]:
        ...

    # Reviews

    @abstractmethod
    async def get_review(self, review_id: UUID) -> Optional[Review]:
        ...

    @abstractmethod
    async def get_review_for(self, user_id: str, project_id: UUID) -> Optional[Review]:
        ...

    @abstractmethod
    async def insert_review(self, review: Review) -> Optional[Review]:
        ...

    @abstractmethod
    async def update_review(self, review_id: UUID, fields: Dict[str, Any]) -> Optional[Review]:
        ...

    @abstractmethod
    async def delete_review(self, review_id: UUID) -> bool:
        ...

    @abstractmethod
    async def list_reviews(
        self,
        project_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
        approved: Optional[bool] = None,
        rating: Optional[int] = None,
        sort_by: str = 'created_at',
        sort_order: str = 'desc',
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Review]:
        ...

    # Downloads

    @abstractmethod
    async def record_download(self, download: Download) -> Download:
        ...

    @abstractmethod
    async def list_downloads(
        self,
        user_id: Optional[str] = None,
        project_id: Optional[UUID] = None
    ) -> List[Download]:
        """List downloads newest first."""
        ...
