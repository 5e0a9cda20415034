"""In-process store for single-instance deployments and tests.

All mutations run under one asyncio lock, which makes each store method an
atomic unit with respect to other coroutines. Returned models are copies, so
callers never alias stored state.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from models import (
    CartItem, Download, Project, ProjectFilters, Review, Transaction,
    TransactionStatus, WishlistItem, utcnow
)
from .exceptions import ConcurrentModificationError, DatabaseError, DuplicateKeyError, ReferencedRowError
from .store import MarketStore, PROJECT_COUNTERS, PROJECT_SORT_COLUMNS, REVIEW_SORT_COLUMNS

logger = logging.getLogger(__name__)


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class MemoryStore(MarketStore):
    """MarketStore backed by dictionaries."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._projects: Dict[UUID, Project] = {}
        self._transactions: Dict[UUID, Transaction] = {}
        self._carts: Dict[Tuple[str, UUID], CartItem] = {}
        self._wishlists: Dict[Tuple[str, UUID], WishlistItem] = {}
        self._reviews: Dict[UUID, Review] = {}
        self._downloads: List[Download] = []

    # Projects

    async def get_project(self, project_id: UUID) -> Optional[Project]:
        return _copy(self._projects.get(project_id))

    async def insert_project(self, project: Project) -> Project:
        async with self._lock:
            if project.id in self._projects:
                raise DuplicateKeyError('projects.id', project.id)
            self._projects[project.id] = _copy(project)
            return _copy(project)

    async def update_project(self, project_id: UUID, fields: Dict[str, Any]) -> Optional[Project]:
        async with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                return None
            updated = project.model_copy(update={**fields, 'updated_at': utcnow()})
            self._projects[project_id] = updated
            return _copy(updated)

    async def delete_project(self, project_id: UUID) -> bool:
        async with self._lock:
            if project_id not in self._projects:
                return False
            if any(t.project_id == project_id for t in self._transactions.values()):
                raise ReferencedRowError(f"Project {project_id} has transactions")
            del self._projects[project_id]
            # Mirror ON DELETE CASCADE of the relational schema
            for key in [k for k in self._carts if k[1] == project_id]:
                del self._carts[key]
            for key in [k for k in self._wishlists if k[1] == project_id]:
                del self._wishlists[key]
            for key in [k for k, r in self._reviews.items() if r.project_id == project_id]:
                del self._reviews[key]
            self._downloads = [d for d in self._downloads if d.project_id != project_id]
            return True

    async def search_projects(self, filters: ProjectFilters) -> Tuple[List[Project], int]:
        matches = []
        search = filters.search.lower() if filters.search else None

        for project in self._projects.values():
            if filters.category and project.category not in filters.category:
                continue
            if filters.author_id and project.author_id != filters.author_id:
                continue
            if filters.status and project.status not in filters.status:
                continue
            if filters.is_featured is not None and project.is_featured != filters.is_featured:
                continue
            if filters.min_price is not None or filters.max_price is not None or filters.currency:
                if project.pricing is None:
                    continue
                if filters.min_price is not None and project.pricing.sale_price < filters.min_price:
                    continue
                if filters.max_price is not None and project.pricing.sale_price > filters.max_price:
                    continue
                if filters.currency and project.pricing.currency != filters.currency:
                    continue
            if search and search not in project.title.lower() and search not in project.description.lower():
                continue
            matches.append(project)

        sort_by = filters.sort_by if filters.sort_by in PROJECT_SORT_COLUMNS else 'created_at'

        def sort_key(project: Project):
            if sort_by == 'price':
                # Unpriced projects sort as zero
                return project.pricing.sale_price if project.pricing else 0
            return getattr(project, sort_by)

        matches.sort(key=sort_key, reverse=filters.sort_order != 'asc')

        offset = (filters.page - 1) * filters.limit
        page = matches[offset:offset + filters.limit]
        return [_copy(p) for p in page], len(matches)

    async def list_author_projects(self, author_id: str) -> List[Project]:
        projects = [p for p in self._projects.values() if p.author_id == author_id]
        projects.sort(key=lambda p: p.created_at, reverse=True)
        return [_copy(p) for p in projects]

    async def add_buyer(self, project_id: UUID, user_id: str) -> bool:
        async with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                raise DatabaseError(f"Project {project_id} not found while adding buyer")
            if user_id in project.buyers:
                return False
            self._projects[project_id] = project.model_copy(update={
                'buyers': project.buyers + [user_id],
                'purchase_count': project.purchase_count + 1,
                'updated_at': utcnow()
            })
            return True

    async def increment_project_counter(self, project_id: UUID, counter: str) -> None:
        if counter not in PROJECT_COUNTERS:
            raise ValueError(f"Unknown project counter: {counter}")
        async with self._lock:
            project = self._projects.get(project_id)
            if project is not None:
                self._projects[project_id] = project.model_copy(
                    update={counter: getattr(project, counter) + 1}
                )

    # Transactions

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        async with self._lock:
            if any(t.transaction_id == transaction.transaction_id for t in self._transactions.values()):
                raise DuplicateKeyError('transactions.transaction_id', transaction.transaction_id)
            self._transactions[transaction.id] = _copy(transaction)
            return _copy(transaction)

    async def get_transaction(self, transaction_pk: UUID) -> Optional[Transaction]:
        return _copy(self._transactions.get(transaction_pk))

    async def get_transaction_by_external_id(self, transaction_id: str) -> Optional[Transaction]:
        for transaction in self._transactions.values():
            if transaction.transaction_id == transaction_id:
                return _copy(transaction)
        return None

    async def apply_transaction_update(
        self,
        transaction_pk: UUID,
        expected_status: TransactionStatus,
        fields: Dict[str, Any],
        add_buyer: bool = False
    ) -> Optional[Transaction]:
        async with self._lock:
            transaction = self._transactions.get(transaction_pk)
            if transaction is None:
                return None
            if transaction.status != expected_status:
                raise ConcurrentModificationError(
                    f"Transaction {transaction_pk} changed from {expected_status.value} "
                    f"to {transaction.status.value} during update"
                )

            if add_buyer:
                project = self._projects.get(transaction.project_id)
                if project is None:
                    raise DatabaseError(f"Project {transaction.project_id} not found while adding buyer")
                if transaction.user_id not in project.buyers:
                    self._projects[project.id] = project.model_copy(update={
                        'buyers': project.buyers + [transaction.user_id],
                        'purchase_count': project.purchase_count + 1,
                        'updated_at': utcnow()
                    })

            updated = transaction.model_copy(update={**fields, 'updated_at': utcnow()})
            self._transactions[transaction_pk] = updated
            return _copy(updated)

    async def list_transactions(
        self,
        user_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        result = [
            t for t in self._transactions.values()
            if (user_id is None or t.user_id == user_id)
            and (seller_id is None or t.seller_id == seller_id)
            and (status is None or t.status == status)
            and (start is None or t.created_at >= start)
            and (end is None or t.created_at <= end)
        ]
        result.sort(key=lambda t: t.created_at, reverse=True)
        if limit is not None:
            result = result[:limit]
        return [_copy(t) for t in result]

    # Carts

    async def get_cart_item(self, user_id: str, project_id: UUID) -> Optional[CartItem]:
        return _copy(self._carts.get((user_id, project_id)))

    async def insert_cart_item(self, item: CartItem) -> Optional[CartItem]:
        async with self._lock:
            key = (item.user_id, item.project_id)
            if key in self._carts:
                return None
            self._carts[key] = _copy(item)
            return _copy(item)

    async def update_cart_item(self, user_id: str, project_id: UUID, fields: Dict[str, Any]) -> Optional[CartItem]:
        async with self._lock:
            item = self._carts.get((user_id, project_id))
            if item is None:
                return None
            updated = item.model_copy(update={**fields, 'updated_at': utcnow()})
            self._carts[(user_id, project_id)] = updated
            return _copy(updated)

    async def delete_cart_item(self, user_id: str, project_id: UUID) -> bool:
        async with self._lock:
            return self._carts.pop((user_id, project_id), None) is not None

    async def clear_cart(self, user_id: str) -> int:
        async with self._lock:
            keys = [k for k in self._carts if k[0] == user_id]
            for key in keys:
                del self._carts[key]
            return len(keys)

    async def list_cart_items(self, user_id: str) -> List[CartItem]:
        items = [i for (uid, _), i in self._carts.items() if uid == user_id]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return [_copy(i) for i in items]

    # Wishlists

    async def get_wishlist_item(self, user_id: str, project_id: UUID) -> Optional[WishlistItem]:
        return _copy(self._wishlists.get((user_id, project_id)))

    async def insert_wishlist_item(self, item: WishlistItem) -> Optional[WishlistItem]:
        async with self._lock:
            key = (item.user_id, item.project_id)
            if key in self._wishlists:
                return None
            self._wishlists[key] = _copy(item)
            return _copy(item)

    async def delete_wishlist_item(self, user_id: str, project_id: UUID) -> bool:
        async with self._lock:
            return self._wishlists.pop((user_id, project_id), None) is not None

    async def clear_wishlist(self, user_id: str) -> int:
        async with self._lock:
            keys = [k for k in self._wishlists if k[0] == user_id]
            for key in keys:
                del self._wishlists[key]
            return len(keys)

    async def list_wishlist_items(self, user_id: str) -> List[WishlistItem]:
        items = [i for (uid, _), i in self._wishlists.items() if uid == user_id]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return [_copy(i) for i in items]

    async def list_project_wishlists(self, project_id: UUID) -> List[WishlistItem]:
        items = [i for (_, pid), i in self._wishlists.items() if pid == project_id]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return [_copy(i) for i in items]

    # Reviews

    async def get_review(self, review_id: UUID) -> Optional[Review]:
        return _copy(self._reviews.get(review_id))

    async def get_review_for(self, user_id: str, project_id: UUID) -> Optional[Review]:
        for review in self._reviews.values():
            if review.user_id == user_id and review.project_id == project_id:
                return _copy(review)
        return None

    async def insert_review(self, review: Review) -> Optional[Review]:
        async with self._lock:
            for existing in self._reviews.values():
                if existing.user_id == review.user_id and existing.project_id == review.project_id:
                    return None
            self._reviews[review.id] = _copy(review)
            return _copy(review)

    async def update_review(self, review_id: UUID, fields: Dict[str, Any]) -> Optional[Review]:
        async with self._lock:
            review = self._reviews.get(review_id)
            if review is None:
                return None
            updated = review.model_copy(update={**fields, 'updated_at': utcnow()})
            self._reviews[review_id] = updated
            return _copy(updated)

    async def delete_review(self, review_id: UUID) -> bool:
        async with self._lock:
            return self._reviews.pop(review_id, None) is not None

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
        result = [
            r for r in self._reviews.values()
            if (project_id is None or r.project_id == project_id)
            and (user_id is None or r.user_id == user_id)
            and (approved is None or r.is_approved == approved)
            and (rating is None or r.rating == rating)
        ]
        sort_by = sort_by if sort_by in REVIEW_SORT_COLUMNS else 'created_at'
        result.sort(key=lambda r: getattr(r, sort_by), reverse=sort_order != 'asc')
        result = result[offset:]
        if limit is not None:
            result = result[:limit]
        return [_copy(r) for r in result]

    # Downloads

    async def record_download(self, download: Download) -> Download:
        async with self._lock:
            project = self._projects.get(download.project_id)
            if project is None:
                raise DatabaseError(f"Project {download.project_id} not found while recording download")
            self._downloads.append(_copy(download))
            self._projects[project.id] = project.model_copy(
                update={'download_count': project.download_count + 1}
            )
            return _copy(download)

    async def list_downloads(
        self,
        user_id: Optional[str] = None,
        project_id: Optional[UUID] = None
    ) -> List[Download]:
        result = [
            d for d in self._downloads
            if (user_id is None or d.user_id == user_id)
            and (project_id is None or d.project_id == project_id)
        ]
        result.sort(key=lambda d: d.created_at, reverse=True)
        return [_copy(d) for d in result]
