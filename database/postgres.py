"""PostgreSQL implementation of the marketplace store.

Each compound operation is a single statement or runs inside one database
transaction, so concurrent API workers cannot interleave a check and its write.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import asyncpg

from models import (
    CartItem, Download, Pricing, Project, ProjectFilters, Review, Transaction,
    TransactionStatus, WishlistItem
)
from .exceptions import ConcurrentModificationError, DatabaseError, DuplicateKeyError, ReferencedRowError
from .store import MarketStore, PROJECT_COUNTERS, PROJECT_SORT_COLUMNS, REVIEW_SORT_COLUMNS

logger = logging.getLogger(__name__)

PROJECT_COLUMNS = (
    'id', 'author_id', 'title', 'description', 'category', 'difficulty_level',
    'tech_stack', 'github_url', 'demo_url', 'thumbnail', 'sale_price',
    'original_price', 'currency', 'status', 'is_featured', 'buyers',
    'purchase_count', 'view_count', 'download_count', 'created_at', 'updated_at'
)

TRANSACTION_COLUMNS = (
    'id', 'transaction_id', 'user_id', 'project_id', 'seller_id', 'type', 'status',
    'amount', 'commission_amount', 'seller_amount', 'currency', 'payment_method',
    'payment_gateway_response', 'metadata', 'processed_at', 'refunded_at',
    'created_at', 'updated_at'
)

CART_COLUMNS = ('id', 'user_id', 'project_id', 'price_at_time', 'currency', 'quantity', 'created_at', 'updated_at')
WISHLIST_COLUMNS = ('id', 'user_id', 'project_id', 'created_at')
REVIEW_COLUMNS = (
    'id', 'user_id', 'project_id', 'rating', 'review_text', 'is_verified_purchase',
    'is_approved', 'created_at', 'updated_at'
)
DOWNLOAD_COLUMNS = ('id', 'user_id', 'project_id', 'download_type', 'ip_address', 'user_agent', 'created_at')


def _value(value):
    """Unwrap enums to their stored text."""
    return getattr(value, 'value', value)


def _project_row(project: Project) -> Dict[str, Any]:
    row = project.model_dump(exclude={'pricing'})
    row['status'] = _value(project.status)
    if project.pricing is not None:
        row['sale_price'] = project.pricing.sale_price
        row['original_price'] = project.pricing.original_price
        row['currency'] = _value(project.pricing.currency)
    else:
        row['sale_price'] = row['original_price'] = row['currency'] = None
    return row


def _project_from_row(row) -> Project:
    data = dict(row)
    sale_price = data.pop('sale_price')
    original_price = data.pop('original_price')
    currency = data.pop('currency')
    if sale_price is not None:
        data['pricing'] = Pricing(sale_price=sale_price, original_price=original_price, currency=currency)
    data['buyers'] = list(data['buyers'] or [])
    data['tech_stack'] = list(data['tech_stack'] or [])
    return Project(**data)


def _project_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a partial project update into column values."""
    columns = {}
    for key, value in fields.items():
        if key == 'pricing':
            pricing = Pricing.model_validate(value) if value is not None else None
            columns['sale_price'] = pricing.sale_price if pricing else None
            columns['original_price'] = pricing.original_price if pricing else None
            columns['currency'] = _value(pricing.currency) if pricing else None
        else:
            columns[key] = _value(value)
    return columns


def _set_clause(fields: Dict[str, Any], start: int) -> Tuple[str, list]:
    assignments = []
    values = []
    for i, (key, value) in enumerate(fields.items(), start=start):
        assignments.append(f"{key} = ${i}")
        values.append(_value(value))
    return ', '.join(assignments), values


def _insert_sql(table: str, columns: Tuple[str, ...], conflict: str = '') -> str:
    placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"{conflict} RETURNING *"
    )


class PostgresStore(MarketStore):
    """MarketStore backed by an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def close(self) -> None:
        # Pool lifecycle is owned by the database module
        return None

    async def _fetchrow(self, query: str, *args):
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError(str(e))

    async def _fetch(self, query: str, *args):
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError(str(e))

    async def _execute(self, query: str, *args) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(query, *args)
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError(str(e))

    # Projects

    async def get_project(self, project_id: UUID) -> Optional[Project]:
        row = await self._fetchrow('SELECT * FROM projects WHERE id = $1', project_id)
        return _project_from_row(row) if row else None

    async def insert_project(self, project: Project) -> Project:
        row = _project_row(project)
        try:
            async with self.pool.acquire() as conn:
                created = await conn.fetchrow(
                    _insert_sql('projects', PROJECT_COLUMNS),
                    *[row[c] for c in PROJECT_COLUMNS]
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateKeyError('projects.id', project.id)
        except asyncpg.PostgresError as e:
            raise DatabaseError(str(e))
        return _project_from_row(created)

    async def update_project(self, project_id: UUID, fields: Dict[str, Any]) -> Optional[Project]:
        columns = _project_fields(fields)
        if not columns:
            return await self.get_project(project_id)
        assignments, values = _set_clause(columns, start=2)
        row = await self._fetchrow(
            f'UPDATE projects SET {assignments}, updated_at = now() WHERE id = $1 RETURNING *',
            project_id, *values
        )
        return _project_from_row(row) if row else None

    async def delete_project(self, project_id: UUID) -> bool:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute('DELETE FROM projects WHERE id = $1', project_id)
        except asyncpg.ForeignKeyViolationError:
            raise ReferencedRowError(f"Project {project_id} has transactions")
        except asyncpg.PostgresError as e:
            raise DatabaseError(str(e))
        return result.endswith(' 1')

    async def search_projects(self, filters: ProjectFilters) -> Tuple[List[Project], int]:
        conditions = []
        args: List[Any] = []

        def param(value) -> str:
            args.append(value)
            return f"${len(args)}"

        if filters.category:
            conditions.append(f"category = ANY({param(filters.category)}::text[])")
        if filters.author_id:
            conditions.append(f"author_id = {param(filters.author_id)}")
        if filters.status:
            conditions.append(f"status = ANY({param([_value(s) for s in filters.status])}::text[])")
        if filters.is_featured is not None:
            conditions.append(f"is_featured = {param(filters.is_featured)}")
        if filters.min_price is not None:
            conditions.append(f"sale_price >= {param(filters.min_price)}")
        if filters.max_price is not None:
            conditions.append(f"sale_price <= {param(filters.max_price)}")
        if filters.currency:
            conditions.append(f"currency = {param(_value(filters.currency))}")
        if filters.search:
            pattern = param(f"%{filters.search}%")
            conditions.append(f"(title ILIKE {pattern} OR description ILIKE {pattern})")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''
        sort_column = PROJECT_SORT_COLUMNS.get(filters.sort_by, 'created_at')
        direction = 'ASC' if filters.sort_order == 'asc' else 'DESC'

        total = await self._fetchrow(f'SELECT COUNT(*) AS total FROM projects {where}', *args)

        limit = param(filters.limit)
        offset = param((filters.page - 1) * filters.limit)
        rows = await self._fetch(
            f'SELECT * FROM projects {where} '
            f'ORDER BY {sort_column} {direction} NULLS LAST, id '
            f'LIMIT {limit} OFFSET {offset}',
            *args
        )
        return [_project_from_row(r) for r in rows], total['total']

    async def list_author_projects(self, author_id: str) -> List[Project]:
        rows = await self._fetch(
            'SELECT * FROM projects WHERE author_id = $1 ORDER BY created_at DESC', author_id
        )
        return [_project_from_row(r) for r in rows]

    async def add_buyer(self, project_id: UUID, user_id: str) -> bool:
        # Membership check and append are one statement
        row = await self._fetchrow(
            '''
            UPDATE projects
            SET buyers = array_append(buyers, $2),
                purchase_count = purchase_count + 1,
                updated_at = now()
            WHERE id = $1 AND NOT ($2 = ANY(buyers))
            RETURNING id
            ''',
            project_id, user_id
        )
        return row is not None

    async def increment_project_counter(self, project_id: UUID, counter: str) -> None:
        if counter not in PROJECT_COUNTERS:
            raise ValueError(f"Unknown project counter: {counter}")
        await self._execute(
            f'UPDATE projects SET {counter} = {counter} + 1 WHERE id = $1',
            project_id
        )

    # Transactions

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        row = transaction.model_dump()
        try:
            async with self.pool.acquire() as conn:
                created = await conn.fetchrow(
                    _insert_sql('transactions', TRANSACTION_COLUMNS),
                    *[_value(row[c]) for c in TRANSACTION_COLUMNS]
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateKeyError('transactions.transaction_id', transaction.transaction_id)
        except asyncpg.PostgresError as e:
            raise DatabaseError(str(e))
        return Transaction(**dict(created))

    async def get_transaction(self, transaction_pk: UUID) -> Optional[Transaction]:
        row = await self._fetchrow('SELECT * FROM transactions WHERE id = $1', transaction_pk)
        return Transaction(**dict(row)) if row else None

    async def get_transaction_by_external_id(self, transaction_id: str) -> Optional[Transaction]:
        row = await self._fetchrow('SELECT * FROM transactions WHERE transaction_id = $1', transaction_id)
        return Transaction(**dict(row)) if row else None

    async def apply_transaction_update(
        self,
        transaction_pk: UUID,
        expected_status: TransactionStatus,
        fields: Dict[str, Any],
        add_buyer: bool = False
    ) -> Optional[Transaction]:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    current = await conn.fetchrow(
                        'SELECT status, user_id, project_id FROM transactions WHERE id = $1 FOR UPDATE',
                        transaction_pk
                    )
                    if current is None:
                        return None
                    if current['status'] != _value(expected_status):
                        raise ConcurrentModificationError(
                            f"Transaction {transaction_pk} changed from {_value(expected_status)} "
                            f"to {current['status']} during update"
                        )

                    if add_buyer:
                        await conn.execute(
                            '''
                            UPDATE projects
                            SET buyers = array_append(buyers, $2),
                                purchase_count = purchase_count + 1,
                                updated_at = now()
                            WHERE id = $1 AND NOT ($2 = ANY(buyers))
                            ''',
                            current['project_id'], current['user_id']
                        )

                    assignments, values = _set_clause(fields, start=2)
                    set_sql = f"{assignments}, updated_at = now()" if assignments else "updated_at = now()"
                    row = await conn.fetchrow(
                        f'UPDATE transactions SET {set_sql} WHERE id = $1 RETURNING *',
                        transaction_pk, *values
                    )
        except asyncpg.PostgresError as e:
            logger.error(f"Transaction update failed: {e}")
            raise DatabaseError(str(e))
        return Transaction(**dict(row))

    async def list_transactions(
        self,
        user_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        conditions = []
        args: List[Any] = []
        for column, op, value in (
            ('user_id', '=', user_id),
            ('seller_id', '=', seller_id),
            ('status', '=', _value(status)),
            ('created_at', '>=', start),
            ('created_at', '<=', end),
        ):
            if value is not None:
                args.append(value)
                conditions.append(f"{column} {op} ${len(args)}")

        query = 'SELECT * FROM transactions'
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"
        query += ' ORDER BY created_at DESC'
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"

        rows = await self._fetch(query, *args)
        return [Transaction(**dict(r)) for r in rows]

    # Carts

    async def get_cart_item(self, user_id: str, project_id: UUID) -> Optional[CartItem]:
        row = await self._fetchrow(
            'SELECT * FROM carts WHERE user_id = $1 AND project_id = $2', user_id, project_id
        )
        return CartItem(**dict(row)) if row else None

    async def insert_cart_item(self, item: CartItem) -> Optional[CartItem]:
        row = item.model_dump()
        created = await self._fetchrow(
            _insert_sql('carts', CART_COLUMNS, 'ON CONFLICT (user_id, project_id) DO NOTHING'),
            *[_value(row[c]) for c in CART_COLUMNS]
        )
        return CartItem(**dict(created)) if created else None

    async def update_cart_item(self, user_id: str, project_id: UUID, fields: Dict[str, Any]) -> Optional[CartItem]:
        assignments, values = _set_clause(fields, start=3)
        row = await self._fetchrow(
            f'UPDATE carts SET {assignments}, updated_at = now() '
            f'WHERE user_id = $1 AND project_id = $2 RETURNING *',
            user_id, project_id, *values
        )
        return CartItem(**dict(row)) if row else None

    async def delete_cart_item(self, user_id: str, project_id: UUID) -> bool:
        result = await self._execute(
            'DELETE FROM carts WHERE user_id = $1 AND project_id = $2', user_id, project_id
        )
        return result.endswith(' 1')

    async def clear_cart(self, user_id: str) -> int:
        result = await self._execute('DELETE FROM carts WHERE user_id = $1', user_id)
        return int(result.split()[-1])

    async def list_cart_items(self, user_id: str) -> List[CartItem]:
        rows = await self._fetch(
            'SELECT * FROM carts WHERE user_id = $1 ORDER BY created_at DESC', user_id
        )
        return [CartItem(**dict(r)) for r in rows]

    # Wishlists

    async def get_wishlist_item(self, user_id: str, project_id: UUID) -> Optional[WishlistItem]:
        row = await self._fetchrow(
            'SELECT * FROM wishlists WHERE user_id = $1 AND project_id = $2', user_id, project_id
        )
        return WishlistItem(**dict(row)) if row else None

    async def insert_wishlist_item(self, item: WishlistItem) -> Optional[WishlistItem]:
        row = item.model_dump()
        created = await self._fetchrow(
            _insert_sql('wishlists', WISHLIST_COLUMNS, 'ON CONFLICT (user_id, project_id) DO NOTHING'),
            *[row[c] for c in WISHLIST_COLUMNS]
        )
        return WishlistItem(**dict(created)) if created else None

    async def delete_wishlist_item(self, user_id: str, project_id: UUID) -> bool:
        result = await self._execute(
            'DELETE FROM wishlists WHERE user_id = $1 AND project_id = $2', user_id, project_id
        )
        return result.endswith(' 1')

    async def clear_wishlist(self, user_id: str) -> int:
        result = await self._execute('DELETE FROM wishlists WHERE user_id = $1', user_id)
        return int(result.split()[-1])

    async def list_wishlist_items(self, user_id: str) -> List[WishlistItem]:
        rows = await self._fetch(
            'SELECT * FROM wishlists WHERE user_id = $1 ORDER BY created_at DESC', user_id
        )
        return [WishlistItem(**dict(r)) for r in rows]

    async def list_project_wishlists(self, project_id: UUID) -> List[WishlistItem]:
        rows = await self._fetch(
            'SELECT * FROM wishlists WHERE project_id = $1 ORDER BY created_at DESC', project_id
        )
        return [WishlistItem(**dict(r)) for r in rows]

    # Reviews

    async def get_review(self, review_id: UUID) -> Optional[Review]:
        row = await self._fetchrow('SELECT * FROM reviews WHERE id = $1', review_id)
        return Review(**dict(row)) if row else None

    async def get_review_for(self, user_id: str, project_id: UUID) -> Optional[Review]:
        row = await self._fetchrow(
            'SELECT * FROM reviews WHERE user_id = $1 AND project_id = $2', user_id, project_id
        )
        return Review(**dict(row)) if row else None

    async def insert_review(self, review: Review) -> Optional[Review]:
        row = review.model_dump()
        created = await self._fetchrow(
            _insert_sql('reviews', REVIEW_COLUMNS, 'ON CONFLICT (user_id, project_id) DO NOTHING'),
            *[row[c] for c in REVIEW_COLUMNS]
        )
        return Review(**dict(created)) if created else None

    async def update_review(self, review_id: UUID, fields: Dict[str, Any]) -> Optional[Review]:
        assignments, values = _set_clause(fields, start=2)
        row = await self._fetchrow(
            f'UPDATE reviews SET {assignments}, updated_at = now() WHERE id = $1 RETURNING *',
            review_id, *values
        )
        return Review(**dict(row)) if row else None

    async def delete_review(self, review_id: UUID) -> bool:
        result = await self._execute('DELETE FROM reviews WHERE id = $1', review_id)
        return result.endswith(' 1')

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
        conditions = []
        args: List[Any] = []
        for column, value in (
            ('project_id', project_id),
            ('user_id', user_id),
            ('is_approved', approved),
            ('rating', rating),
        ):
            if value is not None:
                args.append(value)
                conditions.append(f"{column} = ${len(args)}")

        query = 'SELECT * FROM reviews'
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"
        column = REVIEW_SORT_COLUMNS.get(sort_by, 'created_at')
        direction = 'ASC' if sort_order == 'asc' else 'DESC'
        query += f' ORDER BY {column} {direction}'
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"
        args.append(offset)
        query += f" OFFSET ${len(args)}"

        rows = await self._fetch(query, *args)
        return [Review(**dict(r)) for r in rows]

    # Downloads

    async def record_download(self, download: Download) -> Download:
        row = download.model_dump()
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    created = await conn.fetchrow(
                        _insert_sql('downloads', DOWNLOAD_COLUMNS),
                        *[_value(row[c]) for c in DOWNLOAD_COLUMNS]
                    )
                    await conn.execute(
                        'UPDATE projects SET download_count = download_count + 1 WHERE id = $1',
                        download.project_id
                    )
        except asyncpg.PostgresError as e:
            logger.error(f"Failed to record download: {e}")
            raise DatabaseError(str(e))
        return Download(**dict(created))

    async def list_downloads(
        self,
        user_id: Optional[str] = None,
        project_id: Optional[UUID] = None
    ) -> List[Download]:
        conditions = []
        args: List[Any] = []
        for column, value in (('user_id', user_id), ('project_id', project_id)):
            if value is not None:
                args.append(value)
                conditions.append(f"{column} = ${len(args)}")

        query = 'SELECT * FROM downloads'
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"
        query += ' ORDER BY created_at DESC'

        rows = await self._fetch(query, *args)
        return [Download(**dict(r)) for r in rows]
