"""Transactions module for purchase reconciliation.

Transactions move through a small state machine:

    pending    -> processing | completed | failed | cancelled
    processing -> completed | failed | cancelled
    completed  -> refunded

Moving to completed adds the buyer to the project's buyer set; the status
change and the buyer-set mutation are applied as one atomic store operation
guarded by the status the transition was planned from.
"""

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from config import settings_conf
from database import get_store
from database.exceptions import DuplicateKeyError
from errors import ConflictError, ForbiddenError, MarketplaceError, NotFoundError, ValidationError
from models import (
    CENT, Currency, Principal, Transaction, TransactionStatus, TransactionType, utcnow
)
from pricing import DEFAULT_COMMISSION_RATE, require_pricing, split_commission
from projects import check_purchase_intent

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: {
        TransactionStatus.PROCESSING,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED
    },
    TransactionStatus.PROCESSING: {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED
    },
    TransactionStatus.COMPLETED: {
        TransactionStatus.REFUNDED
    },
    TransactionStatus.FAILED: set(),
    TransactionStatus.CANCELLED: set(),
    TransactionStatus.REFUNDED: set()
}


class TransactionError(MarketplaceError):
    """Base exception for transaction operations."""
    pass


class TransactionNotFoundError(TransactionError, NotFoundError):
    """Raised when a transaction is not found."""
    pass


class DuplicateTransactionError(TransactionError, ConflictError):
    """Raised when an external transaction id is already recorded."""
    pass


class InvalidTransitionError(TransactionError, ValidationError):
    """Raised when a status change is not allowed from the current status."""
    pass


class TransactionForbiddenError(TransactionError, ForbiddenError):
    """Raised when the caller may not read or change a transaction."""
    pass


class TransitionPlan(BaseModel):
    """Field changes for one status transition."""
    fields: Dict[str, Any]
    add_buyer: bool = False


def plan_transition(
    transaction: Transaction,
    new_status: TransactionStatus,
    now: Optional[datetime] = None
) -> TransitionPlan:
    """Work out the field changes for moving a transaction to new_status.

    Re-applying the current status is allowed and leaves the timestamps alone;
    re-applying completed still asks for the buyer to be added so a buyer set
    that missed the first completion converges.

    Raises:
        InvalidTransitionError: If the move is not in ALLOWED_TRANSITIONS
    """
    now = now or utcnow()
    current = transaction.status

    if new_status == current:
        return TransitionPlan(fields={}, add_buyer=new_status == TransactionStatus.COMPLETED)

    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move transaction from {current.value} to {new_status.value}"
        )

    fields: Dict[str, Any] = {'status': new_status}
    if new_status == TransactionStatus.COMPLETED and transaction.processed_at is None:
        fields['processed_at'] = now
    elif new_status == TransactionStatus.REFUNDED:
        fields['refunded_at'] = now

    return TransitionPlan(fields=fields, add_buyer=new_status == TransactionStatus.COMPLETED)


class CurrencyStats(BaseModel):
    currency: Currency
    total_sales: int
    total_revenue: Decimal
    total_commission: Decimal
    total_earnings: Decimal
    average_sale: Decimal


class TransactionStats(BaseModel):
    """Aggregates over completed transactions.

    Amounts are only ever summed within one currency, so money figures live
    in by_currency; total_sales counts sales across all currencies.
    """
    total_sales: int
    by_currency: List[CurrencyStats]


def _currency_stats(currency: Currency, items: List[Transaction]) -> CurrencyStats:
    revenue = sum((t.amount for t in items), Decimal('0.00'))
    return CurrencyStats(
        currency=currency,
        total_sales=len(items),
        total_revenue=revenue,
        total_commission=sum((t.commission_amount for t in items), Decimal('0.00')),
        total_earnings=sum((t.seller_amount for t in items), Decimal('0.00')),
        average_sale=(revenue / len(items)).quantize(CENT)
    )


def transaction_stats(transactions: List[Transaction]) -> TransactionStats:
    """Summarise completed transactions; other statuses are ignored."""
    completed = [t for t in transactions if t.status == TransactionStatus.COMPLETED]

    groups: Dict[Currency, List[Transaction]] = defaultdict(list)
    for t in completed:
        groups[t.currency].append(t)

    return TransactionStats(
        total_sales=len(completed),
        by_currency=[
            _currency_stats(currency, items)
            for currency, items in sorted(groups.items(), key=lambda g: g[0].value)
        ]
    )


class TransactionManager:
    """Manager class for handling purchase transactions."""

    def __init__(self, store=None, commission_rate=None, purchasable_status: Optional[str] = None):
        """Initialize the transaction manager.

        Args:
            store: Optional MarketStore. If not provided, will get from database module.
            commission_rate: Platform commission rate; defaults to settings
            purchasable_status: Status value that makes a project purchasable
        """
        self.store = store
        self.commission_rate = Decimal(str(
            commission_rate if commission_rate is not None
            else settings_conf.get('commission_rate', DEFAULT_COMMISSION_RATE)
        ))
        self.purchasable_status = purchasable_status

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()
        return self.store

    async def create_transaction(
        self,
        transaction_id: str,
        user_id: str,
        project_id: UUID,
        seller_id: str,
        amount: Any,
        currency: Currency = Currency.INR,
        type: TransactionType = TransactionType.PURCHASE,
        payment_method: Optional[str] = None,
        payment_gateway_response: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """Record a new pending transaction with its commission split.

        Raises:
            ValidationError: If transaction_id is empty or amount is not positive
            DuplicateTransactionError: If transaction_id was already recorded
        """
        await self.ensure_store()

        if not transaction_id:
            raise ValidationError("transaction_id is required")

        split = split_commission(amount, self.commission_rate)

        transaction = Transaction(
            transaction_id=transaction_id,
            user_id=user_id,
            project_id=project_id,
            seller_id=seller_id,
            type=type,
            status=TransactionStatus.PENDING,
            amount=split.amount,
            commission_amount=split.commission_amount,
            seller_amount=split.seller_amount,
            currency=currency,
            payment_method=payment_method,
            payment_gateway_response=payment_gateway_response,
            metadata=metadata
        )

        try:
            created = await self.store.insert_transaction(transaction)
        except DuplicateKeyError:
            logger.warning(
                f"Duplicate transaction id {transaction_id} from user {user_id} for project {project_id}"
            )
            raise DuplicateTransactionError("Transaction ID already exists")

        logger.info(
            f"Created transaction {created.transaction_id} for user {user_id} "
            f"on project {project_id}: {created.amount} {created.currency.value}"
        )
        return created

    async def create_purchase(
        self,
        buyer: Principal,
        project_id: UUID,
        transaction_id: str,
        amount: Any = None,
        payment_method: Optional[str] = None,
        payment_gateway_response: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """Gate a purchase and record its pending transaction.

        The seller is the project author; amount and currency default to the
        project's current sale price.
        """
        await self.ensure_store()

        project = check_purchase_intent(
            await self.store.get_project(project_id),
            buyer.user_id,
            self.purchasable_status
        )
        pricing = require_pricing(project)

        return await self.create_transaction(
            transaction_id=transaction_id,
            user_id=buyer.user_id,
            project_id=project.id,
            seller_id=project.author_id,
            amount=pricing.sale_price if amount is None else amount,
            currency=pricing.currency,
            payment_method=payment_method,
            payment_gateway_response=payment_gateway_response,
            metadata=metadata
        )

    async def update_status(
        self,
        actor: Principal,
        transaction_pk: UUID,
        status: TransactionStatus,
        payment_gateway_response: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """Move a transaction to a new status.

        Only staff may transition transactions; buyers and sellers may only
        read them.

        Raises:
            TransactionForbiddenError: If actor is not staff
            TransactionNotFoundError: If the transaction does not exist
            InvalidTransitionError: If the move is not allowed
            ConflictError: If the status changed concurrently
        """
        await self.ensure_store()

        if not actor.is_staff:
            logger.warning(
                f"User {actor.user_id} denied status change of transaction {transaction_pk} to {status.value}"
            )
            raise TransactionForbiddenError("Only staff can update transaction status")

        transaction = await self.store.get_transaction(transaction_pk)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_pk} not found")

        try:
            plan = plan_transition(transaction, status)
        except InvalidTransitionError:
            logger.warning(
                f"User {actor.user_id} attempted invalid transition of transaction "
                f"{transaction_pk} from {transaction.status.value} to {status.value}"
            )
            raise

        fields = dict(plan.fields)
        if payment_gateway_response is not None:
            fields['payment_gateway_response'] = payment_gateway_response
        if metadata is not None:
            fields['metadata'] = metadata

        updated = await self.store.apply_transaction_update(
            transaction_pk,
            transaction.status,
            fields,
            add_buyer=plan.add_buyer
        )
        if updated is None:
            raise TransactionNotFoundError(f"Transaction {transaction_pk} not found")

        logger.info(
            f"User {actor.user_id} moved transaction {transaction.transaction_id} "
            f"from {transaction.status.value} to {updated.status.value}"
        )
        return updated

    def _can_read(self, actor: Principal, transaction: Transaction) -> bool:
        return actor.is_staff or actor.user_id in (transaction.user_id, transaction.seller_id)

    async def get_transaction(self, actor: Principal, transaction_pk: UUID) -> Transaction:
        """Get a transaction visible to its buyer, its seller or staff."""
        await self.ensure_store()
        transaction = await self.store.get_transaction(transaction_pk)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_pk} not found")
        if not self._can_read(actor, transaction):
            logger.warning(f"User {actor.user_id} denied read of transaction {transaction_pk}")
            raise TransactionForbiddenError("Access denied")
        return transaction

    async def get_by_external_id(self, actor: Principal, transaction_id: str) -> Transaction:
        await self.ensure_store()
        transaction = await self.store.get_transaction_by_external_id(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        if not self._can_read(actor, transaction):
            logger.warning(f"User {actor.user_id} denied read of transaction {transaction_id}")
            raise TransactionForbiddenError("Access denied")
        return transaction

    async def list_for_buyer(
        self,
        user_id: str,
        status: Optional[TransactionStatus] = None
    ) -> List[Transaction]:
        await self.ensure_store()
        return await self.store.list_transactions(user_id=user_id, status=status)

    async def list_for_seller(
        self,
        seller_id: str,
        status: Optional[TransactionStatus] = None
    ) -> List[Transaction]:
        await self.ensure_store()
        return await self.store.list_transactions(seller_id=seller_id, status=status)

    async def get_stats(
        self,
        actor: Principal,
        seller_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> TransactionStats:
        """Sales statistics over completed transactions.

        Non-staff callers only see their own sales. Staff may query any
        seller, or the whole platform by leaving seller_id unset.
        """
        await self.ensure_store()

        if not actor.is_staff:
            if seller_id is not None and seller_id != actor.user_id:
                logger.warning(f"User {actor.user_id} denied stats for seller {seller_id}")
                raise TransactionForbiddenError("Access denied")
            seller_id = actor.user_id

        transactions = await self.store.list_transactions(
            seller_id=seller_id,
            status=TransactionStatus.COMPLETED,
            start=start,
            end=end
        )
        return transaction_stats(transactions)

    async def get_recent(self, actor: Principal, limit: int = 10) -> List[Transaction]:
        """Most recent transactions across the platform, staff only."""
        await self.ensure_store()
        if not actor.is_staff:
            logger.warning(f"User {actor.user_id} denied recent transactions")
            raise TransactionForbiddenError("Only staff can view recent transactions")
        return await self.store.list_transactions(limit=limit)


__all__ = [
    'ALLOWED_TRANSITIONS',
    'TransactionError',
    'TransactionNotFoundError',
    'DuplicateTransactionError',
    'InvalidTransitionError',
    'TransactionForbiddenError',
    'TransitionPlan',
    'plan_transition',
    'CurrencyStats',
    'TransactionStats',
    'transaction_stats',
    'TransactionManager',
]
