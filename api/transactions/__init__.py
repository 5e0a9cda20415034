"""Transactions API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from auth import get_current_user, require_staff
from errors import MarketplaceError
from models import Principal, TransactionStatus
from ratelimit import rate_limit
from transactions import TransactionManager

from ..errors import http_error

router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"]
)


class CreateTransactionRequest(BaseModel):
    """Request model for recording a purchase attempt."""
    project_id: UUID
    transaction_id: str = Field(min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_method: Optional[str] = None
    payment_gateway_response: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class UpdateTransactionStatusRequest(BaseModel):
    status: TransactionStatus
    payment_gateway_response: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


@router.get("/purchases", dependencies=[Depends(rate_limit('general'))])
async def get_my_purchases(
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    user: Principal = Depends(get_current_user)
):
    try:
        manager = TransactionManager()
        return {"transactions": await manager.list_for_buyer(user.user_id, transaction_status)}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/sales", dependencies=[Depends(rate_limit('general'))])
async def get_my_sales(
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    user: Principal = Depends(get_current_user)
):
    try:
        manager = TransactionManager()
        return {"transactions": await manager.list_for_seller(user.user_id, transaction_status)}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/stats", dependencies=[Depends(rate_limit('general'))])
async def get_stats(
    seller_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    user: Principal = Depends(get_current_user)
):
    """Sales statistics; the caller's own unless staff."""
    try:
        manager = TransactionManager()
        return await manager.get_stats(user, seller_id, start_date, end_date)
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/recent", dependencies=[Depends(rate_limit('admin'))])
async def get_recent(
    limit: int = Query(10, ge=1, le=100),
    user: Principal = Depends(require_staff)
):
    try:
        manager = TransactionManager()
        return {"transactions": await manager.get_recent(user, limit)}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/{transaction_pk}", dependencies=[Depends(rate_limit('general'))])
async def get_transaction(
    transaction_pk: UUID,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = TransactionManager()
        return {"transaction": await manager.get_transaction(user, transaction_pk)}
    except MarketplaceError as e:
        raise http_error(e)


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(rate_limit('general'))])
async def create_transaction(
    request: CreateTransactionRequest,
    user: Principal = Depends(get_current_user)
):
    """Record a pending purchase of a project by the caller."""
    try:
        manager = TransactionManager()
        transaction = await manager.create_purchase(
            user,
            request.project_id,
            request.transaction_id,
            amount=request.amount,
            payment_method=request.payment_method,
            payment_gateway_response=request.payment_gateway_response,
            metadata=request.metadata
        )
        return {"message": "Transaction created successfully", "transaction": transaction}
    except MarketplaceError as e:
        raise http_error(e)


@router.patch("/{transaction_pk}/status", dependencies=[Depends(rate_limit('admin'))])
async def update_transaction_status(
    transaction_pk: UUID,
    request: UpdateTransactionStatusRequest,
    user: Principal = Depends(get_current_user)
):
    """Move a transaction through its lifecycle (staff only)."""
    try:
        manager = TransactionManager()
        transaction = await manager.update_status(
            user,
            transaction_pk,
            request.status,
            payment_gateway_response=request.payment_gateway_response,
            metadata=request.metadata
        )
        return {"message": "Transaction status updated successfully", "transaction": transaction}
    except MarketplaceError as e:
        raise http_error(e)
