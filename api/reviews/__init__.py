"""Reviews API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from auth import get_current_user, require_staff
from errors import MarketplaceError
from models import Principal, ReviewFilters
from ratelimit import rate_limit
from reviews import MAX_RATING, MIN_RATING, ReviewManager

from ..errors import http_error

router = APIRouter(
    prefix="/reviews",
    tags=["Reviews"]
)


class CreateReviewRequest(BaseModel):
    project_id: UUID
    rating: int = Field(ge=MIN_RATING, le=MAX_RATING)
    review_text: Optional[str] = Field(default=None, max_length=5000)


class UpdateReviewRequest(BaseModel):
    rating: Optional[int] = Field(default=None, ge=MIN_RATING, le=MAX_RATING)
    review_text: Optional[str] = Field(default=None, max_length=5000)


class ModerateReviewRequest(BaseModel):
    is_approved: bool


""" Public Endpoints - No Authentication Required """
@router.get("/project/{project_id}", dependencies=[Depends(rate_limit('public'))])
async def get_project_reviews(project_id: UUID):
    """Approved reviews of a project with its rating stats."""
    try:
        manager = ReviewManager()
        return {
            "reviews": await manager.get_project_reviews(project_id),
            "stats": await manager.get_project_rating_stats(project_id)
        }
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/project/{project_id}/stats", dependencies=[Depends(rate_limit('public'))])
async def get_project_rating_stats(project_id: UUID):
    try:
        manager = ReviewManager()
        return await manager.get_project_rating_stats(project_id)
    except MarketplaceError as e:
        raise http_error(e)


""" Protected Endpoints - Authentication Required """
@router.get("/me", dependencies=[Depends(rate_limit('general'))])
async def get_my_reviews(user: Principal = Depends(get_current_user)):
    try:
        manager = ReviewManager()
        return {"reviews": await manager.get_user_reviews(user)}
    except MarketplaceError as e:
        raise http_error(e)


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(rate_limit('general'))])
async def create_review(
    request: CreateReviewRequest,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = ReviewManager()
        review = await manager.create_review(
            user,
            request.project_id,
            request.rating,
            request.review_text
        )
        return {"message": "Review created successfully", "review": review}
    except MarketplaceError as e:
        raise http_error(e)


@router.put("/{review_id}", dependencies=[Depends(rate_limit('general'))])
async def update_review(
    review_id: UUID,
    request: UpdateReviewRequest,
    user: Principal = Depends(get_current_user)
):
    """Edit the caller's review; it is hidden until approved again."""
    try:
        manager = ReviewManager()
        review, stats = await manager.update_review(
            user,
            review_id,
            rating=request.rating,
            review_text=request.review_text
        )
        return {
            "message": "Review updated successfully, pending approval",
            "review": review,
            "stats": stats
        }
    except MarketplaceError as e:
        raise http_error(e)


@router.delete("/{review_id}", dependencies=[Depends(rate_limit('general'))])
async def delete_review(
    review_id: UUID,
    user: Principal = Depends(get_current_user)
):
    try:
        manager = ReviewManager()
        await manager.delete_review(user, review_id)
        return {"message": "Review deleted successfully"}
    except MarketplaceError as e:
        raise http_error(e)


""" Staff Endpoints """
@router.get("/admin/pending", dependencies=[Depends(rate_limit('admin'))])
async def get_pending_reviews(user: Principal = Depends(require_staff)):
    try:
        manager = ReviewManager()
        return {"reviews": await manager.get_pending_reviews(user)}
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/admin", dependencies=[Depends(rate_limit('admin'))])
async def list_reviews(
    review_status: str = Query("all", alias="status", pattern="^(pending|approved|all)$"),
    rating: Optional[int] = Query(None, ge=MIN_RATING, le=MAX_RATING),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("created_at", pattern="^(created_at|updated_at|rating)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: Principal = Depends(require_staff)
):
    try:
        manager = ReviewManager()
        filters = ReviewFilters(
            status=review_status,
            rating=rating,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=sort_order
        )
        return {"reviews": await manager.list_reviews(user, filters)}
    except MarketplaceError as e:
        raise http_error(e)


@router.patch("/admin/{review_id}", dependencies=[Depends(rate_limit('admin'))])
async def moderate_review(
    review_id: UUID,
    request: ModerateReviewRequest,
    user: Principal = Depends(require_staff)
):
    try:
        manager = ReviewManager()
        review = await manager.moderate_review(user, review_id, request.is_approved)
        return {"message": "Review moderated successfully", "review": review}
    except MarketplaceError as e:
        raise http_error(e)
