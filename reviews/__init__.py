"""Reviews module for project ratings and moderation.

This module provides functionality for:
- Creating, editing and deleting reviews
- Verified-purchase flags, frozen when the review is written
- Moderation of edited or reported reviews by staff
- Rating statistics over approved reviews
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel

from database import get_store
from errors import ConflictError, ForbiddenError, MarketplaceError, NotFoundError, ValidationError
from models import CENT, Principal, Review, ReviewFilters
from projects import ProjectNotFoundError

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5

REVIEW_STATUSES = ('pending', 'approved', 'all')


class ReviewError(MarketplaceError):
    """Base exception for review operations."""
    pass


class ReviewNotFoundError(ReviewError, NotFoundError):
    """Raised when a review is not found."""
    pass


class AlreadyReviewedError(ReviewError, ConflictError):
    """Raised when the user already reviewed the project."""
    pass


class ReviewValidationError(ReviewError, ValidationError):
    """Raised when review input is invalid."""
    pass


class ReviewForbiddenError(ReviewError, ForbiddenError):
    """Raised when the caller may not change the review."""
    pass


class RatingStats(BaseModel):
    average_rating: Decimal
    total_ratings: int
    rating_1: int = 0
    rating_2: int = 0
    rating_3: int = 0
    rating_4: int = 0
    rating_5: int = 0


def rating_stats(reviews: List[Review]) -> RatingStats:
    """Average and per-star histogram over approved reviews only."""
    approved = [r for r in reviews if r.is_approved]
    counts = {star: 0 for star in range(MIN_RATING, MAX_RATING + 1)}
    for review in approved:
        counts[review.rating] += 1

    if approved:
        average = (Decimal(sum(r.rating for r in approved)) / len(approved)).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
    else:
        average = Decimal('0.00')

    return RatingStats(
        average_rating=average,
        total_ratings=len(approved),
        **{f"rating_{star}": count for star, count in counts.items()}
    )


def _check_rating(rating) -> int:
    if not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ReviewValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    return rating


class ReviewManager:
    """Manager class for handling review operations."""

    def __init__(self, store=None):
        self.store = store

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()
        return self.store

    async def _load(self, review_id: UUID) -> Review:
        await self.ensure_store()
        review = await self.store.get_review(review_id)
        if review is None:
            raise ReviewNotFoundError(f"Review {review_id} not found")
        return review

    def _require_staff(self, actor: Principal, action: str) -> None:
        if not actor.is_staff:
            logger.warning(f"User {actor.user_id} denied {action}")
            raise ReviewForbiddenError("Only staff can moderate reviews")

    async def create_review(
        self,
        user: Principal,
        project_id: UUID,
        rating: int,
        review_text: Optional[str] = None
    ) -> Review:
        """Create a review; the verified-purchase flag is fixed from the buyer set now.

        Raises:
            ReviewValidationError: If rating is outside 1 to 5
            AlreadyReviewedError: If the user already reviewed the project
            ProjectNotFoundError: If the project does not exist
        """
        await self.ensure_store()
        _check_rating(rating)

        if await self.store.get_review_for(user.user_id, project_id) is not None:
            logger.warning(f"User {user.user_id} create_review: project {project_id} already reviewed")
            raise AlreadyReviewedError("You have already reviewed this project")

        project = await self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")

        review = await self.store.insert_review(Review(
            user_id=user.user_id,
            project_id=project_id,
            rating=rating,
            review_text=review_text,
            is_verified_purchase=project.has_buyer(user.user_id),
            is_approved=True
        ))
        if review is None:
            logger.warning(f"User {user.user_id} create_review: concurrent review of project {project_id}")
            raise AlreadyReviewedError("You have already reviewed this project")

        logger.info(
            f"User {user.user_id} reviewed project {project_id} "
            f"rating={rating} verified={review.is_verified_purchase}"
        )
        return review

    async def update_review(
        self,
        user: Principal,
        review_id: UUID,
        rating: Optional[int] = None,
        review_text: Optional[str] = None
    ) -> Tuple[Review, RatingStats]:
        """Edit a review's content; any edit sends it back to moderation.

        Returns:
            The updated review and the project's rating stats after the edit
        """
        review = await self._load(review_id)

        if review.user_id != user.user_id:
            logger.warning(f"User {user.user_id} denied edit of review {review_id}")
            raise ReviewForbiddenError("You can only update your own reviews")

        fields = {}
        if rating is not None:
            fields['rating'] = _check_rating(rating)
        if review_text is not None:
            fields['review_text'] = review_text
        if not fields:
            raise ReviewValidationError("No fields to update")
        fields['is_approved'] = False

        updated = await self.store.update_review(review_id, fields)
        if updated is None:
            raise ReviewNotFoundError(f"Review {review_id} not found")

        logger.info(f"User {user.user_id} edited review {review_id}, awaiting re-approval")
        return updated, await self.get_project_rating_stats(updated.project_id)

    async def delete_review(self, actor: Principal, review_id: UUID) -> None:
        review = await self._load(review_id)

        if review.user_id != actor.user_id and not actor.is_staff:
            logger.warning(f"User {actor.user_id} denied delete of review {review_id}")
            raise ReviewForbiddenError("You can only delete your own reviews")

        if not await self.store.delete_review(review_id):
            raise ReviewNotFoundError(f"Review {review_id} not found")
        logger.info(f"User {actor.user_id} deleted review {review_id}")

    async def moderate_review(self, actor: Principal, review_id: UUID, approved: bool) -> Review:
        """Approve or reject a review (staff only)."""
        self._require_staff(actor, f"moderation of review {review_id}")
        await self._load(review_id)

        updated = await self.store.update_review(review_id, {'is_approved': approved})
        if updated is None:
            raise ReviewNotFoundError(f"Review {review_id} not found")

        logger.info(f"User {actor.user_id} set review {review_id} approved={approved}")
        return updated

    async def get_project_reviews(self, project_id: UUID) -> List[Review]:
        """Approved reviews of a project, newest first."""
        await self.ensure_store()
        return await self.store.list_reviews(project_id=project_id, approved=True)

    async def get_user_reviews(self, user: Principal) -> List[Review]:
        await self.ensure_store()
        return await self.store.list_reviews(user_id=user.user_id)

    async def get_project_rating_stats(self, project_id: UUID) -> RatingStats:
        await self.ensure_store()
        return rating_stats(await self.store.list_reviews(project_id=project_id, approved=True))

    async def get_pending_reviews(self, actor: Principal) -> List[Review]:
        self._require_staff(actor, "pending review list")
        await self.ensure_store()
        return await self.store.list_reviews(approved=False)

    async def list_reviews(self, actor: Principal, filters: Optional[ReviewFilters] = None) -> List[Review]:
        """Filtered review listing for moderators."""
        self._require_staff(actor, "review listing")
        await self.ensure_store()
        filters = filters or ReviewFilters()

        if filters.status not in REVIEW_STATUSES:
            raise ReviewValidationError(f"Invalid review status filter: {filters.status}")
        approved = {'pending': False, 'approved': True, 'all': None}[filters.status]

        return await self.store.list_reviews(
            approved=approved,
            rating=filters.rating,
            sort_by=filters.sort_by,
            sort_order=filters.sort_order,
            limit=filters.limit,
            offset=filters.offset
        )


__all__ = [
    'MIN_RATING',
    'MAX_RATING',
    'ReviewError',
    'ReviewNotFoundError',
    'AlreadyReviewedError',
    'ReviewValidationError',
    'ReviewForbiddenError',
    'RatingStats',
    'rating_stats',
    'ReviewManager',
]
