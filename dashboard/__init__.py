"""Dashboard module for per-user marketplace statistics.

This module provides functionality for:
- Seller performance over the caller's own projects
- Buying activity of the caller
- Revenue totals and a monthly revenue trend, kept apart per currency
- Conversion, rating and repeat-customer metrics
"""

import calendar
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel

from database import get_store
from models import (
    CENT, Currency, Principal, Project, Review, Transaction, TransactionStatus,
    TransactionType, utcnow
)
from reviews import rating_stats

logger = logging.getLogger(__name__)


DEFAULT_MONTHS_BACK = 6
MIN_MONTHS_BACK = 3
MAX_MONTHS_BACK = 12

# Window for the "monthly activity" counters
ACTIVITY_WINDOW = timedelta(days=30)

# Ratings at or above this count as positive reviews
POSITIVE_RATING = 4


class UserPerformance(BaseModel):
    projects_owned: int
    total_purchases: int
    wishlist_items: int
    average_rating: Decimal


class MonthlyActivity(BaseModel):
    new_projects_created: int
    downloads_received: int
    new_projects_purchased: int


class MonthlyRevenue(BaseModel):
    month: str
    currency: Currency
    revenue: Decimal


class CurrencyRevenue(BaseModel):
    currency: Currency
    total_revenue_earned: Decimal
    average_sale_price: Decimal
    total_sales: int


class RevenueFinancial(BaseModel):
    """Seller earnings; amounts are never summed across currencies."""
    by_currency: List[CurrencyRevenue]
    monthly_revenue_trend: List[MonthlyRevenue]


class BestProject(BaseModel):
    id: UUID
    title: str
    total_sales: int
    total_downloads: int
    total_views: int


class ProjectPerformance(BaseModel):
    best_performing_project: Optional[BestProject] = None
    view_to_purchase_conversion: Decimal
    average_project_rating: Decimal
    downloads_vs_purchases_ratio: Decimal


class EngagementMetrics(BaseModel):
    total_project_views: int
    wishlist_to_purchase_conversion: Decimal
    review_count: int
    positive_review_percentage: Decimal
    repeat_customer_count: int
    repeat_customer_percentage: Decimal


class DashboardStats(BaseModel):
    months_back: int
    user_performance: UserPerformance
    monthly_activity: MonthlyActivity
    revenue_financial: RevenueFinancial
    project_performance: ProjectPerformance
    engagement_metrics: EngagementMetrics


def resolve_months_back(value: Any = None) -> int:
    """Trend window in months; anything missing or out of range means the default."""
    if value is None:
        return DEFAULT_MONTHS_BACK
    try:
        months = int(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring months_back {value!r}, using {DEFAULT_MONTHS_BACK}")
        return DEFAULT_MONTHS_BACK
    if not MIN_MONTHS_BACK <= months <= MAX_MONTHS_BACK:
        logger.debug(f"Ignoring months_back {months}, using {DEFAULT_MONTHS_BACK}")
        return DEFAULT_MONTHS_BACK
    return months


def months_before(moment: datetime, months: int) -> datetime:
    """Same day and time a number of calendar months earlier, clamped to month end."""
    years, month_index = divmod(moment.month - 1 - months, 12)
    year = moment.year + years
    month = month_index + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def percentage(part: int, whole: int) -> Decimal:
    if not whole:
        return Decimal('0.00')
    return (Decimal(part) * 100 / Decimal(whole)).quantize(CENT, rounding=ROUND_HALF_UP)


def ratio(numerator: int, denominator: int) -> Decimal:
    if not denominator:
        return Decimal('0.00')
    return (Decimal(numerator) / Decimal(denominator)).quantize(CENT, rounding=ROUND_HALF_UP)


def revenue_financial(sales: List[Transaction], trend_start: datetime) -> RevenueFinancial:
    """Earnings per currency over all sales, plus per-month earnings since trend_start."""
    groups: Dict[Currency, List[Transaction]] = defaultdict(list)
    for sale in sales:
        groups[sale.currency].append(sale)

    by_currency = []
    for currency in sorted(groups, key=lambda c: c.value):
        items = groups[currency]
        amount = sum((t.amount for t in items), Decimal('0.00'))
        by_currency.append(CurrencyRevenue(
            currency=currency,
            total_revenue_earned=sum((t.seller_amount for t in items), Decimal('0.00')),
            average_sale_price=(amount / len(items)).quantize(CENT, rounding=ROUND_HALF_UP),
            total_sales=len(items)
        ))

    monthly: Dict[Tuple[str, Currency], Decimal] = defaultdict(lambda: Decimal('0.00'))
    for sale in sales:
        if sale.created_at >= trend_start:
            monthly[(sale.created_at.strftime('%Y-%m'), sale.currency)] += sale.seller_amount

    trend = [
        MonthlyRevenue(month=month, currency=currency, revenue=revenue)
        for (month, currency), revenue in sorted(monthly.items(), key=lambda m: (m[0][0], m[0][1].value))
    ]
    return RevenueFinancial(by_currency=by_currency, monthly_revenue_trend=trend)


def project_performance(projects: List[Project], reviews_by_project: Dict[UUID, List[Review]]) -> ProjectPerformance:
    best = None
    if projects:
        # Newest first, so ties go to the most recent project
        top = max(projects, key=lambda p: (p.purchase_count, p.view_count))
        best = BestProject(
            id=top.id,
            title=top.title,
            total_sales=top.purchase_count,
            total_downloads=top.download_count,
            total_views=top.view_count
        )

    project_averages = [
        stats.average_rating
        for stats in (rating_stats(reviews) for reviews in reviews_by_project.values())
        if stats.total_ratings
    ]
    if project_averages:
        average_project_rating = (sum(project_averages) / len(project_averages)).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
    else:
        average_project_rating = Decimal('0.00')

    views = sum(p.view_count for p in projects)
    purchases = sum(p.purchase_count for p in projects)
    downloads = sum(p.download_count for p in projects)

    return ProjectPerformance(
        best_performing_project=best,
        view_to_purchase_conversion=percentage(purchases, views),
        average_project_rating=average_project_rating,
        downloads_vs_purchases_ratio=ratio(downloads, purchases)
    )


class DashboardManager:
    """Manager class for building a user's dashboard."""

    def __init__(self, store=None):
        self.store = store

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()
        return self.store

    async def get_dashboard_stats(
        self,
        user: Principal,
        months_back: Any = DEFAULT_MONTHS_BACK,
        now: Optional[datetime] = None
    ) -> DashboardStats:
        """Collect the caller's statistics as a seller and as a buyer.

        Args:
            user: The caller; only their own data is read
            months_back: Length of the revenue trend, 3 to 12 months
            now: Reference time, defaults to the current time
        """
        await self.ensure_store()
        months_back = resolve_months_back(months_back)
        now = now or utcnow()
        activity_start = now - ACTIVITY_WINDOW

        projects = await self.store.list_author_projects(user.user_id)
        sales = [
            t for t in await self.store.list_transactions(
                seller_id=user.user_id,
                status=TransactionStatus.COMPLETED
            )
            if t.type == TransactionType.PURCHASE
        ]
        purchases = [
            t for t in await self.store.list_transactions(
                user_id=user.user_id,
                status=TransactionStatus.COMPLETED
            )
            if t.type == TransactionType.PURCHASE
        ]

        reviews_by_project: Dict[UUID, List[Review]] = {}
        downloads_received = 0
        wishlisters = set()
        converted = set()
        for project in projects:
            reviews_by_project[project.id] = await self.store.list_reviews(
                project_id=project.id,
                approved=True
            )
            downloads_received += sum(
                1 for d in await self.store.list_downloads(project_id=project.id)
                if d.created_at >= activity_start
            )
            for item in await self.store.list_project_wishlists(project.id):
                wishlisters.add(item.user_id)
                if project.has_buyer(item.user_id):
                    converted.add(item.user_id)

        approved_reviews = [r for reviews in reviews_by_project.values() for r in reviews]
        customers = Counter(t.user_id for t in sales)
        repeat_customers = sum(1 for count in customers.values() if count > 1)

        stats = DashboardStats(
            months_back=months_back,
            user_performance=UserPerformance(
                projects_owned=len(projects),
                total_purchases=len(purchases),
                wishlist_items=len(await self.store.list_wishlist_items(user.user_id)),
                average_rating=rating_stats(approved_reviews).average_rating
            ),
            monthly_activity=MonthlyActivity(
                new_projects_created=sum(1 for p in projects if p.created_at >= activity_start),
                downloads_received=downloads_received,
                new_projects_purchased=sum(1 for t in purchases if t.created_at >= activity_start)
            ),
            revenue_financial=revenue_financial(sales, months_before(now, months_back)),
            project_performance=project_performance(projects, reviews_by_project),
            engagement_metrics=EngagementMetrics(
                total_project_views=sum(p.view_count for p in projects),
                wishlist_to_purchase_conversion=percentage(len(converted), len(wishlisters)),
                review_count=len(approved_reviews),
                positive_review_percentage=percentage(
                    sum(1 for r in approved_reviews if r.rating >= POSITIVE_RATING),
                    len(approved_reviews)
                ),
                repeat_customer_count=repeat_customers,
                repeat_customer_percentage=percentage(repeat_customers, len(customers))
            )
        )
        logger.debug(f"Built dashboard for user {user.user_id} over {months_back} months")
        return stats


__all__ = [
    'DEFAULT_MONTHS_BACK',
    'MIN_MONTHS_BACK',
    'MAX_MONTHS_BACK',
    'UserPerformance',
    'MonthlyActivity',
    'MonthlyRevenue',
    'CurrencyRevenue',
    'RevenueFinancial',
    'BestProject',
    'ProjectPerformance',
    'EngagementMetrics',
    'DashboardStats',
    'resolve_months_back',
    'months_before',
    'revenue_financial',
    'project_performance',
    'DashboardManager',
]
