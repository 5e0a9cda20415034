"""Tests for the dashboard module."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from dashboard import DashboardManager, months_before, resolve_months_back
from models import (
    Currency, Download, ProjectStatus, Review, Transaction, TransactionStatus, WishlistItem
)
from pricing import split_commission

from .conftest import AUTHOR, BUYER, OTHER, make_project

NOW = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


def days_ago(days):
    return NOW - timedelta(days=days)


def sale(user_id, project, amount, currency, created_at, status=TransactionStatus.COMPLETED):
    split = split_commission(Decimal(amount), Decimal("0.10"))
    return Transaction(
        transaction_id=f"txn-{user_id}-{created_at:%Y%m%d}-{currency.value}",
        user_id=user_id,
        project_id=project.id,
        seller_id=project.author_id,
        status=status,
        amount=split.amount,
        commission_amount=split.commission_amount,
        seller_amount=split.seller_amount,
        currency=currency,
        created_at=created_at
    )


@pytest.fixture
def dashboard_manager(store):
    """Create and return a DashboardManager instance."""
    return DashboardManager(store=store)


@pytest_asyncio.fixture
async def seller_activity(store):
    """AUTHOR sells one project to two customers and keeps a draft; AUTHOR also buys once."""
    popular = await store.insert_project(make_project(
        title="Popular Tool",
        buyers=[BUYER.user_id, OTHER.user_id],
        purchase_count=2,
        view_count=10,
        created_at=days_ago(60)
    ))
    draft = await store.insert_project(make_project(
        title="Work In Progress",
        status=ProjectStatus.DRAFT,
        created_at=days_ago(5)
    ))
    elsewhere = await store.insert_project(make_project(author_id=OTHER.user_id, title="Someone Else's"))

    await store.insert_transaction(sale(BUYER.user_id, popular, "100", Currency.INR, days_ago(5)))
    await store.insert_transaction(sale(OTHER.user_id, popular, "50", Currency.INR, datetime(2026, 3, 1, tzinfo=timezone.utc)))
    await store.insert_transaction(sale(BUYER.user_id, popular, "20", Currency.USD, datetime(2025, 10, 1, tzinfo=timezone.utc)))
    await store.insert_transaction(sale("late-1", popular, "75", Currency.INR, days_ago(1), status=TransactionStatus.PENDING))
    await store.insert_transaction(sale(AUTHOR.user_id, elsewhere, "30", Currency.INR, days_ago(10)))

    await store.record_download(Download(user_id=BUYER.user_id, project_id=popular.id, created_at=days_ago(3)))
    await store.record_download(Download(user_id=OTHER.user_id, project_id=popular.id, created_at=days_ago(40)))

    await store.insert_wishlist_item(WishlistItem(user_id=BUYER.user_id, project_id=popular.id))
    await store.insert_wishlist_item(WishlistItem(user_id="fan-1", project_id=popular.id))
    await store.insert_wishlist_item(WishlistItem(user_id=AUTHOR.user_id, project_id=elsewhere.id))

    await store.insert_review(Review(user_id=BUYER.user_id, project_id=popular.id, rating=5))
    await store.insert_review(Review(user_id=OTHER.user_id, project_id=popular.id, rating=3))
    await store.insert_review(Review(user_id="fan-1", project_id=popular.id, rating=1, is_approved=False))

    return popular, draft


def test_resolve_months_back():
    assert resolve_months_back() == 6
    assert resolve_months_back("12") == 12
    assert resolve_months_back(3) == 3
    for value in (2, 13, "abc", ""):
        assert resolve_months_back(value) == 6


def test_months_before():
    assert months_before(NOW, 6) == datetime(2025, 11, 15, 12, 0, tzinfo=timezone.utc)
    # Clamped to the last day of a shorter month
    assert months_before(datetime(2026, 3, 31), 1) == datetime(2026, 2, 28)
    assert months_before(datetime(2026, 1, 15), 3) == datetime(2025, 10, 15)


@pytest.mark.asyncio
async def test_dashboard_stats(dashboard_manager, seller_activity):
    popular, _ = seller_activity

    stats = await dashboard_manager.get_dashboard_stats(AUTHOR, now=NOW)

    assert stats.months_back == 6
    assert stats.user_performance.projects_owned == 2
    assert stats.user_performance.total_purchases == 1
    assert stats.user_performance.wishlist_items == 1
    assert stats.user_performance.average_rating == Decimal("4.00")

    assert stats.monthly_activity.new_projects_created == 1
    assert stats.monthly_activity.downloads_received == 1
    assert stats.monthly_activity.new_projects_purchased == 1

    performance = stats.project_performance
    assert performance.best_performing_project.id == popular.id
    assert performance.best_performing_project.total_downloads == 2
    assert performance.view_to_purchase_conversion == Decimal("20.00")
    assert performance.average_project_rating == Decimal("4.00")
    assert performance.downloads_vs_purchases_ratio == Decimal("1.00")

    engagement = stats.engagement_metrics
    assert engagement.total_project_views == 10
    assert engagement.wishlist_to_purchase_conversion == Decimal("50.00")
    assert engagement.review_count == 2
    assert engagement.positive_review_percentage == Decimal("50.00")
    assert engagement.repeat_customer_count == 1
    assert engagement.repeat_customer_percentage == Decimal("50.00")


@pytest.mark.asyncio
async def test_dashboard_revenue_is_kept_per_currency(dashboard_manager, seller_activity):
    stats = await dashboard_manager.get_dashboard_stats(AUTHOR, now=NOW)

    revenue = stats.revenue_financial
    assert [(r.currency, r.total_revenue_earned, r.average_sale_price, r.total_sales) for r in revenue.by_currency] == [
        (Currency.INR, Decimal("135.00"), Decimal("75.00"), 2),
        (Currency.USD, Decimal("18.00"), Decimal("20.00"), 1),
    ]
    # The October sale is older than six months
    assert [(m.month, m.currency, m.revenue) for m in revenue.monthly_revenue_trend] == [
        ("2026-03", Currency.INR, Decimal("45.00")),
        ("2026-05", Currency.INR, Decimal("90.00")),
    ]

    stats = await dashboard_manager.get_dashboard_stats(AUTHOR, months_back=12, now=NOW)
    assert stats.months_back == 12
    assert stats.revenue_financial.monthly_revenue_trend[0].month == "2025-10"
    assert stats.revenue_financial.monthly_revenue_trend[0].currency == Currency.USD


@pytest.mark.asyncio
async def test_dashboard_for_new_user(dashboard_manager):
    stats = await dashboard_manager.get_dashboard_stats(BUYER, now=NOW)

    assert stats.user_performance.projects_owned == 0
    assert stats.revenue_financial.by_currency == []
    assert stats.revenue_financial.monthly_revenue_trend == []
    assert stats.project_performance.best_performing_project is None
    assert stats.project_performance.view_to_purchase_conversion == Decimal("0.00")
    assert stats.engagement_metrics.repeat_customer_percentage == Decimal("0.00")
