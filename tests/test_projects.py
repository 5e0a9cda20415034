"""Tests for the projects module."""

import uuid
from decimal import Decimal

import pytest
import pytest_asyncio

from database import ReferencedRowError
from errors import ConflictError
from models import ProjectFilters, ProjectStatus, Transaction
from pricing import PricingMissingError
from projects import (
    AlreadyPurchasedError,
    ProjectForbiddenError,
    ProjectManager,
    ProjectNotFoundError,
    ProjectNotPurchasableError,
    ProjectValidationError,
    SelfPurchaseError,
    check_purchase_intent,
)

from .conftest import ADMIN, AUTHOR, BUYER, OTHER, make_project


@pytest.fixture
def project_manager(store):
    """Create and return a ProjectManager instance."""
    return ProjectManager(store=store)


@pytest_asyncio.fixture
async def draft(project_manager):
    """A draft project created through the manager."""
    return await project_manager.create_project(
        AUTHOR,
        title="  CLI Budget Tool  ",
        description="Tracks spending from the terminal",
        tech_stack=["python"],
        pricing={"sale_price": "40", "original_price": "50", "currency": "USD"}
    )


def test_purchase_intent_checks_run_in_order():
    """Each gate failure is reported before the later ones are considered."""
    with pytest.raises(ProjectNotFoundError):
        check_purchase_intent(None, BUYER.user_id)

    # Author of an unpublished project gets the status error first
    with pytest.raises(ProjectNotPurchasableError):
        check_purchase_intent(make_project(status=ProjectStatus.DRAFT), AUTHOR.user_id)

    with pytest.raises(SelfPurchaseError):
        check_purchase_intent(make_project(), AUTHOR.user_id)

    # Author is never allowed even if listed as a buyer
    with pytest.raises(SelfPurchaseError):
        check_purchase_intent(make_project(buyers=[AUTHOR.user_id]), AUTHOR.user_id)

    with pytest.raises(AlreadyPurchasedError):
        check_purchase_intent(make_project(buyers=[BUYER.user_id]), BUYER.user_id)

    project = make_project()
    assert check_purchase_intent(project, BUYER.user_id) is project


def test_purchase_intent_respects_configured_status():
    published = make_project(status=ProjectStatus.PUBLISHED)

    with pytest.raises(ProjectNotPurchasableError):
        check_purchase_intent(published, BUYER.user_id)
    assert check_purchase_intent(published, BUYER.user_id, "published") is published


@pytest.mark.asyncio
async def test_create_project(draft):
    assert draft.title == "CLI Budget Tool"
    assert draft.status == ProjectStatus.DRAFT
    assert draft.author_id == AUTHOR.user_id
    assert draft.pricing.sale_price == Decimal("40.00")
    assert draft.buyers == []
    assert draft.purchase_count == 0


@pytest.mark.asyncio
async def test_create_project_validation(project_manager):
    with pytest.raises(ProjectValidationError):
        await project_manager.create_project(AUTHOR, title=" ", description="x")

    with pytest.raises(ProjectValidationError):
        await project_manager.create_project(
            AUTHOR,
            title="Bad price",
            description="x",
            pricing={"sale_price": "-1", "original_price": "10"}
        )


@pytest.mark.asyncio
async def test_draft_hidden_from_other_users(project_manager, draft):
    with pytest.raises(ProjectNotFoundError):
        await project_manager.get_project(draft.id)
    with pytest.raises(ProjectNotFoundError):
        await project_manager.get_project(draft.id, viewer=OTHER)

    assert (await project_manager.get_project(draft.id, viewer=AUTHOR)).id == draft.id
    assert (await project_manager.get_project(draft.id, viewer=ADMIN)).id == draft.id


@pytest.mark.asyncio
async def test_get_project_view(store, project_manager, project):
    view = await project_manager.get_project(project.id, viewer=BUYER, count_view=True)

    assert view.discount_percentage == 25
    assert view.view_count == 1
    assert view.user_status.has_purchased is False
    assert view.user_status.in_cart is False

    # Authors viewing their own project are not counted
    await project_manager.get_project(project.id, viewer=AUTHOR, count_view=True)
    assert (await store.get_project(project.id)).view_count == 1


@pytest.mark.asyncio
async def test_list_projects_only_shows_purchasable_to_public(store, project_manager, project, draft):
    result = await project_manager.list_projects(
        ProjectFilters(status=[ProjectStatus.DRAFT]),
        viewer=OTHER
    )
    assert [p.id for p in result["projects"]] == [project.id]
    assert result["pagination"]["total"] == 1

    result = await project_manager.list_projects(viewer=ADMIN)
    assert {p.id for p in result["projects"]} == {project.id, draft.id}


@pytest.mark.asyncio
async def test_get_my_projects_includes_unpublished(store, project_manager, project, draft):
    await store.insert_project(make_project(author_id=OTHER.user_id, status=ProjectStatus.DRAFT))

    result = await project_manager.get_my_projects(AUTHOR)
    assert {p.id for p in result["projects"]} == {project.id, draft.id}
    assert result["pagination"]["total"] == 2

    result = await project_manager.get_my_projects(AUTHOR, ProjectFilters(status=[ProjectStatus.DRAFT]))
    assert [p.id for p in result["projects"]] == [draft.id]

    # The author filter cannot be pointed at someone else
    result = await project_manager.get_my_projects(BUYER, ProjectFilters(author_id=AUTHOR.user_id))
    assert result["projects"] == []


@pytest.mark.asyncio
async def test_list_projects_filters_and_pagination(store, project_manager):
    for price in ("10", "20", "30"):
        await store.insert_project(make_project(
            title=f"Project {price}",
            pricing={"sale_price": price, "original_price": price}
        ))

    result = await project_manager.list_projects(
        ProjectFilters(min_price=Decimal("15"), sort_by="price", sort_order="asc", limit=1)
    )
    assert [p.title for p in result["projects"]] == ["Project 20"]
    assert result["pagination"] == {"page": 1, "limit": 1, "total": 2, "total_pages": 2}

    result = await project_manager.list_projects(ProjectFilters(search="project 3"))
    assert [p.title for p in result["projects"]] == ["Project 30"]


@pytest.mark.asyncio
async def test_update_project(project_manager, draft):
    updated = await project_manager.update_project(
        AUTHOR,
        draft.id,
        {"title": "Budget Tool", "pricing": {"sale_price": "45", "original_price": "50"}}
    )
    assert updated.title == "Budget Tool"
    assert updated.pricing.sale_price == Decimal("45.00")


@pytest.mark.asyncio
async def test_update_project_rejects_system_fields(project_manager, draft):
    with pytest.raises(ProjectValidationError):
        await project_manager.update_project(AUTHOR, draft.id, {"buyers": [OTHER.user_id]})
    with pytest.raises(ProjectValidationError):
        await project_manager.update_project(AUTHOR, draft.id, {})
    with pytest.raises(ProjectForbiddenError):
        await project_manager.update_project(OTHER, draft.id, {"title": "Mine now"})


@pytest.mark.asyncio
async def test_update_status_permissions(project_manager, draft):
    pending = await project_manager.update_status(AUTHOR, draft.id, ProjectStatus.PENDING)
    assert pending.status == ProjectStatus.PENDING

    # Authors cannot approve their own work or feature it
    with pytest.raises(ProjectForbiddenError):
        await project_manager.update_status(AUTHOR, draft.id, ProjectStatus.APPROVED)
    with pytest.raises(ProjectForbiddenError):
        await project_manager.update_status(AUTHOR, draft.id, is_featured=True)
    with pytest.raises(ProjectForbiddenError):
        await project_manager.update_status(OTHER, draft.id, ProjectStatus.ARCHIVED)

    approved = await project_manager.update_status(
        ADMIN, draft.id, ProjectStatus.APPROVED, is_featured=True
    )
    assert approved.status == ProjectStatus.APPROVED
    assert approved.is_featured is True

    # Once approved the author can no longer move it
    with pytest.raises(ProjectForbiddenError):
        await project_manager.update_status(AUTHOR, draft.id, ProjectStatus.DRAFT)

    with pytest.raises(ProjectValidationError):
        await project_manager.update_status(ADMIN, draft.id)


@pytest.mark.asyncio
async def test_delete_project(store, project_manager, project):
    with pytest.raises(ProjectForbiddenError):
        await project_manager.delete_project(OTHER, project.id)

    await project_manager.delete_project(AUTHOR, project.id)
    assert await store.get_project(project.id) is None

    with pytest.raises(ProjectNotFoundError):
        await project_manager.delete_project(AUTHOR, project.id)


@pytest.mark.asyncio
async def test_delete_project_with_transactions_is_refused(store, project_manager, project):
    await store.insert_transaction(Transaction(
        transaction_id="txn-delete",
        user_id=BUYER.user_id,
        project_id=project.id,
        seller_id=AUTHOR.user_id,
        amount="75",
        commission_amount="7.50",
        seller_amount="67.50"
    ))

    with pytest.raises(ReferencedRowError):
        await project_manager.delete_project(AUTHOR, project.id)
    assert await store.get_project(project.id) is not None


@pytest.mark.asyncio
async def test_purchase_project(store, project_manager, project):
    result = await project_manager.purchase_project(BUYER, project.id)

    assert result.added is True
    assert result.project.buyers == [BUYER.user_id]
    assert result.project.purchase_count == 1

    with pytest.raises(AlreadyPurchasedError):
        await project_manager.purchase_project(BUYER, project.id)


@pytest.mark.asyncio
async def test_purchase_project_self_purchase_always_fails(project_manager, project):
    with pytest.raises(SelfPurchaseError):
        await project_manager.purchase_project(AUTHOR, project.id)


@pytest.mark.asyncio
async def test_purchase_project_requires_pricing(store, project_manager):
    unpriced = await store.insert_project(make_project(pricing=None))
    with pytest.raises(PricingMissingError):
        await project_manager.purchase_project(BUYER, unpriced.id)


@pytest.mark.asyncio
async def test_purchase_project_lost_race(store, project_manager, project):
    """A buyer added between the gate and the write is reported as a conflict."""
    original = store.get_project

    async def stale_get_project(project_id):
        # Simulate a concurrent purchase landing after the gate read
        snapshot = await original(project_id)
        await store.add_buyer(project_id, BUYER.user_id)
        return snapshot

    store.get_project = stale_get_project
    with pytest.raises(ConflictError):
        await project_manager.purchase_project(BUYER, project.id)
    store.get_project = original

    assert (await store.get_project(project.id)).buyers == [BUYER.user_id]
