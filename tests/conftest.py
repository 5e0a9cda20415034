"""Shared fixtures for marketplace tests."""

from decimal import Decimal

import pytest
import pytest_asyncio

from database import MemoryStore, set_store
from models import Currency, Pricing, Principal, Project, ProjectStatus, UserType

AUTHOR = Principal(user_id="author-1")
BUYER = Principal(user_id="buyer-1")
OTHER = Principal(user_id="other-1")
ADMIN = Principal(user_id="admin-1", user_type=UserType.ADMIN)


def make_project(**overrides) -> Project:
    """Build an approved, priced project owned by AUTHOR."""
    fields = {
        "author_id": AUTHOR.user_id,
        "title": "Inventory Tracker",
        "description": "A small inventory tracking app",
        "category": "web",
        "pricing": Pricing(
            sale_price=Decimal("75.00"),
            original_price=Decimal("100.00"),
            currency=Currency.INR
        ),
        "status": ProjectStatus.APPROVED,
    }
    fields.update(overrides)
    return Project(**fields)


@pytest.fixture
def store():
    """Fresh in-memory store, also installed as the active store."""
    memory = MemoryStore()
    set_store(memory)
    yield memory
    set_store(None)


@pytest_asyncio.fixture
async def project(store) -> Project:
    """An approved project priced at 75.00 INR."""
    return await store.insert_project(make_project())
