"""Tests for the REST API."""

import uuid

import pytest
from fastapi.testclient import TestClient

from api import app
from auth import create_access_token, decode_access_token
from models import UserType
from ratelimit import TokenBucketLimiter

from .conftest import ADMIN, AUTHOR, BUYER, OTHER, make_project


def auth_header(principal):
    token = create_access_token(principal.user_id, principal.user_type)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(store):
    """Client against the app with the in-memory store and no rate limits."""
    app.state.rate_limiters = None
    return TestClient(app)


@pytest.fixture
def project(store):
    """An approved project inserted directly into the store."""
    project = make_project()
    store._projects[project.id] = project
    return project


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["name"] == "ProjXChange API"


def test_project_lifecycle(client):
    response = client.post(
        "/projects",
        json={
            "title": "Chat Widget",
            "description": "Embeddable support chat",
            "pricing": {"sale_price": "75", "original_price": "100", "currency": "USD"}
        },
        headers=auth_header(AUTHOR)
    )
    assert response.status_code == 201
    project = response.json()["project"]
    assert project["status"] == "draft"
    # Money crosses the wire as fixed-scale strings
    assert project["pricing"]["sale_price"] == "75.00"

    # Drafts are invisible to the public
    assert client.get(f"/projects/{project['id']}").status_code == 404

    response = client.patch(
        f"/projects/{project['id']}/status",
        json={"status": "approved"},
        headers=auth_header(ADMIN)
    )
    assert response.status_code == 200

    response = client.get(f"/projects/{project['id']}")
    assert response.status_code == 200
    assert response.json()["project"]["discount_percentage"] == 25
    assert response.json()["project"]["view_count"] == 1

    listing = client.get("/projects").json()
    assert [p["id"] for p in listing["projects"]] == [project["id"]]
    assert listing["pagination"]["total"] == 1


def test_my_projects_lists_drafts(client):
    headers = auth_header(AUTHOR)
    created = client.post(
        "/projects",
        json={"title": "Draft Tool", "description": "Not published yet"},
        headers=headers
    ).json()["project"]

    # The public catalogue hides drafts even from their author
    listing = client.get(f"/projects?author_id={AUTHOR.user_id}", headers=headers).json()
    assert listing["pagination"]["total"] == 0

    response = client.get("/projects/my", headers=headers)
    assert response.status_code == 200
    assert [p["id"] for p in response.json()["projects"]] == [created["id"]]
    assert response.json()["projects"][0]["status"] == "draft"

    assert client.get("/projects/my", headers=auth_header(BUYER)).json()["projects"] == []
    assert client.get("/projects/my").status_code == 401


def test_create_project_requires_auth(client):
    response = client.post("/projects", json={"title": "x", "description": "y"})
    assert response.status_code == 401
    assert response.json() == {"error": "Authentication required"}


def test_invalid_token_rejected(client):
    response = client.get("/cart", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert "error" in response.json()


def test_validation_error_body(client):
    response = client.post(
        "/cart",
        json={"project_id": str(uuid.uuid4()), "quantity": 11},
        headers=auth_header(BUYER)
    )
    assert response.status_code == 400
    assert "quantity" in response.json()["error"]


def test_cart_endpoints(client, project):
    headers = auth_header(BUYER)

    response = client.post("/cart", json={"project_id": str(project.id), "quantity": 2}, headers=headers)
    assert response.status_code == 201
    assert response.json()["item"]["price_at_time"] == "75.00"

    response = client.post("/cart", json={"project_id": str(project.id)}, headers=headers)
    assert response.status_code == 409
    assert response.json() == {"error": "Project already in cart"}

    cart = client.get("/cart", headers=headers).json()
    assert len(cart["items"]) == 1
    assert cart["totals"] == [{"currency": "INR", "total_items": 2, "total_amount": "150.00"}]

    assert client.get(f"/cart/status/{project.id}", headers=headers).json() == {"in_cart": True}
    assert client.delete(f"/cart/{project.id}", headers=headers).status_code == 200
    assert client.delete(f"/cart/{project.id}", headers=headers).status_code == 404


def test_cart_update_keeps_price_snapshot(client, project):
    headers = auth_header(BUYER)
    client.post("/cart", json={"project_id": str(project.id)}, headers=headers)

    response = client.put(
        f"/cart/{project.id}",
        json={"quantity": 3, "price_at_time": "0.01"},
        headers=headers
    )
    assert response.status_code == 200
    assert response.json()["item"]["quantity"] == 3
    assert response.json()["item"]["price_at_time"] == "75.00"

    # Quantity is the only field the route accepts
    response = client.put(f"/cart/{project.id}", json={"price_at_time": "0.01"}, headers=headers)
    assert response.status_code == 400

    cart = client.get("/cart", headers=headers).json()
    assert cart["totals"] == [{"currency": "INR", "total_items": 3, "total_amount": "225.00"}]


def test_cart_self_purchase_is_rejected(client, project):
    response = client.post("/cart", json={"project_id": str(project.id)}, headers=auth_header(AUTHOR))
    assert response.status_code == 400


def test_wishlist_endpoints(client, project):
    headers = auth_header(BUYER)

    assert client.post("/wishlist", json={"project_id": str(project.id)}, headers=headers).status_code == 201
    assert client.post("/wishlist", json={"project_id": str(project.id)}, headers=headers).status_code == 409
    assert client.get(f"/wishlist/status/{project.id}", headers=headers).json() == {"in_wishlist": True}
    assert client.delete("/wishlist", headers=headers).json()["removed"] == 1


def test_transaction_flow(client, store, project):
    response = client.post(
        "/transactions",
        json={"project_id": str(project.id), "transaction_id": "pay_123"},
        headers=auth_header(BUYER)
    )
    assert response.status_code == 201
    transaction = response.json()["transaction"]
    assert transaction["commission_amount"] == "7.50"
    assert transaction["seller_amount"] == "67.50"

    duplicate = client.post(
        "/transactions",
        json={"project_id": str(project.id), "transaction_id": "pay_123"},
        headers=auth_header(OTHER)
    )
    assert duplicate.status_code == 409

    # Buyers cannot complete their own payments
    response = client.patch(
        f"/transactions/{transaction['id']}/status",
        json={"status": "completed"},
        headers=auth_header(BUYER)
    )
    assert response.status_code == 403

    for _ in range(2):
        response = client.patch(
            f"/transactions/{transaction['id']}/status",
            json={"status": "completed"},
            headers=auth_header(ADMIN)
        )
        assert response.status_code == 200

    assert store._projects[project.id].purchase_count == 1

    response = client.patch(
        f"/transactions/{transaction['id']}/status",
        json={"status": "pending"},
        headers=auth_header(ADMIN)
    )
    assert response.status_code == 400

    stats = client.get("/transactions/stats", headers=auth_header(AUTHOR)).json()
    assert stats["total_sales"] == 1
    assert stats["by_currency"] == [{
        "currency": "INR",
        "total_sales": 1,
        "total_revenue": "75.00",
        "total_commission": "7.50",
        "total_earnings": "67.50",
        "average_sale": "75.00"
    }]

    purchases = client.get("/transactions/purchases", headers=auth_header(BUYER)).json()
    assert [t["id"] for t in purchases["transactions"]] == [transaction["id"]]

    assert client.get(f"/transactions/{transaction['id']}", headers=auth_header(OTHER)).status_code == 403
    assert client.get("/transactions/recent", headers=auth_header(BUYER)).status_code == 403


def test_review_and_download_flow(client, store, project):
    buyer = auth_header(BUYER)

    response = client.post(f"/downloads/{project.id}", headers=buyer)
    assert response.status_code == 403

    response = client.post(f"/downloads/{project.id}?download_type=demo", headers=buyer)
    assert response.status_code == 200

    assert client.post(f"/projects/{project.id}/purchase", headers=buyer).status_code == 200
    assert client.post(f"/downloads/{project.id}", headers=buyer).status_code == 200

    response = client.post(
        "/reviews",
        json={"project_id": str(project.id), "rating": 5, "review_text": "Great"},
        headers=buyer
    )
    assert response.status_code == 201
    review = response.json()["review"]
    assert review["is_verified_purchase"] is True

    response = client.post("/reviews", json={"project_id": str(project.id), "rating": 4}, headers=buyer)
    assert response.status_code == 409

    response = client.put(f"/reviews/{review['id']}", json={"rating": 3}, headers=buyer)
    assert response.status_code == 200
    assert response.json()["review"]["is_approved"] is False
    assert response.json()["stats"]["total_ratings"] == 0

    pending = client.get("/reviews/admin/pending", headers=auth_header(ADMIN)).json()
    assert [r["id"] for r in pending["reviews"]] == [review["id"]]
    assert client.get("/reviews/admin/pending", headers=buyer).status_code == 403

    response = client.patch(
        f"/reviews/admin/{review['id']}",
        json={"is_approved": True},
        headers=auth_header(ADMIN)
    )
    assert response.status_code == 200

    public = client.get(f"/reviews/project/{project.id}").json()
    assert public["stats"]["average_rating"] == "3.00"

    stats = client.get(f"/downloads/project/{project.id}/stats", headers=auth_header(AUTHOR)).json()
    assert stats["total_downloads"] == 2
    assert stats["full_downloads"] == 1


def test_dashboard_stats(client, project):
    client.post(f"/projects/{project.id}/purchase", headers=auth_header(BUYER))

    response = client.get("/dashboard/stats?months_back=9", headers=auth_header(AUTHOR))
    assert response.status_code == 200
    stats = response.json()["stats"]
    assert stats["months_back"] == 9
    assert stats["user_performance"]["projects_owned"] == 1
    assert stats["project_performance"]["best_performing_project"]["total_sales"] == 1

    # Out of range falls back to the default window
    response = client.get("/dashboard/stats?months_back=20", headers=auth_header(AUTHOR))
    assert response.json()["stats"]["months_back"] == 6

    assert client.get("/dashboard/stats").status_code == 401


def test_delete_project_with_transactions_conflicts(client, project):
    client.post(
        "/transactions",
        json={"project_id": str(project.id), "transaction_id": "pay_del"},
        headers=auth_header(BUYER)
    )
    response = client.delete(f"/projects/{project.id}", headers=auth_header(AUTHOR))
    assert response.status_code == 409


def test_rate_limited_requests(client):
    limiter = TokenBucketLimiter(rate=1, capacity=1, key_prefix="rate_limit:public", clock=lambda: 1000.0)
    app.state.rate_limiters = {"public": limiter}
    try:
        first = client.get("/projects")
        second = client.get("/projects")
    finally:
        app.state.rate_limiters = None

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "1"
    assert second.status_code == 429
    assert second.json()["error"].startswith("Rate limit exceeded")
    assert second.headers["X-RateLimit-Reset"] == "1001"


def test_staff_token_roles():
    token = create_access_token("mgr-1", UserType.MANAGER)
    principal = decode_access_token(token)
    assert principal.user_id == "mgr-1"
    assert principal.is_staff
