"""Cart endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import Category, User
from tests.factories import auth_headers, make_category, make_entitlement


@pytest.mark.asyncio
async def test_empty_cart_created_lazily(client: AsyncClient, user: User) -> None:
    response = await client.get("/api/v1/cart", headers=auth_headers(user))

    assert response.status_code == 200
    data = response.json()
    assert data["item_count"] == 0
    assert data["items"] == []


@pytest.mark.asyncio
async def test_add_snapshots_prices(client: AsyncClient, db_session: AsyncSession, user: User) -> None:
    course = await make_category(db_session, "django", price_ars="2500.00", price_usd="25.00")
    other = await make_category(db_session, "flask", price_ars="1500.00", price_usd="15.00")

    await client.post("/api/v1/cart/items", json={"category_id": course.id}, headers=auth_headers(user))
    response = await client.post("/api/v1/cart/items", json={"category_id": other.id}, headers=auth_headers(user))

    assert response.status_code == 201
    data = response.json()
    assert data["item_count"] == 2
    assert float(data["total_ars"]) == 4000.0
    assert float(data["total_usd"]) == 40.0
    assert {item["category"]["slug"] for item in data["items"]} == {"django", "flask"}


@pytest.mark.asyncio
async def test_duplicate_item_conflict(client: AsyncClient, course: Category, user: User) -> None:
    await client.post("/api/v1/cart/items", json={"category_id": course.id}, headers=auth_headers(user))
    response = await client.post("/api/v1/cart/items", json={"category_id": course.id}, headers=auth_headers(user))

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_already_purchased_conflict(
    client: AsyncClient, db_session: AsyncSession, course: Category, user: User
) -> None:
    await make_entitlement(db_session, user, course)

    response = await client.post("/api/v1/cart/items", json={"category_id": course.id}, headers=auth_headers(user))

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_and_inactive_courses(client: AsyncClient, db_session: AsyncSession, user: User) -> None:
    retired = await make_category(db_session, "retired", is_active=False)

    missing = await client.post("/api/v1/cart/items", json={"category_id": "nope"}, headers=auth_headers(user))
    inactive = await client.post("/api/v1/cart/items", json={"category_id": retired.id}, headers=auth_headers(user))

    assert missing.status_code == 404
    assert inactive.status_code == 400


@pytest.mark.asyncio
async def test_remove_and_clear(client: AsyncClient, db_session: AsyncSession, user: User) -> None:
    a = await make_category(db_session, "a-course")
    b = await make_category(db_session, "b-course")
    await client.post("/api/v1/cart/items", json={"category_id": a.id}, headers=auth_headers(user))
    added = await client.post("/api/v1/cart/items", json={"category_id": b.id}, headers=auth_headers(user))
    item_id = next(item["id"] for item in added.json()["items"] if item["category_id"] == a.id)

    removed = await client.delete(f"/api/v1/cart/items/{item_id}", headers=auth_headers(user))
    assert removed.json()["item_count"] == 1

    cleared = await client.delete("/api/v1/cart", headers=auth_headers(user))
    assert cleared.status_code == 200
    after = await client.get("/api/v1/cart", headers=auth_headers(user))
    assert after.json()["item_count"] == 0


@pytest.mark.asyncio
async def test_clear_without_cart(client: AsyncClient, user: User) -> None:
    response = await client.delete("/api/v1/cart", headers=auth_headers(user))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cart_requires_sign_in(client: AsyncClient, database: None) -> None:
    response = await client.get("/api/v1/cart")

    assert response.status_code in (401, 403)
