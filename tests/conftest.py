"""Shared fixtures: an in-memory Mongo, seeded users/products and an API client."""

from __future__ import annotations

from typing import Callable

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from carts import CartStore
from catalog import CatalogStore
from checkout import Checkout
from database import Database
from main import create_app
from orders import OrderStore
from schemas import Product, ShippingAddress, User


@pytest.fixture
def db() -> Database:
    return Database(name="storefront_test", client=mongomock.MongoClient()).open()


def add_user(db: Database, name: str, email: str, role: str = "user", is_active: bool = True) -> str:
    return db.create_document("user", User(name=name, email=email, role=role, is_active=is_active))


@pytest.fixture
def user_id(db: Database) -> str:
    return add_user(db, "Jane Smith", "jane@example.com")


@pytest.fixture
def other_user_id(db: Database) -> str:
    return add_user(db, "John Doe", "john@example.com")


@pytest.fixture
def admin_id(db: Database) -> str:
    return add_user(db, "Admin User", "admin@example.com", role="admin")


@pytest.fixture
def make_product(db: Database) -> Callable[..., str]:
    counter = {"n": 0}

    def _make(**overrides) -> str:
        counter["n"] += 1
        fields = {
            "name": f"Product {counter['n']}",
            "description": "A fine product",
            "price": 20.0,
            "category": "Electronics",
            "brand": "Acme",
            "sku": f"SKU{counter['n']:04d}",
            "stock": 10,
            "images": [{"url": f"https://img.example.com/{counter['n']}.jpg", "alt": "front", "is_primary": True}],
        }
        fields.update(overrides)
        return db.create_document("product", Product(**fields))

    return _make


@pytest.fixture
def catalog(db: Database) -> CatalogStore:
    return CatalogStore(db)


@pytest.fixture
def carts(db: Database, catalog: CatalogStore) -> CartStore:
    return CartStore(db, catalog)


@pytest.fixture
def orders(db: Database, catalog: CatalogStore) -> OrderStore:
    return OrderStore(db, catalog)


@pytest.fixture
def checkout(db: Database) -> Checkout:
    return Checkout(db)


@pytest.fixture
def address() -> ShippingAddress:
    return ShippingAddress(
        first_name="Jane",
        last_name="Smith",
        email="jane@example.com",
        phone="+1234567892",
        street="1 Main St",
        city="Springfield",
        state="IL",
        zip_code="62701",
        country="US",
    )


@pytest.fixture
def client(db: Database):
    with TestClient(create_app(db)) as c:
        yield c


@pytest.fixture
def user_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def other_headers(other_user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(other_user_id)}"}


@pytest.fixture
def admin_headers(admin_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(admin_id)}"}
