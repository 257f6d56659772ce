"""Pytest fixtures for storefront tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import MemoryDatabase, MongoDatabase
from main import create_app
from orders import OrderService
from schemas import Product, Requester


@pytest.fixture
def memory_database():
    with MemoryDatabase() as db:
        yield db


@pytest.fixture
def mongo_database():
    db = MongoDatabase(None, "storefront_test", client=mongomock.MongoClient())
    with db:
        yield db


@pytest.fixture(params=["memory", "mongo"])
def database(request):
    """Each test using this runs once per storage backend."""
    return request.getfixturevalue(f"{request.param}_database")


@pytest.fixture
def service(database):
    return OrderService(database)


@pytest.fixture
def admin():
    return Requester(id="admin-1", role="admin")


@pytest.fixture
def alice():
    return Requester(id="user-alice", role="user")


@pytest.fixture
def bob():
    return Requester(id="user-bob", role="user")


@pytest.fixture
def shipping():
    return {
        "name": "Alice Doe",
        "phone": "9876543210",
        "address": "12 Market Street",
        "city": "Pune",
        "pincode": "411001",
    }


@pytest.fixture
def make_product(database):
    def _make(**overrides):
        data = {
            "name": "Wireless Mouse",
            "description": "Ergonomic wireless mouse",
            "price": 29.99,
            "category": "Electronics",
            "stock": 10,
        }
        data.update(overrides)
        return database.products.create(Product(**data))

    return _make


@pytest.fixture
def api_client():
    app = create_app(Settings(), database=MemoryDatabase())
    with TestClient(app) as client:
        yield client


@pytest.fixture
def admin_headers():
    return {"X-User-Id": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def alice_headers():
    return {"X-User-Id": "user-alice"}


@pytest.fixture
def bob_headers():
    return {"X-User-Id": "user-bob"}
