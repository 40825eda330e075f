from contextlib import contextmanager

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import token_for
from database import Database
from schemas import ROLE_COLLECTIONS


class InMemoryDatabase(Database):
    """Database over mongomock, which has no sessions: writes apply immediately."""

    @contextmanager
    def transaction(self):
        yield None


@pytest.fixture
def db():
    return InMemoryDatabase(mongomock.MongoClient(), "marketplace_test")


@pytest.fixture
def client(db):
    main.app.state.db = db
    yield TestClient(main.app)
    main.app.state.db = None


@pytest.fixture
def make_account(db):
    counter = {"n": 0}

    def _make(role, **fields):
        counter["n"] += 1
        n = counter["n"]
        doc = {
            "name": f"{role.capitalize()} {n}",
            "email": f"{role}{n}@example.com",
            "national_id": f"{n:03d}.000.000-00",
            "password_hash": "unused",
            "role": role,
            "status": "active",
        }
        doc.update(fields)
        user_id = db.create_document(ROLE_COLLECTIONS[role], doc)
        headers = {"Authorization": f"Bearer {token_for(user_id, role)}"}
        return user_id, headers

    return _make


@pytest.fixture
def make_product(db):
    def _make(producer_id, name="Tomato", price=5.0, stock=10, category="vegetables"):
        return db.create_document("product", {
            "name": name,
            "description": f"Fresh {name.lower()}",
            "price": price,
            "category": category,
            "producer_id": producer_id,
            "stock": stock,
            "unit": "kg",
        })

    return _make
