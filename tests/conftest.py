from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
import main
import settings
from auth import hash_password, token_for


@pytest.fixture
def mongo(monkeypatch, tmp_path):
    mdb = mongomock.MongoClient()["furnishop_test"]
    for module in (database, auth, main):
        monkeypatch.setattr(module, "db", mdb)
    monkeypatch.setattr(settings, "RESEND_API_KEY", "")
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    database.ensure_indexes(mdb)
    return mdb


@pytest.fixture
def client(mongo):
    with TestClient(main.app) as c:
        yield c


def make_user(mongo, email="asha@example.com", role="user", name="Asha Rao", password="secret123"):
    now = datetime.now(timezone.utc)
    doc = {
        "name": name,
        "email": email,
        "password_hash": hash_password(password),
        "phone": "9876501234",
        "role": role,
        "cart": [],
        "wishlist": [],
        "created_at": now,
        "updated_at": now,
    }
    doc["_id"] = mongo["user"].insert_one(doc).inserted_id
    return doc


def make_product(mongo, **overrides):
    now = datetime.now(timezone.utc)
    doc = {
        "name": "Walnut Coffee Table",
        "description": "Low coffee table in solid walnut.",
        "price": 10000.0,
        "discount": 10,
        "category": "table",
        "images": ["/uploads/table.jpg"],
        "quantity": 5,
        "ratings": {"average": 0, "count": 0},
        "specifications": {"material": "Walnut"},
        "reviews": [],
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    doc.update(overrides)
    return str(mongo["product"].insert_one(doc).inserted_id)


def bearer(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def user(mongo):
    return make_user(mongo)


@pytest.fixture
def admin(mongo):
    return make_user(mongo, email="admin@furnishop.com", role="admin", name="Admin User")


@pytest.fixture
def user_headers(user):
    return bearer(user)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def product_id(mongo):
    return make_product(mongo)


ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876501234",
    "street": "12 MG Road, Indiranagar",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560038",
}


def place_order(client, headers, product_id, quantity=1, **extra):
    body = {
        "items": [{"product_id": product_id, "quantity": quantity}],
        "shipping_address": ADDRESS,
        "payment_method": "cod",
        **extra,
    }
    return client.post("/api/orders/create", json=body, headers=headers)
