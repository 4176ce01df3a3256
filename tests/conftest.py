import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import payments
from auth import create_token, hash_password
from errors import UpstreamError
from main import app

PASSWORD = "password123"
_hashed = {}


def password_hash():
    # hashed once per run
    if "value" not in _hashed:
        _hashed["value"] = hash_password(PASSWORD)
    return _hashed["value"]


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["notebook_store_test"]
    monkeypatch.setattr(database, "db", mock_db)
    mock_db["order"].create_index("order_id", unique=True)
    mock_db["user"].create_index("email", unique=True)
    return mock_db


@pytest.fixture
def client(db):
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name="Asha", email=None, role="user", provider="credentials"):
        doc = {
            "name": name,
            "email": email or f"{name.lower()}@example.com",
            "password_hash": password_hash() if provider == "credentials" else None,
            "provider": provider,
            "role": role,
            "created_at": database.now(),
        }
        doc["_id"] = db["user"].insert_one(doc).inserted_id
        return doc

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(name="Root", role="admin")


@pytest.fixture
def user_headers(user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


def product_payload(code="NB-001", price=300, skus=("NB-001-R-100",), stock=10, **overrides):
    payload = {
        "name": "Classic Ruled Notebook",
        "brand_name": "Paperline",
        "price": price,
        "product_code": code,
        "main_category": "A4",
        "sub_category": "spiral-notebooks",
        "tags": ["School", " Ruled "],
        "variants": [
            {
                "page_type": "ruled",
                "quantity": 100,
                "color": "blue",
                "additional_price": 0,
                "stock": stock,
                "sku": sku,
            }
            for sku in skus
        ],
        "description": "A sturdy spiral notebook for everyday notes.",
        "images": ["https://cdn.example.com/nb-001.jpg"],
        "specifications": {"size": "A4", "binding": "spiral", "paper_gsm": 70, "cover_type": "soft"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_product(db):
    def _make(code="NB-001", price=300, skus=("NB-001-R-100",), stock=10, **overrides):
        payload = product_payload(code, price, skus, stock, **overrides)
        payload["total_stock"] = sum(v["stock"] for v in payload["variants"])
        payload.setdefault("is_active", True)
        payload["created_at"] = database.now()
        payload["_id"] = db["product"].insert_one(payload).inserted_id
        return payload

    return _make


@pytest.fixture
def product(make_product):
    return make_product()


class FakeGateway:
    def __init__(self):
        self.state = "PENDING"
        self.states = {}
        self.transaction_id = None
        self.fail = False
        self.payments = []
        self.queried = []

    def pay(self, merchant_order_id, amount, redirect_url):
        if self.fail:
            raise UpstreamError("Payment gateway unreachable")
        self.payments.append((merchant_order_id, amount, redirect_url))
        return f"https://gateway.example/pay/{merchant_order_id}"

    def order_status(self, merchant_order_id):
        if self.fail:
            raise UpstreamError("Payment gateway unreachable")
        self.queried.append(merchant_order_id)
        return payments.GatewayStatus(self.states.get(merchant_order_id, self.state), self.transaction_id)


@pytest.fixture
def gateway(client):
    fake = FakeGateway()
    app.dependency_overrides[payments.get_gateway] = lambda: fake
    return fake


ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}
