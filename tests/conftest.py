import hashlib
import hmac
import itertools

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from config import settings
from database import ensure_indexes, get_db, now_utc
from errors import NetworkFailure
from main import app, get_email_sender, get_gateway
from payments import PaymentGateway

GATEWAY_SECRET = "test_secret"


def sign_payment(gateway_order_id, gateway_payment_id, secret=GATEWAY_SECRET):
    body = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class FakeGateway(PaymentGateway):
    """Razorpay stand-in that hands out predictable order ids."""

    def __init__(self, fail=False):
        super().__init__("rzp_test_key", GATEWAY_SECRET, "INR")
        self.fail = fail
        self.intents = []
        self._ids = itertools.count(1)

    def create_intent(self, amount_minor, receipt):
        if self.fail:
            raise NetworkFailure()
        intent = {"id": f"order_rzp_{next(self._ids)}", "amount": amount_minor, "currency": self.currency, "receipt": receipt}
        self.intents.append(intent)
        return intent


class RecordingSender:
    def __init__(self):
        self.sent = []

    def send(self, recipient, subject, body):
        self.sent.append({"to": recipient, "subject": subject, "body": body})


@pytest.fixture
def db():
    database = mongomock.MongoClient()["smart_tech_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def client(db, gateway, sender, upload_dir):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_email_sender] = lambda: sender
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer():
    return {"id": "c1", "email": "asha@gmail.com", "name": "Asha Rao", "role": "customer"}


def seed_simple(db, name="USB-C Charger", category="accessories", price=1000, mrp_price=1200, stock=3, **extra):
    doc = {
        "kind": "simple",
        "name": name,
        "category": category,
        "price": price,
        "mrp_price": mrp_price,
        "discount_end_date": None,
        "stock": stock,
        "images": [],
        "version": 0,
        "created_at": now_utc(),
        **extra,
    }
    return str(db["product"].insert_one(doc).inserted_id)


def seed_variant(db, name="Phone X", category="mobiles", variants=None):
    variants = variants or [
        {"specName": "8GB", "price": None, "mrp_price": 20000, "discount_end_date": None, "stock": 0},
        {"specName": "12GB", "price": 24000, "mrp_price": 26000, "discount_end_date": None, "stock": 4},
    ]
    doc = {
        "kind": "variant",
        "name": name,
        "category": category,
        "variants": variants,
        "stock": sum(v["stock"] for v in variants),
        "images": ["https://cdn.smarttech.shop/phone-x.png"],
        "version": 0,
        "created_at": now_utc(),
    }
    return str(db["product"].insert_one(doc).inserted_id)


def stock_of(db, product_id, spec_name=None):
    doc = db["product"].find_one({"_id": ObjectId(product_id)})
    if spec_name is None:
        return doc["stock"]
    return next(v["stock"] for v in doc["variants"] if v["specName"] == spec_name)


def login(client, email, password="secret123", first_name="Asha"):
    client.post("/register", json={"first_name": first_name, "last_name": "Rao", "email": email, "password": password})
    res = client.post("/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture
def customer_headers(client):
    return login(client, "asha@gmail.com")


@pytest.fixture
def admin_headers(client):
    return login(client, settings.ADMIN_EMAIL, first_name="Admin")


ADDRESS = {"name": "Asha Rao", "phone": "9876543210", "address": "12 MG Road", "city": "Bengaluru", "pincode": "560001"}
