import mongomock
import pytest
from fastapi.testclient import TestClient

import config
from auth import Actor, create_token, hash_password
from database import create_document, get_db
from main import app
from schemas import Product, User, make_initials


@pytest.fixture
def db():
    return mongomock.MongoClient()["campus_test"]


@pytest.fixture
def client(db, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name, is_admin=False, upi_id=None, phone="9876543210", location="Boys Hostel"):
        email = f"{name.lower().replace(' ', '.')}@{config.ALLOWED_EMAIL_DOMAIN}"
        user = User(
            name=name,
            email=email,
            password_hash=hash_password("secret123"),
            phone=phone,
            location=location,
            upi_id=upi_id,
            is_admin=is_admin,
            initials=make_initials(name),
        )
        return Actor(id=create_document(db, "user", user), email=email, name=name, is_admin=is_admin)

    return _make


@pytest.fixture
def headers():
    def _headers(actor):
        return {"Authorization": f"Bearer {create_token(actor.id, actor.email)}"}

    return _headers


@pytest.fixture
def seller(make_user):
    return make_user("Priya Sharma", upi_id="priya@okaxis", location="Girls Hostel")


@pytest.fixture
def buyer(make_user):
    return make_user("Rahul Kumar", phone="9123456780")


@pytest.fixture
def stranger(make_user):
    return make_user("Amit Patel")


@pytest.fixture
def admin(make_user):
    return make_user("Campus Admin", is_admin=True)


@pytest.fixture
def make_product(db):
    def _make(owner, **overrides):
        data = {
            "title": "Scientific Calculator",
            "category": "Stationery",
            "price": 450,
            "condition": "Excellent",
            "description": "Casio fx-991, all functions working",
            "location": "Library",
            "coordinates": {"lat": 19.0760, "lng": 72.8777},
            "image": "🔢",
        }
        data.update(overrides)
        product = Product(**data, seller=owner.name, user_id=owner.id, seller_email=owner.email)
        return create_document(db, "product", product)

    return _make


@pytest.fixture
def product_id(make_product, seller):
    return make_product(seller)


@pytest.fixture
def order_id(client, headers, buyer, product_id):
    resp = client.post("/orders", json={"product_id": product_id, "message": "Is it still available?"},
                       headers=headers(buyer))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["id"]


@pytest.fixture
def set_status(client, headers, seller):
    def _set(order_id, status, actor=None):
        return client.patch(f"/orders/{order_id}/status", json={"status": status}, headers=headers(actor or seller))

    return _set
