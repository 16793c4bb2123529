import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import main
from database import get_db
from geocoding import ReverseGeocoder
from schemas import CartItem, UserLocation
from storage import LocalStorage


class StubGeocoder(ReverseGeocoder):
    def __init__(self):
        pass

    def reverse_geocode(self, lat, lng):
        return UserLocation(lat=lat, lng=lng, city="Hyderabad", state="Telangana", fullAddress="Hyderabad, Telangana, India")


@pytest.fixture
def db():
    return mongomock.MongoClient().ahmed_mart_test


@pytest.fixture
def state_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "STATE_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def storage(state_dir):
    return LocalStorage(state_dir, namespace="user-1")


@pytest.fixture
def client(db, state_dir):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_geocoder] = StubGeocoder
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    def _signup(email="customer@example.com", password="secret123"):
        resp = client.post("/api/auth/signup", json={"email": email, "password": password, "full_name": "Test"})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]
    return _signup


@pytest.fixture
def admin_headers(db, signup):
    db["admins"].insert_one({"email": "admin@example.com", "status": "active", "user_id": None})
    headers, _ = signup("admin@example.com")
    return headers


@pytest.fixture
def make_product(db):
    def _make(name="Milk", selling_price=100, mrp=120, max_order_quantity=5, vendor_id="vendor-1"):
        result = db["products"].insert_one({
            "name": name,
            "slug": name.lower(),
            "vendor_id": vendor_id,
            "selling_price": selling_price,
            "mrp": mrp,
            "unit_value": 1,
            "unit_type": "l",
            "primary_image_url": f"https://img.example.com/{name.lower()}.png",
            "max_order_quantity": max_order_quantity,
            "stock_quantity": 50,
            "status": "active",
        })
        return str(result.inserted_id)
    return _make


def build_cart_input(product_id="p-1", selling_price=100, mrp=120, max_quantity=5, vendor_id="vendor-1", name="Milk"):
    return CartItem(
        product_id=product_id,
        name=name,
        image_url="",
        unit_value=1,
        unit_type="l",
        selling_price=selling_price,
        mrp=mrp,
        max_quantity=max_quantity,
        vendor_id=vendor_id,
    )


@pytest.fixture
def cart_input():
    return build_cart_input
