import mongomock
import pytest
from mongomock.collection import Collection
from fastapi.testclient import TestClient

from auth import create_token
from database import get_db
from main import app

ADMIN_EMAIL = "admin@polliahaar.com"
BUYER_EMAIL = "rahim@gmail.com"


def bearer(email):
    return {"Authorization": f"Bearer {create_token(email)}"}


_mongomock_bulk_write = Collection.bulk_write


def _matches(element, conditions):
    return all(element.get(field) == value for field, value in conditions.items())


def _apply_array_filter_inc(collection, request):
    # mongomock has no array_filters; apply "$inc" on "arr.$[name].field" paths by hand
    doc = collection.find_one(request._filter)
    if doc is None:
        return
    changes = {}
    for path, amount in request._doc["$inc"].items():
        array, ident, field = path.split(".")
        name = ident[2:-1]
        conditions = {}
        for array_filter in request._array_filters:
            for key, value in array_filter.items():
                prefix, _, sub = key.partition(".")
                if prefix == name:
                    conditions[sub] = value
        elements = changes.setdefault(array, [dict(e) for e in doc.get(array, [])])
        for element in elements:
            if _matches(element, conditions):
                element[field] = element.get(field, 0) + amount
    collection.update_one({"_id": doc["_id"]}, {"$set": changes})


@pytest.fixture(autouse=True)
def array_filter_updates(monkeypatch):
    def bulk_write(self, requests, ordered=True, **kwargs):
        plain = []
        for request in requests:
            if getattr(request, "_array_filters", None):
                _apply_array_filter_inc(self, request)
            else:
                plain.append(request)
        if plain:
            return _mongomock_bulk_write(self, plain, ordered=ordered, **kwargs)
        return None

    monkeypatch.setattr(Collection, "bulk_write", bulk_write)


@pytest.fixture
def db():
    return mongomock.MongoClient()["polli_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(db):
    db["users"].insert_one({"email": ADMIN_EMAIL, "name": "Admin", "role": "admin"})
    return bearer(ADMIN_EMAIL)


@pytest.fixture
def buyer_headers(db):
    db["users"].insert_one({"email": BUYER_EMAIL, "name": "Rahim", "role": "user"})
    return bearer(BUYER_EMAIL)


def make_product(db, name="Chinigura Rice", variants=None, **fields):
    doc = {
        "name": name,
        "category": "rice",
        "type": "aromatic",
        "brand": "Polli",
        "originDistrict": "Dinajpur",
        "description": "Fragrant short grain rice",
        "image": "https://i.ibb.co/rice.jpg",
        "status": "active",
        "featured": False,
        "orderCount": 0,
        "variants": variants if variants is not None else [
            {"label": "1 kg", "unit": "kg", "qty": 1, "price": 140, "stock": 10},
            {"label": "5 kg", "unit": "kg", "qty": 5, "price": 650, "stock": 4},
        ],
    }
    doc.update(fields)
    return db["products"].insert_one(doc).inserted_id


@pytest.fixture
def rice(db):
    return make_product(db)


def order_payload(product_id, qty=2, price=140, label="1 kg", email=BUYER_EMAIL):
    return {
        "items": [
            {"productId": str(product_id), "name": "Chinigura Rice", "label": label, "price": price, "qty": qty},
        ],
        "productsSummary": [{"productId": str(product_id), "name": "Chinigura Rice", "totalQty": qty}],
        "shipping": {"name": "Rahim", "phone": "01700000000", "email": email, "address": "Mirpur, Dhaka"},
        "payment": {"method": "COD"},
    }
