import pytest
from fastapi.testclient import TestClient

from main import app, get_stores
from tests.fakes import make_stores


@pytest.fixture()
def stores():
    return make_stores()


@pytest.fixture()
def make_product(stores):
    def _make(name="Oxford Brogue", price=10.0, stock=5, **extra):
        return stores.products.insert({
            "name": name,
            "price": price,
            "stock": stock,
            "size": extra.pop("size", "42"),
            "color": extra.pop("color", "Brown"),
            "category": extra.pop("category", "Shoes"),
            "image_url": extra.pop("image_url", "https://img.example/brogue.jpg"),
            **extra,
        })
    return _make


@pytest.fixture()
def user(stores):
    return stores.users.insert({
        "username": "wanjiru",
        "fullname": "Wanjiru Kamau",
        "email": "wanjiru@example.com",
        "phone": "0712345678",
        "county": "Nairobi",
        "role": "user",
        "password_hash": "x",
    })


@pytest.fixture()
def client(stores):
    app.dependency_overrides[get_stores] = lambda: stores
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
