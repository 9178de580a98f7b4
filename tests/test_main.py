"""
Tests for the storefront application endpoints
"""
import json

import pytest
from fastapi.testclient import TestClient

from config import STORE_KEY
from main import create_app
from store import Store
from tests.factories import TestDataFactory


def login(storefront, registered):
    response = storefront.post("/auth/login", json=registered)
    assert response.status_code == 200
    return response.json()["user"]


class TestSession:
    def test_root(self, storefront):
        assert storefront.get("/").json() == {"message": "NexusShop Storefront"}

    def test_login_sets_store_user(self, storefront, registered, store):
        user = login(storefront, registered)
        assert user["email"] == "ana@example.com"
        assert store.state.is_authenticated
        assert store.state.user.id == user["id"]

    def test_login_with_bad_password(self, storefront, registered, store):
        response = storefront.post("/auth/login", json={"email": registered["email"], "password": "nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Credenciales inválidas"
        assert not store.state.is_authenticated

    def test_login_rejects_invalid_email(self, storefront):
        response = storefront.post("/auth/login", json={"email": "not-an-email", "password": "x"})
        assert response.status_code == 422

    def test_register_logs_in(self, storefront, store):
        response = storefront.post("/auth/register", json={"name": "Luis", "email": "luis@example.com", "password": "pw"})
        assert response.status_code == 200
        assert response.json()["user"]["name"] == "Luis"
        assert store.state.user.name == "Luis"

    def test_me_requires_session(self, storefront):
        assert storefront.get("/auth/me").status_code == 401

    def test_me(self, storefront, registered):
        login(storefront, registered)
        assert storefront.get("/auth/me").json()["name"] == "Ana"

    def test_login_without_user_drops_token(self, storefront, api, store, monkeypatch):
        monkeypatch.setattr(api, "post", lambda endpoint, *args, **kwargs: {"token": "abc", "user": {}})
        response = storefront.post("/auth/login", json={"email": "ana@example.com", "password": "x"})
        assert response.status_code == 502
        assert api.token is None
        assert not store.state.is_authenticated

    def test_logout_discards_cart_and_token(self, storefront, registered, store, api):
        login(storefront, registered)
        storefront.post("/cart", json={"product_id": 2})
        assert storefront.post("/auth/logout").json() == {"ok": True}
        assert store.state.cart == []
        assert store.state.user is None
        assert api.token is None


class TestCatalog:
    def test_products(self, storefront):
        data = storefront.get("/products", params={"category_id": 5}).json()
        assert data["total"] == 2
        assert [p["id"] for p in data["products"]] == [1, 2]

    def test_product_detail(self, storefront):
        data = storefront.get("/products/1").json()
        assert data["name"] == "Teclado mecánico"
        assert data["images"][0] == {"id": 5, "url": "http://testserver/api/images/5"}

    def test_missing_product_keeps_backend_status(self, storefront):
        response = storefront.get("/products/77")
        assert response.status_code == 404
        assert response.json()["detail"] == "Producto no encontrado"

    def test_categories(self, storefront):
        assert [c["name"] for c in storefront.get("/categories").json()] == ["Electrónica", "Periféricos", "Ropa", "Hombre"]

    def test_category_tree_refreshes_cache(self, storefront, store):
        tree = storefront.get("/categories/tree").json()
        assert [c["name"] for c in tree] == ["Electrónica", "Ropa"]
        assert [c.id for c in store.state.categories] == [1, 5, 2, 8]

    def test_category_tree_unique_roots(self, storefront, backend):
        backend.state.db["category"].append({"idCategoria": 9, "nombre": "ropa", "idPadre": None})
        assert len(storefront.get("/categories/tree").json()) == 3
        tree = storefront.get("/categories/tree", params={"unique": True}).json()
        assert [c["id"] for c in tree] == [1, 2]


class TestCart:
    def test_add_and_view(self, storefront):
        storefront.post("/cart", json={"product_id": 1})
        storefront.post("/cart", json={"product_id": 1})
        data = storefront.post("/cart", json={"product_id": 2, "quantity": 2}).json()
        assert [(i["product"]["id"], i["quantity"]) for i in data["items"]] == [(1, 2), (2, 2)]
        assert data["count"] == 4
        assert data["total"] == pytest.approx(49.9 * 2 + 20 * 2)
        assert storefront.get("/cart").json() == data

    def test_add_clamps_to_stock(self, storefront, store):
        data = storefront.post("/cart", json={"product_id": 1, "quantity": 10}).json()
        assert data["items"][0]["quantity"] == 3
        response = storefront.post("/cart", json={"product_id": 1})
        assert response.status_code == 400
        assert store.find_item(1).quantity == 3

    def test_add_out_of_stock(self, storefront):
        response = storefront.post("/cart", json={"product_id": 3})
        assert response.status_code == 400
        assert response.json()["detail"] == "Not enough stock"

    def test_add_unknown_product(self, storefront):
        assert storefront.post("/cart", json={"product_id": 77}).status_code == 404

    def test_add_rejects_non_positive_quantity(self, storefront):
        assert storefront.post("/cart", json={"product_id": 1, "quantity": 0}).status_code == 422

    def test_update_clamps_and_removes(self, storefront):
        storefront.post("/cart", json={"product_id": 2})
        data = storefront.patch("/cart", json={"product_id": 2, "quantity": 50}).json()
        assert data["items"][0]["quantity"] == 10
        data = storefront.patch("/cart", json={"product_id": 2, "quantity": 0}).json()
        assert data["items"] == []

    def test_update_out_of_stock_item_removes_it(self, storefront, store):
        store.add_to_cart(TestDataFactory.create_product(7, stock=0))
        data = storefront.patch("/cart", json={"product_id": 7, "quantity": 1}).json()
        assert data["items"] == []

    def test_update_missing_item(self, storefront):
        assert storefront.patch("/cart", json={"product_id": 2, "quantity": 1}).status_code == 404

    def test_remove_and_clear(self, storefront):
        storefront.post("/cart", json={"product_id": 1})
        storefront.post("/cart", json={"product_id": 2})
        data = storefront.delete("/cart/1").json()
        assert [i["product"]["id"] for i in data["items"]] == [2]
        assert storefront.delete("/cart").json() == {"items": [], "total": 0, "count": 0}

    def test_cart_is_persisted(self, storefront, storage):
        storefront.post("/cart", json={"product_id": 2})
        saved = json.loads(storage.get_item(STORE_KEY))
        assert saved["cart"][0]["product"]["name"] == "Mouse"


class TestCheckout:
    def test_requires_session(self, storefront):
        assert storefront.post("/checkout").status_code == 401
        assert storefront.get("/orders").status_code == 401

    def test_empty_cart(self, storefront, registered):
        login(storefront, registered)
        assert storefront.post("/checkout").status_code == 400

    def test_unusable_order_keeps_cart(self, storefront, registered, store, api, monkeypatch):
        login(storefront, registered)
        storefront.post("/cart", json={"product_id": 2})
        monkeypatch.setattr(api.orders, "create", lambda user_id, items: None)
        response = storefront.post("/checkout")
        assert response.status_code == 502
        assert store.cart_count == 1

    def test_checkout_creates_order_and_clears_cart(self, storefront, registered, store):
        user = login(storefront, registered)
        storefront.post("/cart", json={"product_id": 1, "quantity": 2})
        storefront.post("/cart", json={"product_id": 2})

        data = storefront.post("/checkout").json()
        assert data["total"] == pytest.approx(119.8)
        order = data["order"]
        assert order["user_id"] == user["id"]
        assert order["status"] == "pending"
        assert store.state.cart == []

        orders = storefront.get("/orders").json()
        assert [o["id"] for o in orders] == [order["id"]]
        assert storefront.get(f"/orders/{order['id']}").json()["total"] == pytest.approx(119.8)


class TestHydrationOnStartup:
    def test_persisted_session_is_restored(self, api, storage):
        storage.set_item(STORE_KEY, json.dumps({
            "cart": [],
            "user": {"id": 4, "email": "b@example.com", "name": "B", "role": "user"},
            "isAuthenticated": True,
        }))
        store = Store()
        with TestClient(create_app(api=api, storage=storage, store=store)):
            assert store.state.user.id == 4
            assert store.state.is_authenticated


class TestCors:
    def test_local_frontend_origin_is_allowed(self, storefront):
        response = storefront.get("/", headers={"Origin": "http://localhost:3000"})
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_foreign_origin_is_not_allowed(self, storefront):
        response = storefront.get("/", headers={"Origin": "http://evil.example"})
        assert "access-control-allow-origin" not in response.headers
        preflight = storefront.options("/checkout", headers={
            "Origin": "http://evil.example",
            "Access-Control-Request-Method": "POST",
        })
        assert preflight.status_code == 400
