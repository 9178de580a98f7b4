"""
HTTP client for the storefront backend.

``ApiClient`` builds URLs, attaches the bearer token, (de)serializes JSON and
raises ``ApiError`` for non-2xx responses. Resource groups hang off the client
(``client.products``, ``client.orders``, ...) and hand back canonical models.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import requests

from config import API_BASE_URL, AUTH_TOKEN_KEY
from normalize import (
    normalize_category,
    normalize_category_node,
    normalize_order,
    normalize_orders,
    normalize_product,
    normalize_products,
    normalize_user,
    to_int,
)
from schemas import AuthSession, Category, Order, Product, ProductPage, User
from storage import LocalStorage

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error"


class ApiError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    def __repr__(self):
        return f"ApiError(status={self.status}, message={self.message!r})"


def build_url(base: str, path: str) -> str:
    """Join ``base`` and ``path`` without doubling an ``/api`` prefix."""
    base = base.rstrip("/")
    path = path if path.startswith("/") else f"/{path}"
    if base.endswith("/api") and path.startswith("/api"):
        path = path[len("/api"):]
    return f"{base}{path}"


def _query_params(params: Optional[Dict[str, Any]]) -> Dict[str, str]:
    query = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        else:
            query[key] = str(value)
    return query


def _error_message(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return UNKNOWN_ERROR
    if isinstance(body, dict):
        message = body.get("message")
        if not message and isinstance(body.get("detail"), str):
            message = body["detail"]
        if message:
            return str(message)
    return f"Error {response.status_code}"


class ApiClient:
    def __init__(self, base_url: str = API_BASE_URL, storage: Optional[LocalStorage] = None, session=None):
        self.base_url = base_url
        self.storage = storage if storage is not None else LocalStorage()
        # anything with a requests-compatible ``request`` method
        self.session = session if session is not None else requests.Session()

        self.products = ProductsApi(self)
        self.categories = CategoriesApi(self)
        self.orders = OrdersApi(self)
        self.images = ImagesApi(self)
        self.users = UsersApi(self)
        self.rag = RagApi(self)
        self.auth = AuthApi(self)

    # Token

    @property
    def token(self) -> Optional[str]:
        return self.storage.get_item(AUTH_TOKEN_KEY)

    def set_token(self, token: Optional[str]) -> None:
        if token:
            self.storage.set_item(AUTH_TOKEN_KEY, token)
        else:
            self.storage.remove_item(AUTH_TOKEN_KEY)

    def auth_headers(self) -> Dict[str, str]:
        token = self.token
        return {"Authorization": f"Bearer {token}"} if token else {}

    # Requests

    def url(self, path: str) -> str:
        return build_url(self.base_url, path)

    def image_url(self, image_id: int) -> str:
        return self.url(f"/images/{image_id}")

    def request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None, json_body: Any = None, files=None, data=None) -> Any:
        url = self.url(endpoint)
        kwargs: Dict[str, Any] = {"headers": self.auth_headers()}
        query = _query_params(params)
        if query:
            kwargs["params"] = query
        if json_body is not None:
            kwargs["json"] = json_body
        if files is not None:
            kwargs["files"] = files
        if data is not None:
            kwargs["data"] = data

        logger.debug("%s %s", method, url)
        response = self.session.request(method, url, **kwargs)
        if not 200 <= response.status_code < 300:
            message = _error_message(response)
            logger.debug("%s %s failed with %s: %s", method, url, response.status_code, message)
            raise ApiError(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, body: Any = None) -> Any:
        return self.request("POST", endpoint, json_body=body)

    def put(self, endpoint: str, body: Any = None) -> Any:
        return self.request("PUT", endpoint, json_body=body)

    def delete(self, endpoint: str) -> Any:
        return self.request("DELETE", endpoint)

    def upload(self, endpoint: str, file, fields: Optional[Dict[str, str]] = None) -> Any:
        return self.request("POST", endpoint, files={"file": file}, data=fields or None)


def _envelope(res: Any, *keys: str) -> Any:
    """Unwrap the first present key of a dict response; other shapes pass through."""
    if isinstance(res, dict):
        for key in keys:
            if res.get(key) is not None:
                return res[key]
        return None
    return res


class _Resource:
    def __init__(self, client: ApiClient):
        self.client = client


class ProductsApi(_Resource):
    def get_all(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        category_id: Optional[int] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        available_only: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> ProductPage:
        params = {
            "page": page,
            "limit": limit,
            "category_id": category_id,
            "min_price": min_price,
            "max_price": max_price,
            "available_only": available_only,
            "search": search,
        }
        res = self.client.get("/products", params=params)
        items = _envelope(res, "products", "data")
        products = normalize_products(items, self.client.image_url)
        meta = res if isinstance(res, dict) else {}
        total = to_int(meta.get("count"))
        return ProductPage(
            products=products,
            total=total if total is not None else len(products),
            page=to_int(meta.get("page")) or 1,
            pages=to_int(meta.get("pages")) or 1,
        )

    def get_by_id(self, product_id: int) -> Optional[Product]:
        res = self.client.get(f"/products/{product_id}")
        raw = _envelope(res, "product")
        if raw is None and isinstance(res, dict):
            raw = res
        return normalize_product(raw, self.client.image_url)

    def create(self, data: Dict[str, Any]) -> Any:
        return self.client.post("/products", data)

    def update(self, product_id: int, data: Dict[str, Any]) -> Any:
        return self.client.put(f"/products/{product_id}", data)

    def delete(self, product_id: int) -> Any:
        return self.client.delete(f"/products/{product_id}")


class CategoriesApi(_Resource):
    def get_all(self) -> List[Category]:
        items = _envelope(self.client.get("/categories"), "categories")
        if not isinstance(items, list):
            return []
        return [c for c in (normalize_category(raw) for raw in items) if c is not None]

    def get_tree(self) -> List[Category]:
        tree = _envelope(self.client.get("/categories/tree"), "category_tree")
        if not isinstance(tree, list):
            return []
        return [c for c in (normalize_category_node(raw) for raw in tree) if c is not None]

    def create(self, name: str, parent_id: Optional[int] = None) -> Any:
        return self.client.post("/categories", {"name": name, "parent_id": parent_id})

    def update(self, category_id: int, name: str, parent_id: Optional[int] = None) -> Any:
        return self.client.put(f"/categories/{category_id}", {"name": name, "parent_id": parent_id})

    def delete(self, category_id: int) -> Any:
        return self.client.delete(f"/categories/{category_id}")


class OrdersApi(_Resource):
    def get_all(self, user_id: Optional[int] = None, status: Optional[str] = None) -> List[Order]:
        res = self.client.get("/orders", params={"user_id": user_id, "status": status})
        return normalize_orders(_envelope(res, "orders", "data"))

    def get_by_id(self, order_id: int) -> Optional[Order]:
        res = self.client.get(f"/orders/{order_id}")
        raw = _envelope(res, "order")
        return normalize_order(raw if raw is not None else res)

    def get_summary(self) -> Dict[str, Any]:
        return self.client.get("/orders/summary") or {}

    def create(self, user_id: int, items: List[Dict[str, int]]) -> Optional[Order]:
        res = self.client.post("/orders", {"user_id": user_id, "items": items})
        raw = _envelope(res, "order")
        return normalize_order(raw if raw is not None else res)

    def update_status(self, order_id: int, status: str) -> Any:
        return self.client.put(f"/orders/{order_id}/status", {"status": status})


class ImagesApi(_Resource):
    def get_url(self, image_id: int) -> str:
        return self.client.image_url(image_id)

    def upload(self, product_id: int, file, id_imagen: Optional[int] = None, original_url: Optional[str] = None) -> Any:
        fields = {"idProducto": str(product_id)}
        if id_imagen:
            fields["idImagen"] = str(id_imagen)
        if original_url:
            fields["originalUrl"] = original_url
        return self.client.upload("/images", file, fields)

    def get_by_product(self, product_id: int) -> Any:
        return self.client.get(f"/images/{product_id}")

    def delete(self, image_id: int) -> Any:
        return self.client.delete(f"/images/{image_id}")


class UsersApi(_Resource):
    def update(self, user_id: int, data: Dict[str, Any]) -> Any:
        return self.client.put(f"/users/{user_id}", data)

    def change_password(self, user_id: int, current_password: str, new_password: str, confirm_password: str) -> Any:
        payload = {
            "currentPassword": current_password,
            "newPassword": new_password,
            "confirmPassword": confirm_password,
        }
        return self.client.put(f"/users/{user_id}/password", payload)


class RagApi(_Resource):
    def query(self, query: str, top_k: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"query": query}
        if top_k is not None:
            body["top_k"] = top_k
        return self.client.post("/api/rag/query", body)

    def hybrid_query(self, query: str, filters: Optional[Dict[str, Any]] = None, top_k: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"query": query}
        if filters:
            body["filters"] = filters
        if top_k is not None:
            body["top_k"] = top_k
        return self.client.post("/api/rag/hybrid-query", body)

    def search_multimodal(self, file) -> Dict[str, Any]:
        return self.client.upload("/api/rag/search/multimodal", file)

    def ingest_document(self, file, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        fields = {"metadata": json.dumps(metadata)} if metadata else None
        return self.client.upload("/api/rag/ingest/document", file, fields)

    def ingest_image(self, file, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        fields = {"metadata": json.dumps(metadata)} if metadata else None
        return self.client.upload("/api/rag/ingest/image", file, fields)


class AuthApi(_Resource):
    def _session(self, res: Any) -> AuthSession:
        res = res if isinstance(res, dict) else {}
        token = res.get("token") or res.get("access_token")
        self.client.set_token(token)
        return AuthSession(user=normalize_user(res.get("user")), token=token)

    def login(self, email: str, password: str) -> AuthSession:
        return self._session(self.client.post("/auth/login", {"email": email, "password": password}))

    def register(self, email: str, password: str, name: str) -> AuthSession:
        return self._session(self.client.post("/auth/register", {"email": email, "password": password, "name": name}))

    def me(self) -> Optional[User]:
        res = self.client.get("/auth/me")
        raw = _envelope(res, "user")
        return normalize_user(raw if raw is not None else res)

    def logout(self) -> None:
        self.client.set_token(None)
