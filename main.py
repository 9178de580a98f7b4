import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import ApiClient, ApiError
from config import ALLOWED_ORIGINS, API_BASE_URL, HOST, LOG_LEVEL, PORT, STORAGE_PATH
from normalize import flatten_category_tree, unique_categories_by_name
from schemas import (
    CartAddInput,
    CartUpdateInput,
    Category,
    LoginInput,
    Order,
    Product,
    ProductPage,
    RegisterInput,
    User,
)
from storage import LocalStorage, mount_store
from store import Store, clamp_quantity

logger = logging.getLogger(__name__)


def create_app(api: Optional[ApiClient] = None, storage: Optional[LocalStorage] = None, store: Optional[Store] = None) -> FastAPI:
    """Storefront app owning one store and one backend client on ``app.state``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.storage = storage if storage is not None else LocalStorage(STORAGE_PATH)
        app.state.api = api if api is not None else ApiClient(API_BASE_URL, storage=app.state.storage)
        app.state.store = store if store is not None else Store()
        unsubscribe = mount_store(app.state.store, app.state.storage)
        logger.info("Storefront mounted against %s", app.state.api.base_url)
        yield
        unsubscribe()

    app = FastAPI(title="NexusShop Storefront", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status, content={"detail": exc.message})

    register_routes(app)
    return app


# Dependencies

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_api(request: Request) -> ApiClient:
    return request.app.state.api


def get_current_user(store: Store = Depends(get_store)) -> User:
    if not store.state.is_authenticated or store.state.user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return store.state.user


def cart_view(store: Store) -> Dict[str, Any]:
    return {
        "items": [item.model_dump() for item in store.state.cart],
        "total": store.cart_total,
        "count": store.cart_count,
    }


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def read_root():
        return {"message": "NexusShop Storefront"}

    # Auth
    @app.post("/auth/login")
    def login(payload: LoginInput, api: ApiClient = Depends(get_api), store: Store = Depends(get_store)):
        session = api.auth.login(payload.email.lower(), payload.password)
        if session.user is None:
            api.auth.logout()
            raise HTTPException(status_code=502, detail="Backend returned no user")
        store.login(session.user)
        return {"user": session.user.model_dump()}

    @app.post("/auth/register")
    def register(payload: RegisterInput, api: ApiClient = Depends(get_api), store: Store = Depends(get_store)):
        session = api.auth.register(payload.email.lower(), payload.password, payload.name)
        if session.user is not None:
            store.login(session.user)
        return {"user": session.user.model_dump() if session.user else None}

    @app.post("/auth/logout")
    def logout(api: ApiClient = Depends(get_api), store: Store = Depends(get_store)):
        api.auth.logout()
        store.logout()
        return {"ok": True}

    @app.get("/auth/me", response_model=User)
    def me(current_user: User = Depends(get_current_user), api: ApiClient = Depends(get_api)):
        user = api.auth.me()
        return user or current_user

    # Catalog
    @app.get("/products", response_model=ProductPage)
    def list_products(
        page: Optional[int] = None,
        limit: Optional[int] = None,
        category_id: Optional[int] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        available_only: Optional[bool] = None,
        search: Optional[str] = None,
        api: ApiClient = Depends(get_api),
    ):
        return api.products.get_all(
            page=page,
            limit=limit,
            category_id=category_id,
            min_price=min_price,
            max_price=max_price,
            available_only=available_only,
            search=search,
        )

    @app.get("/products/{product_id}", response_model=Product)
    def get_product(product_id: int, api: ApiClient = Depends(get_api)):
        product = api.products.get_by_id(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")
        return product

    @app.get("/categories", response_model=List[Category])
    def list_categories(api: ApiClient = Depends(get_api)):
        return api.categories.get_all()

    @app.get("/categories/tree", response_model=List[Category])
    def category_tree(unique: bool = False, api: ApiClient = Depends(get_api), store: Store = Depends(get_store)):
        tree = api.categories.get_tree()
        if unique:
            tree = unique_categories_by_name(tree)
        store.set_categories(flatten_category_tree(tree))
        return tree

    # Cart
    @app.get("/cart")
    def get_cart(store: Store = Depends(get_store)):
        return cart_view(store)

    @app.post("/cart")
    def add_to_cart(item: CartAddInput, api: ApiClient = Depends(get_api), store: Store = Depends(get_store)):
        product = api.products.get_by_id(item.product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")
        if not store.add_within_stock(product, item.quantity):
            raise HTTPException(status_code=400, detail="Not enough stock")
        return cart_view(store)

    @app.patch("/cart")
    def update_cart(item: CartUpdateInput, store: Store = Depends(get_store)):
        existing = store.find_item(item.product_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="Item not in cart")
        quantity = item.quantity
        if quantity > 0:
            quantity = clamp_quantity(existing.product, quantity)
        store.update_quantity(item.product_id, quantity)
        return cart_view(store)

    @app.delete("/cart/{product_id}")
    def remove_from_cart(product_id: int, store: Store = Depends(get_store)):
        store.remove_from_cart(product_id)
        return cart_view(store)

    @app.delete("/cart")
    def clear_cart(store: Store = Depends(get_store)):
        store.clear_cart()
        return cart_view(store)

    # Orders
    @app.get("/orders", response_model=List[Order])
    def list_orders(status: Optional[str] = None, current_user: User = Depends(get_current_user), api: ApiClient = Depends(get_api)):
        return api.orders.get_all(user_id=current_user.id, status=status)

    @app.get("/orders/{order_id}", response_model=Order)
    def get_order(order_id: int, current_user: User = Depends(get_current_user), api: ApiClient = Depends(get_api)):
        order = api.orders.get_by_id(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    @app.post("/checkout")
    def checkout(current_user: User = Depends(get_current_user), api: ApiClient = Depends(get_api), store: Store = Depends(get_store)):
        if not store.state.cart:
            raise HTTPException(status_code=400, detail="Cart is empty")
        items = [{"product_id": item.product.id, "quantity": item.quantity} for item in store.state.cart]
        total = store.cart_total
        order = api.orders.create(current_user.id, items)
        if order is None:
            raise HTTPException(status_code=502, detail="Backend returned an unusable order")
        store.clear_cart()
        return {"order": order.model_dump(), "total": total}


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL)
    uvicorn.run(app, host=HOST, port=PORT)
