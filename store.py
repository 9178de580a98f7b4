"""
Storefront state: cart, session and category cache.

State changes are messages. ``reduce`` maps (state, action) to a new state and
never raises; ``Store`` holds the current state, applies dispatched actions and
notifies its listeners.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from schemas import CartItem, Category, PersistedState, Product, StoreState, User

logger = logging.getLogger(__name__)

Listener = Callable[[StoreState], None]


# -----------------
# Actions
# -----------------

class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class AddToCart(_Action):
    type: Literal["ADD_TO_CART"] = "ADD_TO_CART"
    product: Product


class RemoveFromCart(_Action):
    type: Literal["REMOVE_FROM_CART"] = "REMOVE_FROM_CART"
    product_id: int


class UpdateQuantity(_Action):
    type: Literal["UPDATE_QUANTITY"] = "UPDATE_QUANTITY"
    product_id: int
    quantity: int


class ClearCart(_Action):
    type: Literal["CLEAR_CART"] = "CLEAR_CART"


class SetUser(_Action):
    type: Literal["SET_USER"] = "SET_USER"
    user: Optional[User] = None


class Logout(_Action):
    type: Literal["LOGOUT"] = "LOGOUT"


class SetCategories(_Action):
    type: Literal["SET_CATEGORIES"] = "SET_CATEGORIES"
    categories: List[Category]


class Hydrate(_Action):
    type: Literal["HYDRATE"] = "HYDRATE"
    payload: PersistedState


StoreAction = Union[AddToCart, RemoveFromCart, UpdateQuantity, ClearCart, SetUser, Logout, SetCategories, Hydrate]


def reduce(state: StoreState, action: StoreAction) -> StoreState:
    if isinstance(action, AddToCart):
        product_id = action.product.id
        if any(item.product.id == product_id for item in state.cart):
            cart = [
                item.model_copy(update={"quantity": item.quantity + 1}) if item.product.id == product_id else item
                for item in state.cart
            ]
        else:
            cart = state.cart + [CartItem(product=action.product, quantity=1)]
        return state.model_copy(update={"cart": cart})

    if isinstance(action, RemoveFromCart):
        return state.model_copy(update={"cart": [i for i in state.cart if i.product.id != action.product_id]})

    if isinstance(action, UpdateQuantity):
        if action.quantity <= 0:
            return state.model_copy(update={"cart": [i for i in state.cart if i.product.id != action.product_id]})
        cart = [
            item.model_copy(update={"quantity": action.quantity}) if item.product.id == action.product_id else item
            for item in state.cart
        ]
        return state.model_copy(update={"cart": cart})

    if isinstance(action, ClearCart):
        return state.model_copy(update={"cart": []})

    if isinstance(action, SetUser):
        return state.model_copy(update={"user": action.user, "is_authenticated": action.user is not None})

    if isinstance(action, Logout):
        return state.model_copy(update={"user": None, "is_authenticated": False, "cart": []})

    if isinstance(action, SetCategories):
        return state.model_copy(update={"categories": list(action.categories)})

    if isinstance(action, Hydrate):
        return state.model_copy(update=action.payload.merge_fields())

    return state


def clamp_quantity(product: Product, quantity: int) -> int:
    """Clamp to ``[1, product.stock]``, or 0 when nothing is in stock. The reducer never clamps."""
    if product.stock <= 0:
        return 0
    return max(1, min(quantity, product.stock))


class Store:
    def __init__(self, state: Optional[StoreState] = None):
        self._state = state if state is not None else StoreState()
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> StoreState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: StoreAction) -> StoreState:
        with self._lock:
            new_state = reduce(self._state, action)
            if new_state is self._state:
                return new_state
            self._state = new_state
            for listener in list(self._listeners):
                try:
                    listener(new_state)
                except Exception:
                    # a failing observer must not undo or block the transition
                    logger.exception("Store listener %r failed after %s", listener, action.type)
            return new_state

    # Convenience actions

    def add_to_cart(self, product: Product) -> None:
        self.dispatch(AddToCart(product=product))

    def remove_from_cart(self, product_id: int) -> None:
        self.dispatch(RemoveFromCart(product_id=product_id))

    def update_quantity(self, product_id: int, quantity: int) -> None:
        self.dispatch(UpdateQuantity(product_id=product_id, quantity=quantity))

    def clear_cart(self) -> None:
        self.dispatch(ClearCart())

    def login(self, user: User) -> None:
        self.dispatch(SetUser(user=user))

    def logout(self) -> None:
        self.dispatch(Logout())

    def set_categories(self, categories: List[Category]) -> None:
        self.dispatch(SetCategories(categories=categories))

    def hydrate(self, payload: PersistedState) -> None:
        self.dispatch(Hydrate(payload=payload))

    def add_within_stock(self, product: Product, quantity: int = 1) -> bool:
        """Add ``quantity`` units, capped at stock. False when the cart already holds all of it."""
        with self._lock:
            existing = self.find_item(product.id)
            in_cart = existing.quantity if existing else 0
            if product.stock <= in_cart:
                return False
            self.dispatch(AddToCart(product=product))
            target = clamp_quantity(product, in_cart + quantity)
            if target != in_cart + 1:
                self.dispatch(UpdateQuantity(product_id=product.id, quantity=target))
            return True

    # Derived values

    @property
    def cart_total(self) -> float:
        return sum(item.product.price * item.quantity for item in self._state.cart)

    @property
    def cart_count(self) -> int:
        return sum(item.quantity for item in self._state.cart)

    def find_item(self, product_id: int) -> Optional[CartItem]:
        for item in self._state.cart:
            if item.product.id == product_id:
                return item
        return None
