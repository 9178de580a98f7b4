"""
Storefront Schemas

Canonical shapes the storefront programs against, independent of how the
backend names its fields. Backend records are turned into these models by
normalize.py; the store keeps them and persists them verbatim.
"""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Any, Dict, List, Literal, Optional

Role = Literal["user", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class ProductImage(BaseModel):
    id: int = 0
    url: str


class Product(BaseModel):
    id: int
    name: str = ""
    description: str = ""
    price: float = 0
    category_id: Optional[int] = None
    stock: int = 0
    images: List[ProductImage] = Field(default_factory=list)
    created_at: str


class CartItem(BaseModel):
    product: Product
    quantity: int = Field(..., description="Clamped to [1, stock] by callers, not by the store")


class User(BaseModel):
    id: int
    email: str = ""
    name: str = ""
    role: Role = "user"


class Category(BaseModel):
    id: int
    name: str = ""
    parent_id: Optional[int] = None
    children: Optional[List[Category]] = None


class OrderItem(BaseModel):
    product_id: int
    quantity: int
    price: float = 0


class Order(BaseModel):
    id: int
    user_id: Optional[int] = None
    status: OrderStatus = "pending"
    total: float = 0
    items: List[OrderItem] = Field(default_factory=list)
    created_at: Optional[str] = None


class ProductPage(BaseModel):
    products: List[Product] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    pages: int = 1


class AuthSession(BaseModel):
    user: Optional[User] = None
    token: Optional[str] = None


# Store state

class StoreState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cart: List[CartItem] = Field(default_factory=list)
    user: Optional[User] = None
    is_authenticated: bool = Field(False, alias="isAuthenticated")
    categories: List[Category] = Field(default_factory=list)

    def persisted(self) -> Dict[str, Any]:
        """The slice written to local storage after every change."""
        return {
            "cart": [item.model_dump() for item in self.cart],
            "user": self.user.model_dump() if self.user else None,
            "isAuthenticated": self.is_authenticated,
        }


class PersistedState(BaseModel):
    """Partial state read back from storage. Only keys present in the record are merged."""
    model_config = ConfigDict(populate_by_name=True)

    cart: Optional[List[CartItem]] = None
    user: Optional[User] = None
    is_authenticated: Optional[bool] = Field(None, alias="isAuthenticated")
    categories: Optional[List[Category]] = None

    def merge_fields(self) -> Dict[str, Any]:
        fields = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            # only the user may be persisted as null
            if value is None and name != "user":
                continue
            fields[name] = value
        return fields


# Request payloads

class LoginInput(BaseModel):
    email: EmailStr
    password: str


class RegisterInput(BaseModel):
    name: str
    email: EmailStr
    password: str


class CartAddInput(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class CartUpdateInput(BaseModel):
    product_id: int
    quantity: int
