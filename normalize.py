"""
Backend record normalization.

The backend is not consistent about field names (``idProducto`` vs ``id``,
``nombre`` vs ``name``) or about how it references product images. Every
parser here takes one raw JSON record and returns the canonical model from
schemas.py, or ``None`` when the record has no usable identity.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional

from schemas import Category, Order, OrderItem, Product, ProductImage, User, ORDER_STATUSES

logger = logging.getLogger(__name__)

ImageUrlBuilder = Callable[[int], str]

NUMERIC_RE = re.compile(r"[0-9]+")

IMAGE_ID_KEYS = ("idImagen", "idImagenProducto", "id", "idImage")
IMAGE_URL_KEYS = ("url", "originalUrl", "path")
CATEGORY_CHILDREN_KEYS = ("children", "subcategories", "children_tree")

ORDER_STATUS_ALIASES = {
    "pendiente": "pending",
    "procesando": "processing",
    "en_proceso": "processing",
    "enviado": "shipped",
    "entregado": "delivered",
    "cancelado": "cancelled",
    "canceled": "cancelled",
}


def first_of(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First value under ``keys`` that is not None."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() else None
    return None


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# -----------------
# Images
# -----------------

class ImageRefKind(str, Enum):
    NUMERIC_ID = "numeric_id"
    NUMERIC_STRING = "numeric_string"
    OBJECT_WITH_ID = "object_with_id"
    OBJECT_WITH_URL = "object_with_url"
    UNRECOGNIZED = "unrecognized"


class ImageRef(NamedTuple):
    kind: ImageRefKind
    image_id: Optional[int] = None
    url: Optional[str] = None


def parse_image_ref(raw: Any) -> ImageRef:
    if isinstance(raw, bool):
        return ImageRef(ImageRefKind.UNRECOGNIZED)
    if isinstance(raw, int) or (isinstance(raw, float) and raw.is_integer()):
        return ImageRef(ImageRefKind.NUMERIC_ID, image_id=int(raw))
    if isinstance(raw, str):
        if NUMERIC_RE.fullmatch(raw):
            return ImageRef(ImageRefKind.NUMERIC_STRING, image_id=int(raw))
        return ImageRef(ImageRefKind.UNRECOGNIZED)
    if isinstance(raw, dict):
        image_id = to_int(first_of(raw, *IMAGE_ID_KEYS))
        if image_id is not None:
            return ImageRef(ImageRefKind.OBJECT_WITH_ID, image_id=image_id)
        url = first_of(raw, *IMAGE_URL_KEYS)
        if isinstance(url, str):
            return ImageRef(ImageRefKind.OBJECT_WITH_URL, url=url)
    return ImageRef(ImageRefKind.UNRECOGNIZED)


def normalize_image(raw: Any, image_url: ImageUrlBuilder) -> Optional[ProductImage]:
    ref = parse_image_ref(raw)
    if ref.kind in (ImageRefKind.NUMERIC_ID, ImageRefKind.NUMERIC_STRING, ImageRefKind.OBJECT_WITH_ID):
        return ProductImage(id=ref.image_id, url=image_url(ref.image_id))
    if ref.kind is ImageRefKind.OBJECT_WITH_URL:
        # kept verbatim, absolute or relative
        return ProductImage(id=0, url=ref.url)
    return None


def normalize_images(raw: Any, image_url: ImageUrlBuilder) -> List[ProductImage]:
    if not isinstance(raw, list):
        return []
    images = []
    for item in raw:
        image = normalize_image(item, image_url)
        if image is None:
            logger.debug("Dropping unrecognized image reference: %r", item)
            continue
        images.append(image)
    return images


# -----------------
# Catalog
# -----------------

def normalize_product(raw: Any, image_url: ImageUrlBuilder) -> Optional[Product]:
    if not isinstance(raw, dict):
        return None
    product_id = to_int(first_of(raw, "idProducto", "id", "_id"))
    if product_id is None:
        return None
    if raw.get("precio") is not None:
        price = to_float(raw["precio"])
    else:
        price = to_float(raw.get("price"))
    created_at = first_of(raw, "fechaCreacion", "created_at")
    return Product(
        id=product_id,
        name=str(first_of(raw, "nombre", "name", default="")),
        description=str(first_of(raw, "descripcion", "description", default="")),
        price=price,
        category_id=to_int(first_of(raw, "idCategoria", "category_id")),
        stock=to_int(raw.get("stock")) or 0,
        images=normalize_images(first_of(raw, "imagenesProductos", "images", default=[]), image_url),
        created_at=str(created_at) if created_at is not None else datetime.now(timezone.utc).isoformat(),
    )


def normalize_products(items: Any, image_url: ImageUrlBuilder) -> List[Product]:
    if not isinstance(items, list):
        return []
    products = []
    for raw in items:
        product = normalize_product(raw, image_url)
        if product is not None:
            products.append(product)
    return products


def normalize_category(raw: Any) -> Optional[Category]:
    if not isinstance(raw, dict):
        return None
    return Category(
        id=to_int(first_of(raw, "idCategoria", "id", "idCategory")) or 0,
        name=str(first_of(raw, "nombre", "name", default="")),
        parent_id=to_int(first_of(raw, "parent_id", "parentId", "idPadre")),
    )


def normalize_category_node(raw: Any) -> Optional[Category]:
    category = normalize_category(raw)
    if category is None:
        return None
    children = first_of(raw, *CATEGORY_CHILDREN_KEYS)
    if isinstance(children, list):
        category.children = [c for c in (normalize_category_node(n) for n in children) if c is not None]
    return category


def flatten_category_tree(tree: Iterable[Category]) -> List[Category]:
    """Depth-first flat list, each node stripped of its children."""
    flat = []
    for node in tree:
        flat.append(node.model_copy(update={"children": None}))
        if node.children:
            flat.extend(flatten_category_tree(node.children))
    return flat


def build_category_tree(categories: Iterable[Category]) -> List[Category]:
    """Nest a flat list by ``parent_id``. Orphans become roots."""
    nodes = {c.id: c.model_copy(update={"children": None}) for c in categories}
    roots = []
    for node in nodes.values():
        parent = nodes.get(node.parent_id) if node.parent_id is not None else None
        if parent is None or parent is node:
            roots.append(node)
            continue
        if parent.children is None:
            parent.children = []
        parent.children.append(node)
    return roots


def unique_categories_by_name(categories: Iterable[Category]) -> List[Category]:
    seen = set()
    unique = []
    for category in categories:
        key = category.name.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(category)
    return unique


# -----------------
# Users / Orders
# -----------------

def normalize_user(raw: Any) -> Optional[User]:
    if not isinstance(raw, dict):
        return None
    user_id = to_int(first_of(raw, "idUsuario", "id"))
    if user_id is None:
        return None
    role = str(first_of(raw, "rol", "role", default="user")).lower()
    return User(
        id=user_id,
        email=str(first_of(raw, "correo", "email", default="")),
        name=str(first_of(raw, "nombre", "name", default="")),
        role="admin" if role == "admin" else "user",
    )


def normalize_order_status(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    status = raw.strip().lower()
    status = ORDER_STATUS_ALIASES.get(status, status)
    return status if status in ORDER_STATUSES else None


def normalize_order_item(raw: Any) -> Optional[OrderItem]:
    if not isinstance(raw, dict):
        return None
    product_id = to_int(first_of(raw, "idProducto", "product_id"))
    if product_id is None:
        return None
    return OrderItem(
        product_id=product_id,
        quantity=to_int(first_of(raw, "cantidad", "quantity")) or 0,
        price=to_float(first_of(raw, "precio", "price")),
    )


def normalize_order(raw: Any) -> Optional[Order]:
    if not isinstance(raw, dict):
        return None
    order_id = to_int(first_of(raw, "idPedido", "idOrden", "id"))
    if order_id is None:
        return None
    status = normalize_order_status(first_of(raw, "estado", "status", default="pending"))
    if status is None:
        logger.warning("Order %s has an unknown status %r", order_id, first_of(raw, "estado", "status"))
        return None
    items = first_of(raw, "items", "detalles", default=[])
    created_at = first_of(raw, "fechaCreacion", "created_at")
    return Order(
        id=order_id,
        user_id=to_int(first_of(raw, "idUsuario", "user_id")),
        status=status,
        total=to_float(raw.get("total")),
        items=[i for i in (normalize_order_item(r) for r in items) if i is not None] if isinstance(items, list) else [],
        created_at=str(created_at) if created_at is not None else None,
    )


def normalize_orders(items: Any) -> List[Order]:
    if not isinstance(items, list):
        return []
    return [o for o in (normalize_order(r) for r in items) if o is not None]
