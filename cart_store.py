"""
Tenant-scoped shopping cart.

The cart belongs to one storefront at a time: switching to another tenant
empties it. State is written through a pluggable storage adapter after every
mutation and restored when the store is constructed.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from catalog import effective_price

logger = logging.getLogger(__name__)

CART_NAMESPACE = "dijital-vitrin-cart"


class CartProduct(BaseModel):
    """Product fields the cart keeps a snapshot of."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    base_price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    image_url: Optional[str] = None
    slug: Optional[str] = None

    @property
    def unit_price(self) -> float:
        return effective_price(self.base_price, self.sale_price)


class CartItem(BaseModel):
    product: CartProduct
    quantity: int
    selected_attributes: Dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return line_key(self.product.id, self.selected_attributes)

    @property
    def line_total(self) -> float:
        return self.product.unit_price * self.quantity


class CartSnapshot(BaseModel):
    items: List[CartItem] = Field(default_factory=list)
    tenant_id: Optional[str] = None


class OrderLine(BaseModel):
    name: str
    quantity: int
    attributes: Dict[str, str] = Field(default_factory=dict)
    price: Optional[float] = None


def line_key(product_id: str, attributes: Optional[Mapping[str, str]]) -> tuple:
    return product_id, json.dumps(dict(attributes or {}), sort_keys=True)


# -------
# Storage
# -------

class CartStorage(Protocol):
    def load(self) -> Optional[str]: ...

    def save(self, payload: str) -> None: ...


class MemoryCartStorage:
    def __init__(self, namespace: str = CART_NAMESPACE):
        self.namespace = namespace
        self.entries: Dict[str, str] = {}

    def load(self) -> Optional[str]:
        return self.entries.get(self.namespace)

    def save(self, payload: str) -> None:
        self.entries[self.namespace] = payload


class JSONFileCartStorage:
    """Keeps namespaced entries in one JSON file, like a browser's local storage."""

    def __init__(self, path: Union[str, Path], namespace: str = CART_NAMESPACE):
        self.path = Path(path)
        self.namespace = namespace

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        entries = json.loads(self.path.read_text(encoding="utf-8"))
        return entries if isinstance(entries, dict) else {}

    def load(self) -> Optional[str]:
        return self._read_all().get(self.namespace)

    def save(self, payload: str) -> None:
        try:
            entries = self._read_all()
        except ValueError:
            # unparseable file is replaced on the next write
            logger.warning("Replacing unreadable cart storage file", extra={"path": str(self.path)})
            entries = {}
        entries[self.namespace] = payload
        self.path.write_text(json.dumps(entries, ensure_ascii=False), encoding="utf-8")


# -----
# Store
# -----

ProductInput = Union[CartProduct, Mapping[str, Any]]


class CartStore:
    def __init__(self, storage: Optional[CartStorage] = None):
        self.storage = storage if storage is not None else MemoryCartStorage()
        self.items: List[CartItem] = []
        self.tenant_id: Optional[str] = None
        self._restore()

    # Persistence

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(items=[item.model_copy(deep=True) for item in self.items], tenant_id=self.tenant_id)

    def _restore(self) -> None:
        try:
            payload = self.storage.load()
            if payload is None:
                return
            state = CartSnapshot.model_validate_json(payload)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Discarding unreadable cart snapshot", extra={"error": str(exc)})
            return
        self.items = state.items
        self.tenant_id = state.tenant_id

    def _persist(self) -> None:
        try:
            self.storage.save(self.snapshot().model_dump_json())
        except Exception as exc:
            # in-memory state stays authoritative for the session
            logger.warning("Cart snapshot could not be saved", extra={"error": str(exc)})

    # Mutations

    def set_tenant_id(self, tenant_id: str) -> None:
        if self.tenant_id and self.tenant_id != tenant_id:
            self.items = []
        self.tenant_id = tenant_id
        self._persist()

    def add_item(
        self,
        product: ProductInput,
        quantity: int = 1,
        attributes: Optional[Mapping[str, str]] = None,
    ) -> None:
        if not isinstance(product, CartProduct):
            product = CartProduct.model_validate(dict(product))
        key = line_key(product.id, attributes)
        for item in self.items:
            if item.key == key:
                item.quantity += quantity
                break
        else:
            self.items.append(
                CartItem(product=product, quantity=quantity, selected_attributes=dict(attributes or {}))
            )
        self._persist()

    def _matches(self, item: CartItem, product_id: str, attributes: Optional[Mapping[str, str]]) -> bool:
        if attributes is None:
            return item.product.id == product_id
        return item.key == line_key(product_id, attributes)

    def remove_item(self, product_id: str, attributes: Optional[Mapping[str, str]] = None) -> None:
        self.items = [item for item in self.items if not self._matches(item, product_id, attributes)]
        self._persist()

    def update_quantity(
        self,
        product_id: str,
        quantity: int,
        attributes: Optional[Mapping[str, str]] = None,
    ) -> None:
        if quantity <= 0:
            self.remove_item(product_id, attributes)
            return
        for item in self.items:
            if self._matches(item, product_id, attributes):
                item.quantity = quantity
        self._persist()

    def clear_cart(self) -> None:
        self.items = []
        self._persist()

    # Derived values

    def get_total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def get_total_price(self) -> float:
        return sum(item.line_total for item in self.items)

    def get_item_count(self, product_id: str, attributes: Optional[Mapping[str, str]] = None) -> int:
        for item in self.items:
            if self._matches(item, product_id, attributes):
                return item.quantity
        return 0

    @property
    def is_empty(self) -> bool:
        return not self.items


def cart_items_to_order_items(items: List[CartItem]) -> List[OrderLine]:
    return [
        OrderLine(
            name=item.product.name,
            quantity=item.quantity,
            attributes=dict(item.selected_attributes),
            price=item.product.unit_price,
        )
        for item in items
    ]
