"""
Shopping cart used by the storefront.

The cart lives on the client: a list of lines keyed by (product id, variant
label), persisted to a JSON file and re-read when another writer changed it.
Stock is whatever the product listing said when the line was added; it is
never checked against the API again.
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class CartError(ValueError):
    pass


class CartLine(BaseModel):
    id: str
    name: str
    image: Optional[str] = None
    variantLabel: Optional[str] = None
    unit: Optional[str] = None
    price: float = 0
    stock: int = 0
    qty: int = Field(1, ge=1)


def _same(line: CartLine, product_id: str, variant_label: Optional[str]) -> bool:
    return line.id == product_id and line.variantLabel == variant_label


def cart_reducer(items: List[CartLine], action: Dict[str, Any]) -> List[CartLine]:
    kind = action.get("type")

    if kind == "HYDRATE":
        return list(action.get("payload") or [])

    if kind == "ADD_ITEM":
        item: CartLine = action["item"]
        for idx, existing in enumerate(items):
            if _same(existing, item.id, item.variantLabel):
                bumped = existing.model_copy(update={"qty": min(existing.qty + item.qty, existing.stock)})
                return items[:idx] + [bumped] + items[idx + 1:]
        return items + [item]

    if kind == "REMOVE_ITEM":
        return [i for i in items if not _same(i, action["id"], action.get("variantLabel"))]

    if kind == "SET_QTY":
        qty = action["qty"]
        return [
            i.model_copy(update={"qty": min(max(qty, 1), i.stock)})
            if _same(i, action["id"], action.get("variantLabel")) else i
            for i in items
        ]

    if kind == "CLEAR":
        return []

    return items


def add_item(items: List[CartLine], product: dict, variant: Optional[dict], qty: Any = 1) -> List[CartLine]:
    """Add one variant of a listed product, capturing its current stock."""
    if not variant:
        raise CartError("Select a variant")
    try:
        stock = int(variant.get("stock") or 0)
    except (TypeError, ValueError):
        stock = 0
    if stock <= 0:
        raise CartError("Out of stock")
    try:
        safe_qty = max(1, int(qty or 1))
    except (TypeError, ValueError):
        safe_qty = 1

    line = CartLine(
        id=str(product.get("id") or product.get("_id")),
        name=product.get("name", ""),
        image=product.get("image"),
        variantLabel=variant.get("label"),
        unit=variant.get("unit"),
        price=float(variant.get("price") or 0),
        stock=stock,
        qty=safe_qty,
    )
    return cart_reducer(items, {"type": "ADD_ITEM", "item": line})


def count(items: List[CartLine]) -> int:
    return sum(i.qty for i in items)


def subtotal(items: List[CartLine]) -> float:
    return sum(i.qty * i.price for i in items)


def build_checkout_payload(items: List[CartLine], shipping: dict, method: str = "COD") -> dict:
    """Body for POST /orders: line items plus per-product quantity totals."""
    lines = [
        {
            "productId": i.id,
            "name": i.name,
            "label": i.variantLabel,
            "imageUrl": i.image,
            "price": i.price,
            "qty": i.qty,
        }
        for i in items
    ]

    summary: Dict[str, dict] = {}
    for i in items:
        entry = summary.setdefault(i.id, {"productId": i.id, "name": i.name, "imageUrl": i.image, "totalQty": 0})
        entry["totalQty"] += i.qty

    return {
        "items": lines,
        "productsSummary": list(summary.values()),
        "shipping": shipping,
        "payment": {"method": method},
    }


class CartStore:
    """Cart persisted to a JSON file; every dispatch writes the whole list."""

    def __init__(self, path: str):
        self.path = path
        self.items: List[CartLine] = []
        self._mtime: Optional[float] = None
        self.items = cart_reducer(self.items, {"type": "HYDRATE", "payload": self._load()})

    def _load(self) -> List[CartLine]:
        try:
            with open(self.path, encoding="utf-8") as fh:
                raw = json.load(fh)
            self._mtime = os.path.getmtime(self.path)
        except FileNotFoundError:
            return []
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable cart file %s", self.path)
            return []
        if not isinstance(raw, list):
            return []
        try:
            return [CartLine(**line) for line in raw]
        except (TypeError, ValidationError):
            logger.warning("Ignoring corrupt cart file %s", self.path)
            return []

    def _save(self) -> None:
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump([i.model_dump() for i in self.items], fh, ensure_ascii=False)
        self._mtime = os.path.getmtime(self.path)

    def dispatch(self, action: Dict[str, Any]) -> List[CartLine]:
        self.items = cart_reducer(self.items, action)
        self._save()
        return self.items

    def add(self, product: dict, variant: Optional[dict], qty: Any = 1) -> List[CartLine]:
        self.items = add_item(self.items, product, variant, qty)
        self._save()
        return self.items

    def remove(self, product_id: str, variant_label: Optional[str]) -> List[CartLine]:
        return self.dispatch({"type": "REMOVE_ITEM", "id": product_id, "variantLabel": variant_label})

    def set_qty(self, product_id: str, variant_label: Optional[str], qty: Any) -> List[CartLine]:
        try:
            n = int(qty) or 1
        except (TypeError, ValueError):
            n = 1
        return self.dispatch({"type": "SET_QTY", "id": product_id, "variantLabel": variant_label, "qty": n})

    def clear(self) -> List[CartLine]:
        if not self.items:
            return self.items
        return self.dispatch({"type": "CLEAR"})

    def sync(self) -> bool:
        """Re-read the file if another writer changed it. Last write wins."""
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            return False
        if mtime == self._mtime:
            return False
        self.items = cart_reducer(self.items, {"type": "HYDRATE", "payload": self._load()})
        return True
