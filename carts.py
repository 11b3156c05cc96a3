"""
Cart store: one cart per user, one line per product.

Stock is checked against the live catalog when a line is added or changed,
nothing is reserved until the order is placed.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple

import structlog
from pymongo.errors import DuplicateKeyError

from catalog import CatalogStore
from database import Database, serialize, to_object_id, utcnow
from errors import InsufficientStock, NotFound
from schemas import Cart, CartItem

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def line_total(item: dict) -> Decimal:
    return Decimal(str(item["price"])) * int(item["quantity"])


def items_amount(items: List[dict]) -> float:
    total = sum((line_total(i) for i in items), Decimal(0))
    return float(total.quantize(CENT, rounding=ROUND_HALF_UP))


def cart_summary(items: List[dict]) -> dict:
    return {
        "total_items": sum(int(i["quantity"]) for i in items),
        "item_count": len(items),
        "total_amount": items_amount(items),
    }


class CartStore:
    def __init__(self, db: Database, catalog: Optional[CatalogStore] = None):
        self.db = db
        self.catalog = catalog or CatalogStore(db)

    @property
    def collection(self):
        return self.db.carts

    def find(self, user_id: str) -> Optional[dict]:
        return self.collection.find_one({"user_id": user_id})

    def _require(self, user_id: str) -> dict:
        cart = self.find(user_id)
        if not cart:
            raise NotFound("Cart not found")
        return cart

    def get_or_create(self, user_id: str) -> dict:
        cart = self.find(user_id)
        if cart:
            return cart
        try:
            self.db.create_document("cart", Cart(user_id=user_id))
        except DuplicateKeyError:
            # another request created it first
            pass
        return self.find(user_id)

    def load_with_products(self, user_id: str) -> Tuple[Optional[dict], Dict[str, dict]]:
        """Return the raw cart and its referenced products keyed by id."""
        cart = self.find(user_id)
        if not cart:
            return None, {}
        ids = [to_object_id(i["product_id"], "Product") for i in cart.get("items", [])]
        products = {str(p["_id"]): p for p in self.db.products.find({"_id": {"$in": ids}}, {"reviews": 0})}
        return cart, products

    def _view(self, cart: dict) -> dict:
        ids = [to_object_id(i["product_id"], "Product") for i in cart.get("items", [])]
        products = {
            str(p["_id"]): p
            for p in self.db.products.find(
                {"_id": {"$in": ids}},
                {"name": 1, "price": 1, "images": 1, "stock": 1, "is_active": 1},
            )
        }
        items = []
        for item in cart.get("items", []):
            product = products.get(item["product_id"])
            if not product or not product.get("is_active", True):
                continue
            items.append({**item, "product": serialize(product)})
        view = serialize(cart)
        view["items"] = items
        view["summary"] = cart_summary(items)
        return view

    def _save_items(self, cart: dict, items: List[dict]) -> dict:
        self.collection.update_one(
            {"_id": cart["_id"]},
            {"$set": {"items": items, "updated_at": utcnow()}},
        )
        cart["items"] = items
        return cart

    def get_cart(self, user_id: str) -> dict:
        return self._view(self.get_or_create(user_id))

    def add_item(self, user_id: str, product_id: str, quantity: int) -> dict:
        product = self.catalog.get_product(product_id)
        cart = self.get_or_create(user_id)
        items = list(cart.get("items", []))

        existing = next((i for i in items if i["product_id"] == product["id"]), None)
        wanted = quantity + (existing["quantity"] if existing else 0)
        if product["stock"] < wanted:
            raise InsufficientStock(product["name"], product["stock"])

        if existing:
            existing["quantity"] = wanted
        else:
            items.append(CartItem(product_id=product["id"], quantity=quantity, price=product["price"]).model_dump())

        logger.info("cart_item_added", user_id=user_id, product_id=product["id"], quantity=wanted)
        return self._view(self._save_items(cart, items))

    def update_item(self, user_id: str, product_id: str, quantity: int) -> dict:
        cart = self._require(user_id)
        items = list(cart.get("items", []))

        if quantity == 0:
            items = [i for i in items if i["product_id"] != product_id]
            return self._view(self._save_items(cart, items))

        product = self.catalog.get_product(product_id)
        if product["stock"] < quantity:
            raise InsufficientStock(product["name"], product["stock"])
        existing = next((i for i in items if i["product_id"] == product["id"]), None)
        if not existing:
            raise NotFound("Item not found in cart")
        existing["quantity"] = quantity
        return self._view(self._save_items(cart, items))

    def remove_item(self, user_id: str, product_id: str) -> dict:
        cart = self._require(user_id)
        items = [i for i in cart.get("items", []) if i["product_id"] != product_id]
        return self._view(self._save_items(cart, items))

    def clear(self, user_id: str) -> dict:
        cart = self._require(user_id)
        return self._view(self._save_items(cart, []))

    def summary(self, user_id: str) -> dict:
        cart = self.find(user_id)
        if not cart:
            return {"total_items": 0, "item_count": 0, "total_amount": 0}
        return cart_summary(cart.get("items", []))
