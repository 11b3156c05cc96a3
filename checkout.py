"""
Order placement.

Turns a user's cart into exactly one order, takes the ordered quantities
out of stock and empties the cart. The steps touch several documents, so
each run is tracked by a journal document in the "checkout" collection:

    started        journal written, nothing mutated yet
    order_created  stock reserved and order persisted, cart not yet cleared
    completed      cart cleared
    compensated    rolled back; reserved stock released, no order exists

Every successful stock decrement is appended to the journal's `reserved`
list before the next step runs. The order carries the journal id in
`checkout_id`. A journal stuck in started/order_created means the process
died mid-way; `recover_checkouts` finishes it when an order with that
`checkout_id` exists and undoes it otherwise.
"""

from datetime import timedelta
from typing import Callable, List, Optional

import structlog

from carts import CartStore, items_amount
from catalog import CatalogStore
from config import settings
from database import Database, utcnow
from errors import EmptyCart, InsufficientStock, ProductUnavailable
from orders import OrderStore, build_payment_info, compute_pricing, generate_order_number
from schemas import Order, OrderItem, ShippingAddress

logger = structlog.get_logger(__name__)

STARTED = "started"
ORDER_CREATED = "order_created"
COMPLETED = "completed"
COMPENSATED = "compensated"


class Checkout:
    def __init__(self, db: Database, number_factory: Callable[[], str] = generate_order_number):
        self.db = db
        self.catalog = CatalogStore(db)
        self.carts = CartStore(db, self.catalog)
        self.orders = OrderStore(db, self.catalog)
        self.number_factory = number_factory

    @property
    def journal(self):
        return self.db.checkouts

    def _set_state(self, journal_id, state: str, **extra) -> None:
        self.journal.update_one(
            {"_id": journal_id},
            {"$set": {"state": state, "updated_at": utcnow(), **extra}},
        )

    def _release(self, reserved: List[dict]) -> None:
        for item in reserved:
            self.catalog.adjust_stock(item["product_id"], item["quantity"])
            logger.info("stock_released", product_id=item["product_id"], quantity=item["quantity"])

    def _compensate(self, journal_id, reserved: List[dict], reason: str) -> None:
        self._release(reserved)
        self._set_state(journal_id, COMPENSATED, reason=reason)
        logger.warning("checkout_compensated", journal_id=str(journal_id), reason=reason)

    def place_order(
        self,
        user_id: str,
        shipping_address: ShippingAddress,
        payment_method: str,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict:
        cart, products = self.carts.load_with_products(user_id)
        if not cart or not cart.get("items"):
            raise EmptyCart()
        items = cart["items"]

        for item in items:
            product = products.get(item["product_id"])
            if not product or not product.get("is_active", True):
                name = product["name"] if product else item["product_id"]
                raise ProductUnavailable(name)
            if product["stock"] < item["quantity"]:
                raise InsufficientStock(product["name"], product["stock"])

        order_items = []
        for item in items:
            product = products[item["product_id"]]
            images = product.get("images") or []
            order_items.append(OrderItem(
                product_id=item["product_id"],
                name=product["name"],
                image=images[0].get("url", "") if images else "",
                price=item["price"],
                quantity=item["quantity"],
            ))

        pricing = compute_pricing(items_amount(items))
        payment_info = build_payment_info(payment_method, transaction_id)
        order_number = self.number_factory()
        now = utcnow()
        journal_id = self.journal.insert_one({
            "user_id": user_id,
            "order_number": order_number,
            "state": STARTED,
            "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in order_items],
            "reserved": [],
            "created_at": now,
            "updated_at": now,
        }).inserted_id

        order = Order(
            order_number=order_number,
            user_id=user_id,
            items=order_items,
            shipping_address=shipping_address,
            payment_info=payment_info,
            items_price=pricing.items_price,
            shipping_price=pricing.shipping_price,
            tax_price=pricing.tax_price,
            total_price=pricing.total_price,
            notes=notes,
            checkout_id=str(journal_id),
        )

        reserved = []
        for item in order_items:
            if not self.catalog.adjust_stock(item.product_id, -item.quantity):
                self._compensate(journal_id, reserved, f"insufficient stock for {item.product_id}")
                current = self.db.products.find_one({"_id": products[item.product_id]["_id"]}, {"stock": 1})
                raise InsufficientStock(item.name, current["stock"] if current else 0)
            entry = {"product_id": item.product_id, "quantity": item.quantity}
            reserved.append(entry)
            self.journal.update_one({"_id": journal_id}, {"$push": {"reserved": entry}})

        try:
            created = self.orders.insert(
                order,
                self.number_factory,
                on_renumber=lambda number: self._set_state(journal_id, STARTED, order_number=number),
            )
        except Exception:
            self._compensate(journal_id, reserved, "order insert failed")
            raise
        self._set_state(journal_id, ORDER_CREATED, order_number=created["order_number"], order_id=created["id"])

        self.carts.clear(user_id)
        self._set_state(journal_id, COMPLETED)

        logger.info(
            "order_placed",
            order_number=created["order_number"],
            user_id=user_id,
            total_price=created["total_price"],
            items=len(order_items),
        )
        return created

    def recover(self, older_than_seconds: Optional[int] = None) -> dict:
        """Finish or roll back journals abandoned mid-checkout."""
        if older_than_seconds is None:
            older_than_seconds = settings.CHECKOUT_RECOVERY_GRACE_SECONDS
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        stale = list(self.journal.find({
            "state": {"$in": [STARTED, ORDER_CREATED]},
            "created_at": {"$lte": cutoff},
        }))

        result = {"completed": 0, "compensated": 0}
        for entry in stale:
            # only an order stamped with this journal's id counts; a matching
            # order number may belong to someone else
            order = self.orders.find_by_checkout(str(entry["_id"]))
            if order:
                self.db.carts.update_one(
                    {"user_id": entry["user_id"]},
                    {"$set": {"items": [], "updated_at": utcnow()}},
                )
                self._set_state(entry["_id"], COMPLETED, order_id=order["id"])
                result["completed"] += 1
            else:
                self._compensate(entry["_id"], entry.get("reserved", []), "recovered after interruption")
                result["compensated"] += 1
        if stale:
            logger.info("checkout_recovered", **result)
        return result


def recover_checkouts(db: Database, older_than_seconds: Optional[int] = None) -> dict:
    return Checkout(db).recover(older_than_seconds)
