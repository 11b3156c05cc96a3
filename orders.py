"""
Order store plus the pure pieces of order construction: order numbers,
pricing and payment info.
"""

import random
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Tuple

import structlog
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from catalog import CatalogStore
from config import settings
from database import Database, paginate, serialize, to_object_id, utcnow
from errors import Forbidden, InvalidStatusTransition, NotFound, OrderNotCancellable
from schemas import TERMINAL_STATUSES, Order, OrderStatus, PaymentInfo, PaymentMethod, PaymentStatus

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
ORDER_NUMBER_ATTEMPTS = 5

FORWARD_ORDER = [
    OrderStatus.pending.value,
    OrderStatus.processing.value,
    OrderStatus.shipped.value,
    OrderStatus.delivered.value,
]
TERMINAL = {s.value for s in TERMINAL_STATUSES}


def generate_order_number(prefix: Optional[str] = None, now_ms: Optional[int] = None, rand: Optional[int] = None) -> str:
    """Prefix + last 6 digits of a millisecond timestamp + 3 random digits."""
    if prefix is None:
        prefix = settings.ORDER_NUMBER_PREFIX
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if rand is None:
        rand = random.randint(0, 999)
    return f"{prefix}{str(now_ms)[-6:].zfill(6)}{rand:03d}"


@dataclass(frozen=True)
class Pricing:
    items_price: float
    shipping_price: float
    tax_price: float
    total_price: float


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_pricing(
    items_price: float,
    free_shipping_over: Optional[float] = None,
    flat_fee: Optional[float] = None,
    tax_rate: Optional[float] = None,
) -> Pricing:
    if free_shipping_over is None:
        free_shipping_over = settings.FREE_SHIPPING_THRESHOLD
    if flat_fee is None:
        flat_fee = settings.FLAT_SHIPPING_FEE
    if tax_rate is None:
        tax_rate = settings.TAX_RATE

    items = _money(items_price)
    shipping = Decimal(0) if items > Decimal(str(free_shipping_over)) else _money(flat_fee)
    tax = (items * Decimal(str(tax_rate))).quantize(CENT, rounding=ROUND_HALF_UP)
    total = items + shipping + tax
    return Pricing(float(items), float(shipping), float(tax), float(total))


def build_payment_info(method: str, transaction_id: Optional[str] = None, now: Optional[datetime] = None) -> PaymentInfo:
    now = now or utcnow()
    method = PaymentMethod(method)
    paid = method != PaymentMethod.cod
    return PaymentInfo(
        method=method,
        status=PaymentStatus.completed if paid else PaymentStatus.pending,
        transaction_id=transaction_id or f"TXN{int(time.time() * 1000)}",
        paid_at=now if paid else None,
    )


def transition_allowed(current: str, requested: str) -> bool:
    if current == requested:
        return True
    if current in TERMINAL:
        return False
    if requested == OrderStatus.cancelled.value:
        return True
    return FORWARD_ORDER.index(requested) > FORWARD_ORDER.index(current)


def order_summary(order: dict) -> dict:
    return {
        "order_number": order["order_number"],
        "total_items": sum(i["quantity"] for i in order.get("items", [])),
        "total_price": order["total_price"],
        "status": order["status"],
        "created_at": order.get("created_at"),
    }


def present(doc: dict) -> dict:
    order = serialize(doc)
    order["summary"] = order_summary(order)
    return order


class OrderStore:
    def __init__(self, db: Database, catalog: Optional[CatalogStore] = None):
        self.db = db
        self.catalog = catalog or CatalogStore(db)

    @property
    def collection(self):
        return self.db.orders

    def insert(
        self,
        order: Order,
        number_factory: Callable[[], str] = generate_order_number,
        on_renumber: Optional[Callable[[str], None]] = None,
    ) -> dict:
        """Persist an order; the unique index on order_number decides collisions.

        `on_renumber` is told about every replacement number before the
        retry is attempted.
        """
        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            try:
                oid = self.db.create_document("order", order)
                return self.get(oid)
            except DuplicateKeyError:
                logger.warning("order_number_collision", order_number=order.order_number, attempt=attempt)
                order = order.model_copy(update={"order_number": number_factory()})
                if on_renumber:
                    on_renumber(order.order_number)
        raise RuntimeError("Could not allocate a unique order number")

    def get(self, order_id: str) -> dict:
        doc = self.collection.find_one({"_id": to_object_id(order_id, "Order")})
        if not doc:
            raise NotFound("Order not found")
        return present(doc)

    def find_by_checkout(self, checkout_id: str) -> Optional[dict]:
        return serialize(self.collection.find_one({"checkout_id": checkout_id}))

    def get_for_user(self, order_id: str, user: dict) -> dict:
        order = self.get(order_id)
        if order["user_id"] != user["id"] and user.get("role") != "admin":
            raise Forbidden()
        order["user"] = self.db.users_by_id([order["user_id"]]).get(order["user_id"])
        return order

    def _page(self, filt: dict, page: int, limit: int, with_users: bool = False) -> Tuple[List[dict], dict]:
        cursor = (
            self.collection.find(filt)
            .sort([("created_at", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        orders = [present(d) for d in cursor]
        if with_users:
            users = self.db.users_by_id([o["user_id"] for o in orders])
            for o in orders:
                o["user"] = users.get(o["user_id"])
        return orders, paginate(page, limit, self.collection.count_documents(filt))

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 10) -> Tuple[List[dict], dict]:
        return self._page({"user_id": user_id}, page, limit)

    def list_all(self, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Tuple[List[dict], dict]:
        filt = {}
        if status:
            filt["status"] = status
        return self._page(filt, page, limit, with_users=True)

    def cancel(self, order_id: str, user: dict) -> dict:
        order = self.get(order_id)
        if order["user_id"] != user["id"]:
            raise Forbidden()
        if order["status"] in TERMINAL:
            raise OrderNotCancellable()

        # the status guard makes a concurrent second cancel a no-op
        doc = self.collection.find_one_and_update(
            {"_id": to_object_id(order_id, "Order"), "status": {"$nin": list(TERMINAL)}},
            {"$set": {"status": OrderStatus.cancelled.value, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise OrderNotCancellable()

        for item in doc.get("items", []):
            self.catalog.adjust_stock(item["product_id"], item["quantity"])
        logger.info("order_cancelled", order_number=doc["order_number"], user_id=user["id"])
        return present(doc)

    def update_status(
        self,
        order_id: str,
        status: str,
        tracking_number: Optional[str] = None,
        forward_only: Optional[bool] = None,
    ) -> dict:
        if forward_only is None:
            forward_only = settings.ORDER_STATUS_FORWARD_ONLY
        status = OrderStatus(status).value
        order = self.get(order_id)
        if forward_only and not transition_allowed(order["status"], status):
            raise InvalidStatusTransition(order["status"], status)

        now = utcnow()
        changes = {"status": status, "updated_at": now}
        if tracking_number:
            changes["tracking_number"] = tracking_number.strip()
        if status == OrderStatus.delivered.value:
            changes["delivered_at"] = now

        doc = self.collection.find_one_and_update(
            {"_id": to_object_id(order_id, "Order")},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("order_status_updated", order_number=doc["order_number"], status=status)
        return present(doc)
