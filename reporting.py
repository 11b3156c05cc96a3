"""
Admin reporting. Everything here reads; the only writes are the user
activation toggle (order status changes live on OrderStore).
"""

from collections import OrderedDict
from datetime import timedelta
from typing import List, Optional, Tuple

import structlog

from database import Database, paginate, serialize, to_object_id, utcnow
from errors import Forbidden, NotFound
from schemas import PaymentStatus, SalesPeriod

logger = structlog.get_logger(__name__)

PERIODS = {
    SalesPeriod.day.value: timedelta(hours=24),
    SalesPeriod.week.value: timedelta(days=7),
    SalesPeriod.month.value: timedelta(days=30),
    SalesPeriod.quarter.value: timedelta(days=90),
}
DEFAULT_PERIOD = SalesPeriod.week.value

RECENT_ORDERS = 5
LOW_STOCK_LIMIT = 10
TOP_PRODUCTS = 10

COMPLETED = PaymentStatus.completed.value


def _attach_users(db: Database, orders: List[dict]) -> List[dict]:
    users = db.users_by_id(o.get("user_id") for o in orders)
    for o in orders:
        o["user"] = users.get(o.get("user_id"))
    return orders


def completed_revenue(db: Database) -> float:
    rows = list(db.orders.aggregate([
        {"$match": {"payment_info.status": COMPLETED}},
        {"$group": {"_id": None, "total": {"$sum": "$total_price"}}},
    ]))
    return round(rows[0]["total"], 2) if rows else 0


def low_stock_products(db: Database, limit: int = LOW_STOCK_LIMIT) -> List[dict]:
    cursor = db.products.find(
        {"is_active": True},
        {"name": 1, "stock": 1, "low_stock_threshold": 1},
    ).sort([("stock", 1)])
    out = []
    for p in cursor:
        if p.get("stock", 0) <= p.get("low_stock_threshold", 10):
            out.append(serialize(p))
            if len(out) == limit:
                break
    return out


def dashboard(db: Database) -> dict:
    recent = [
        serialize(o)
        for o in db.orders.find(
            {},
            {"order_number": 1, "total_price": 1, "status": 1, "created_at": 1, "user_id": 1},
        ).sort([("created_at", -1)]).limit(RECENT_ORDERS)
    ]
    return {
        "stats": {
            "total_users": db.users.count_documents({"role": "user"}),
            "total_products": db.products.count_documents({"is_active": True}),
            "total_orders": db.orders.count_documents({}),
            "total_revenue": completed_revenue(db),
        },
        "recent_orders": _attach_users(db, recent),
        "low_stock_products": low_stock_products(db),
    }


def list_users(
    db: Database,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[dict], dict]:
    filt = {}
    if role:
        filt["role"] = role
    if is_active is not None:
        filt["is_active"] = is_active
    cursor = (
        db.users.find(filt, {"password": 0, "password_hash": 0})
        .sort([("created_at", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return [serialize(u) for u in cursor], paginate(page, limit, db.users.count_documents(filt))


def toggle_user_status(db: Database, user_id: str, acting_admin: dict) -> dict:
    oid = to_object_id(user_id, "User")
    user = db.users.find_one({"_id": oid})
    if not user:
        raise NotFound("User not found")
    if user.get("role") == "admin" and str(user["_id"]) != acting_admin["id"]:
        raise Forbidden("Cannot modify other admin accounts")

    is_active = not user.get("is_active", True)
    db.users.update_one({"_id": oid}, {"$set": {"is_active": is_active, "updated_at": utcnow()}})
    logger.info("user_status_toggled", user_id=user_id, is_active=is_active, admin_id=acting_admin["id"])
    return {"id": user_id, "is_active": is_active}


def period_start(period: Optional[str]):
    return utcnow() - PERIODS.get(period or DEFAULT_PERIOD, PERIODS[DEFAULT_PERIOD])


def sales_analytics(db: Database, period: Optional[str] = None) -> dict:
    if period not in PERIODS:
        period = DEFAULT_PERIOD
    start = period_start(period)
    paid_in_window = {"created_at": {"$gte": start}, "payment_info.status": COMPLETED}

    daily = OrderedDict()
    for o in db.orders.find(paid_in_window, {"created_at": 1, "total_price": 1}).sort([("created_at", 1)]):
        day = o["created_at"].strftime("%Y-%m-%d")
        bucket = daily.setdefault(day, {"date": day, "revenue": 0.0, "orders": 0})
        bucket["revenue"] += o["total_price"]
        bucket["orders"] += 1
    sales_data = [{**b, "revenue": round(b["revenue"], 2)} for b in daily.values()]

    top_products = [
        {
            "product_id": row["_id"],
            "name": row["name"],
            "total_sold": row["total_sold"],
            "revenue": round(row["revenue"], 2),
        }
        for row in db.orders.aggregate([
            {"$match": paid_in_window},
            {"$unwind": "$items"},
            {"$group": {
                "_id": "$items.product_id",
                "name": {"$first": "$items.name"},
                "total_sold": {"$sum": "$items.quantity"},
                "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
            }},
            {"$sort": {"total_sold": -1}},
            {"$limit": TOP_PRODUCTS},
        ])
    ]

    orders_by_status = sorted(
        (
            {"status": row["_id"], "count": row["count"]}
            for row in db.orders.aggregate([
                {"$match": {"created_at": {"$gte": start}}},
                {"$group": {"_id": "$status", "count": {"$sum": 1}}},
            ])
        ),
        key=lambda r: r["status"],
    )

    return {
        "sales_data": sales_data,
        "top_products": top_products,
        "orders_by_status": orders_by_status,
        "period": period,
    }
