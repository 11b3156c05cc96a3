import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from auth import get_db, is_admin, optional_user, protect, require_admin
from carts import CartStore
from catalog import CatalogStore
from checkout import Checkout, recover_checkouts
from config import settings
from database import Database
from errors import envelope, install_error_handlers
from orders import OrderStore
from payments import process_payment
from reporting import dashboard, list_users, sales_analytics, toggle_user_status
from schemas import (
    AddToCartRequest,
    OrderStatus,
    PaymentRequest,
    PlaceOrderRequest,
    ProductCreate,
    ProductSort,
    ProductUpdate,
    ReviewRequest,
    Role,
    StatusUpdateRequest,
    UpdateCartRequest,
)

logger = structlog.get_logger(__name__)


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        cache_logger_on_first_use=True,
    )


# Store dependencies

def catalog_store(db: Database = Depends(get_db)) -> CatalogStore:
    return CatalogStore(db)


def cart_store(db: Database = Depends(get_db)) -> CartStore:
    return CartStore(db)


def order_store(db: Database = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def checkout_service(db: Database = Depends(get_db)) -> Checkout:
    return Checkout(db)


api = APIRouter(prefix="/api")


# Products
@api.get("/products")
def list_products(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    rating: Optional[float] = Query(None, ge=0, le=5),
    brand: Optional[str] = None,
    featured: bool = False,
    search: Optional[str] = None,
    sort: Optional[ProductSort] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    catalog: CatalogStore = Depends(catalog_store),
):
    products, pagination = catalog.list_products(
        category=category,
        min_price=min_price,
        max_price=max_price,
        rating=rating,
        brand=brand,
        featured=featured,
        search=search,
        sort=sort.value if sort else None,
        page=page,
        limit=limit,
    )
    return envelope(True, data={"products": products, "pagination": pagination})

@api.get("/products/categories/list")
def list_categories(catalog: CatalogStore = Depends(catalog_store)):
    return envelope(True, data={"categories": catalog.list_categories()})

@api.get("/products/{product_id}")
def get_product(product_id: str, user=Depends(optional_user), catalog: CatalogStore = Depends(catalog_store)):
    product = catalog.get_product_detail(product_id, include_inactive=is_admin(user))
    return envelope(True, data={"product": product})

@api.post("/products", status_code=201)
def create_product(payload: ProductCreate, admin=Depends(require_admin), catalog: CatalogStore = Depends(catalog_store)):
    product = catalog.create_product(payload, created_by=admin["id"])
    return envelope(True, "Product created successfully", {"product": product})

@api.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin=Depends(require_admin), catalog: CatalogStore = Depends(catalog_store)):
    product = catalog.update_product(product_id, payload)
    return envelope(True, "Product updated successfully", {"product": product})

@api.delete("/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), catalog: CatalogStore = Depends(catalog_store)):
    catalog.delete_product(product_id)
    return envelope(True, "Product deleted successfully")

@api.post("/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, payload: ReviewRequest, user=Depends(protect), catalog: CatalogStore = Depends(catalog_store)):
    result = catalog.add_review(product_id, user["id"], payload.rating, payload.comment)
    return envelope(True, "Review added successfully", result)


# Cart
@api.get("/cart")
def get_cart(user=Depends(protect), carts: CartStore = Depends(cart_store)):
    return envelope(True, data={"cart": carts.get_cart(user["id"])})

@api.get("/cart/summary")
def get_cart_summary(user=Depends(protect), carts: CartStore = Depends(cart_store)):
    return envelope(True, data={"summary": carts.summary(user["id"])})

@api.post("/cart/add")
def add_to_cart(payload: AddToCartRequest, user=Depends(protect), carts: CartStore = Depends(cart_store)):
    cart = carts.add_item(user["id"], payload.product_id, payload.quantity)
    return envelope(True, "Item added to cart successfully", {"cart": cart})

@api.put("/cart/update")
def update_cart(payload: UpdateCartRequest, user=Depends(protect), carts: CartStore = Depends(cart_store)):
    cart = carts.update_item(user["id"], payload.product_id, payload.quantity)
    message = "Cart updated successfully" if payload.quantity > 0 else "Item removed from cart"
    return envelope(True, message, {"cart": cart})

@api.delete("/cart/remove/{product_id}")
def remove_from_cart(product_id: str, user=Depends(protect), carts: CartStore = Depends(cart_store)):
    cart = carts.remove_item(user["id"], product_id)
    return envelope(True, "Item removed from cart successfully", {"cart": cart})

@api.delete("/cart/clear")
def clear_cart(user=Depends(protect), carts: CartStore = Depends(cart_store)):
    cart = carts.clear(user["id"])
    return envelope(True, "Cart cleared successfully", {"cart": cart})


# Orders
@api.post("/orders", status_code=201)
def place_order(payload: PlaceOrderRequest, user=Depends(protect), checkout: Checkout = Depends(checkout_service)):
    order = checkout.place_order(
        user["id"],
        payload.shipping_address,
        payload.payment_info.method,
        transaction_id=payload.payment_info.transaction_id,
        notes=payload.notes,
    )
    return envelope(True, "Order created successfully", {"order": order})

@api.get("/orders")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(protect),
    orders: OrderStore = Depends(order_store),
):
    items, pagination = orders.list_for_user(user["id"], page, limit)
    return envelope(True, data={"orders": items, "pagination": pagination})

@api.post("/orders/payment/process")
def process_payment_route(payload: PaymentRequest, user=Depends(protect)):
    result = process_payment(payload)
    return envelope(True, "Payment processed successfully", result)

@api.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(protect), orders: OrderStore = Depends(order_store)):
    return envelope(True, data={"order": orders.get_for_user(order_id, user)})

@api.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(protect), orders: OrderStore = Depends(order_store)):
    order = orders.cancel(order_id, user)
    return envelope(True, "Order cancelled successfully", {"order": order})


# Admin
@api.get("/admin/dashboard")
def admin_dashboard(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return envelope(True, data=dashboard(db))

@api.get("/admin/orders")
def admin_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    orders: OrderStore = Depends(order_store),
):
    items, pagination = orders.list_all(status.value if status else None, page, limit)
    return envelope(True, data={"orders": items, "pagination": pagination})

@api.put("/admin/orders/{order_id}/status")
def admin_update_order_status(
    order_id: str,
    payload: StatusUpdateRequest,
    admin=Depends(require_admin),
    orders: OrderStore = Depends(order_store),
):
    order = orders.update_status(order_id, payload.status, payload.tracking_number)
    return envelope(True, "Order status updated successfully", {"order": order})

@api.get("/admin/users")
def admin_users(
    role: Optional[Role] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    users, pagination = list_users(db, role.value if role else None, is_active, page, limit)
    return envelope(True, data={"users": users, "pagination": pagination})

@api.put("/admin/users/{user_id}/toggle-status")
def admin_toggle_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    user = toggle_user_status(db, user_id, admin)
    state = "activated" if user["is_active"] else "deactivated"
    return envelope(True, f"User {state} successfully", {"user": user})

@api.get("/admin/analytics/sales")
def admin_sales(period: Optional[str] = None, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return envelope(True, data=sales_analytics(db, period))

@api.post("/admin/checkouts/recover")
def admin_recover_checkouts(
    older_than: Optional[int] = Query(None, ge=0),
    admin=Depends(require_admin),
    checkout: Checkout = Depends(checkout_service),
):
    return envelope(True, "Checkout recovery finished", checkout.recover(older_than))


def create_app(database: Optional[Database] = None) -> FastAPI:
    db = database or Database(settings.DATABASE_URL, settings.DATABASE_NAME)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.open()
        recover_checkouts(db)
        yield
        db.close()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.get("/")
    def root():
        return {"message": f"{settings.APP_NAME} running"}

    @app.get("/test")
    def test_database():
        resp = {
            "backend": "Running",
            "database": "Not Available",
            "database_name": db.name,
            "connection_status": "Not Connected",
            "collections": [],
        }
        if db.is_open:
            try:
                resp["collections"] = db.list_collection_names()[:10]
                resp["database"] = "Connected & Working"
                resp["connection_status"] = "Connected"
            except Exception as e:
                logger.warning("database_probe_failed", error=str(e))
                resp["database"] = f"Connected but error: {str(e)[:80]}"
        return resp

    app.include_router(api)
    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
