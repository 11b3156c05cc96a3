"""
Database Schemas for the Storefront

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase of the class name.

- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"

Nested models (images, reviews, cart/order items, addresses, payment info)
are plain values embedded in their parent document.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Role(str, Enum):
    user = "user"
    admin = "admin"


class PaymentMethod(str, Enum):
    credit_card = "credit_card"
    debit_card = "debit_card"
    paypal = "paypal"
    cod = "cod"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


TERMINAL_STATUSES = (OrderStatus.delivered, OrderStatus.cancelled)


class SalesPeriod(str, Enum):
    day = "24h"
    week = "7d"
    month = "30d"
    quarter = "90d"


class ProductSort(str, Enum):
    price_asc = "price_asc"
    price_desc = "price_desc"
    rating = "rating"
    newest = "newest"


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class User(Document):
    """Users collection schema (owned by the identity service, read here)"""
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    is_active: bool = Field(True, description="Whether user is active")
    role: Role = Field(Role.user, description="Role: user or admin")


# Catalog

class ProductImage(Document):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class Specification(Document):
    name: str
    value: str


class Review(Document):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: Optional[datetime] = None


class ProductBase(Document):
    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, description="Price in dollars")
    original_price: Optional[float] = Field(None, ge=0)
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    sku: str = Field(..., min_length=1, description="Stock keeping unit, stored uppercase")
    images: List[ProductImage] = Field(default_factory=list)
    stock: int = Field(0, ge=0)
    low_stock_threshold: int = Field(10, ge=0)
    specifications: List[Specification] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_featured: bool = False


class ProductCreate(ProductBase):
    pass


class ProductUpdate(Document):
    """Partial product edit. Omitted fields stay as they are; only the
    optional descriptors (original_price, subcategory, brand) may be
    cleared with an explicit null."""
    # defaults are "not supplied", so they skip validation
    model_config = ConfigDict(use_enum_values=True, validate_default=False)

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    sku: Optional[str] = Field(None, min_length=1)
    images: Optional[List[ProductImage]] = None
    stock: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    specifications: Optional[List[Specification]] = None
    features: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator(
        "name", "description", "price", "category", "sku", "images", "stock",
        "low_stock_threshold", "specifications", "features", "tags",
        "is_featured", "is_active",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("cannot be null")
        return value


class Product(ProductBase):
    """Products collection schema"""
    is_active: bool = True
    average_rating: float = Field(0, ge=0, le=5)
    total_reviews: int = Field(0, ge=0)
    reviews: List[Review] = Field(default_factory=list)
    created_by: Optional[str] = None


# Cart

class CartItem(Document):
    product_id: str = Field(..., description="ID of the product")
    quantity: int = Field(1, ge=1, description="Quantity of the product")
    price: float = Field(..., ge=0, description="Unit price captured when added")


class Cart(Document):
    user_id: str = Field(..., description="Owner user id")
    items: List[CartItem] = Field(default_factory=list, description="List of cart items")


# Orders

class OrderItem(Document):
    product_id: str
    name: str
    image: str = ""
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class ShippingAddress(Document):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentInfo(Document):
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.pending
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class Order(Document):
    """Orders collection schema"""
    order_number: str
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_info: PaymentInfo
    items_price: float = Field(..., ge=0)
    shipping_price: float = Field(0, ge=0)
    tax_price: float = Field(0, ge=0)
    total_price: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.pending
    notes: Optional[str] = Field(None, max_length=500)
    tracking_number: Optional[str] = None
    delivered_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    checkout_id: Optional[str] = Field(None, description="Checkout journal that created the order")


# Request bodies

class AddToCartRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class UpdateCartRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)


class PaymentChoice(Document):
    method: PaymentMethod
    transaction_id: Optional[str] = None


class PlaceOrderRequest(BaseModel):
    shipping_address: ShippingAddress
    payment_info: PaymentChoice
    notes: Optional[str] = Field(None, max_length=500)


class ReviewRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class StatusUpdateRequest(Document):
    status: OrderStatus
    tracking_number: Optional[str] = None


class PaymentRequest(Document):
    amount: float = Field(..., ge=0)
    method: PaymentMethod
    card_number: Optional[str] = Field(None, pattern=r"^\d{16}$")
    expiry_date: Optional[str] = Field(None, pattern=r"^(0[1-9]|1[0-2])/\d{2}$")
    cvv: Optional[str] = Field(None, pattern=r"^\d{3,4}$")
