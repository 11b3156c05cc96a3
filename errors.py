"""
Error taxonomy for the storefront.

Every failure a handler can anticipate is raised as a StoreError subclass
and rendered into the response envelope by the handlers installed here:

- ValidationFailed -> 400 with per-field messages
- NotFound -> 404 (missing record or malformed id)
- Forbidden -> 403
- BusinessRuleViolation -> 400 with a readable reason
- anything else -> 500, logged, generic message
"""

from typing import List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationFailed(StoreError):
    status_code = 400

    def __init__(self, errors: List[dict], message: str = "Validation failed"):
        super().__init__(message, errors=errors)


class NotFound(StoreError):
    status_code = 404


class Forbidden(StoreError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class BusinessRuleViolation(StoreError):
    status_code = 400


class EmptyCart(BusinessRuleViolation):
    def __init__(self):
        super().__init__("Cart is empty")


class ProductUnavailable(BusinessRuleViolation):
    def __init__(self, product_name: str):
        super().__init__(f"Product {product_name} is no longer available")
        self.product_name = product_name


class InsufficientStock(BusinessRuleViolation):
    def __init__(self, product_name: str, available: int):
        super().__init__(f"Insufficient stock for {product_name}. Only {available} available")
        self.product_name = product_name
        self.available = available


class DuplicateSku(BusinessRuleViolation):
    def __init__(self):
        super().__init__("Product with this SKU already exists")


class DuplicateReview(BusinessRuleViolation):
    def __init__(self):
        super().__init__("You have already reviewed this product")


class OrderNotCancellable(BusinessRuleViolation):
    def __init__(self):
        super().__init__("Order cannot be cancelled")


class InvalidStatusTransition(BusinessRuleViolation):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move order from {current} to {requested}")


class PaymentDeclined(BusinessRuleViolation):
    def __init__(self):
        super().__init__("Payment failed. Please try again.")


def envelope(success: bool, message: Optional[str] = None, data=None, errors=None) -> dict:
    body = {"success": success}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    return body


def _field_errors(exc: RequestValidationError) -> List[dict]:
    out = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        out.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return out


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(False, exc.message, errors=exc.errors),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(False, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        failed = ValidationFailed(_field_errors(exc))
        return JSONResponse(
            status_code=failed.status_code,
            content=envelope(False, failed.message, errors=failed.errors),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", method=request.method, path=request.url.path)
        return JSONResponse(status_code=500, content=envelope(False, "Server error"))
