# storefront/domain/errors.py
from typing import Any


class StoreError(Exception):
    """Base for every error the API reports with the standard envelope."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_envelope(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return {"error": body}


# validation (422)

class ValidationFailed(StoreError):
    status_code = 422
    code = "VALIDATION_ERROR"


class InvalidReason(ValidationFailed):
    code = "INVALID_REASON"

    def __init__(self, reason):
        super().__init__(
            f"Invalid stock reason: {reason!r}",
            details=[{"field": "reason", "message": "unknown reason"}],
        )


class QuantityExceedsLimit(ValidationFailed):
    code = "QUANTITY_EXCEEDS_LIMIT"

    def __init__(self, sku: str, requested: int, limit: int):
        super().__init__(
            f"Quantity {requested} for {sku} exceeds the limit of {limit}",
            details=[{"field": "qty", "sku": sku, "requested": requested, "limit": limit}],
        )


class EmptyCart(ValidationFailed):
    code = "EMPTY_CART"

    def __init__(self, cart_id: int):
        super().__init__(f"Cart {cart_id} is empty")


# not found (404)

class NotFound(StoreError):
    status_code = 404
    code = "NOT_FOUND"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, ref):
        super().__init__(f"Product {ref} not found")


class CartNotFound(NotFound):
    code = "CART_NOT_FOUND"

    def __init__(self, ref):
        super().__init__(f"Cart {ref} not found")


class CartItemNotFound(NotFound):
    code = "CART_ITEM_NOT_FOUND"

    def __init__(self, item_id: int):
        super().__init__(f"Cart item {item_id} not found")


class SessionNotFound(NotFound):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: int):
        super().__init__(f"Checkout session {session_id} not found")


# access (403)

class AccessDenied(StoreError):
    status_code = 403
    code = "ACCESS_DENIED"


# conflicts (409)

class Conflict(StoreError):
    status_code = 409
    code = "CONFLICT"


class InsufficientStock(Conflict):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, shortages: list[dict]):
        self.skus = [s["sku"] for s in shortages]
        super().__init__(
            f"Insufficient stock for {', '.join(self.skus)}",
            details=shortages,
        )


class SessionAlreadyActive(Conflict):
    code = "SESSION_ALREADY_ACTIVE"

    def __init__(self, cart_id: int, session_id: int | None = None):
        details = {"cart_id": cart_id}
        if session_id is not None:
            details["session_id"] = session_id
        super().__init__(f"Cart {cart_id} already has an active checkout session", details)


class SessionNotActive(Conflict):
    code = "SESSION_NOT_ACTIVE"


class CartNotActive(Conflict):
    code = "CART_NOT_ACTIVE"

    def __init__(self, cart_id: int, status: str):
        super().__init__(f"Cart {cart_id} is {status} and cannot be modified")


class CartConflict(Conflict):
    code = "CART_CONFLICT"

    def __init__(self, cart_id: int):
        super().__init__(f"Cart {cart_id} was modified concurrently, retry the request")


# invariant violations (500)

class LedgerInvariantViolation(StoreError):
    status_code = 500
    code = "LEDGER_INVARIANT_VIOLATION"

    def __init__(self, product_id: int, ledger_sum: int, projected: int | None):
        super().__init__(
            f"Ledger sum {ledger_sum} for product {product_id} "
            f"does not match projected quantity {projected}",
            details={"product_id": product_id, "ledger_sum": ledger_sum, "quantity": projected},
        )


class LedgerImmutable(RuntimeError):
    """Raised when code tries to update or delete a ledger row."""
