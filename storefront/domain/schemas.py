# storefront/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from storefront.utils.settings import CART_MAX_LINE_QTY

Currency = Literal["USD", "EUR", "GBP", "INR", "CAD", "AUD"]
ShippingMethod = Literal["standard", "express", "overnight", "pickup"]
Country = Literal[
    "US", "CA", "GB", "IN", "AU", "DE", "FR", "IT", "ES", "NL",
    "BR", "MX", "JP", "CN", "KR", "SG", "MY", "TH", "PH", "ID", "VN",
]
AdminReason = Literal["initial", "manual_adjust", "return", "recount"]


# cart

class CartCreateIn(BaseModel):
    """Create or fetch the caller's cart."""

    cart_token: str | None = Field(None, min_length=1, max_length=36)
    currency: Currency | None = None


class ItemIn(BaseModel):
    """Add a product line to the cart."""

    sku: str = Field(..., min_length=1, max_length=64)
    qty: int = Field(..., ge=1, le=CART_MAX_LINE_QTY)


class ItemUpdateIn(BaseModel):
    qty: int = Field(..., ge=1, le=CART_MAX_LINE_QTY)


class CartMergeIn(BaseModel):
    guest_cart_token: str = Field(..., min_length=1, max_length=36)


class CartItemOut(BaseModel):
    id: int
    product_id: int
    sku: str
    quantity: int
    unit_price: Decimal
    line_subtotal: Decimal


class CartOut(BaseModel):
    cart_id: int
    user_id: int | None = None
    token: str | None = None
    currency: str
    status: str
    version: int
    items: List[CartItemOut]
    subtotal: Decimal

    model_config = ConfigDict(from_attributes=True)


# checkout

class AddressIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=1, max_length=20)
    email: str = Field(..., max_length=120, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    line1: str = Field(..., min_length=1, max_length=255)
    line2: str | None = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=120)
    state: str = Field(..., min_length=1, max_length=120)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: Country


class CheckoutSessionCreateIn(BaseModel):
    cart_id: int = Field(..., gt=0)
    shipping_address: AddressIn
    billing_address: AddressIn
    shipping_method: ShippingMethod


class CheckoutItemOut(BaseModel):
    product_id: int
    sku: str
    quantity: int
    hold_status: str


class CheckoutSessionOut(BaseModel):
    id: int
    cart_id: int
    status: str
    shipping_address: dict
    billing_address: dict
    shipping_method: str
    currency: str
    subtotal: Decimal
    created_at: datetime
    expires_at: datetime
    closed_at: datetime | None = None
    is_expired: bool
    time_remaining: int
    items: List[CheckoutItemOut]


# inventory

class StockAdjustIn(BaseModel):
    """Manual stock change: a signed delta or an absolute target quantity."""

    delta: int | None = None
    quantity: int | None = Field(None, ge=0)
    reason: AdminReason = "manual_adjust"
    note: str | None = Field(None, max_length=255)
    low_stock_threshold: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def one_of_delta_or_quantity(self):
        if (self.delta is None) == (self.quantity is None):
            raise ValueError("provide exactly one of delta or quantity")
        return self


class InventoryOut(BaseModel):
    product_id: int
    sku: str
    quantity: int
    low_stock_threshold: int
    is_low_stock: bool
    is_out_of_stock: bool
    stock_status: str


class StockLedgerEntryOut(BaseModel):
    id: int
    product_id: int
    delta: int
    formatted_delta: str
    change_type: str
    reason: str
    reason_description: str
    note: str | None = None
    created_by: int | None = None
    created_at: datetime


class StockHistoryOut(BaseModel):
    product_id: int
    total: int
    entries: List[StockLedgerEntryOut]


class InventorySummaryOut(BaseModel):
    total_products: int
    in_stock: int
    low_stock: int
    out_of_stock: int


class LedgerMismatchOut(BaseModel):
    product_id: int
    ledger_sum: int
    quantity: int | None = None


class LedgerAuditOut(BaseModel):
    checked: int
    mismatches: List[LedgerMismatchOut]
