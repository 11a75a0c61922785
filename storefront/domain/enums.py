# storefront/domain/enums.py
from enum import Enum

from storefront.domain.errors import InvalidReason


class StockReason(str, Enum):
    """Closed set of reasons a ledger entry can carry.

    Reporting code switches on these exhaustively, so new kinds are a
    schema change, never a free-form string.
    """

    INITIAL = "initial"
    MANUAL_ADJUST = "manual_adjust"
    ORDER_HOLD = "order_hold"
    ORDER_RELEASE = "order_release"
    RETURN = "return"
    RECOUNT = "recount"


REASON_DESCRIPTIONS = {
    StockReason.INITIAL: "Initial stock",
    StockReason.MANUAL_ADJUST: "Manual adjustment",
    StockReason.ORDER_HOLD: "Order hold",
    StockReason.ORDER_RELEASE: "Order release",
    StockReason.RETURN: "Product return",
    StockReason.RECOUNT: "Stock recount",
}

# order_hold / order_release belong to the checkout lifecycle
ADMIN_REASONS = frozenset(
    {
        StockReason.INITIAL,
        StockReason.MANUAL_ADJUST,
        StockReason.RETURN,
        StockReason.RECOUNT,
    }
)


def parse_reason(value) -> StockReason:
    if isinstance(value, StockReason):
        return value
    try:
        return StockReason(value)
    except ValueError:
        raise InvalidReason(value) from None


def describe_reason(reason: StockReason) -> str:
    return REASON_DESCRIPTIONS[reason]


def change_type(delta: int) -> str:
    if delta > 0:
        return "increase"
    if delta < 0:
        return "decrease"
    return "no_change"


def format_delta(delta: int) -> str:
    return f"+{delta}" if delta > 0 else str(delta)


class CheckoutStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {CheckoutStatus.COMPLETED, CheckoutStatus.EXPIRED, CheckoutStatus.CANCELLED}
)
RELEASING_STATUSES = frozenset({CheckoutStatus.EXPIRED, CheckoutStatus.CANCELLED})


class HoldStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    CONFIRMED = "confirmed"


class CartStatus(str, Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    MERGED = "merged"


class ReleaseOutcome(str, Enum):
    RELEASED = "released"
    ALREADY_TERMINAL = "already_terminal"


SHIPPING_METHODS = ("standard", "express", "overnight", "pickup")
