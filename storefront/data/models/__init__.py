#import all models so they register on Base.metadata

from storefront.data.models.product import ProductModel
from storefront.data.models.inventory import InventoryModel
from storefront.data.models.stock_ledger import StockLedgerModel
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.checkout_session import CheckoutSessionModel
from storefront.data.models.stock_hold import StockHoldModel

__all__ = [
    "ProductModel",
    "InventoryModel",
    "StockLedgerModel",
    "CartModel",
    "CartItemModel",
    "CheckoutSessionModel",
    "StockHoldModel",
]
