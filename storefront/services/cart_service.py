# storefront/services/cart_service.py
import uuid
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.enums import CartStatus
from storefront.domain.errors import (
    AccessDenied,
    CartConflict,
    CartItemNotFound,
    CartNotActive,
    CartNotFound,
    ProductNotFound,
    QuantityExceedsLimit,
    ValidationFailed,
)
from storefront.repos.cart_repo import CartRepo
from storefront.repos.inventory_repo import InventoryRepo
from storefront.utils.settings import CART_MAX_LINE_QTY, DEFAULT_CURRENCY
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartService:
    """
    Use cases for the cart domain.
    Commands (create, add, update, remove, merge) change state and bump the
    cart version; get_cart only reads. Carts never touch the stock ledger.
    """

    def __init__(self, db: Session):
        self.repo = CartRepo(db)
        self.products = InventoryRepo(db)

    # query

    def get_cart(self, cart_id: int, user_id: int | None = None) -> Dict[str, Any]:
        cart = self._load_cart(cart_id, user_id)
        return self._cart_dict(cart)

    def find_current_cart(self, user_id: int | None = None, cart_token: str | None = None) -> Dict[str, Any]:
        """Like create_or_get_cart but never creates; CartNotFound instead."""
        cart = None
        if user_id is not None:
            cart = self.repo.get_active_cart_by_user(user_id)
        if cart is None and cart_token:
            cart = self.repo.get_cart_by_token(cart_token)
            if cart is not None and cart.user_id is not None and cart.user_id != user_id:
                raise AccessDenied("Access to this cart is denied")
        if cart is None:
            raise CartNotFound(cart_token or f"for user {user_id}")
        return self._cart_dict(cart)

    # commands

    def create_or_get_cart(
        self,
        user_id: int | None = None,
        cart_token: str | None = None,
        currency: str | None = None,
    ) -> Dict[str, Any]:
        """User cart first, then the guest token, otherwise a fresh cart."""
        cart = None

        if user_id is not None:
            cart = self.repo.get_active_cart_by_user(user_id)

        if cart is None and cart_token:
            by_token = self.repo.get_cart_by_token(cart_token)
            if by_token is not None and by_token.status == CartStatus.ACTIVE.value:
                if by_token.user_id is None or by_token.user_id == user_id:
                    cart = by_token

        if cart is not None:
            return self._cart_dict(cart)

        token = cart_token if cart_token and self.repo.get_cart_by_token(cart_token) is None else None
        created = self.repo.create_cart(
            CartModel(
                user_id=user_id,
                token=token or str(uuid.uuid4()),
                currency=currency or DEFAULT_CURRENCY,
                status=CartStatus.ACTIVE.value,
                version=1,
            )
        )

        logger.info(f"Created cart {created.id} for user {user_id}")
        return self._cart_dict(created)

    def add_item(self, cart_id: int, sku: str, qty: int, user_id: int | None = None) -> Dict[str, Any]:
        self._check_qty(sku, qty)

        cart = self._load_cart(cart_id, user_id)
        self._require_active(cart)

        product = self.products.get_product_by_sku(sku)
        if not product:
            raise ProductNotFound(sku)
        if product.status != "published":
            raise ValidationFailed(
                f"Product {sku} is not available",
                details=[{"field": "sku", "message": "product is not published"}],
            )

        existing_item = self.repo.get_cart_item(cart_id, sku)

        if existing_item:
            new_qty = existing_item.quantity + qty
            if new_qty > CART_MAX_LINE_QTY:
                raise QuantityExceedsLimit(sku, new_qty, CART_MAX_LINE_QTY)

            logger.info(
                f"{sku} already in cart {cart_id}, quantity {existing_item.quantity} -> {new_qty}"
            )
            existing_item.quantity = new_qty
            existing_item.reprice(product.price)
            self.repo.add_cart_item(existing_item)
        else:
            logger.info(f"Adding {sku} x{qty} to cart {cart_id}")
            item = CartItemModel(
                cart_id=cart_id,
                product_id=product.id,
                sku=sku,
                quantity=qty,
            )
            item.reprice(product.price)
            self.repo.add_cart_item(item)

        self._bump_version(cart)
        return self.get_cart(cart_id, user_id)

    def update_item(self, cart_id: int, item_id: int, qty: int, user_id: int | None = None) -> Dict[str, Any]:
        cart = self._load_cart(cart_id, user_id)
        self._require_active(cart)

        item = self.repo.get_cart_item_by_id(cart_id, item_id)
        if not item:
            raise CartItemNotFound(item_id)

        self._check_qty(item.sku, qty)

        product = self.products.get_product(item.product_id)
        item.quantity = qty
        item.reprice(product.price if product else item.unit_price)
        self.repo.add_cart_item(item)

        self._bump_version(cart)
        logger.info(f"Cart {cart_id} item {item_id} quantity set to {qty}")
        return self.get_cart(cart_id, user_id)

    def remove_item(self, cart_id: int, item_id: int, user_id: int | None = None) -> Dict[str, Any]:
        cart = self._load_cart(cart_id, user_id)
        self._require_active(cart)

        if self.repo.delete_cart_item(cart_id, item_id) == 0:
            self.repo.rollback()
            raise CartItemNotFound(item_id)

        self._bump_version(cart)
        logger.info(f"Removed item {item_id} from cart {cart_id}")
        return self.get_cart(cart_id, user_id)

    def merge(self, guest_cart_token: str, user_id: int) -> Dict[str, Any]:
        """
        Move a guest cart's lines into the user's cart.

        Matching SKUs add up (capped at the line maximum), others are copied.
        The guest cart ends up empty and `merged`, so repeating the call with
        the same token changes nothing. Only guest carts (or the user's own)
        can be merged.
        """
        guest = self.repo.get_cart_by_token(guest_cart_token)
        if guest is not None and guest.user_id is not None and guest.user_id != user_id:
            raise AccessDenied("Access to this cart is denied")

        user_cart_data = self.create_or_get_cart(user_id=user_id)
        user_cart = self.repo.get_cart(user_cart_data["cart_id"])

        if (
            guest is None
            or guest.id == user_cart.id
            or guest.status != CartStatus.ACTIVE.value
        ):
            return user_cart_data

        guest_items = self.repo.get_cart_items(guest.id)
        if not guest_items:
            return user_cart_data

        for guest_item in guest_items:
            existing = self.repo.get_cart_item(user_cart.id, guest_item.sku)
            if existing:
                combined = existing.quantity + guest_item.quantity
                if combined > CART_MAX_LINE_QTY:
                    logger.warning(
                        f"Merged quantity {combined} for {guest_item.sku} capped at {CART_MAX_LINE_QTY}"
                    )
                existing.quantity = min(combined, CART_MAX_LINE_QTY)
                existing.reprice(existing.unit_price)
                self.repo.add_cart_item(existing)
            else:
                copy = CartItemModel(
                    cart_id=user_cart.id,
                    product_id=guest_item.product_id,
                    sku=guest_item.sku,
                    quantity=guest_item.quantity,
                )
                copy.reprice(guest_item.unit_price)
                self.repo.add_cart_item(copy)

        self.repo.delete_cart_items(guest.id)

        guest_rows = self.repo.update_cart_version(
            cart_id=guest.id,
            old_version=guest.version,
            new_data={"status": CartStatus.MERGED.value, "version": guest.version + 1},
        )
        user_rows = self.repo.update_cart_version(
            cart_id=user_cart.id,
            old_version=user_cart.version,
            new_data={"version": user_cart.version + 1},
        )
        if guest_rows == 0 or user_rows == 0:
            self.repo.rollback()
            raise CartConflict(user_cart.id if user_rows == 0 else guest.id)

        self.repo.commit()
        logger.info(f"Merged guest cart {guest.id} into cart {user_cart.id} ({len(guest_items)} lines)")

        self.repo.refresh(user_cart)
        return self._cart_dict(user_cart)

    # helpers

    def _load_cart(self, cart_id: int, user_id: int | None) -> CartModel:
        cart = self.repo.get_cart(cart_id)
        if not cart:
            raise CartNotFound(cart_id)
        if user_id is not None and cart.user_id is not None and cart.user_id != user_id:
            raise AccessDenied("Access to this cart is denied")
        return cart

    @staticmethod
    def _require_active(cart: CartModel):
        if cart.status != CartStatus.ACTIVE.value:
            raise CartNotActive(cart.id, cart.status)

    @staticmethod
    def _check_qty(sku: str, qty: int):
        if qty > CART_MAX_LINE_QTY:
            raise QuantityExceedsLimit(sku, qty, CART_MAX_LINE_QTY)
        if qty < 1:
            raise ValidationFailed(
                "Quantity must be at least 1",
                details=[{"field": "qty", "message": "must be >= 1"}],
            )

    def _bump_version(self, cart: CartModel):
        # optimistic locking, e.g. UPDATE carts SET version = 2 WHERE id = 1 AND version = 1
        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=cart.version,
            new_data={"version": cart.version + 1},
        )
        if rowcount == 0:
            self.repo.rollback()
            raise CartConflict(cart.id)

        self.repo.commit()
        self.repo.refresh(cart)

    def _cart_dict(self, cart: CartModel) -> Dict[str, Any]:
        items = self.repo.get_cart_items(cart.id)
        subtotal = sum((i.line_subtotal for i in items), Decimal("0.00"))

        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "token": cart.token,
            "currency": cart.currency,
            "status": cart.status,
            "version": cart.version,
            "items": [
                {
                    "id": i.id,
                    "product_id": i.product_id,
                    "sku": i.sku,
                    "quantity": i.quantity,
                    "unit_price": i.unit_price,
                    "line_subtotal": i.line_subtotal,
                }
                for i in items
            ],
            "subtotal": subtotal,
        }
