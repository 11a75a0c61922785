# storefront/services/checkout_service.py
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.checkout_session import CheckoutSessionModel
from storefront.data.models.stock_hold import StockHoldModel
from storefront.domain.enums import (
    RELEASING_STATUSES,
    SHIPPING_METHODS,
    CartStatus,
    CheckoutStatus,
    HoldStatus,
    ReleaseOutcome,
    StockReason,
)
from storefront.domain.errors import (
    AccessDenied,
    CartConflict,
    CartNotActive,
    CartNotFound,
    EmptyCart,
    InsufficientStock,
    SessionAlreadyActive,
    SessionNotActive,
    SessionNotFound,
    ValidationFailed,
)
from storefront.repos.cart_repo import CartRepo
from storefront.repos.checkout_repo import CheckoutRepo
from storefront.services.inventory_service import InventoryService
from storefront.utils.clock import as_utc, utcnow
from storefront.utils.settings import CHECKOUT_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutService:
    """
    Checkout sessions and the stock holds that back them.

    A session is created together with one order_hold ledger entry per cart
    line, all in one transaction. Leaving `active` through expiry or
    cancellation releases every hold exactly once; the conditional status
    update decides which of several concurrent callers does the release.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = CheckoutRepo(db)
        self.carts = CartRepo(db)
        self.inventory = InventoryService(db)

    def create_session(
        self,
        cart_id: int,
        shipping_address: Dict[str, Any],
        billing_address: Dict[str, Any],
        shipping_method: str,
        ttl_seconds: int | None = None,
        user_id: int | None = None,
        now: datetime | None = None,
    ) -> Dict[str, Any]:
        now = now or utcnow()
        ttl_seconds = CHECKOUT_TTL_SECONDS if ttl_seconds is None else ttl_seconds

        if ttl_seconds <= 0:
            raise ValidationFailed(
                "ttl must be positive",
                details=[{"field": "ttl_seconds", "message": "must be > 0"}],
            )
        if shipping_method not in SHIPPING_METHODS:
            raise ValidationFailed(
                f"Unknown shipping method {shipping_method}",
                details=[{"field": "shipping_method", "message": f"must be one of {', '.join(SHIPPING_METHODS)}"}],
            )

        cart = self.carts.get_cart(cart_id)
        if not cart:
            raise CartNotFound(cart_id)
        if user_id is not None and cart.user_id is not None and cart.user_id != user_id:
            raise AccessDenied("Access to this cart is denied")
        if cart.status != CartStatus.ACTIVE.value:
            raise CartNotActive(cart_id, cart.status)

        items = self.carts.get_cart_items(cart_id)
        if not items:
            raise EmptyCart(cart_id)

        existing = self.repo.get_active_session_for_cart(cart_id)
        if existing is not None:
            if not existing.is_expired(now):
                raise SessionAlreadyActive(cart_id, existing.id)
            # stale session the sweepers have not reached yet
            logger.info(f"Expiring stale session {existing.id} before new checkout for cart {cart_id}")
            self.expire_or_cancel(existing.id, CheckoutStatus.EXPIRED, now=now)

        try:
            # reprice lines with current product prices
            for item in items:
                product = self.inventory.repo.get_product(item.product_id)
                if product is not None and product.price != item.unit_price:
                    item.reprice(product.price)
            subtotal = sum((i.line_subtotal for i in items), Decimal("0.00"))

            session = self.repo.create_session(
                CheckoutSessionModel(
                    cart_id=cart_id,
                    user_id=user_id,
                    status=CheckoutStatus.ACTIVE.value,
                    shipping_address=shipping_address,
                    billing_address=billing_address,
                    shipping_method=shipping_method,
                    currency=cart.currency,
                    subtotal=subtotal,
                    created_at=now,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                )
            )

            # fixed product order keeps concurrent checkouts from deadlocking on row locks
            shortages = []
            for item in sorted(items, key=lambda i: (i.product_id, i.id)):
                try:
                    self.inventory.apply_delta(
                        item.product_id,
                        -item.quantity,
                        StockReason.ORDER_HOLD,
                        note=f"Hold for checkout session {session.id}",
                        actor_id=user_id,
                        require_available=True,
                        commit=False,
                    )
                except InsufficientStock as e:
                    shortages.extend(e.details)
                    continue

                self.repo.add_hold(
                    StockHoldModel(
                        session_id=session.id,
                        product_id=item.product_id,
                        sku=item.sku,
                        quantity=item.quantity,
                        status=HoldStatus.ACTIVE.value,
                    )
                )

            if shortages:
                raise InsufficientStock(shortages)

            self.repo.commit()

        except IntegrityError:
            self.repo.rollback()
            winner = self.repo.get_active_session_for_cart(cart_id)
            if winner is None:
                raise
            # lost the race on the one-active-session-per-cart index
            logger.warning(f"Concurrent checkout for cart {cart_id} rejected, session {winner.id} won")
            raise SessionAlreadyActive(cart_id, winner.id) from None
        except Exception as e:
            self.repo.rollback()
            logger.error(f"Failed to create checkout session for cart {cart_id}: {e}")
            raise

        logger.info(
            f"Checkout session {session.id} created for cart {cart_id}, "
            f"{len(items)} lines held until {session.expires_at.isoformat()}"
        )
        return self._session_dict(session, now)

    def get_session(self, session_id: int, user_id: int | None = None, now: datetime | None = None) -> Dict[str, Any]:
        session = self._load_session(session_id, user_id)
        return self._session_dict(session, now or utcnow())

    def expire_or_cancel(
        self,
        session_id: int,
        terminal_status: CheckoutStatus | str,
        now: datetime | None = None,
    ) -> ReleaseOutcome:
        """
        Move an active session to expired/cancelled and release its holds.

        Safe to call repeatedly and concurrently: only the caller whose
        conditional UPDATE flips the status releases stock, everyone else
        gets ALREADY_TERMINAL.
        """
        terminal_status = CheckoutStatus(terminal_status)
        if terminal_status not in RELEASING_STATUSES:
            raise ValidationFailed(f"{terminal_status.value} does not release holds")

        now = now or utcnow()

        session = self.repo.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.status != CheckoutStatus.ACTIVE.value:
            logger.info(f"Session {session_id} already {session.status}, nothing to release")
            return ReleaseOutcome.ALREADY_TERMINAL

        try:
            flipped = self.repo.transition_status(
                session_id,
                CheckoutStatus.ACTIVE.value,
                terminal_status.value,
                closed_at=now,
            )
            if flipped == 0:
                self.repo.rollback()
                logger.info(f"Session {session_id} was closed concurrently, skipping release")
                return ReleaseOutcome.ALREADY_TERMINAL

            holds = self.repo.get_holds(session_id, status=HoldStatus.ACTIVE.value)
            for hold in holds:
                self.inventory.apply_delta(
                    hold.product_id,
                    hold.quantity,
                    StockReason.ORDER_RELEASE,
                    note=f"Release for {terminal_status.value} checkout session {session_id}",
                    commit=False,
                )
                hold.status = HoldStatus.RELEASED.value
                hold.released_at = now

            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        self.repo.refresh(session)
        logger.info(
            f"Session {session_id} {terminal_status.value}, released {len(holds)} holds"
        )
        return ReleaseOutcome.RELEASED

    def cancel_session(self, session_id: int, user_id: int | None = None) -> Dict[str, Any]:
        self._load_session(session_id, user_id)
        self.expire_or_cancel(session_id, CheckoutStatus.CANCELLED)
        return self.get_session(session_id, user_id)

    def complete_session(self, session_id: int, now: datetime | None = None) -> Dict[str, Any]:
        """
        Called by the order flow once an order is placed.

        The holds are kept as the sale's stock decrement (no ledger entry) and
        the cart is marked converted.
        """
        now = now or utcnow()
        session = self._load_session(session_id, None)

        if session.status != CheckoutStatus.ACTIVE.value:
            raise SessionNotActive(f"Checkout session {session_id} is {session.status}")
        if session.is_expired(now):
            raise SessionNotActive(f"Checkout session {session_id} has expired")

        try:
            flipped = self.repo.transition_status(
                session_id,
                CheckoutStatus.ACTIVE.value,
                CheckoutStatus.COMPLETED.value,
                closed_at=now,
            )
            if flipped == 0:
                self.repo.rollback()
                raise SessionNotActive(f"Checkout session {session_id} was closed concurrently")

            for hold in self.repo.get_holds(session_id, status=HoldStatus.ACTIVE.value):
                hold.status = HoldStatus.CONFIRMED.value

            cart = self.carts.get_cart(session.cart_id)
            converted = self.carts.update_cart_version(
                cart_id=cart.id,
                old_version=cart.version,
                new_data={"status": CartStatus.CONVERTED.value, "version": cart.version + 1},
            )
            if converted == 0:
                raise CartConflict(cart.id)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        self.repo.refresh(session)
        logger.info(f"Session {session_id} completed, cart {session.cart_id} converted")
        return self._session_dict(session, now)

    def find_expired_session_ids(self, now: datetime, limit: int) -> list[int]:
        return self.repo.find_expired_session_ids(now, limit)

    # helpers

    def _load_session(self, session_id: int, user_id: int | None) -> CheckoutSessionModel:
        session = self.repo.get_session(session_id)
        if not session:
            raise SessionNotFound(session_id)
        if user_id is not None and session.user_id is not None and session.user_id != user_id:
            raise AccessDenied("Access to this checkout session is denied")
        return session

    def _session_dict(self, session: CheckoutSessionModel, now: datetime) -> Dict[str, Any]:
        holds = self.repo.get_holds(session.id)
        return {
            "id": session.id,
            "cart_id": session.cart_id,
            "status": session.status,
            "shipping_address": session.shipping_address,
            "billing_address": session.billing_address,
            "shipping_method": session.shipping_method,
            "currency": session.currency,
            "subtotal": session.subtotal,
            "created_at": as_utc(session.created_at),
            "expires_at": as_utc(session.expires_at),
            "closed_at": as_utc(session.closed_at),
            "is_expired": session.is_expired(now),
            "time_remaining": session.time_remaining(now),
            "items": [
                {
                    "product_id": h.product_id,
                    "sku": h.sku,
                    "quantity": h.quantity,
                    "hold_status": h.status,
                }
                for h in holds
            ],
        }
