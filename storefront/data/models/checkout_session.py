from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, JSON, Index, text
from sqlalchemy.orm import relationship

from storefront.data.database import Base
from storefront.utils.clock import as_utc


class CheckoutSessionModel(Base):
    __tablename__ = "checkout_sessions"
    __table_args__ = (
        Index("ix_checkout_sessions_status_expires", "status", "expires_at"),
        # at most one active session per cart
        Index(
            "uq_checkout_sessions_active_cart",
            "cart_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False)
    user_id = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False, default="active")  # active, completed, expired, cancelled
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)
    shipping_method = Column(String(20), nullable=False)
    currency = Column(String(3), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    closed_at = Column(DateTime(timezone=True), nullable=True)

    holds = relationship("StockHoldModel", back_populates="session", order_by="StockHoldModel.id")

    def is_expired(self, now: datetime) -> bool:
        return as_utc(self.expires_at) <= now

    def time_remaining(self, now: datetime) -> int:
        """Whole minutes left before expiry, never negative."""
        seconds = (as_utc(self.expires_at) - now).total_seconds()
        return max(0, int(seconds // 60))
