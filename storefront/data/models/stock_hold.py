from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, CheckConstraint
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class StockHoldModel(Base):
    """Snapshot of one held cart line; pairs an order_hold with its release."""

    __tablename__ = "stock_holds"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_hold_quantity_positive"),
    )

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("checkout_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    sku = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default="active")  # active, released, confirmed
    released_at = Column(DateTime(timezone=True), nullable=True)

    session = relationship("CheckoutSessionModel", back_populates="holds")
