from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Enum, Index, event

from storefront.data.database import Base
from storefront.domain.enums import StockReason, change_type, describe_reason, format_delta
from storefront.domain.errors import LedgerImmutable


class StockLedgerModel(Base):
    __tablename__ = "stock_ledger"
    __table_args__ = (
        Index("ix_stock_ledger_product_created", "product_id", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(
        Enum(
            StockReason,
            name="stock_reason",
            values_callable=lambda kinds: [k.value for k in kinds],
            validate_strings=True,
            create_constraint=True,
        ),
        nullable=False,
        index=True,
    )
    note = Column(String(255), nullable=True)
    created_by = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def change_type(self) -> str:
        return change_type(self.delta)

    @property
    def formatted_delta(self) -> str:
        return format_delta(self.delta)

    @property
    def reason_description(self) -> str:
        return describe_reason(self.reason)


@event.listens_for(StockLedgerModel, "before_update")
def _reject_update(mapper, connection, target):
    raise LedgerImmutable(f"stock_ledger row {target.id} is append-only")


@event.listens_for(StockLedgerModel, "before_delete")
def _reject_delete(mapper, connection, target):
    raise LedgerImmutable(f"stock_ledger row {target.id} is append-only")
