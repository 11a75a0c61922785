# storefront/services/inventory_service.py
from typing import Any, Dict, Iterator

from sqlalchemy.orm import Session

from storefront.data.models.inventory import InventoryModel
from storefront.data.models.stock_ledger import StockLedgerModel
from storefront.domain.enums import ADMIN_REASONS, StockReason, parse_reason
from storefront.domain.errors import (
    InsufficientStock,
    LedgerInvariantViolation,
    ProductNotFound,
    ValidationFailed,
)
from storefront.repos.inventory_repo import InventoryRepo
from storefront.utils.settings import DEFAULT_LOW_STOCK_THRESHOLD
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

NOTE_MAX_LENGTH = 255


class InventoryService:
    """
    Stock ledger and inventory projection.

    Every stock change goes through apply_delta: one append-only ledger row
    plus the matching projection update, committed or rolled back together.
    Nothing else writes inventory.quantity.
    """

    def __init__(self, db: Session):
        self.repo = InventoryRepo(db)

    # commands

    def apply_delta(
        self,
        product_id: int,
        delta: int,
        reason: StockReason | str,
        note: str | None = None,
        actor_id: int | None = None,
        *,
        require_available: bool = False,
        commit: bool = True,
    ) -> StockLedgerModel:
        """
        Record a stock change and move the projection by the same amount.

        require_available turns the projection update into a guarded
        decrement that fails with InsufficientStock instead of going below
        zero. With commit=False the caller owns the transaction and must roll
        it back if this raises.
        """
        reason = parse_reason(reason)

        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationFailed(
                "delta must be an integer",
                details=[{"field": "delta", "message": "must be an integer"}],
            )
        if note is not None and len(note) > NOTE_MAX_LENGTH:
            raise ValidationFailed(
                f"note must be at most {NOTE_MAX_LENGTH} characters",
                details=[{"field": "note", "message": "too long"}],
            )

        # explicit existence check instead of an ORM insert hook
        product = self.repo.get_product(product_id)
        if not product:
            raise ProductNotFound(product_id)

        try:
            entry = self.repo.add_ledger_entry(
                StockLedgerModel(
                    product_id=product_id,
                    delta=delta,
                    reason=reason,
                    note=note,
                    created_by=actor_id,
                )
            )

            rowcount = self.repo.increment_quantity(product_id, delta, require_available)
            if rowcount == 0 and self.repo.get_inventory(product_id) is None:
                # first movement for this product; concurrent first movements
                # share one zero row instead of racing on the unique index
                self.repo.ensure_inventory(product_id, DEFAULT_LOW_STOCK_THRESHOLD)
                rowcount = self.repo.increment_quantity(product_id, delta, require_available)

            if rowcount == 0:
                inventory = self.repo.get_inventory(product_id)
                raise InsufficientStock(
                    [{"sku": product.sku, "requested": -delta, "available": inventory.quantity}]
                )

            if commit:
                self.repo.commit()

        except Exception:
            if commit:
                self.repo.rollback()
            raise

        logger.info(
            f"Ledger {reason.value} {entry.formatted_delta} for product {product_id} "
            f"(entry {entry.id}, actor {actor_id})"
        )
        return entry

    def adjust_stock(
        self,
        product_id: int,
        delta: int | None = None,
        quantity: int | None = None,
        reason: StockReason | str = StockReason.MANUAL_ADJUST,
        note: str | None = None,
        actor_id: int | None = None,
        low_stock_threshold: int | None = None,
    ) -> Dict[str, Any]:
        """
        Admin adjustment: either a signed delta or an absolute target quantity.

        A target quantity is turned into a delta while the projection row is
        locked, so the ledger still only ever sees deltas.
        """
        reason = parse_reason(reason)
        if reason not in ADMIN_REASONS:
            raise ValidationFailed(
                f"Reason {reason.value} is reserved for checkout",
                details=[{"field": "reason", "message": "not allowed for manual adjustments"}],
            )
        if (delta is None) == (quantity is None):
            raise ValidationFailed(
                "Provide exactly one of delta or quantity",
                details=[{"field": "delta", "message": "exactly one of delta/quantity"}],
            )
        if quantity is not None and quantity < 0:
            raise ValidationFailed(
                "Stock quantity cannot be negative",
                details=[{"field": "quantity", "message": "must be >= 0"}],
            )

        if not self.repo.get_product(product_id):
            raise ProductNotFound(product_id)

        try:
            if quantity is not None:
                inventory = self.repo.get_inventory_for_update(product_id)
                current = inventory.quantity if inventory else 0
                delta = quantity - current

            self.apply_delta(product_id, delta, reason, note, actor_id, commit=False)

            if low_stock_threshold is not None:
                self.repo.set_threshold(product_id, low_stock_threshold)

            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        return self.get_inventory(product_id)

    # queries

    def get_inventory(self, product_id: int) -> Dict[str, Any]:
        product = self.repo.get_product(product_id)
        if not product:
            raise ProductNotFound(product_id)

        inventory = self.repo.get_inventory(product_id) or self._empty_projection(product_id)
        return self._inventory_dict(product.sku, inventory)

    def get_history(self, product_id: int, limit: int = 50) -> Iterator[StockLedgerModel]:
        """Lazy, most-recent-first ledger entries; each call starts over."""
        if limit < 1:
            raise ValidationFailed(
                "limit must be positive",
                details=[{"field": "limit", "message": "must be >= 1"}],
            )
        if not self.repo.get_product(product_id):
            raise ProductNotFound(product_id)

        return self.repo.iter_history(product_id, limit)

    def count_history(self, product_id: int) -> int:
        return self.repo.count_history(product_id)

    def get_low_stock(self, limit: int = 50, page: int = 1) -> list[Dict[str, Any]]:
        rows = self.repo.list_low_stock(limit, (page - 1) * limit)
        return [self._inventory_dict(row.product.sku, row) for row in rows]

    def get_out_of_stock(self, limit: int = 50, page: int = 1) -> list[Dict[str, Any]]:
        rows = self.repo.list_out_of_stock(limit, (page - 1) * limit)
        return [
            self._inventory_dict(product.sku, inventory or self._empty_projection(product.id))
            for product, inventory in rows
        ]

    def get_summary(self) -> Dict[str, int]:
        quantity = InventoryModel.quantity
        return {
            "total_products": self.repo.count_products(),
            "in_stock": self.repo.count_products(quantity > 0),
            "low_stock": self.repo.count_products(
                quantity > 0, quantity <= InventoryModel.low_stock_threshold
            ),
            "out_of_stock": self.repo.count_products(
                (quantity <= 0) | (quantity.is_(None))
            ),
        }

    # invariant checks

    def verify_product(self, product_id: int) -> int:
        """Return the quantity if ledger and projection agree, raise otherwise."""
        if not self.repo.get_product(product_id):
            raise ProductNotFound(product_id)

        ledger_sum = self.repo.ledger_sum(product_id)
        inventory = self.repo.get_inventory(product_id)
        projected = inventory.quantity if inventory else None

        if projected != ledger_sum and not (projected is None and ledger_sum == 0):
            logger.critical(
                f"Ledger invariant violated for product {product_id}: "
                f"ledger sum {ledger_sum}, projection {projected}"
            )
            raise LedgerInvariantViolation(product_id, ledger_sum, projected)

        return ledger_sum

    def audit(self) -> Dict[str, Any]:
        """Compare every projection with its ledger sum. Reports, never repairs."""
        sums = self.repo.ledger_sums()
        projected = self.repo.projected_quantities()

        mismatches = []
        for product_id in sorted(set(sums) | set(projected)):
            ledger_sum = sums.get(product_id, 0)
            quantity = projected.get(product_id)
            if quantity is None and ledger_sum == 0:
                continue
            if quantity != ledger_sum:
                logger.critical(
                    f"Ledger invariant violated for product {product_id}: "
                    f"ledger sum {ledger_sum}, projection {quantity}"
                )
                mismatches.append(
                    {"product_id": product_id, "ledger_sum": ledger_sum, "quantity": quantity}
                )

        return {"checked": len(set(sums) | set(projected)), "mismatches": mismatches}

    @staticmethod
    def _empty_projection(product_id: int) -> InventoryModel:
        # no movements yet; reported as zero stock, never persisted
        return InventoryModel(
            product_id=product_id,
            quantity=0,
            low_stock_threshold=DEFAULT_LOW_STOCK_THRESHOLD,
        )

    @staticmethod
    def _inventory_dict(sku: str, inventory: InventoryModel) -> Dict[str, Any]:
        return {
            "product_id": inventory.product_id,
            "sku": sku,
            "quantity": inventory.quantity,
            "low_stock_threshold": inventory.low_stock_threshold,
            "is_low_stock": inventory.is_low_stock,
            "is_out_of_stock": inventory.is_out_of_stock,
            "stock_status": inventory.stock_status,
        }


def ledger_entry_dict(entry: StockLedgerModel) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "product_id": entry.product_id,
        "delta": entry.delta,
        "formatted_delta": entry.formatted_delta,
        "change_type": entry.change_type,
        "reason": entry.reason.value,
        "reason_description": entry.reason_description,
        "note": entry.note,
        "created_by": entry.created_by,
        "created_at": entry.created_at,
    }
