# storefront/repos/inventory_repo.py
from typing import Iterator

from sqlalchemy import select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from storefront.data.models.product import ProductModel
from storefront.data.models.inventory import InventoryModel
from storefront.data.models.stock_ledger import StockLedgerModel


class InventoryRepo:
    def __init__(self, db: Session):
        self.db = db

    # products

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_product_by_sku(self, sku: str) -> ProductModel | None:
        return self.db.execute(
            select(ProductModel).where(ProductModel.sku == sku)
        ).scalar_one_or_none()

    # projection

    def get_inventory(self, product_id: int) -> InventoryModel | None:
        return self.db.execute(
            select(InventoryModel)
            .where(InventoryModel.product_id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_inventory_for_update(self, product_id: int) -> InventoryModel | None:
        # row lock on postgres, no-op on sqlite (writes serialize there anyway)
        return self.db.execute(
            select(InventoryModel)
            .where(InventoryModel.product_id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def ensure_inventory(self, product_id: int, threshold: int) -> int:
        """INSERT a zero projection row unless one exists; ON CONFLICT DO NOTHING."""
        insert = pg_insert if self.db.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = (
            insert(InventoryModel)
            .values(product_id=product_id, quantity=0, low_stock_threshold=threshold)
            .on_conflict_do_nothing(index_elements=["product_id"])
        )
        return self.db.execute(stmt).rowcount

    def increment_quantity(self, product_id: int, delta: int, require_available: bool = False) -> int:
        """Add delta to the projection in a single UPDATE and return rowcount.

        With require_available the row is only touched while the result stays
        non-negative, so check-and-decrement is one atomic statement.
        """
        stmt = (
            update(InventoryModel)
            .where(InventoryModel.product_id == product_id)
            .values(quantity=InventoryModel.quantity + delta)
            .execution_options(synchronize_session=False)
        )
        if require_available:
            stmt = stmt.where(InventoryModel.quantity + delta >= 0)
        return self.db.execute(stmt).rowcount

    def set_threshold(self, product_id: int, threshold: int) -> int:
        return self.db.execute(
            update(InventoryModel)
            .where(InventoryModel.product_id == product_id)
            .values(low_stock_threshold=threshold)
            .execution_options(synchronize_session=False)
        ).rowcount

    def list_low_stock(self, limit: int, offset: int) -> list[InventoryModel]:
        return list(
            self.db.execute(
                self._published_inventory()
                .where(InventoryModel.quantity > 0)
                .where(InventoryModel.quantity <= InventoryModel.low_stock_threshold)
                .order_by(InventoryModel.quantity, InventoryModel.product_id)
                .limit(limit)
                .offset(offset)
            ).scalars()
        )

    def list_out_of_stock(self, limit: int, offset: int) -> list[tuple[ProductModel, InventoryModel | None]]:
        """Published products at or below zero, including never-stocked ones (no projection row)."""
        return [
            (product, inventory)
            for product, inventory in self.db.execute(
                select(ProductModel, InventoryModel)
                .join(InventoryModel, InventoryModel.product_id == ProductModel.id, isouter=True)
                .where(ProductModel.status == "published")
                .where(func.coalesce(InventoryModel.quantity, 0) <= 0)
                .order_by(ProductModel.id)
                .limit(limit)
                .offset(offset)
            ).all()
        ]

    def count_products(self, *conditions) -> int:
        stmt = (
            select(func.count(ProductModel.id))
            .select_from(ProductModel)
            .join(InventoryModel, InventoryModel.product_id == ProductModel.id, isouter=True)
            .where(ProductModel.status == "published")
        )
        for condition in conditions:
            stmt = stmt.where(condition)
        return self.db.execute(stmt).scalar_one()

    def _published_inventory(self):
        return (
            select(InventoryModel)
            .join(ProductModel, ProductModel.id == InventoryModel.product_id)
            .where(ProductModel.status == "published")
        )

    # ledger

    def add_ledger_entry(self, entry: StockLedgerModel) -> StockLedgerModel:
        self.db.add(entry)
        self.db.flush()
        return entry

    def iter_history(self, product_id: int, limit: int, page_size: int = 100) -> Iterator[StockLedgerModel]:
        """Most recent first; pages by id so nothing is held between pages."""
        remaining = limit
        before_id = None

        while remaining > 0:
            stmt = (
                select(StockLedgerModel)
                .where(StockLedgerModel.product_id == product_id)
                .order_by(StockLedgerModel.id.desc())
                .limit(min(page_size, remaining))
            )
            if before_id is not None:
                stmt = stmt.where(StockLedgerModel.id < before_id)

            page = self.db.execute(stmt).scalars().all()
            if not page:
                return

            for entry in page:
                yield entry

            remaining -= len(page)
            before_id = page[-1].id

    def count_history(self, product_id: int) -> int:
        return self.db.execute(
            select(func.count(StockLedgerModel.id)).where(StockLedgerModel.product_id == product_id)
        ).scalar_one()

    def ledger_sum(self, product_id: int) -> int:
        return self.db.execute(
            select(func.coalesce(func.sum(StockLedgerModel.delta), 0))
            .where(StockLedgerModel.product_id == product_id)
        ).scalar_one()

    def ledger_sums(self) -> dict[int, int]:
        rows = self.db.execute(
            select(StockLedgerModel.product_id, func.sum(StockLedgerModel.delta))
            .group_by(StockLedgerModel.product_id)
        ).all()
        return {product_id: int(total) for product_id, total in rows}

    def projected_quantities(self) -> dict[int, int]:
        rows = self.db.execute(select(InventoryModel.product_id, InventoryModel.quantity)).all()
        return {product_id: quantity for product_id, quantity in rows}

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
