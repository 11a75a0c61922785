# storefront/repos/checkout_repo.py
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.checkout_session import CheckoutSessionModel
from storefront.data.models.stock_hold import StockHoldModel


class CheckoutRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_session(self, session_id: int) -> CheckoutSessionModel | None:
        return self.db.get(CheckoutSessionModel, session_id, populate_existing=True)

    def get_active_session_for_cart(self, cart_id: int) -> CheckoutSessionModel | None:
        return self.db.execute(
            select(CheckoutSessionModel)
            .where(
                CheckoutSessionModel.cart_id == cart_id,
                CheckoutSessionModel.status == "active",
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create_session(self, session: CheckoutSessionModel) -> CheckoutSessionModel:
        self.db.add(session)
        self.db.flush()
        return session

    def add_hold(self, hold: StockHoldModel) -> StockHoldModel:
        self.db.add(hold)
        self.db.flush()
        return hold

    def get_holds(self, session_id: int, status: str | None = None) -> list[StockHoldModel]:
        stmt = (
            select(StockHoldModel)
            .where(StockHoldModel.session_id == session_id)
            .order_by(StockHoldModel.id)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(StockHoldModel.status == status)
        return list(self.db.execute(stmt).scalars())

    def transition_status(self, session_id: int, from_status: str, to_status: str, closed_at: datetime) -> int:
        """Conditional status change; 0 rows means somebody else got there first."""
        stmt = (
            update(CheckoutSessionModel)
            .where(
                CheckoutSessionModel.id == session_id,
                CheckoutSessionModel.status == from_status,
            )
            .values(status=to_status, closed_at=closed_at)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount

    def find_expired_session_ids(self, now: datetime, limit: int) -> list[int]:
        return list(
            self.db.execute(
                select(CheckoutSessionModel.id)
                .where(
                    CheckoutSessionModel.status == "active",
                    CheckoutSessionModel.expires_at <= now,
                )
                .order_by(CheckoutSessionModel.expires_at, CheckoutSessionModel.id)
                .limit(limit)
            ).scalars()
        )

    def refresh(self, obj):
        self.db.refresh(obj)

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
