# storefront/data/seed.py
from decimal import Decimal

from storefront.data.database import Base, SessionLocal, engine
from storefront.data.models.product import ProductModel
from storefront.domain.enums import StockReason
from storefront.services.inventory_service import InventoryService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

DEMO_PRODUCTS = [
    ("TOWEL-01", "Bath towel, 600 gsm cotton", Decimal("349.00"), 120),
    ("LINEN-QS", "Queen bed sheet set, percale", Decimal("1899.00"), 40),
    ("GLOVE-NIT-M", "Nitrile examination gloves, box of 100, M", Decimal("499.00"), 300),
    ("SANI-500", "Hand sanitizer 500 ml pump", Decimal("189.00"), 4),
    ("MASK-3PLY", "3-ply surgical masks, box of 50", Decimal("250.00"), 0),
]


def seed():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        # only seed an empty catalog
        if db.query(ProductModel).first():
            logger.info("Catalog already seeded")
            return

        inventory = InventoryService(db)
        for sku, name, price, initial in DEMO_PRODUCTS:
            product = ProductModel(sku=sku, name=name, price=price, status="published")
            db.add(product)
            db.commit()
            inventory.apply_delta(product.id, initial, StockReason.INITIAL, note="Seed stock")

        logger.info(f"Seeded {len(DEMO_PRODUCTS)} products")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
