# storefront/api/routers/health.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.database import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "unavailable"

    scheduler = request.app.state.cleanup_scheduler
    fallback = request.app.state.cleanup_fallback
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "primary_cleanup": scheduler.is_initialized,
        "fallback_cleanup": fallback.is_running,
    }
