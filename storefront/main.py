# storefront/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.api.routers import admin, carts, checkout, health
from storefront.data.database import Base, engine
from storefront.data import models  # noqa: F401  registers every table on Base.metadata
from storefront.domain.errors import StoreError
from storefront.services.cleanup_fallback import CheckoutCleanupFallback
from storefront.services.cleanup_scheduler import CheckoutCleanupScheduler
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Initializing database, tables: {list(Base.metadata.tables.keys())}")
    Base.metadata.create_all(bind=engine)

    # fallback always runs; the primary joins it when Redis answers
    app.state.cleanup_scheduler.initialize()
    app.state.cleanup_fallback.start()
    try:
        yield
    finally:
        # let an in-flight sweep finish before the process exits
        app.state.cleanup_fallback.stop()


async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"error": {"code": "VALIDATION_ERROR", "message": "Validation failed", "details": details}},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Something went wrong, please try again later"}},
    )


def create_app(
    scheduler: CheckoutCleanupScheduler | None = None,
    fallback: CheckoutCleanupFallback | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Storefront Inventory Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.cleanup_scheduler = scheduler or CheckoutCleanupScheduler()
    app.state.cleanup_fallback = fallback or CheckoutCleanupFallback()

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)
    app.include_router(admin.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
