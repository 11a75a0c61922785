# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CHECKOUT_CLEANUP_INTERVAL_SECONDS,
)

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# import tasks explicitly so the worker registers them
celery_app.conf.imports = ("storefront.tasks.expire",)

celery_app.conf.beat_schedule = {
    "expire-checkout-sessions": {
        "task": "storefront.tasks.expire.expire_checkouts_task",
        "schedule": CHECKOUT_CLEANUP_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
