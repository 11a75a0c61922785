# storefront/tasks/expire.py
from redis.exceptions import RedisError

from storefront.celery_worker import celery_app
from storefront.services.lock_service import LockService
from storefront.services.sweep_worker import RedisSweepLock, SweepWorker
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.expire.expire_checkouts_task")
def expire_checkouts_task():
    logger.info("Expire checkouts task started")

    worker = SweepWorker("primary", lock=RedisSweepLock(LockService()))
    try:
        result = worker.run_sweep()
    except RedisError as e:
        # the fallback loop keeps sweeping without Redis
        logger.warning(f"Redis unavailable, primary sweep skipped: {e}")
        return {"worker": "primary", "skipped": True}

    return result.as_dict()
