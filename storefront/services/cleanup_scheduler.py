# storefront/services/cleanup_scheduler.py
from redis.exceptions import RedisError

from storefront.services.lock_service import LockService
from storefront.services.sweep_worker import SweepWorker
from storefront.tasks.expire import expire_checkouts_task
from storefront.utils.settings import CHECKOUT_CLEANUP_INTERVAL_SECONDS, DISABLE_REDIS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutCleanupScheduler:
    """
    Primary checkout sweeper: Celery beat runs expire_checkouts_task under a
    Redis lock. initialize() only checks that Redis answers; when it does
    not, the application keeps running on the fallback alone.
    """

    def __init__(self, lock_service_factory=LockService, enabled: bool = not DISABLE_REDIS):
        self.lock_service_factory = lock_service_factory
        self.enabled = enabled
        self.is_initialized = False

    def initialize(self) -> bool:
        if not self.enabled:
            logger.warning("Redis disabled, primary checkout cleanup not initialized")
            self.is_initialized = False
            return False

        try:
            self.lock_service_factory().ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis not available, primary checkout cleanup not initialized: {e}")
            self.is_initialized = False
            return False

        self.is_initialized = True
        logger.info(
            f"Primary checkout cleanup initialized, beat interval {CHECKOUT_CLEANUP_INTERVAL_SECONDS}s"
        )
        return True

    def trigger_cleanup(self) -> dict:
        if not self.is_initialized:
            logger.warning("Primary checkout cleanup not initialized, running sweep directly")
            result = SweepWorker("manual").run_sweep()
            return {"status": "completed", "result": result.as_dict()}

        task = expire_checkouts_task.delay()
        logger.info(f"Queued checkout cleanup task {task.id}")
        return {"status": "queued", "task_id": task.id}

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "initialized": self.is_initialized,
            "interval": CHECKOUT_CLEANUP_INTERVAL_SECONDS,
        }
