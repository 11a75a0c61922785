# storefront/services/cleanup_fallback.py
import threading
from datetime import timedelta

from storefront.services.sweep_worker import SweepResult, SweepWorker
from storefront.utils.clock import utcnow
from storefront.utils.settings import CHECKOUT_FALLBACK_INTERVAL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutCleanupFallback:
    """
    In-process sweep loop that needs nothing but the database.

    Started unconditionally at application startup, alongside the primary
    scheduler when Redis is up and on its own when it is not. stop() lets a
    sweep that is already running finish before the thread exits.
    """

    def __init__(self, interval: float = CHECKOUT_FALLBACK_INTERVAL_SECONDS, worker: SweepWorker | None = None):
        self.interval = interval
        self.worker = worker or SweepWorker("fallback")
        self.last_result: SweepResult | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._next_run = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            logger.warning("Checkout cleanup fallback is already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="checkout-cleanup-fallback",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Checkout cleanup fallback started, interval {self.interval}s")

    def stop(self, timeout: float | None = None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Fallback sweep still running after stop timeout")
            else:
                self._thread = None
        logger.info("Checkout cleanup fallback stopped")

    def run_cleanup(self) -> SweepResult | None:
        try:
            result = self.worker.run_sweep()
        except Exception:
            logger.exception("Fallback checkout cleanup failed")
            return None

        self.last_result = result
        if result.expired:
            logger.info(f"Fallback cleanup expired {result.expired} sessions")
        return result

    def get_status(self) -> dict:
        return {
            "is_running": self.is_running,
            "interval": self.interval,
            "next_run": self._next_run if self.is_running else None,
            "last_result": self.last_result.as_dict() if self.last_result else None,
        }

    def _loop(self):
        while True:
            self._next_run = utcnow() + timedelta(seconds=self.interval)
            if self._stop_event.wait(self.interval):
                break
            self.run_cleanup()
        self._next_run = None
