# storefront/services/sweep_worker.py
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime

from redis.exceptions import RedisError

from storefront.data.database import SessionLocal
from storefront.domain.enums import CheckoutStatus, ReleaseOutcome
from storefront.services.checkout_service import CheckoutService
from storefront.services.lock_service import LockService
from storefront.utils.clock import utcnow
from storefront.utils.settings import CHECKOUT_CLEANUP_LOCK_TTL_SECONDS, CLEANUP_BATCH_SIZE
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SweepResult:
    worker: str
    found: int = 0
    expired: int = 0
    already_terminal: int = 0
    failed: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


class NoSweepLock:
    """Exclusivity for the fallback: none, expire_or_cancel is race-safe."""

    def acquire(self) -> bool:
        return True

    def release(self):
        pass


class RedisSweepLock:
    """One sweep at a time across instances, via a token-owned Redis key."""

    key = "checkout:cleanup:lock"

    def __init__(self, lock_service: LockService, ttl: int = CHECKOUT_CLEANUP_LOCK_TTL_SECONDS):
        self.lock_service = lock_service
        self.ttl = ttl
        self.token = None

    def acquire(self) -> bool:
        self.token = uuid.uuid4().hex
        return self.lock_service.acquire_lock(self.key, self.token, self.ttl)

    def release(self):
        if self.token is None:
            return
        try:
            self.lock_service.release_lock(self.key, self.token)
        except RedisError as e:
            # the key carries a TTL, it clears itself
            logger.warning(f"Could not release sweep lock, it will expire in {self.ttl}s: {e}")
        finally:
            self.token = None


class SweepWorker:
    """
    Find active checkout sessions past expires_at and expire them.

    Shared by the Celery-driven primary and the in-process fallback; they
    differ only in the lock they pass in. Each session is expired in its own
    database session so one failure never blocks the rest of the sweep.
    """

    def __init__(self, name: str, lock=None, session_factory=SessionLocal, batch_size: int = CLEANUP_BATCH_SIZE):
        self.name = name
        self.lock = lock or NoSweepLock()
        self.session_factory = session_factory
        self.batch_size = batch_size

    def run_sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or utcnow()
        result = SweepResult(worker=self.name)

        if not self.lock.acquire():
            logger.info(f"[{self.name}] another instance holds the sweep lock, skipping")
            result.skipped = True
            return result

        try:
            db = self.session_factory()
            try:
                session_ids = CheckoutService(db).find_expired_session_ids(now, self.batch_size)
            finally:
                db.close()

            result.found = len(session_ids)
            for session_id in session_ids:
                self._expire_one(session_id, now, result)
        finally:
            self.lock.release()

        logger.info(
            f"[{self.name}] sweep done: found {result.found}, expired {result.expired}, "
            f"already closed {result.already_terminal}, failed {result.failed}"
        )
        return result

    def _expire_one(self, session_id: int, now: datetime, result: SweepResult):
        db = self.session_factory()
        try:
            outcome = CheckoutService(db).expire_or_cancel(session_id, CheckoutStatus.EXPIRED, now=now)
        except Exception:
            result.failed += 1
            logger.exception(f"[{self.name}] failed to expire checkout session {session_id}")
            return
        finally:
            db.close()

        if outcome is ReleaseOutcome.RELEASED:
            result.expired += 1
        else:
            result.already_terminal += 1
