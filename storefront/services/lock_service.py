# storefront/services/lock_service.py
import redis

from storefront.utils.retry import redis_retry
from storefront.utils.settings import REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# compare-and-delete in one Lua call: nobody can slip in between GET and DEL,
# so a lock is only ever removed by the token that set it
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockService:
    """
    -named locks shared by every service instance
    -release only by the owner token
    -every call retried with tenacity on RedisError
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )

    @redis_retry()
    def ping(self) -> bool:
        return bool(self.redis.ping())

    @redis_retry()
    def acquire_lock(self, name: str, token: str, ttl: int) -> bool:
        logger.debug(f"Acquire lock {name} with token {token}")
        # SET name token NX EX ttl: only if absent, expires on its own if we die
        return bool(self.redis.set(name=name, value=token, nx=True, ex=ttl))

    @redis_retry()
    def release_lock(self, name: str, token: str) -> bool:
        logger.debug(f"Release lock {name} with token {token}")
        res = self.redis.eval(_RELEASE_LUA, 1, name, token)
        return bool(res)
