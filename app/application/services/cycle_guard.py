import logging
import threading
from contextlib import AbstractContextManager, contextmanager
from typing import Iterator, Protocol
from uuid import uuid4

from redis import Redis
from redis.exceptions import RedisError

from app.infrastructure.observability.metrics import measure_redis

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class CycleGuard(Protocol):
    def hold(self) -> AbstractContextManager[bool]: ...


class LocalCycleGuard:
    """Single-flight within one process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()


class RedisCycleGuard:
    """Single-flight across worker processes sharing one Redis."""

    def __init__(self, redis_client: Redis, *, key: str, ttl_seconds: int) -> None:
        self._redis = redis_client
        self._key = key
        self._ttl_seconds = ttl_seconds

    def _acquire(self) -> str | None:
        token = str(uuid4())
        with measure_redis("delivery_cycle_lock_acquire"):
            acquired = self._redis.set(self._key, token, nx=True, ex=self._ttl_seconds)
        return token if acquired else None

    def _release(self, token: str) -> None:
        try:
            with measure_redis("delivery_cycle_lock_release"):
                self._redis.eval(_RELEASE_SCRIPT, 1, self._key, token)
        except Exception:
            # The TTL frees the key if the release never lands.
            logger.exception("delivery_cycle_lock_release_failed key=%s", self._key)

    @contextmanager
    def hold(self) -> Iterator[bool]:
        try:
            token = self._acquire()
        except RedisError:
            logger.exception("delivery_cycle_lock_acquire_failed key=%s", self._key)
            token = None
        try:
            yield token is not None
        finally:
            if token is not None:
                self._release(token)


class NullCycleGuard:
    """Lets every cycle through; overlapping cycles rely on the atomic claim alone."""

    @contextmanager
    def hold(self) -> Iterator[bool]:
        yield True
