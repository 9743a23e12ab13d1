import logging
import redis
from redis.connection import ConnectionPool
from redis.lock import Lock
from typing import Optional
from photobooth.core.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Redis client holding the ledger's global lock"""

    _client: Optional[redis.Redis] = None
    _pool: Optional[ConnectionPool] = None

    @classmethod
    def get_client(cls) -> redis.Redis:
        """Get or create Redis client instance with connection pooling"""
        if cls._client is None:
            try:
                cls._pool = ConnectionPool(
                    host=settings.REDIS_HOST,
                    port=settings.REDIS_PORT,
                    password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                    db=settings.REDIS_DB,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                    retry_on_timeout=True,
                    max_connections=20,
                    health_check_interval=15,
                )

                cls._client = redis.Redis(connection_pool=cls._pool)

                cls._client.ping()
                logger.info("Redis connected (%s:%s)", settings.REDIS_HOST, settings.REDIS_PORT)
            except Exception as e:
                logger.error("Redis connection failed: %s", e)
                cls._client = None
                cls._pool = None
                raise

        return cls._client

    @classmethod
    def close(cls):
        """Close Redis connection"""
        if cls._client:
            cls._client.close()
            cls._client = None
        if cls._pool:
            cls._pool.disconnect()
            cls._pool = None
        logger.info("Redis connection closed")


class CacheKeys:
    """Redis key patterns"""

    @staticmethod
    def ledger_lock() -> str:
        """The single named lock serialising every ledger mutation"""
        return settings.LEDGER_LOCK_NAME


def ledger_lock() -> Lock:
    """
    Build the ledger's global critical section.

    Each mutating ledger action runs inside `with ledger_lock():`, so any single
    update is atomic with respect to every other update. Acquisition waits up to
    LEDGER_LOCK_TIMEOUT_SECONDS and raises redis.exceptions.LockError after that.
    """
    return RedisClient.get_client().lock(
        CacheKeys.ledger_lock(),
        timeout=settings.LEDGER_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=settings.LEDGER_LOCK_TIMEOUT_SECONDS,
    )
