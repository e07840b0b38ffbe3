# core/redis_client.py
"""
Redis client factory with connection pooling and error handling.

The pool backs three things:
1. The work queue list the transcode worker pops from
2. Job status records (job:status:<jobId>)
3. Idempotency mappings (job:idem:<token>)

One RedisClient is created per application in the lifespan handler and kept
on app.state; request handlers receive the pooled client via get_redis().
"""

from typing import Optional

import redis
from fastapi import Request
from redis.connection import ConnectionPool

from core.config import Settings
from core.logger import logger


class RedisClient:
    """
    Pooled Redis client.

    Handles:
    - TLS for rediss:// URLs
    - Socket and connect timeouts so no call blocks indefinitely
    - Health checking
    """

    def __init__(self, settings: Settings):
        if not settings.REDIS_URL:
            raise ValueError("REDIS_URL is not configured")
        self._settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._initialize_pool()

    def _initialize_pool(self):
        """
        Create the connection pool. No connection is opened until first use.
        """
        settings = self._settings
        use_tls = settings.REDIS_URL.startswith("rediss://")

        logger.info(
            "Initializing Redis connection pool",
            extra={
                "tls": use_tls,
                "max_connections": settings.REDIS_MAX_CONNECTIONS
            }
        )

        pool_kwargs = {
            "decode_responses": True,  # Auto-decode bytes to strings
            "socket_timeout": settings.REDIS_SOCKET_TIMEOUT,
            "socket_connect_timeout": settings.REDIS_SOCKET_CONNECT_TIMEOUT,
            "max_connections": settings.REDIS_MAX_CONNECTIONS,
            "health_check_interval": 30
        }

        if use_tls and not settings.REDIS_SSL_VERIFY:
            pool_kwargs["ssl_cert_reqs"] = None

        self._pool = ConnectionPool.from_url(settings.REDIS_URL, **pool_kwargs)
        self._client = redis.Redis(connection_pool=self._pool)

    def get_client(self) -> redis.Redis:
        """
        Get Redis client instance.

        Returns:
            redis.Redis: Thread-safe Redis client
        """
        if self._client is None:
            self._initialize_pool()

        return self._client

    def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            bool: True if Redis is reachable, False otherwise
        """
        try:
            self._client.ping()
            return True
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    def close(self):
        """
        Close connection pool (called on application shutdown).
        """
        if self._pool:
            self._pool.disconnect()
            logger.info("Redis connection pool closed")


def get_redis(request: Request) -> Optional[redis.Redis]:
    """
    FastAPI dependency returning the pooled client for this application.

    Returns None when REDIS_URL is unset; the admission controller reports
    that as a configuration error.
    """
    redis_client: Optional[RedisClient] = getattr(request.app.state, "redis_client", None)
    if redis_client is None:
        return None
    return redis_client.get_client()
