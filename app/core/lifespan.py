from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.config import settings
from core.logger import logger
from core.redis_client import RedisClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Creates the Redis pool on startup and disconnects it on shutdown.
    An unreachable Redis is logged but does not stop the service; admissions
    report it as an upstream failure.
    """
    app.state.redis_client = None
    if settings.REDIS_URL:
        app.state.redis_client = RedisClient(settings)
        if app.state.redis_client.health_check():
            logger.info("Redis reachable")
    else:
        logger.error("REDIS_URL is not set; admissions will be refused")

    if not settings.ENQUEUE_SHARED_SECRET:
        logger.error("ENQUEUE_SHARED_SECRET is not set; admissions will be refused")

    logger.info("Lifespan startup: Ready to serve requests.")
    yield

    if app.state.redis_client is not None:
        app.state.redis_client.close()
    logger.info("Lifespan shutdown.")
