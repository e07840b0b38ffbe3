import json

import fakeredis
import pytest
from fastapi.testclient import TestClient

from core.config import Settings, get_settings
from core.rate_limiter import limiter
from core.redis_client import get_redis
from main import app
from services.admission_service import JobAdmissionController

SECRET = "test-shared-secret"
QUEUE_KEY = "test:transcode:jobs"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        REDIS_URL="redis://localhost:6379/0",
        ENQUEUE_SHARED_SECRET=SECRET,
        QUEUE_KEY=QUEUE_KEY,
        JOB_STATUS_TTL_SECONDS=3600,
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
def fake_redis():
    server = fakeredis.FakeServer()
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def controller(settings, fake_redis) -> JobAdmissionController:
    return JobAdmissionController.from_redis(settings, fake_redis)


@pytest.fixture
def auth_headers(settings):
    return {settings.AUTH_HEADER: SECRET}


@pytest.fixture
def client(settings, fake_redis):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_redis] = lambda: fake_redis
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True


@pytest.fixture
def queued(fake_redis):
    def _entries(queue_key=QUEUE_KEY):
        return [json.loads(raw) for raw in fake_redis.lrange(queue_key, 0, -1)]
    return _entries
