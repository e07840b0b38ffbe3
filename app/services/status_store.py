# services/status_store.py
from typing import Optional

import redis
from pydantic import ValidationError

from core.logger import logger
from schemas.request_models import StatusRecord


class StatusStore:
    """
    Job status records kept as Redis hashes under job:status:{jobId}.

    Written once at admission with the retention TTL; the worker updates the
    status field afterwards.
    """

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int, key_prefix: str = "job:status:"):
        self.redis = redis_client
        self.ttl = ttl_seconds
        self.key_prefix = key_prefix

    def key_for(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    def create(self, job_id: str, record: StatusRecord) -> None:
        key = self.key_for(job_id)
        with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=record.to_hash())
            pipe.expire(key, self.ttl)
            pipe.execute()

        logger.debug(
            "Status record written",
            extra={"job_id": job_id, "status": record.status.value, "ttl_seconds": self.ttl}
        )

    def get(self, job_id: str) -> Optional[StatusRecord]:
        data = self.redis.hgetall(self.key_for(job_id))
        if not data:
            return None
        try:
            return StatusRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(
                f"Malformed status record: {e.error_count()} errors",
                extra={"job_id": job_id}
            )
            return None
