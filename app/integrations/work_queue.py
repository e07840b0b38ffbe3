# app/integrations/work_queue.py
import redis

from core.logger import logger
from schemas.queue_models import QueueEntry


class WorkQueue:
    """
    Redis list consumed by the transcode worker.
    Entries are pushed at the head; the worker pops from the tail.
    """

    def __init__(self, redis_client: redis.Redis, queue_key: str):
        self.redis = redis_client
        self.queue_key = queue_key

    def push(self, entry: QueueEntry) -> int:
        """
        Append one job. Returns the queue length after the push.
        """
        body = entry.to_message()
        length = self.redis.lpush(self.queue_key, body)
        logger.info(
            "Queue push ok job_id=%s queue=%s depth=%s",
            entry.id, self.queue_key, length
        )
        return length
