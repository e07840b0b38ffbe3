# services/idempotency_ledger.py
"""
Idempotency Ledger

Maps a caller-supplied idempotency token to the job id first admitted for it.

Storage Structure in Redis:
- job:idem:{token} -> {"jobId": "..."} (JSON string with TTL)

Base usage is lookup() before admission and record() after the job has been
queued. Two concurrent first submissions of the same token can both miss the
lookup and create two jobs; the later record() wins. reserve()/release() close
that race with SET NX when IDEMPOTENCY_RESERVE is enabled.

A reservation is written before the job exists, so it only lives for the short
claim TTL. record() after a successful queue push extends it to the full
retention window. A process that dies between reserve() and the push leaves a
claim that expires after claim_ttl_seconds, not after the retention window.
"""

import json
from typing import Optional

import redis

from core.logger import logger


class IdempotencyLedger:
    """
    Token -> job id mappings with a bounded lifetime.

    Redis errors propagate to the caller; the admission controller decides
    whether a failure is fatal.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: int,
        key_prefix: str = "job:idem:",
        claim_ttl_seconds: int = 60
    ):
        self.redis = redis_client
        self.ttl = ttl_seconds
        self.claim_ttl = min(claim_ttl_seconds, ttl_seconds)
        self.key_prefix = key_prefix

    def _key(self, token: str) -> str:
        return f"{self.key_prefix}{token}"

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[str]:
        if not raw:
            return None
        try:
            return json.loads(raw).get("jobId")
        except (ValueError, AttributeError):
            logger.warning("Ignoring unreadable idempotency mapping", extra={"raw": raw[:100]})
            return None

    def lookup(self, token: str) -> Optional[str]:
        """
        Return the job id recorded for token, or None when unset or expired.
        """
        return self._decode(self.redis.get(self._key(token)))

    def record(self, token: str, job_id: str) -> None:
        """
        Store token -> job_id with the retention TTL. Last writer wins.
        """
        self.redis.set(self._key(token), json.dumps({"jobId": job_id}), ex=self.ttl)
        logger.debug(
            "Idempotency mapping recorded",
            extra={"job_id": job_id, "ttl_seconds": self.ttl}
        )

    def reserve(self, token: str, job_id: str) -> Optional[str]:
        """
        Atomically claim token for job_id for claim_ttl seconds.

        Returns:
            None if this call claimed the token, otherwise the job id that
            already holds it.
        """
        key = self._key(token)
        claimed = self.redis.set(key, json.dumps({"jobId": job_id}), ex=self.claim_ttl, nx=True)
        if claimed:
            return None

        existing = self._decode(self.redis.get(key))
        if existing is None:
            # Expired or was released between SET NX and GET; try once more.
            claimed = self.redis.set(key, json.dumps({"jobId": job_id}), ex=self.claim_ttl, nx=True)
            if claimed:
                return None
            existing = self._decode(self.redis.get(key))
        return existing

    def release(self, token: str, job_id: str) -> bool:
        """
        Delete the mapping if it still points at job_id.

        Returns:
            bool: True if the mapping was removed
        """
        key = self._key(token)
        with self.redis.pipeline() as pipe:
            try:
                pipe.watch(key)
                if self._decode(pipe.get(key)) != job_id:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(key)
                pipe.execute()
                return True
            except redis.WatchError:
                logger.info("Idempotency mapping changed during release", extra={"job_id": job_id})
                return False
