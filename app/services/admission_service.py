# services/admission_service.py
"""
Job Admission Controller

Single entry point for turning an inbound request into a queued job.
Steps run in a fixed order and each may end the admission early:

1. Method: OPTIONS is a pre-flight (204, nothing else happens); anything but
   POST is rejected with 405
2. Configuration: Redis target and shared secret must be present (500)
3. Authentication: shared-secret header (401)
4. Body decoding (400)
5. Payload validation (422, every violation listed)
6. Idempotency lookup: a hit returns the earlier job id (200, deduped)
7. New job id, status record, queue push (201)
8. Idempotency mapping recorded last (or a reservation extended)

Nothing is written before step 7. The writes in step 7 are not transactional:
a failed queue push after the status write leaves an orphaned status record,
which is logged and left to expire.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Union
from uuid import uuid4

import redis

from core.auth import is_authorized, read_credential
from core.config import Settings
from core.exceptions import (
    ConfigurationError,
    GatewayError,
    InvalidIdempotencyKeyError,
    MalformedBodyError,
    MethodNotAllowedError,
    UnauthorizedError,
    UpstreamError,
)
from core.logger import logger
from integrations.work_queue import WorkQueue
from schemas.queue_models import QueueEntry
from schemas.request_models import JobRequest, JobStatus, StatusRecord
from services.idempotency_ledger import IdempotencyLedger
from services.payload_validator import validate_job_payload
from services.status_store import StatusStore
from utils.log_response import log_admission

ALLOWED_METHODS = "POST, OPTIONS"


def utc_timestamp() -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2025-08-11T10:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_job_id() -> str:
    return str(uuid4())


def cors_headers(settings: Settings) -> Dict[str, str]:
    """Fixed CORS headers sent with every admission response."""
    allow_headers = ", ".join([
        "Content-Type",
        "Authorization",
        settings.AUTH_HEADER,
        settings.IDEMPOTENCY_HEADER,
    ])
    return {
        "Access-Control-Allow-Origin": settings.CORS_ORIGIN,
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": allow_headers,
        "Access-Control-Max-Age": "86400",
    }


@dataclass
class AdmissionOutcome:
    """Transport-agnostic result; payload None means an empty body."""
    status_code: int
    payload: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


class JobAdmissionController:
    """
    Orchestrates validation, authentication, deduplication and enqueue.

    Store collaborators are injected; a controller built without them reports
    the gateway as unconfigured.
    """

    def __init__(
        self,
        settings: Settings,
        status_store: Optional[StatusStore] = None,
        work_queue: Optional[WorkQueue] = None,
        ledger: Optional[IdempotencyLedger] = None,
        clock: Callable[[], str] = utc_timestamp,
        id_factory: Callable[[], str] = new_job_id
    ):
        self.settings = settings
        self.status_store = status_store
        self.work_queue = work_queue
        self.ledger = ledger
        self.clock = clock
        self.id_factory = id_factory

    @classmethod
    def from_redis(
        cls,
        settings: Settings,
        redis_client: Optional[redis.Redis],
        **kwargs
    ) -> "JobAdmissionController":
        if redis_client is None:
            return cls(settings, **kwargs)

        ttl = settings.JOB_STATUS_TTL_SECONDS
        return cls(
            settings,
            status_store=StatusStore(redis_client, ttl, settings.STATUS_KEY_PREFIX),
            work_queue=WorkQueue(redis_client, settings.QUEUE_KEY),
            ledger=IdempotencyLedger(
                redis_client,
                ttl,
                settings.IDEMPOTENCY_KEY_PREFIX,
                claim_ttl_seconds=settings.IDEMPOTENCY_CLAIM_TTL_SECONDS
            ),
            **kwargs
        )

    # ========================================================================
    # PUBLIC ENTRY POINT
    # ========================================================================

    def cors_headers(self) -> Dict[str, str]:
        return cors_headers(self.settings)

    def admit(
        self,
        method: str,
        headers: Mapping[str, str],
        body: Union[bytes, str, None]
    ) -> AdmissionOutcome:
        """
        Run the full admission sequence for one request.

        Args:
            method: HTTP method of the request
            headers: Request headers (case-insensitive lookup)
            body: Raw request body

        Returns:
            AdmissionOutcome: status code, JSON payload and headers
        """
        method = (method or "").upper()

        if method == "OPTIONS":
            return AdmissionOutcome(status_code=204, headers=self.cors_headers())

        context: Dict[str, Any] = {}
        try:
            outcome = self._admit(method, headers, body, context)
        except GatewayError as e:
            outcome = AdmissionOutcome(
                status_code=e.status_code,
                payload=e.to_payload(),
                headers=dict(e.headers)
            )
            context["error"] = e.error

        log_admission(
            status_code=outcome.status_code,
            error=context.get("error"),
            job_id=context.get("job_id"),
            deduped=context.get("deduped", False),
            space_key=context.get("space_key"),
            correlation_id=context.get("correlation_id"),
            has_idempotency_key=context.get("token") is not None
        )

        outcome.headers = {**self.cors_headers(), **outcome.headers}
        return outcome

    # ========================================================================
    # ADMISSION STEPS
    # ========================================================================

    def _admit(
        self,
        method: str,
        headers: Mapping[str, str],
        body: Union[bytes, str, None],
        context: Dict[str, Any]
    ) -> AdmissionOutcome:
        if method != "POST":
            raise MethodNotAllowedError(
                f"Method {method or '?'} not allowed",
                headers={"Allow": ALLOWED_METHODS}
            )

        self._check_configured()

        presented = read_credential(headers, self.settings.AUTH_HEADER)
        if not is_authorized(presented, self.settings.ENQUEUE_SHARED_SECRET):
            raise UnauthorizedError("Unauthorized")

        payload = self._parse_body(body)
        job_request = validate_job_payload(payload, self.settings.DEFAULT_OUT_FOLDER)
        context["space_key"] = job_request.spaceKey
        context["correlation_id"] = job_request.correlationId

        token = self._idempotency_token(headers)
        context["token"] = token

        reserve = token is not None and self.settings.IDEMPOTENCY_RESERVE

        if token is not None and not reserve:
            existing = self._call_store(self.ledger.lookup, token)
            if existing:
                return self._deduped(existing, context)

        job_id = self.id_factory()
        context["job_id"] = job_id

        if reserve:
            existing = self._call_store(self.ledger.reserve, token, job_id)
            if existing:
                return self._deduped(existing, context)

        try:
            self._enqueue(job_id, job_request)
        except UpstreamError:
            if reserve:
                self._release_reservation(token, job_id)
            raise

        if token is not None:
            # Reservations are extended from the claim TTL to the retention window.
            try:
                self.ledger.record(token, job_id)
            except redis.RedisError as e:
                # The job is queued; only future deduplication is lost.
                logger.warning(
                    f"Idempotency mapping not recorded: {e}",
                    extra={"job_id": job_id}
                )

        return AdmissionOutcome(status_code=201, payload={"ok": True, "jobId": job_id})

    def _check_configured(self) -> None:
        missing = []
        if not self.settings.REDIS_URL:
            missing.append("REDIS_URL")
        if not self.settings.ENQUEUE_SHARED_SECRET:
            missing.append("ENQUEUE_SHARED_SECRET")
        if self.status_store is None or self.work_queue is None or self.ledger is None:
            missing.append("redis client")

        if missing:
            logger.error(
                "Gateway misconfigured, refusing admission",
                extra={"missing": missing}
            )
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")

    @staticmethod
    def _parse_body(body: Union[bytes, str, None]) -> Any:
        if body is None:
            return {}
        try:
            if isinstance(body, bytes):
                body = body.decode("utf-8")
            if not body.strip():
                return {}
            return json.loads(body)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedBodyError("Invalid JSON body") from e

    def _idempotency_token(self, headers: Mapping[str, str]) -> Optional[str]:
        raw = read_credential(headers, self.settings.IDEMPOTENCY_HEADER)
        token = (raw or "").strip()
        if not token:
            return None
        if len(token) > self.settings.IDEMPOTENCY_KEY_MAX_LENGTH:
            raise InvalidIdempotencyKeyError(
                f"{self.settings.IDEMPOTENCY_HEADER} longer than "
                f"{self.settings.IDEMPOTENCY_KEY_MAX_LENGTH} characters"
            )
        return token

    def _deduped(self, job_id: str, context: Dict[str, Any]) -> AdmissionOutcome:
        context["job_id"] = job_id
        context["deduped"] = True
        logger.info("Idempotent replay, returning existing job", extra={"job_id": job_id})
        return AdmissionOutcome(
            status_code=200,
            payload={"ok": True, "jobId": job_id, "deduped": True}
        )

    def _enqueue(self, job_id: str, job_request: JobRequest) -> None:
        created_at = self.clock()

        record = StatusRecord(
            status=JobStatus.QUEUED,
            queuedAt=created_at,
            key=job_request.spaceKey,
            contentType=job_request.contentType or "",
            outFolder=job_request.outFolder
        )
        entry = QueueEntry(
            id=job_id,
            key=job_request.spaceKey,
            type=self.settings.JOB_TYPE,
            createdAt=created_at,
            outFolder=job_request.outFolder,
            originalFilename=job_request.originalFilename,
            contentType=job_request.contentType,
            correlationId=job_request.correlationId
        )

        self._call_store(self.status_store.create, job_id, record)
        try:
            self.work_queue.push(entry)
        except redis.RedisError as e:
            logger.error(
                f"Queue push failed after status write, status record orphaned: {e}",
                extra={"job_id": job_id, "queue": self.settings.QUEUE_KEY}
            )
            raise UpstreamError("Enqueue failed") from e

    def _release_reservation(self, token: str, job_id: str) -> None:
        try:
            self.ledger.release(token, job_id)
        except redis.RedisError as e:
            logger.warning(
                f"Could not release idempotency reservation: {e}",
                extra={"job_id": job_id}
            )

    @staticmethod
    def _call_store(operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(*args)
        except redis.RedisError as e:
            logger.exception(f"Redis operation failed: {e}")
            raise UpstreamError("Enqueue failed") from e
