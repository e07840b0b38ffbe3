# routers/router.py
"""
FastAPI Router for job admission and status
"""

from datetime import datetime, timezone
from typing import Optional

import redis
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from core.auth import verify_shared_secret
from core.config import Settings, get_settings
from core.exceptions import JobNotFoundError, UpstreamError
from core.logger import logger
from core.rate_limiter import limit_param, limiter
from core.redis_client import get_redis
from schemas.request_models import (
    AdmissionResponse,
    ErrorResponse,
    HealthResponse,
    StatusResponse,
)
from services.admission_service import JobAdmissionController
from services.status_store import StatusStore


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

router = APIRouter(
    prefix="/api/v1",
    tags=["Jobs"],
    responses={
        401: {"description": "Unauthorized - missing or wrong shared secret"},
        429: {"description": "Too Many Requests"},
        500: {"description": "Gateway misconfigured"},
        502: {"description": "Redis unavailable"}
    }
)


def get_admission_controller(
    settings: Settings = Depends(get_settings),
    redis_client: Optional[redis.Redis] = Depends(get_redis)
) -> JobAdmissionController:
    return JobAdmissionController.from_redis(settings, redis_client)


# ============================================================================
# HEALTH CHECK
# ============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Service Health Check"
)
def check_health(
    settings: Settings = Depends(get_settings),
    redis_client: Optional[redis.Redis] = Depends(get_redis)
) -> HealthResponse:
    """
    Reports Redis reachability. The service answers even when Redis is down.
    """
    redis_status = "unconfigured"
    if redis_client is not None:
        try:
            redis_client.ping()
            redis_status = "connected"
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            redis_status = "error"

    return HealthResponse(
        ok=redis_status == "connected",
        service=settings.SERVICE_NAME,
        time=datetime.now(timezone.utc).isoformat(),
        redis=redis_status
    )


# ============================================================================
# JOB ENDPOINTS
# ============================================================================

@router.api_route(
    "/jobs",
    methods=["POST", "OPTIONS", "GET", "PUT", "PATCH", "DELETE"],
    summary="Enqueue a transcode job",
    description=(
        "Validates the payload, authenticates the shared secret, deduplicates on "
        "Idempotency-Key and pushes the job onto the worker queue."
    ),
    responses={
        201: {"model": AdmissionResponse, "description": "Job queued"},
        200: {"model": AdmissionResponse, "description": "Duplicate submission, earlier job returned"},
        204: {"description": "Pre-flight"},
        400: {"description": "Malformed JSON body or Idempotency-Key"},
        405: {"description": "Method not allowed"},
        422: {"model": ErrorResponse, "description": "Payload validation failed"}
    }
)
@limiter.limit(limit_param)
async def enqueue_job(
    request: Request,
    controller: JobAdmissionController = Depends(get_admission_controller)
) -> Response:
    """
    Admission endpoint. Method handling, including OPTIONS pre-flight and
    405 responses, is done by the controller so every path shares one order.
    """
    body = await request.body() if request.method == "POST" else None

    outcome = await run_in_threadpool(
        controller.admit, request.method, request.headers, body
    )

    if outcome.payload is None:
        return Response(status_code=outcome.status_code, headers=outcome.headers)
    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.payload,
        headers=outcome.headers
    )


@router.get(
    "/jobs/{job_id}",
    response_model=StatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Job status",
    dependencies=[Depends(verify_shared_secret)]
)
def get_job_status(
    job_id: str,
    settings: Settings = Depends(get_settings),
    redis_client: Optional[redis.Redis] = Depends(get_redis)
) -> StatusResponse:
    """
    Returns the status record written at admission and updated by the worker.
    Expired and unknown jobs are both reported as not_found.
    """
    if redis_client is None:
        raise UpstreamError("Redis not configured")

    store = StatusStore(redis_client, settings.JOB_STATUS_TTL_SECONDS, settings.STATUS_KEY_PREFIX)
    try:
        record = store.get(job_id)
    except redis.RedisError as e:
        logger.exception(f"Status lookup failed: {e}")
        raise UpstreamError("Status lookup failed") from e

    if record is None:
        raise JobNotFoundError(f"Job {job_id} not found")

    return StatusResponse(
        jobId=job_id,
        status=record.status.value,
        queuedAt=record.queuedAt,
        key=record.key,
        contentType=record.contentType or None,
        outFolder=record.outFolder
    )
