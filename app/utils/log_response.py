import json
from datetime import datetime, timezone
from typing import Optional

from core.logger import logger


def log_admission(
    status_code: int,
    error: Optional[str] = None,
    job_id: Optional[str] = None,
    deduped: bool = False,
    space_key: Optional[str] = None,
    correlation_id: Optional[str] = None,
    has_idempotency_key: bool = False
) -> None:
    """
    One JSON log line per admission outcome.
    """
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": "job_admission",
        "status_code": status_code,
        "job_id": job_id,
        "deduped": deduped,
        "space_key": space_key[:500] if space_key else None,
        "correlation_id": correlation_id,
        "has_idempotency_key": has_idempotency_key,
        "error": error,
    }

    if status_code >= 500:
        log_data["event"] = "job_admission_failed"
        logger.error(json.dumps(log_data))
    elif status_code >= 400:
        log_data["event"] = "job_admission_rejected"
        logger.warning(json.dumps(log_data))
    else:
        logger.info(json.dumps(log_data))
