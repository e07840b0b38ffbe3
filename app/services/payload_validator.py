# services/payload_validator.py
"""
Request body validation.

Pure: no I/O, no logging. Collects every violated constraint and reports them
flattened as

    {"formErrors": [...], "fieldErrors": {"spaceKey": ["..."], ...}}

formErrors hold problems with the body as a whole (e.g. a JSON array instead
of an object).
"""

from typing import Any, Dict, List

from pydantic import ValidationError

from core.exceptions import PayloadValidationError
from schemas.request_models import JobRequest


def flatten_errors(exc: ValidationError) -> Dict[str, Any]:
    form_errors: List[str] = []
    field_errors: Dict[str, List[str]] = {}

    for error in exc.errors():
        loc = error.get("loc") or ()
        if not loc:
            form_errors.append(error["msg"])
            continue
        field = str(loc[0])
        field_errors.setdefault(field, []).append(error["msg"])

    return {"formErrors": form_errors, "fieldErrors": field_errors}


def validate_job_payload(body: Any, default_out_folder: str) -> JobRequest:
    """
    Validate a decoded request body.

    Args:
        body: Decoded JSON value (any type)
        default_out_folder: Folder applied when outFolder is absent

    Returns:
        JobRequest: Normalized request

    Raises:
        PayloadValidationError: With every violation in details
    """
    try:
        job_request = JobRequest.model_validate(body)
    except ValidationError as e:
        raise PayloadValidationError(
            "Invalid payload",
            details=flatten_errors(e)
        ) from e

    if job_request.outFolder is None:
        job_request = job_request.model_copy(update={"outFolder": default_out_folder})

    return job_request
