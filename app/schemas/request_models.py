# schemas/request_models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from enum import Enum


class JobStatus(str, Enum):
    """
    Job lifecycle states.
    The gateway only ever writes QUEUED; the worker sets the rest.
    """
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


# ============================================================================
# ADMISSION MODELS
# ============================================================================

class JobRequest(BaseModel):
    """
    Normalized job request.
    Unknown fields are ignored. Optional fields may be omitted but not sent
    as null. outFolder is filled with the configured default by the payload
    validator when absent.
    """
    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "spaceKey": "uploads/2025-08-11_video.mp4",
                "originalFilename": "video.mp4",
                "contentType": "video/mp4",
                "outFolder": "uploads-shd",
                "correlationId": "upload-7f3a"
            }
        }
    )

    spaceKey: str = Field(..., min_length=1, description="Object key of the source media in the Space")
    originalFilename: str = Field(None, description="Filename as uploaded by the user")
    contentType: str = Field(None, description="MIME type of the source media")
    outFolder: str = Field(None, description="Destination folder for the transcoded output")
    correlationId: str = Field(None, description="Caller-supplied correlation identifier")


class AdmissionResponse(BaseModel):
    """Successful admission; deduped is set when an earlier job was returned."""
    ok: bool = True
    jobId: str
    deduped: Optional[bool] = None


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    details: Optional[Any] = None


# ============================================================================
# STATUS MODELS
# ============================================================================

class StatusRecord(BaseModel):
    """
    Lifecycle record stored as a Redis hash under job:status:<jobId>.
    """
    status: JobStatus = JobStatus.QUEUED
    queuedAt: str
    key: str
    contentType: str = ""
    outFolder: str

    def to_hash(self) -> Dict[str, str]:
        """Flatten to the string field map stored in Redis."""
        return {
            "status": self.status.value,
            "queuedAt": self.queuedAt,
            "key": self.key,
            "contentType": self.contentType,
            "outFolder": self.outFolder,
        }


class StatusResponse(BaseModel):
    ok: bool = True
    jobId: str
    status: str
    queuedAt: Optional[str] = None
    key: Optional[str] = None
    contentType: Optional[str] = None
    outFolder: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response"""
    ok: bool
    service: str
    time: str
    redis: str
