# app/schemas/queue_models.py
from pydantic import BaseModel
from typing import Optional


class QueueEntry(BaseModel):
    """Worker-facing projection of an admitted job, pushed as JSON."""
    id: str
    key: str
    type: str = "transcode"
    createdAt: str
    outFolder: str
    originalFilename: Optional[str] = None
    contentType: Optional[str] = None
    correlationId: Optional[str] = None

    def to_message(self) -> str:
        return self.model_dump_json(exclude_none=True)
