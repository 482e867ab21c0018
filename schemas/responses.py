# User value: This file helps users get consistent responses while their subtitles are translated.
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class UploadUrlResponse(BaseModel):
    # User value: gives users a time-limited place to upload the subtitle file plus the job to track.
    upload_url: str
    job_id: str
    file_key: str
    content_type: str
    expires_in: int = Field(..., ge=1)


class ConfirmUploadResponse(BaseModel):
    # User value: confirms the job is queued so users can start polling.
    status: Literal["QUEUED"] = "QUEUED"


class JobStatusView(BaseModel):
    """
    Externally safe projection of a job.

    Never carries storage keys or the owner id; this is what the cache stores
    (next to the owner id) and what clients receive.
    """

    id: str
    status: str
    target_lang: str
    model: str
    download_url: Optional[str] = None
    error_message: Optional[str] = None


class ErrorResponse(BaseModel):
    error_code: str
    error_message: str
    detail: Optional[object] = None
    path: Optional[str] = None
    request_id: Optional[str] = None


class QueueCounts(BaseModel):
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class FailedMessageItem(BaseModel):
    message_id: str
    job_id: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None
    finished_at: Optional[float] = None
    payload: dict = Field(default_factory=dict)


class FailedMessageList(BaseModel):
    queue: str
    items: List[FailedMessageItem] = Field(default_factory=list)
