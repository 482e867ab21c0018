# User value: This file keeps API, worker, and storage agreeing on what a translation job looks like.
from pydantic import BaseModel, ConfigDict, Field

CONTRACT_VERSION = "2026-10-01-subtitle-jobs"

JOB_STATUS_PENDING = "PENDING"
JOB_STATUS_QUEUED = "QUEUED"
JOB_STATUS_PROCESSING = "PROCESSING"
JOB_STATUS_COMPLETED = "COMPLETED"
JOB_STATUS_FAILED = "FAILED"

SOURCE_LANG_AUTO = "auto"

ALLOWED_EXTENSIONS = (".srt", ".vtt", ".txt")

CONTENT_TYPES = {
    ".srt": "application/x-subrip",
    ".vtt": "text/vtt",
    ".txt": "text/plain",
}

MODEL_CHOICES = ("gemini-1.5-flash", "gemini-1.5-pro")
DEFAULT_MODEL = "gemini-1.5-flash"

ERROR_MESSAGE_MAX_CHARS = 500


class TranslationTask(BaseModel):
    """
    Queue payload for one translation job.

    Carries everything the worker needs to start without reading the job row first.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    user_id: str
    source_key: str
    target_lang: str
    model: str = DEFAULT_MODEL
    contract_version: str = CONTRACT_VERSION


class ProcessingResult(BaseModel):
    # User value: completion marker kept in the queue log so operators can see which file was produced.
    job_id: str
    translated_file_key: str
    skipped: bool = Field(default=False, description="True when a redelivered message found the job already done")
