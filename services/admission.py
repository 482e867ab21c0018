# User value: This file lets users start a subtitle translation, queue it, and check on it without waiting for the model.
# services/admission.py
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from schemas.job_contract import (
    ALLOWED_EXTENSIONS,
    DEFAULT_MODEL,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_PENDING,
    JOB_STATUS_QUEUED,
    MODEL_CHOICES,
    TranslationTask,
)
from schemas.principal import Principal
from schemas.responses import JobStatusView
from services.errors import (
    ConflictError,
    FieldError,
    NotFoundOrUnauthorized,
    TransientInfrastructureError,
    ValidationError,
)
from services.subtitles import build_upload_key, content_type_for, is_allowed_filename
from utils.metrics import incr
from utils.stage_logging import log_stage

logger = logging.getLogger("api.admission")

_LANG_RE = re.compile(r"^[A-Za-z]{2}$")


@dataclass(frozen=True)
class UploadTicket:
    upload_url: str
    job_id: str
    file_key: str
    content_type: str
    expires_in: int


def project_view(record, download_url: Optional[str] = None) -> JobStatusView:
    """Durable record -> client-safe view. Storage keys and owner never leave this function."""
    return JobStatusView(
        id=record.id,
        status=record.status,
        target_lang=record.target_lang,
        model=record.model_used,
        download_url=download_url if record.status == JOB_STATUS_COMPLETED else None,
        error_message=record.error_message,
    )


def validate_upload_request(filename: str, target_lang: str, model: Optional[str]) -> tuple:
    errors: List[FieldError] = []

    name = (filename or "").strip()
    if not name:
        errors.append(FieldError("body.filename", "Filename is required"))
    elif not is_allowed_filename(name):
        allowed = ", ".join(ALLOWED_EXTENSIONS)
        errors.append(FieldError("body.filename", f"Invalid file type. Only {allowed} are supported."))

    lang = (target_lang or "").strip()
    if not _LANG_RE.match(lang):
        errors.append(
            FieldError("body.target_lang", "Target language must be a 2-letter ISO code (e.g., 'es', 'fr')")
        )

    chosen = model or DEFAULT_MODEL
    if chosen not in MODEL_CHOICES:
        errors.append(FieldError("body.model", f"Unsupported model. Choose one of: {', '.join(MODEL_CHOICES)}"))

    if errors:
        raise ValidationError(errors)
    return name, lang.lower(), chosen


class AdmissionService:
    """
    Producer side of the pipeline.

    Dependencies are passed in at startup; nothing here reaches for a
    process-wide client.
    """

    def __init__(
        self,
        *,
        store,
        cache,
        queue,
        blobs,
        upload_ttl_sec: int = 900,
        download_ttl_sec: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cache = cache
        self.queue = queue
        self.blobs = blobs
        self.upload_ttl_sec = int(upload_ttl_sec)
        self.download_ttl_sec = int(download_ttl_sec)
        self._clock = clock

    # =========================================================
    # REQUEST UPLOAD
    # =========================================================
    def request_upload(
        self,
        principal: Principal,
        *,
        filename: str,
        target_lang: str,
        model: Optional[str] = None,
    ) -> UploadTicket:
        try:
            name, lang, chosen_model = validate_upload_request(filename, target_lang, model)
        except ValidationError as exc:
            incr("api_jobs_submit_failed_total", reason="validation")
            logger.warning("upload_validation_failed user=%s fields=%s", principal.user_id, exc.fields())
            raise

        file_key = build_upload_key(principal.user_id, name, int(self._clock() * 1000))
        content_type = content_type_for(name)

        log_stage(
            job_id="upload-request",
            stage="UPLOAD_URL",
            event="STARTED",
            user=principal.user_id,
            target_lang=lang,
            model=chosen_model,
            file_key=file_key,
        )

        # sign before writing the row so a signing failure leaves nothing behind
        upload_url = self.blobs.issue_upload_handle(file_key, content_type, self.upload_ttl_sec)

        record = self.store.create_job(
            user_id=principal.user_id,
            original_file_key=file_key,
            target_lang=lang,
            model_used=chosen_model,
        )

        incr("api_jobs_created_total", model=chosen_model)
        log_stage(
            job_id=record.id,
            stage="UPLOAD_URL",
            event="COMPLETED",
            user=principal.user_id,
            target_lang=lang,
            model=chosen_model,
            status=JOB_STATUS_PENDING,
        )
        return UploadTicket(
            upload_url=upload_url,
            job_id=record.id,
            file_key=file_key,
            content_type=content_type,
            expires_in=self.upload_ttl_sec,
        )

    # =========================================================
    # CONFIRM UPLOAD
    # =========================================================
    def confirm_upload(self, principal: Principal, job_id: str) -> str:
        log_stage(job_id=job_id, stage="CONFIRM_UPLOAD", event="STARTED", user=principal.user_id)

        record = self.store.get_owned(job_id, principal.user_id)
        if record is None:
            log_stage(job_id=job_id, stage="CONFIRM_UPLOAD", event="FAILED", user=principal.user_id, error="not_found")
            raise NotFoundOrUnauthorized(job_id)

        if record.status != JOB_STATUS_PENDING:
            log_stage(
                job_id=job_id,
                stage="CONFIRM_UPLOAD",
                event="FAILED",
                user=principal.user_id,
                error=f"conflict status={record.status}",
            )
            raise ConflictError("Job is already queued or processed", current_status=record.status)

        result = self.store.transition(
            job_id,
            JOB_STATUS_QUEUED,
            owner_id=principal.user_id,
            context="CONFIRM_UPLOAD",
        )
        if not result.applied:
            if result.missing:
                raise NotFoundOrUnauthorized(job_id)
            # a concurrent confirm got there first
            raise ConflictError("Job is already queued or processed", current_status=result.current)

        self.cache.invalidate(job_id)

        task = TranslationTask(
            job_id=record.id,
            user_id=record.user_id,
            source_key=record.original_file_key,
            target_lang=record.target_lang,
            model=record.model_used,
        )
        try:
            message_id = self.queue.enqueue(task.model_dump())
        except TransientInfrastructureError:
            # row stays QUEUED with no message; needs a reconciliation sweep or resubmission
            log_stage(
                job_id=job_id,
                stage="QUEUE_ENQUEUE",
                event="STUCK_QUEUED",
                user=principal.user_id,
                queue=self.queue.name,
            )
            incr("api_jobs_enqueue_failed_total")
            raise

        incr("api_jobs_confirmed_total", model=record.model_used)
        log_stage(
            job_id=job_id,
            stage="CONFIRM_UPLOAD",
            event="COMPLETED",
            user=principal.user_id,
            queue=self.queue.name,
            message_id=message_id,
        )
        return JOB_STATUS_QUEUED

    # =========================================================
    # STATUS
    # =========================================================
    def get_status(self, principal: Principal, job_id: str) -> JobStatusView:
        cached = self.cache.get(job_id)
        if cached is not None:
            if cached.owner_id != principal.user_id:
                logger.warning("status_read_denied source=cache job_id=%s user=%s", job_id, principal.user_id)
                raise NotFoundOrUnauthorized(job_id)
            incr("api_status_reads_total", source="cache")
            return cached.view

        record = self.store.get_owned(job_id, principal.user_id)
        if record is None:
            logger.warning("status_read_denied source=store job_id=%s user=%s", job_id, principal.user_id)
            raise NotFoundOrUnauthorized(job_id)

        download_url = None
        if record.status == JOB_STATUS_COMPLETED and record.translated_file_key:
            download_url = self.blobs.issue_download_handle(record.translated_file_key, self.download_ttl_sec)

        view = project_view(record, download_url)
        self.cache.put(record.user_id, view)
        incr("api_status_reads_total", source="store")
        return view
