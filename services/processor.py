# User value: This file turns an uploaded subtitle file into a translated one and always leaves the job in a state users can understand.
# services/processor.py
"""
Job processor: the consumer side of the translation pipeline.

One call to `process` is one delivery attempt of a queue message:

    Dequeued -> Downloading -> Translating -> Uploading -> Finalizing -> Completed | Failed

Only PROCESSING, COMPLETED and FAILED ever reach the job store. Each step
returns a StepResult instead of raising; the driver turns a failed step into
the FAILED transition and a JobProcessingError for the queue layer.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from schemas.job_contract import (
    ERROR_MESSAGE_MAX_CHARS,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    ProcessingResult,
    TranslationTask,
)
from services.errors import EngineError, JobProcessingError, TransientInfrastructureError
from services.subtitles import (
    MalformedTranslation,
    build_output_key,
    build_translation_prompt,
    content_type_for,
    validate_translation,
)
from utils.metrics import incr
from utils.stage_logging import log_stage

logger = logging.getLogger("worker.processor")


@dataclass(frozen=True)
class StepFailure:
    stage: str
    message: str
    retryable: bool = True


@dataclass(frozen=True)
class StepResult:
    value: Any = None
    failure: Optional[StepFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Any) -> "StepResult":
        return cls(value=value)

    @classmethod
    def failed(cls, stage: str, message: str, *, retryable: bool = True) -> "StepResult":
        return cls(failure=StepFailure(stage=stage, message=message, retryable=retryable))


def bounded_error_message(message: str, *, secrets: tuple = ()) -> str:
    text = " ".join(str(message or "").split())
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    if not text:
        text = "Processing failed"
    if len(text) > ERROR_MESSAGE_MAX_CHARS:
        text = text[: ERROR_MESSAGE_MAX_CHARS - 3] + "..."
    return text


class JobProcessor:
    def __init__(self, *, store, cache, blobs, engine, secrets: tuple = ()):
        self.store = store
        self.cache = cache
        self.blobs = blobs
        self.engine = engine
        self._secrets = tuple(s for s in secrets if s)

    # =========================================================
    # DRIVER
    # =========================================================
    def process(self, task: TranslationTask, *, attempt: int = 1) -> ProcessingResult:
        log_stage(
            job_id=task.job_id,
            stage="DEQUEUED",
            event="STARTED",
            user=task.user_id,
            target_lang=task.target_lang,
            model=task.model,
            attempt=attempt,
        )

        already_done = self._begin(task)
        if already_done is not None:
            return already_done

        outcome = self._run_step("DOWNLOADING", self._download, task)
        if outcome.ok:
            source_text = outcome.value
            outcome = self._run_step("TRANSLATING", self._translate, task, source_text)
        if outcome.ok:
            outcome = self._run_step("UPLOADING", self._upload, task, outcome.value)

        if not outcome.ok:
            self._record_failure(task, outcome.failure, attempt=attempt)
            raise JobProcessingError(task.job_id, outcome.failure.message, retryable=outcome.failure.retryable)

        return self._finalize(task, outcome.value, attempt=attempt)

    def abandon(self, task: TranslationTask, reason: str) -> bool:
        """Settle a job whose message ran out of attempts without a worker reporting back."""
        message = bounded_error_message(reason, secrets=self._secrets)
        result = self.store.transition(
            task.job_id,
            JOB_STATUS_FAILED,
            owner_id=task.user_id,
            error_message=message,
            context="WORKER_ABANDON",
        )
        self.cache.invalidate(task.job_id)
        log_stage(
            job_id=task.job_id,
            stage="ABANDONED",
            event="FAILED" if result.applied else "SKIPPED",
            user=task.user_id,
            error=message,
            previous_status=result.previous,
        )
        return result.applied

    def _run_step(self, stage: str, step, task: TranslationTask, *args) -> StepResult:
        # anything a step did not anticipate still has to settle the job as FAILED
        try:
            return step(task, *args)
        except Exception as exc:
            logger.exception(
                "step_crashed job_id=%s stage=%s error=%s",
                task.job_id,
                stage,
                exc.__class__.__name__,
            )
            return StepResult.failed(stage, f"Unexpected error: {exc.__class__.__name__}")

    # =========================================================
    # STEP 1: PROCESSING
    # =========================================================
    def _begin(self, task: TranslationTask) -> Optional[ProcessingResult]:
        result = self.store.transition(
            task.job_id,
            JOB_STATUS_PROCESSING,
            owner_id=task.user_id,
            context="WORKER_BEGIN",
        )

        if result.missing:
            log_stage(job_id=task.job_id, stage="DEQUEUED", event="FAILED", user=task.user_id, error="Job not found")
            raise JobProcessingError(task.job_id, "Job not found for message", retryable=False)

        if not result.applied:
            if result.current == JOB_STATUS_COMPLETED:
                # redelivery after a finished attempt; nothing to redo
                record = self.store.get(task.job_id)
                self.cache.invalidate(task.job_id)
                log_stage(
                    job_id=task.job_id,
                    stage="DEQUEUED",
                    event="SKIPPED",
                    user=task.user_id,
                    message="already_completed",
                )
                incr("worker_jobs_total", outcome="skipped")
                return ProcessingResult(
                    job_id=task.job_id,
                    translated_file_key=record.translated_file_key,
                    skipped=True,
                )

            retryable = result.current != JOB_STATUS_PENDING
            log_stage(
                job_id=task.job_id,
                stage="DEQUEUED",
                event="FAILED",
                user=task.user_id,
                error=f"Job cannot start processing from {result.current}",
            )
            raise JobProcessingError(
                task.job_id,
                f"Job cannot start processing from {result.current}",
                retryable=retryable,
            )

        self.cache.invalidate(task.job_id)
        log_stage(
            job_id=task.job_id,
            stage="PROCESSING",
            event="COMPLETED",
            user=task.user_id,
            previous_status=result.previous,
            redelivery=result.noop,
        )
        return None

    # =========================================================
    # STEP 2: DOWNLOAD
    # =========================================================
    def _download(self, task: TranslationTask) -> StepResult:
        log_stage(job_id=task.job_id, stage="DOWNLOADING", event="STARTED", source_key=task.source_key)
        try:
            raw = self.blobs.get(task.source_key)
        except TransientInfrastructureError as exc:
            return StepResult.failed("DOWNLOADING", f"Could not download source file: {exc.message}")

        if not raw:
            return StepResult.failed("DOWNLOADING", "Downloaded file was empty or corrupted.", retryable=False)

        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            return StepResult.failed("DOWNLOADING", "Source file is not valid UTF-8 text.", retryable=False)

        if not text.strip():
            return StepResult.failed("DOWNLOADING", "Downloaded file was empty or corrupted.", retryable=False)

        log_stage(job_id=task.job_id, stage="DOWNLOADING", event="COMPLETED", size_bytes=len(raw))
        return StepResult.success(text)

    # =========================================================
    # STEP 3: TRANSLATE
    # =========================================================
    def _translate(self, task: TranslationTask, source_text: str) -> StepResult:
        log_stage(job_id=task.job_id, stage="TRANSLATING", event="STARTED", target_lang=task.target_lang, model=task.model)
        prompt = build_translation_prompt(source_text, target_lang=task.target_lang, source_name=task.source_key)
        try:
            reply = self.engine.translate(prompt, task.target_lang, task.model)
        except EngineError as exc:
            return StepResult.failed("TRANSLATING", exc.message, retryable=exc.retryable)

        try:
            translated = validate_translation(source_text, reply, source_name=task.source_key)
        except MalformedTranslation as exc:
            return StepResult.failed("TRANSLATING", str(exc))

        log_stage(job_id=task.job_id, stage="TRANSLATING", event="COMPLETED", output_chars=len(translated))
        return StepResult.success(translated)

    # =========================================================
    # STEP 4: UPLOAD
    # =========================================================
    def _upload(self, task: TranslationTask, translated: str) -> StepResult:
        output_key = build_output_key(task.source_key, task.target_lang)
        log_stage(job_id=task.job_id, stage="UPLOADING", event="STARTED", output_key=output_key)
        try:
            self.blobs.put(output_key, translated.encode("utf-8"), content_type_for(task.source_key))
        except TransientInfrastructureError as exc:
            return StepResult.failed("UPLOADING", f"Could not store translated file: {exc.message}")

        log_stage(job_id=task.job_id, stage="UPLOADING", event="COMPLETED", output_key=output_key)
        return StepResult.success(output_key)

    # =========================================================
    # STEP 5 / 6: FINALIZE
    # =========================================================
    def _finalize(self, task: TranslationTask, output_key: str, *, attempt: int) -> ProcessingResult:
        result = self.store.transition(
            task.job_id,
            JOB_STATUS_COMPLETED,
            owner_id=task.user_id,
            result_key=output_key,
            context="WORKER_FINALIZE",
        )
        if not result.applied:
            log_stage(
                job_id=task.job_id,
                stage="FINALIZING",
                event="FAILED",
                error=f"Cannot complete job from {result.current}",
            )
            raise JobProcessingError(task.job_id, f"Cannot complete job from {result.current}", retryable=False)

        self.cache.invalidate(task.job_id)
        incr("worker_jobs_total", outcome="completed")
        log_stage(
            job_id=task.job_id,
            stage="FINALIZING",
            event="COMPLETED",
            user=task.user_id,
            target_lang=task.target_lang,
            output_key=output_key,
            attempt=attempt,
        )
        return ProcessingResult(job_id=task.job_id, translated_file_key=output_key)

    def _record_failure(self, task: TranslationTask, failure: StepFailure, *, attempt: int) -> None:
        message = bounded_error_message(failure.message, secrets=self._secrets)
        result = self.store.transition(
            task.job_id,
            JOB_STATUS_FAILED,
            owner_id=task.user_id,
            error_message=message,
            context=f"WORKER_{failure.stage}",
        )
        self.cache.invalidate(task.job_id)
        incr("worker_jobs_total", outcome="failed", stage=failure.stage)
        log_stage(
            job_id=task.job_id,
            stage=failure.stage,
            event="FAILED",
            user=task.user_id,
            error=message,
            retryable=failure.retryable,
            attempt=attempt,
            recorded=result.applied,
        )
