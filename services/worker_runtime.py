# services/worker_runtime.py
import logging
import threading
import time
from typing import Optional

from pydantic import ValidationError as PayloadError

from schemas.job_contract import TranslationTask
from services.errors import JobProcessingError, TransientInfrastructureError
from utils.metrics import incr, observe_ms
from utils.request_id import bound_request_id

logger = logging.getLogger("worker.runtime")


class QueueWorker:
    """
    One consumption slot: reclaim expired leases, lease a message, run it, ack or fail it.

    Several QueueWorker instances (threads or processes) may share one queue;
    they share no per-job state.
    """

    def __init__(self, *, queue, processor, name: str = "worker-1", idle_sleep_sec: float = 1.0):
        self.queue = queue
        self.processor = processor
        self.name = name
        self.idle_sleep_sec = float(idle_sleep_sec)

    def run_forever(self, stop_event: threading.Event) -> None:
        logger.info("worker_started worker=%s queue=%s", self.name, self.queue.name)
        while not stop_event.is_set():
            try:
                handled = self.run_once()
            except TransientInfrastructureError as exc:
                logger.error("worker_queue_unavailable worker=%s error=%s", self.name, exc)
                handled = False
            if not handled:
                stop_event.wait(self.idle_sleep_sec)
        logger.info("worker_stopped worker=%s", self.name)

    def run_once(self) -> bool:
        """Handle at most one message. Returns False when there was nothing to do."""
        self._settle_expired_leases()

        leased = self.queue.lease()
        if leased is None:
            return False

        with bound_request_id(f"msg-{leased.message_id}"):
            self._handle(leased)
        return True

    def _handle(self, leased) -> None:
        started = time.perf_counter()
        try:
            task = TranslationTask(**leased.payload)
        except (PayloadError, TypeError) as exc:
            logger.error("worker_bad_payload worker=%s message_id=%s error=%s", self.name, leased.message_id, exc)
            self.queue.fail(leased, f"Invalid message payload: {exc.__class__.__name__}", retryable=False)
            return

        logger.info(
            "worker_job_active worker=%s message_id=%s job_id=%s attempt=%s/%s",
            self.name,
            leased.message_id,
            task.job_id,
            leased.attempt,
            leased.max_attempts,
        )

        try:
            result = self.processor.process(task, attempt=leased.attempt)
        except JobProcessingError as exc:
            self._fail(leased, task, exc.message, retryable=exc.retryable)
        except TransientInfrastructureError as exc:
            self._fail(leased, task, exc.message, retryable=True)
        except Exception as exc:
            logger.exception(
                "worker_job_crashed worker=%s message_id=%s job_id=%s error=%s",
                self.name,
                leased.message_id,
                task.job_id,
                exc.__class__.__name__,
            )
            self._fail(leased, task, f"Unexpected error: {exc.__class__.__name__}", retryable=True)
        else:
            acked = self.queue.ack(leased, result.model_dump())
            logger.info(
                "worker_job_completed worker=%s message_id=%s job_id=%s result=%s acked=%s",
                self.name,
                leased.message_id,
                task.job_id,
                result.translated_file_key,
                acked,
            )
        finally:
            observe_ms("worker_job_latency_ms", (time.perf_counter() - started) * 1000.0, queue=self.queue.name)

    def _fail(self, leased, task: TranslationTask, message: str, *, retryable: bool) -> None:
        decision = self.queue.fail(leased, message, retryable=retryable)
        incr("worker_attempts_failed_total", will_retry=decision.will_retry)
        if decision.will_retry:
            logger.warning(
                "worker_job_retry worker=%s message_id=%s job_id=%s attempt=%s delay_sec=%s error=%s",
                self.name,
                leased.message_id,
                task.job_id,
                decision.attempts,
                decision.delay_sec,
                message,
            )
        else:
            logger.error(
                "worker_job_failed worker=%s message_id=%s job_id=%s attempts=%s error=%s",
                self.name,
                leased.message_id,
                task.job_id,
                decision.attempts,
                message,
            )

    def _settle_expired_leases(self) -> None:
        for reclaimed in self.queue.reclaim_expired():
            if not reclaimed.exhausted:
                continue
            task = self._task_or_none(reclaimed.payload)
            if task is None:
                continue
            try:
                self.processor.abandon(
                    task,
                    f"Worker lease expired after {reclaimed.attempts} attempts",
                )
            except TransientInfrastructureError as exc:
                logger.error("worker_abandon_failed job_id=%s error=%s", task.job_id, exc)

    @staticmethod
    def _task_or_none(payload: dict) -> Optional[TranslationTask]:
        try:
            return TranslationTask(**payload)
        except (PayloadError, TypeError):
            return None
