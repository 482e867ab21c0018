# User value: This test validates that every processing attempt leaves the job in a clear, final-or-retryable state.
import unittest

from fakes import (
    SOURCE_SRT,
    TRANSLATED_SRT,
    InMemoryBlobStore,
    ScriptedEngine,
    build_cache,
    build_store,
    failing_engine,
)
from schemas.job_contract import TranslationTask
from schemas.responses import JobStatusView
from services.errors import EngineError, JobProcessingError
from services.processor import JobProcessor, StepResult, bounded_error_message

SOURCE_KEY = "uploads/alice/1_movie.srt"
RESULT_KEY = "results/alice/1_movie.es.srt"


class ProcessorTestCase(unittest.TestCase):
    def setUp(self):
        self.store = build_store()
        self.cache = build_cache()
        self.blobs = InMemoryBlobStore()
        self.blobs.objects[SOURCE_KEY] = SOURCE_SRT.encode("utf-8")

        record = self.store.create_job(
            user_id="alice",
            original_file_key=SOURCE_KEY,
            target_lang="es",
            model_used="gemini-1.5-flash",
        )
        self.store.transition(record.id, "QUEUED")
        self.task = TranslationTask(
            job_id=record.id,
            user_id="alice",
            source_key=SOURCE_KEY,
            target_lang="es",
        )

    def _processor(self, engine, secrets=()):
        return JobProcessor(store=self.store, cache=self.cache, blobs=self.blobs, engine=engine, secrets=secrets)

    def _record(self):
        return self.store.get(self.task.job_id)


class ProcessSuccessUnitTests(ProcessorTestCase):
    def test_success_completes_job_and_stores_file(self):
        engine = ScriptedEngine(TRANSLATED_SRT)
        result = self._processor(engine).process(self.task)

        self.assertEqual(result.translated_file_key, RESULT_KEY)
        self.assertFalse(result.skipped)
        record = self._record()
        self.assertEqual(record.status, "COMPLETED")
        self.assertEqual(record.translated_file_key, RESULT_KEY)
        self.assertIsNone(record.error_message)
        self.assertEqual(self.blobs.objects[RESULT_KEY].decode("utf-8"), TRANSLATED_SRT)
        self.assertEqual(self.blobs.content_types[RESULT_KEY], "application/x-subrip")
        self.assertEqual(engine.calls[0]["target_lang"], "es")
        self.assertIn("Hello there.", engine.calls[0]["prompt"])

    def test_completion_invalidates_cached_view(self):
        self.cache.put(
            "alice",
            JobStatusView(id=self.task.job_id, status="QUEUED", target_lang="es", model="gemini-1.5-flash"),
        )
        self._processor(ScriptedEngine(TRANSLATED_SRT)).process(self.task)
        self.assertIsNone(self.cache.get(self.task.job_id))

    def test_bom_is_stripped_from_source(self):
        self.blobs.objects[SOURCE_KEY] = b"\xef\xbb\xbf" + SOURCE_SRT.encode("utf-8")
        engine = ScriptedEngine(TRANSLATED_SRT)
        self._processor(engine).process(self.task)
        self.assertNotIn("\ufeff", engine.calls[0]["prompt"])

    # User value: a redelivered message does not translate (and bill) the same file twice.
    def test_redelivery_after_completion_is_skipped(self):
        engine = ScriptedEngine(TRANSLATED_SRT)
        processor = self._processor(engine)
        processor.process(self.task)

        again = processor.process(self.task, attempt=2)

        self.assertTrue(again.skipped)
        self.assertEqual(again.translated_file_key, RESULT_KEY)
        self.assertEqual(len(engine.calls), 1)
        self.assertEqual(self._record().status, "COMPLETED")


class ProcessFailureUnitTests(ProcessorTestCase):
    def test_retryable_engine_failure_marks_failed_then_retry_succeeds(self):
        engine = ScriptedEngine(EngineError("Translation engine error 503: overloaded"), TRANSLATED_SRT)
        processor = self._processor(engine)

        with self.assertRaises(JobProcessingError) as ctx:
            processor.process(self.task, attempt=1)
        self.assertTrue(ctx.exception.retryable)
        record = self._record()
        self.assertEqual(record.status, "FAILED")
        self.assertIn("503", record.error_message)
        self.assertIsNone(record.translated_file_key)

        processor.process(self.task, attempt=2)
        record = self._record()
        self.assertEqual(record.status, "COMPLETED")
        self.assertIsNone(record.error_message)

    def test_permanent_engine_failure_is_not_retryable(self):
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(failing_engine("Translation blocked: SAFETY", retryable=False)).process(self.task)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(self._record().error_message, "Translation blocked: SAFETY")

    def test_empty_source_file_is_permanent(self):
        self.blobs.objects[SOURCE_KEY] = b""
        engine = ScriptedEngine(TRANSLATED_SRT)
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(engine).process(self.task)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(self._record().error_message, "Downloaded file was empty or corrupted.")
        self.assertEqual(engine.calls, [])

    def test_binary_source_file_is_permanent(self):
        self.blobs.objects[SOURCE_KEY] = b"\xff\xfe\x00\x81"
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(ScriptedEngine(TRANSLATED_SRT)).process(self.task)
        self.assertFalse(ctx.exception.retryable)

    def test_download_outage_is_retryable(self):
        self.blobs.fail_get = True
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(ScriptedEngine(TRANSLATED_SRT)).process(self.task)
        self.assertTrue(ctx.exception.retryable)
        self.assertTrue(self._record().error_message.startswith("Could not download source file"))

    def test_upload_outage_is_retryable_and_sets_no_result(self):
        self.blobs.fail_put = True
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(ScriptedEngine(TRANSLATED_SRT)).process(self.task)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self._record().status, "FAILED")
        self.assertIsNone(self._record().translated_file_key)

    def test_broken_translation_is_retryable(self):
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(ScriptedEngine("1\n00:00:01,000 --> 00:00:02,500\nHola.\n")).process(self.task)
        self.assertTrue(ctx.exception.retryable)
        self.assertIn("cues", self._record().error_message)

    def test_unexpected_step_crash_still_marks_failed(self):
        class CrashingBlobStore(InMemoryBlobStore):
            def get(self, key):
                raise KeyError(key)

        self.blobs = CrashingBlobStore()
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(ScriptedEngine(TRANSLATED_SRT)).process(self.task)
        self.assertTrue(ctx.exception.retryable)
        record = self._record()
        self.assertEqual(record.status, "FAILED")
        self.assertEqual(record.error_message, "Unexpected error: KeyError")

    def test_secrets_never_reach_error_message(self):
        engine = failing_engine("upstream said key=abc and token sk-live-999")
        with self.assertRaises(JobProcessingError):
            self._processor(engine, secrets=("sk-live-999",)).process(self.task)
        self.assertNotIn("sk-live-999", self._record().error_message)

    def test_unconfirmed_job_is_not_processed(self):
        record = self.store.create_job(
            user_id="alice",
            original_file_key=SOURCE_KEY,
            target_lang="fr",
            model_used="gemini-1.5-flash",
        )
        task = TranslationTask(job_id=record.id, user_id="alice", source_key=SOURCE_KEY, target_lang="fr")
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(ScriptedEngine(TRANSLATED_SRT)).process(task)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(self.store.get(record.id).status, "PENDING")

    def test_missing_job_is_not_retryable(self):
        task = TranslationTask(job_id="gone", user_id="alice", source_key=SOURCE_KEY, target_lang="es")
        with self.assertRaises(JobProcessingError) as ctx:
            self._processor(ScriptedEngine(TRANSLATED_SRT)).process(task)
        self.assertFalse(ctx.exception.retryable)

    def test_abandon_marks_processing_job_failed(self):
        self.store.transition(self.task.job_id, "PROCESSING")
        applied = self._processor(ScriptedEngine(TRANSLATED_SRT)).abandon(self.task, "Worker lease expired after 3 attempts")
        self.assertTrue(applied)
        self.assertEqual(self._record().status, "FAILED")
        self.assertEqual(self._record().error_message, "Worker lease expired after 3 attempts")


class ProcessorHelpersUnitTests(unittest.TestCase):
    def test_bounded_error_message(self):
        self.assertEqual(bounded_error_message(""), "Processing failed")
        self.assertEqual(bounded_error_message("a\n  b"), "a b")
        long = bounded_error_message("x" * 800)
        self.assertEqual(len(long), 500)
        self.assertTrue(long.endswith("..."))
        self.assertEqual(bounded_error_message("token=s3 here", secrets=("s3",)), "token=*** here")

    def test_step_result(self):
        self.assertTrue(StepResult.success("x").ok)
        failed = StepResult.failed("UPLOADING", "nope", retryable=False)
        self.assertFalse(failed.ok)
        self.assertEqual(failed.failure.stage, "UPLOADING")
        self.assertFalse(failed.failure.retryable)


if __name__ == "__main__":
    unittest.main()
