# User value: This test validates that job status changes are durable, owner-scoped and race-safe.
import unittest

from fakes import build_store
from services.job_store import TransitionResult


class JobStoreUnitTests(unittest.TestCase):
    def setUp(self):
        self.store = build_store()
        self.job = self.store.create_job(
            user_id="user-1",
            original_file_key="uploads/user-1/1_movie.srt",
            target_lang="es",
            model_used="gemini-1.5-flash",
        )

    def test_create_job_starts_pending(self):
        record = self.store.get(self.job.id)
        self.assertEqual(record.status, "PENDING")
        self.assertEqual(record.source_lang, "auto")
        self.assertIsNone(record.translated_file_key)
        self.assertIsNone(record.error_message)

    def test_get_owned_hides_other_users_jobs(self):
        self.assertIsNotNone(self.store.get_owned(self.job.id, "user-1"))
        self.assertIsNone(self.store.get_owned(self.job.id, "user-2"))
        self.assertIsNone(self.store.get_owned("missing", "user-1"))

    def test_full_lifecycle(self):
        self.assertTrue(self.store.transition(self.job.id, "QUEUED").applied)
        self.assertTrue(self.store.transition(self.job.id, "PROCESSING").applied)
        result = self.store.transition(self.job.id, "COMPLETED", result_key="results/user-1/1_movie.es.srt")

        self.assertTrue(result.applied)
        self.assertEqual(result.previous, "PROCESSING")
        self.assertEqual(result.current, "COMPLETED")
        self.assertEqual(result.record.translated_file_key, "results/user-1/1_movie.es.srt")
        self.assertIsNone(result.record.error_message)

    def test_illegal_edge_is_rejected_without_writing(self):
        result = self.store.transition(self.job.id, "COMPLETED", result_key="results/x.srt")
        self.assertFalse(result.applied)
        self.assertEqual(result.current, "PENDING")
        self.assertFalse(result.missing)
        self.assertEqual(self.store.get(self.job.id).status, "PENDING")
        self.assertIsNone(self.store.get(self.job.id).translated_file_key)

    def test_owner_mismatch_looks_missing(self):
        result = self.store.transition(self.job.id, "QUEUED", owner_id="user-2")
        self.assertFalse(result.applied)
        self.assertTrue(result.missing)
        self.assertEqual(self.store.get(self.job.id).status, "PENDING")

    def test_unknown_job_is_missing(self):
        self.assertTrue(self.store.transition("nope", "QUEUED").missing)

    # User value: a second delivery of the same job does not disturb the first one's state.
    def test_processing_to_processing_is_a_noop(self):
        self.store.transition(self.job.id, "QUEUED")
        self.store.transition(self.job.id, "PROCESSING")
        result = self.store.transition(self.job.id, "PROCESSING")
        self.assertTrue(result.applied)
        self.assertTrue(result.noop)

    def test_completed_requires_result_key(self):
        self.store.transition(self.job.id, "QUEUED")
        self.store.transition(self.job.id, "PROCESSING")
        with self.assertRaises(ValueError):
            self.store.transition(self.job.id, "COMPLETED")

    def test_completed_job_ignores_late_failure(self):
        self.store.transition(self.job.id, "QUEUED")
        self.store.transition(self.job.id, "PROCESSING")
        self.store.transition(self.job.id, "COMPLETED", result_key="results/a.srt")

        result = self.store.transition(self.job.id, "FAILED", error_message="late failure")
        self.assertFalse(result.applied)
        record = self.store.get(self.job.id)
        self.assertEqual(record.status, "COMPLETED")
        self.assertEqual(record.translated_file_key, "results/a.srt")
        self.assertIsNone(record.error_message)

    def test_failure_message_is_truncated_and_cleared_on_retry(self):
        self.store.transition(self.job.id, "QUEUED")
        self.store.transition(self.job.id, "PROCESSING")
        self.store.transition(self.job.id, "FAILED", error_message="x" * 900)
        self.assertEqual(len(self.store.get(self.job.id).error_message), 500)

        result = self.store.transition(self.job.id, "PROCESSING")
        self.assertTrue(result.applied)
        self.assertEqual(result.previous, "FAILED")
        self.assertIsNone(self.store.get(self.job.id).error_message)

    def test_transition_result_flags(self):
        self.assertTrue(TransitionResult(applied=False, previous=None, current=None).missing)
        self.assertFalse(TransitionResult(applied=True, previous="QUEUED", current="PROCESSING").noop)


if __name__ == "__main__":
    unittest.main()
