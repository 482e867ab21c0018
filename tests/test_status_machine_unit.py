# User value: This test keeps job statuses moving only forward so users never see a finished job go back.
import unittest

from utils.status_machine import check_transition, is_allowed_transition


class StatusMachineUnitTests(unittest.TestCase):
    def test_happy_path_edges_are_allowed(self):
        self.assertTrue(is_allowed_transition(None, "PENDING"))
        self.assertTrue(is_allowed_transition("PENDING", "QUEUED"))
        self.assertTrue(is_allowed_transition("QUEUED", "PROCESSING"))
        self.assertTrue(is_allowed_transition("PROCESSING", "COMPLETED"))
        self.assertTrue(is_allowed_transition("PROCESSING", "FAILED"))

    def test_skipping_states_is_blocked(self):
        self.assertFalse(is_allowed_transition("PENDING", "PROCESSING"))
        self.assertFalse(is_allowed_transition("PENDING", "COMPLETED"))
        self.assertFalse(is_allowed_transition("QUEUED", "COMPLETED"))
        self.assertFalse(is_allowed_transition("QUEUED", "PENDING"))

    # User value: a finished translation is never demoted by a late failure report.
    def test_completed_is_never_demoted(self):
        self.assertFalse(is_allowed_transition("COMPLETED", "FAILED"))
        self.assertFalse(is_allowed_transition("COMPLETED", "PROCESSING"))
        self.assertFalse(is_allowed_transition("COMPLETED", "QUEUED"))
        self.assertTrue(is_allowed_transition("COMPLETED", "COMPLETED"))

    def test_failed_job_can_be_retried_or_completed_by_a_late_delivery(self):
        self.assertTrue(is_allowed_transition("FAILED", "PROCESSING"))
        self.assertTrue(is_allowed_transition("FAILED", "COMPLETED"))
        self.assertFalse(is_allowed_transition("FAILED", "QUEUED"))

    def test_statuses_are_normalized(self):
        self.assertTrue(is_allowed_transition(" pending ", "queued"))
        self.assertFalse(is_allowed_transition("PENDING", ""))
        self.assertFalse(is_allowed_transition("UNKNOWN", "QUEUED"))

    def test_check_transition_logs_blocked_edges(self):
        with self.assertLogs("api.status_machine", level="WARNING") as logs:
            self.assertFalse(check_transition("COMPLETED", "FAILED", context="TEST", job_id="j1"))
        self.assertIn("status_transition_blocked", logs.output[0])
        self.assertIn("job_id=j1", logs.output[0])


if __name__ == "__main__":
    unittest.main()
