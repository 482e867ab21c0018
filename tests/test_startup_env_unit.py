# User value: This test makes misconfigured deployments fail fast instead of losing jobs at runtime.
import os
import unittest
from unittest.mock import patch

from startup_env import collect_startup_errors, validate_startup_env

BASE_ENV = {
    "REDIS_URL": "redis://localhost:6379/0",
    "DATABASE_URL": "postgresql+psycopg://u:p@db/jobs",
    "QUEUE_NAME": "translation-queue",
    "GCS_BUCKET_NAME": "bucket",
    "GOOGLE_CLIENT_ID": "client",
    "GEMINI_API_KEY": "key",
    "GOOGLE_APPLICATION_CREDENTIALS_JSON": "e30=",
    "CORS_ALLOW_ORIGINS": "https://app.example.com",
}


class StartupEnvUnitTests(unittest.TestCase):
    def test_valid_api_env(self):
        with patch.dict(os.environ, BASE_ENV, clear=True):
            errors, warnings = collect_startup_errors("api")
        self.assertEqual(errors, [])
        self.assertEqual(warnings, [])

    def test_missing_keys_are_reported_per_role(self):
        env = dict(BASE_ENV)
        env.pop("GEMINI_API_KEY")
        with patch.dict(os.environ, env, clear=True):
            api_errors, _ = collect_startup_errors("api")
            worker_errors, _ = collect_startup_errors("worker")
        self.assertEqual(api_errors, [])
        self.assertIn("GEMINI_API_KEY is required", worker_errors)

    def test_engine_timeout_must_fit_inside_lease(self):
        env = dict(BASE_ENV, ENGINE_TIMEOUT_SEC="150", QUEUE_LEASE_SEC="120")
        with patch.dict(os.environ, env, clear=True):
            errors, _ = collect_startup_errors("worker")
        self.assertIn("ENGINE_TIMEOUT_SEC must be lower than QUEUE_LEASE_SEC", errors)

    def test_bad_values(self):
        env = dict(BASE_ENV, REDIS_URL="http://redis", QUEUE_MAX_ATTEMPTS="zero", CORS_ALLOW_ORIGINS="*")
        with patch.dict(os.environ, env, clear=True):
            errors, _ = collect_startup_errors("api")
        self.assertIn("REDIS_URL must start with redis:// or rediss://", errors)
        self.assertIn("QUEUE_MAX_ATTEMPTS must be a number", errors)
        self.assertIn("CORS_ALLOW_ORIGINS must not contain '*' in strict allowlist mode", errors)

    def test_sqlite_is_a_warning(self):
        env = dict(BASE_ENV, DATABASE_URL="sqlite:///./jobs.db")
        with patch.dict(os.environ, env, clear=True):
            errors, warnings = collect_startup_errors("api")
        self.assertEqual(errors, [])
        self.assertEqual(len(warnings), 1)

    def test_validate_raises(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(RuntimeError):
                validate_startup_env("worker")


if __name__ == "__main__":
    unittest.main()
