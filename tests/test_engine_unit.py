# User value: This test makes sure engine failures are classified so users are not kept waiting on hopeless retries.
import json
import unittest

import httpx

from services.engine import GeminiEngine, redact_secrets, resolve_model
from services.errors import EngineError

API_KEY = "test-key-123"


def _reply(text="Hola", finish="STOP"):
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish}]}


def _engine(handler, **kwargs):
    return GeminiEngine(
        API_KEY,
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class GeminiEngineUnitTests(unittest.TestCase):
    def test_successful_call(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_reply("Hola mundo"))

        out = _engine(handler).translate("PROMPT", "es", "gemini-1.5-pro")

        self.assertEqual(out, "Hola mundo")
        self.assertEqual(seen["url"], "https://gemini.test/v1beta/models/gemini-1.5-pro:generateContent")
        self.assertEqual(seen["key"], API_KEY)
        self.assertNotIn(API_KEY, seen["url"])
        self.assertEqual(seen["body"]["contents"][0]["parts"][0]["text"], "PROMPT")
        self.assertEqual(seen["body"]["generationConfig"]["maxOutputTokens"], 8192)
        self.assertEqual(seen["body"]["generationConfig"]["temperature"], 0.2)

    def test_unknown_model_falls_back_to_flash(self):
        self.assertEqual(resolve_model("gpt-4"), "gemini-1.5-flash")
        self.assertEqual(resolve_model(None), "gemini-1.5-flash")

    def test_rate_limit_is_retryable(self):
        engine = _engine(lambda request: httpx.Response(429, text="quota"))
        with self.assertRaises(EngineError) as ctx:
            engine.translate("p", "es")
        self.assertTrue(ctx.exception.retryable)
        self.assertIn("429", ctx.exception.message)

    def test_bad_request_is_permanent_and_redacted(self):
        engine = _engine(lambda request: httpx.Response(400, text=f"bad key {API_KEY}"))
        with self.assertRaises(EngineError) as ctx:
            engine.translate("p", "es")
        self.assertFalse(ctx.exception.retryable)
        self.assertNotIn(API_KEY, ctx.exception.message)

    def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with self.assertRaises(EngineError) as ctx:
            _engine(handler, timeout_sec=90).translate("p", "es")
        self.assertTrue(ctx.exception.retryable)
        self.assertIn("timed out after 90s", ctx.exception.message)

    def test_cut_off_output_is_permanent(self):
        engine = _engine(lambda request: httpx.Response(200, json=_reply("partial", finish="MAX_TOKENS")))
        with self.assertRaises(EngineError) as ctx:
            engine.translate("p", "es")
        self.assertFalse(ctx.exception.retryable)

    def test_blocked_prompt_is_permanent(self):
        engine = _engine(lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
        with self.assertRaises(EngineError) as ctx:
            engine.translate("p", "es")
        self.assertFalse(ctx.exception.retryable)

    def test_empty_text_is_retryable(self):
        engine = _engine(lambda request: httpx.Response(200, json=_reply("   ")))
        with self.assertRaises(EngineError) as ctx:
            engine.translate("p", "es")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.message, "Gemini returned an empty response.")

    def test_non_object_payload_is_an_engine_error(self):
        for payload in ([], {"candidates": ["oops"]}, {"candidates": {"a": 1}}):
            engine = _engine(lambda request, payload=payload: httpx.Response(200, json=payload))
            with self.assertRaises(EngineError) as ctx:
                engine.translate("p", "es")
            self.assertTrue(ctx.exception.retryable)

    def test_missing_api_key_is_permanent(self):
        engine = GeminiEngine("", transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        with self.assertRaises(EngineError) as ctx:
            engine.translate("p", "es")
        self.assertFalse(ctx.exception.retryable)

    def test_redact_secrets(self):
        self.assertEqual(redact_secrets("url?key=abc&x=1"), "url?key=***&x=1")
        self.assertEqual(redact_secrets("Bearer abc.def"), "Bearer ***")
        self.assertEqual(redact_secrets("has s3cret", ("s3cret",)), "has ***")


if __name__ == "__main__":
    unittest.main()
