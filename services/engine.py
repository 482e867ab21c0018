"""
Gemini translation engine.

Talks to the Generative Language REST API over httpx with a hard timeout.
Failures come out as EngineError, flagged retryable for timeouts, rate limits
and server errors and non-retryable for rejected requests.
"""
import logging
import re
import time
from typing import Optional

import httpx

from schemas.job_contract import DEFAULT_MODEL, MODEL_CHOICES
from services.errors import EngineError

logger = logging.getLogger("worker.engine")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# user-facing model choice -> API model name
MODEL_MAP = {
    "gemini-1.5-flash": "gemini-1.5-flash",
    "gemini-1.5-pro": "gemini-1.5-pro",
}

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


def resolve_model(model_choice: Optional[str]) -> str:
    if model_choice in MODEL_CHOICES:
        return MODEL_MAP.get(model_choice, model_choice)
    # cheapest and fastest model as fallback
    return MODEL_MAP[DEFAULT_MODEL]


def redact_secrets(text: str, secrets: tuple = ()) -> str:
    out = str(text or "")
    for secret in secrets:
        if secret:
            out = out.replace(secret, "***")
    out = re.sub(r"(key=)[^&\s]+", r"\1***", out)
    out = re.sub(r"(?i)(bearer\s+)[A-Za-z0-9._-]+", r"\1***", out)
    return out


class GeminiEngine:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_sec: float = 90.0,
        max_output_tokens: int = 8192,
        temperature: float = 0.2,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = float(timeout_sec)
        self.max_output_tokens = int(max_output_tokens)
        self.temperature = float(temperature)
        self._transport = transport

    def translate(self, prompt: str, target_lang: str, model: Optional[str] = None) -> str:
        """
        Send a fully built prompt and return the raw reply text.

        Raises EngineError when the call fails, times out, is cut off at the
        output token limit, or returns nothing.
        """
        if not self.api_key:
            raise EngineError("Translation engine is not configured", retryable=False)

        model_name = resolve_model(model)
        request_data = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        url = f"{self.base_url}/models/{model_name}:generateContent"

        started = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout_sec, transport=self._transport) as client:
                response = client.post(
                    url,
                    headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
                    json=request_data,
                )
        except httpx.TimeoutException as exc:
            raise EngineError(f"Translation engine timed out after {self.timeout_sec:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise EngineError(
                f"Translation engine request failed: {exc.__class__.__name__}"
            ) from exc

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "engine_call model=%s target_lang=%s status=%s elapsed_ms=%s",
            model_name,
            target_lang,
            response.status_code,
            elapsed_ms,
        )

        if response.status_code != 200:
            body = redact_secrets(response.text[:300], (self.api_key,))
            raise EngineError(
                f"Translation engine error {response.status_code}: {body}",
                retryable=response.status_code in _RETRYABLE_STATUS,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise EngineError("Translation engine returned invalid JSON") from exc

        return self._parse_reply(data)

    @staticmethod
    def _parse_reply(data) -> str:
        if not isinstance(data, dict):
            raise EngineError("Translation engine returned an unexpected payload")

        feedback = data.get("promptFeedback") or {}
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            raise EngineError(f"Translation blocked: {feedback['blockReason']}", retryable=False)

        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates:
            raise EngineError("Translation engine returned no candidates")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise EngineError("Translation engine returned an unexpected payload")
        finish = str(candidate.get("finishReason") or "")
        if finish == "MAX_TOKENS":
            raise EngineError("Translation was cut off at the output limit", retryable=False)
        if finish in ("SAFETY", "RECITATION", "PROHIBITED_CONTENT"):
            raise EngineError(f"Translation stopped by engine: {finish}", retryable=False)

        content = candidate.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []
        text = "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict)).strip()
        if not text:
            raise EngineError("Gemini returned an empty response.")
        return text
