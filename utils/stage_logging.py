import logging
from typing import Any

logger = logging.getLogger("api.stage")

EVENT_FAILED = "FAILED"

# expected but worth a look: retries, skipped redeliveries, jobs left without a queue message
_WARNING_EVENTS = {"RETRY", "SKIPPED", "STUCK_QUEUED"}

# keys logging refuses in `extra`
_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _norm(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def _level_for(event: str, error: str | None) -> int:
    if event == EVENT_FAILED:
        return logging.ERROR
    if event in _WARNING_EVENTS:
        return logging.WARNING
    if error:
        return logging.ERROR
    return logging.INFO


def log_stage(
    *,
    job_id: str,
    stage: str,
    event: str,
    user: str | None = None,
    target_lang: str | None = None,
    model: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """
    One job milestone as a structured log record.

    Fields travel as record attributes, so the JSON formatter emits them as
    top-level keys next to `service` and `request_id`.
    """
    event = event.upper()
    fields = {"job_id": job_id, "stage": stage, "event": event}
    for key, value in (("user", user), ("target_lang", target_lang), ("model", model), ("error", error)):
        if value:
            fields[key] = value
    for key, value in extra.items():
        norm = _norm(value)
        if norm is not None:
            fields[f"stage_{key}" if key in _RECORD_ATTRS else key] = norm

    logger.log(
        _level_for(event, error),
        "stage_event job_id=%s stage=%s event=%s%s",
        job_id,
        stage,
        event,
        f" error={error}" if error else "",
        extra=fields,
    )
