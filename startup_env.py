import logging
import os
from typing import List

logger = logging.getLogger("api.startup")

ROLE_API = "api"
ROLE_WORKER = "worker"

_REQUIRED = {
    ROLE_API: ["GOOGLE_CLIENT_ID", "GCS_BUCKET_NAME", "QUEUE_NAME"],
    ROLE_WORKER: ["GCS_BUCKET_NAME", "QUEUE_NAME", "GEMINI_API_KEY"],
}


def _is_blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def _validate_redis_url(value: str | None, key: str, errors: List[str]) -> None:
    if _is_blank(value):
        errors.append(f"{key} is required")
        return
    if not (value.startswith("redis://") or value.startswith("rediss://")):
        errors.append(f"{key} must start with redis:// or rediss://")


def _validate_database_url(value: str | None, errors: List[str]) -> None:
    if _is_blank(value):
        errors.append("DATABASE_URL is required")
        return
    if not (value.startswith("postgresql") or value.startswith("sqlite")):
        errors.append("DATABASE_URL must be a postgresql:// or sqlite:// URL")


def _validate_number_env(key: str, errors: List[str], *, minimum: float, integer: bool = True) -> float | None:
    raw = os.getenv(key)
    if _is_blank(raw):
        return None
    try:
        value = int(raw) if integer else float(raw)
    except ValueError:
        errors.append(f"{key} must be a number")
        return None
    if value < minimum:
        errors.append(f"{key} must be >= {minimum}")
    return value


def _validate_cors_allow_origins(value: str | None, errors: List[str]) -> None:
    if _is_blank(value):
        errors.append("CORS_ALLOW_ORIGINS is required")
        return

    origins = [x.strip() for x in str(value).split(",") if x.strip()]
    if not origins:
        errors.append("CORS_ALLOW_ORIGINS must contain at least one origin")
        return

    for origin in origins:
        if origin == "*":
            errors.append("CORS_ALLOW_ORIGINS must not contain '*' in strict allowlist mode")
            continue
        if not (origin.startswith("http://") or origin.startswith("https://")):
            errors.append(f"CORS origin must start with http:// or https://: {origin}")


def _validate_timeouts(errors: List[str]) -> None:
    engine_timeout = _validate_number_env("ENGINE_TIMEOUT_SEC", errors, minimum=1, integer=False) or 90.0
    lease = _validate_number_env("QUEUE_LEASE_SEC", errors, minimum=1, integer=False) or 120.0
    if engine_timeout >= lease:
        errors.append("ENGINE_TIMEOUT_SEC must be lower than QUEUE_LEASE_SEC")


def collect_startup_errors(role: str) -> tuple[List[str], List[str]]:
    errors: List[str] = []
    warnings: List[str] = []

    for key in _REQUIRED.get(role, []):
        if _is_blank(os.getenv(key)):
            errors.append(f"{key} is required")

    _validate_redis_url(os.getenv("REDIS_URL"), "REDIS_URL", errors)
    _validate_database_url(os.getenv("DATABASE_URL", "sqlite:///./jobs.db"), errors)
    _validate_number_env("QUEUE_MAX_ATTEMPTS", errors, minimum=1)
    _validate_number_env("UPLOAD_URL_TTL_SEC", errors, minimum=60)
    _validate_number_env("DOWNLOAD_URL_TTL_SEC", errors, minimum=120)
    _validate_number_env("CACHE_TTL_ACTIVE_SEC", errors, minimum=1)
    _validate_number_env("CACHE_TTL_TERMINAL_SEC", errors, minimum=1)

    if role == ROLE_API:
        _validate_cors_allow_origins(os.getenv("CORS_ALLOW_ORIGINS"), errors)
    if role == ROLE_WORKER:
        _validate_number_env("WORKER_CONCURRENCY", errors, minimum=1)
        _validate_timeouts(errors)

    if _is_blank(os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")):
        warnings.append(
            "GOOGLE_APPLICATION_CREDENTIALS_JSON is not set; relying on ambient ADC credentials"
        )
    if str(os.getenv("DATABASE_URL", "sqlite")).startswith("sqlite"):
        warnings.append("DATABASE_URL points at SQLite; use PostgreSQL when API and workers run on separate hosts")

    return errors, warnings


def validate_startup_env(role: str = ROLE_API) -> None:
    errors, warnings = collect_startup_errors(role)

    if errors:
        for err in errors:
            logger.error("startup_env_invalid role=%s %s", role, err)
        raise RuntimeError("Startup env validation failed: " + "; ".join(errors))

    for warning in warnings:
        logger.warning("startup_env_warning role=%s %s", role, warning)

    logger.info("startup_env_validated role=%s keys=%s", role, _REQUIRED.get(role, []) + ["REDIS_URL", "DATABASE_URL"])
