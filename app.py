# User value: This file serves the subtitle translation API with consistent errors and traceable requests.
# app.py
import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from services.errors import TranslationServiceError
from utils.json_logging import configure_json_logging
from utils.metrics import incr, observe_ms
from utils.request_id import REQUEST_ID_HEADER, get_request_id, normalize_request_id, set_request_id


def configure_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL, logging.INFO)
    configure_json_logging(service=config.SERVICE_NAME, level=level)


configure_logging()
logger = logging.getLogger("api.error")

from routes.dlq import router as dlq_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.queue_health import router as queue_health_router
from routes.translate import router as translate_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tests install their own container before the app starts
    owns_container = getattr(app.state, "container", None) is None
    if owns_container:
        from services.container import build_container
        from startup_env import validate_startup_env

        validate_startup_env("api")
        app.state.container = build_container("api")
    try:
        yield
    finally:
        if owns_container:
            app.state.container.close()
            app.state.container = None


app = FastAPI(title="Subtitle Translate API", lifespan=lifespan)


# User value: normalizes data so users see consistent CORS behavior across deployments.
def _parse_csv_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    values = [x.strip() for x in raw.split(",") if x.strip()]
    seen = set()
    ordered = []
    for item in values:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = normalize_request_id(request.headers.get(REQUEST_ID_HEADER))
    set_request_id(request_id)
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = int(getattr(response, "status_code", 500))
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        duration_ms = (time.perf_counter() - started) * 1000.0
        method = request.method.upper()
        route = request.scope.get("route")
        path = getattr(route, "path", None) or request.url.path
        status_class = f"{status_code // 100}xx"
        incr("api_http_requests_total", method=method, path=path, status_class=status_class, status_code=status_code)
        observe_ms("api_http_request_latency_ms", duration_ms, method=method, path=path, status_class=status_class)
        set_request_id(None)


def _extract_error_message(detail) -> str:
    if isinstance(detail, dict):
        return str(detail.get("error_message") or detail.get("message") or detail.get("detail") or detail)
    if isinstance(detail, list):
        return "; ".join(str(x) for x in detail)
    return str(detail)


def _to_error_code(status_code: int, detail) -> str:
    if isinstance(detail, dict) and detail.get("error_code"):
        return str(detail.get("error_code")).strip().upper()
    if status_code == 401:
        return "AUTH_UNAUTHORIZED"
    if status_code == 403:
        return "AUTH_FORBIDDEN"
    if status_code == 404:
        return "RESOURCE_NOT_FOUND"
    if status_code == 405:
        return "METHOD_NOT_ALLOWED"
    if status_code == 409:
        return "STATE_CONFLICT"
    if status_code == 400:
        return "INVALID_REQUEST"
    return f"HTTP_{status_code}"


def _error_body(*, request: Request, status_code: int, detail, error_message: str | None = None) -> dict:
    request_id = get_request_id() or normalize_request_id(request.headers.get(REQUEST_ID_HEADER))
    return {
        "error_code": _to_error_code(status_code, detail),
        "error_message": error_message or _extract_error_message(detail),
        "detail": detail,
        "path": request.url.path,
        "request_id": request_id,
    }


def field_errors_from_validation(errors: list) -> list[dict]:
    """FastAPI's loc tuples -> the same `[{path, message}]` shape the admission validator emits."""
    out = []
    for err in errors:
        loc = [str(part) for part in (err.get("loc") or ())]
        out.append({"path": ".".join(loc) or "body", "message": str(err.get("msg") or "Invalid value")})
    return out


@app.exception_handler(TranslationServiceError)
async def translation_error_handler(request: Request, exc: TranslationServiceError):
    body = _error_body(
        request=request,
        status_code=exc.status_code,
        detail=exc.detail,
        error_message=exc.message,
    )
    body["error_code"] = exc.error_code
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_failed status=%s path=%s request_id=%s error_code=%s error_message=%s",
        exc.status_code,
        request.url.path,
        body["request_id"],
        body["error_code"],
        body["error_message"],
    )
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = field_errors_from_validation(exc.errors())
    body = _error_body(
        request=request,
        status_code=400,
        detail=detail,
        error_message="Invalid Request Data",
    )
    body["error_code"] = "VALIDATION_ERROR"
    logger.warning(
        "request_failed_validation status=400 path=%s request_id=%s fields=%s",
        request.url.path,
        body["request_id"],
        [d["path"] for d in detail],
    )
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = _error_body(request=request, status_code=exc.status_code, detail=exc.detail)
    logger.warning(
        "request_failed status=%s path=%s request_id=%s error_code=%s error_message=%s",
        exc.status_code,
        request.url.path,
        body["request_id"],
        body["error_code"],
        body["error_message"],
    )
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = get_request_id() or normalize_request_id(request.headers.get(REQUEST_ID_HEADER))
    logger.exception(
        "request_failed_unhandled path=%s request_id=%s error=%s: %s",
        request.url.path,
        request_id,
        exc.__class__.__name__,
        exc,
    )
    body = _error_body(
        request=request,
        status_code=500,
        detail="Unhandled server exception",
        error_message="Internal server error",
    )
    body["error_code"] = "INTERNAL_SERVER_ERROR"
    return JSONResponse(status_code=500, content=body)


CORS_ALLOW_ORIGINS = _parse_csv_env("CORS_ALLOW_ORIGINS")
CORS_ALLOW_ORIGIN_REGEX = (os.getenv("CORS_ALLOW_ORIGIN_REGEX") or "").strip() or None
logger.info(
    "cors_configured allow_origins=%s allow_origin_regex=%s",
    CORS_ALLOW_ORIGINS,
    CORS_ALLOW_ORIGIN_REGEX or "",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(queue_health_router)
app.include_router(dlq_router)
app.include_router(translate_router)
