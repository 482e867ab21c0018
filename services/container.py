# services/container.py
"""
Explicit wiring of every collaborator from config.

The API builds one container in its lifespan hook and keeps it on
`app.state`; each worker process builds its own. Nothing here is a module
level singleton, so tests construct the services directly with fakes.
"""
import logging
from dataclasses import dataclass

import config
from services.admission import AdmissionService
from services.auth import GoogleTokenVerifier
from services.db import build_engine, build_session_factory, init_schema
from services.engine import GeminiEngine
from services.gcs import GcsBlobStore
from services.job_cache import JobCache
from services.job_store import JobStore
from services.processor import JobProcessor
from services.queue import RetentionPolicy, RetryPolicy, WorkQueue
from services.redis_client import build_redis_client

logger = logging.getLogger("api.container")


@dataclass
class ServiceContainer:
    db_engine: object
    redis: object
    store: JobStore
    cache: JobCache
    queue: WorkQueue
    blobs: GcsBlobStore
    admission: AdmissionService
    verifier: GoogleTokenVerifier
    processor: JobProcessor | None = None
    operator_ids: frozenset = frozenset()

    def close(self) -> None:
        try:
            self.redis.close()
        finally:
            self.db_engine.dispose()


def build_queue(redis_client) -> WorkQueue:
    return WorkQueue(
        redis_client,
        config.QUEUE_NAME,
        retry=RetryPolicy(
            max_attempts=config.QUEUE_MAX_ATTEMPTS,
            backoff_base_sec=config.QUEUE_BACKOFF_BASE_SEC,
        ),
        lease_sec=config.QUEUE_LEASE_SEC,
        completed_retention=RetentionPolicy(
            max_age_sec=config.QUEUE_COMPLETED_MAX_AGE_SEC,
            max_count=config.QUEUE_COMPLETED_MAX_COUNT,
        ),
        failed_retention=RetentionPolicy(
            max_age_sec=config.QUEUE_FAILED_MAX_AGE_SEC,
            max_count=config.QUEUE_FAILED_MAX_COUNT,
        ),
    )


def build_container(role: str = "api") -> ServiceContainer:
    db_engine = build_engine(config.DATABASE_URL)
    init_schema(db_engine)
    store = JobStore(build_session_factory(db_engine))

    redis_client = build_redis_client(
        config.REDIS_URL,
        client_name="subtitle-worker" if role == "worker" else "subtitle-api",
    )
    cache = JobCache(
        redis_client,
        active_ttl_sec=config.CACHE_TTL_ACTIVE_SEC,
        terminal_ttl_sec=config.CACHE_TTL_TERMINAL_SEC,
        download_ttl_sec=config.DOWNLOAD_URL_TTL_SEC,
    )
    queue = build_queue(redis_client)
    blobs = GcsBlobStore(
        config.GCS_BUCKET_NAME,
        credentials_b64=config.GOOGLE_APPLICATION_CREDENTIALS_JSON,
    )

    admission = AdmissionService(
        store=store,
        cache=cache,
        queue=queue,
        blobs=blobs,
        upload_ttl_sec=config.UPLOAD_URL_TTL_SEC,
        download_ttl_sec=config.DOWNLOAD_URL_TTL_SEC,
    )

    processor = None
    if role == "worker":
        engine = GeminiEngine(
            config.GEMINI_API_KEY,
            base_url=config.GEMINI_BASE_URL,
            timeout_sec=config.ENGINE_TIMEOUT_SEC,
            max_output_tokens=config.ENGINE_MAX_OUTPUT_TOKENS,
        )
        processor = JobProcessor(
            store=store,
            cache=cache,
            blobs=blobs,
            engine=engine,
            secrets=(config.GEMINI_API_KEY,),
        )

    logger.info("container_ready role=%s queue=%s bucket=%s", role, queue.name, blobs.bucket_name)
    return ServiceContainer(
        db_engine=db_engine,
        redis=redis_client,
        store=store,
        cache=cache,
        queue=queue,
        blobs=blobs,
        admission=admission,
        verifier=GoogleTokenVerifier(config.GOOGLE_CLIENT_ID, clock_skew_sec=config.TOKEN_CLOCK_SKEW_SEC),
        processor=processor,
        operator_ids=config.OPERATOR_IDS,
    )
