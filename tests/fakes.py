# Test doubles shared by the unit tests: in-memory blob store, scripted engine, fake clock.
import fakeredis
from sqlalchemy import func, select

from services.db import build_engine, build_session_factory, init_schema
from services.errors import EngineError, TransientInfrastructureError
from services.job_cache import JobCache
from services.job_store import JobRecord, JobStore
from services.queue import RetryPolicy, WorkQueue

SOURCE_SRT = (
    "1\n"
    "00:00:01,000 --> 00:00:02,500\n"
    "Hello there.\n"
    "\n"
    "2\n"
    "00:00:03,000 --> 00:00:04,000\n"
    "How are you?\n"
)

TRANSLATED_SRT = (
    "1\n"
    "00:00:01,000 --> 00:00:02,500\n"
    "Hola.\n"
    "\n"
    "2\n"
    "00:00:03,000 --> 00:00:04,000\n"
    "¿Cómo estás?\n"
)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


class InMemoryBlobStore:
    def __init__(self, bucket_name: str = "test-bucket"):
        self.bucket_name = bucket_name
        self.objects = {}
        self.content_types = {}
        self.signed = []
        self.fail_signing = False
        self.fail_get = False
        self.fail_put = False

    def issue_upload_handle(self, key, content_type, ttl_sec):
        if self.fail_signing:
            raise TransientInfrastructureError("blob store", "signing unavailable")
        self.signed.append(("PUT", key))
        return f"https://storage.test/{self.bucket_name}/{key}?method=PUT&ct={content_type}&ttl={ttl_sec}"

    def issue_download_handle(self, key, ttl_sec):
        if self.fail_signing:
            raise TransientInfrastructureError("blob store", "signing unavailable")
        self.signed.append(("GET", key))
        return f"https://storage.test/{self.bucket_name}/{key}?method=GET&ttl={ttl_sec}&n={len(self.signed)}"

    def get(self, key):
        if self.fail_get:
            raise TransientInfrastructureError("blob store", f"NotFound for {key}")
        if key not in self.objects:
            raise TransientInfrastructureError("blob store", f"NotFound for {key}")
        return self.objects[key]

    def put(self, key, data, content_type):
        if self.fail_put:
            raise TransientInfrastructureError("blob store", f"ServiceUnavailable for {key}")
        self.objects[key] = data
        self.content_types[key] = content_type


class ScriptedEngine:
    """Returns (or raises) the scripted replies in order; repeats the last one when exhausted."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def translate(self, prompt, target_lang, model=None):
        self.calls.append({"prompt": prompt, "target_lang": target_lang, "model": model})
        index = min(len(self.calls), len(self.replies)) - 1
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        return reply


def failing_engine(message: str = "Translation engine error 503: overloaded", *, retryable: bool = True):
    return ScriptedEngine(EngineError(message, retryable=retryable))


def build_store() -> JobStore:
    engine = build_engine("sqlite://")
    init_schema(engine)
    return JobStore(build_session_factory(engine))


def count_jobs(store: JobStore) -> int:
    with store._sessions() as session:
        return session.execute(select(func.count()).select_from(JobRecord)).scalar_one()


def build_redis():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


def build_cache(redis_client=None, **kwargs) -> JobCache:
    return JobCache(redis_client if redis_client is not None else build_redis(), **kwargs)


def build_queue(redis_client=None, *, clock=None, max_attempts: int = 3, lease_sec: float = 120.0, **kwargs) -> WorkQueue:
    return WorkQueue(
        redis_client if redis_client is not None else build_redis(),
        "translation-queue",
        retry=RetryPolicy(max_attempts=max_attempts, backoff_base_sec=1.0),
        lease_sec=lease_sec,
        clock=clock or FakeClock(),
        **kwargs,
    )
