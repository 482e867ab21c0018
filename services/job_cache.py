# User value: This file makes frequent status polling cheap while never showing users an outdated status.
# services/job_cache.py
import json
import logging
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError

from schemas.job_contract import JOB_STATUS_COMPLETED
from schemas.responses import JobStatusView
from services.errors import TransientInfrastructureError

logger = logging.getLogger("api.job_cache")

CACHE_KEY_PREFIX = "job:"


def cache_key(job_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}{job_id}"


@dataclass(frozen=True)
class CachedView:
    owner_id: str
    view: JobStatusView


class JobCache:
    """
    Fast-path cache of job status views in Redis.

    Entries are only ever written whole (SET with expiry) or deleted, never
    patched in place. Reads that fail are treated as misses; invalidation
    failures are raised because the caller must not report success while a
    stale entry may survive.
    """

    def __init__(
        self,
        redis_client,
        *,
        active_ttl_sec: int = 5,
        terminal_ttl_sec: int = 3600,
        download_ttl_sec: Optional[int] = None,
    ):
        self._r = redis_client
        self.active_ttl_sec = int(active_ttl_sec)
        self.terminal_ttl_sec = int(terminal_ttl_sec)
        self.download_ttl_sec = download_ttl_sec

    def ttl_for(self, view: JobStatusView) -> int:
        # FAILED is left again when the queue retries, so only COMPLETED is final
        if view.status != JOB_STATUS_COMPLETED:
            return self.active_ttl_sec
        ttl = self.terminal_ttl_sec
        if view.download_url and self.download_ttl_sec:
            # do not keep serving a link after it expired
            ttl = min(ttl, max(1, int(self.download_ttl_sec) - 60))
        return ttl

    def get(self, job_id: str) -> Optional[CachedView]:
        try:
            raw = self._r.get(cache_key(job_id))
        except RedisError as exc:
            logger.warning("cache_read_failed job_id=%s error=%s", job_id, exc.__class__.__name__)
            return None
        if not raw:
            return None

        try:
            data = json.loads(raw)
            return CachedView(owner_id=str(data["owner_id"]), view=JobStatusView(**data["view"]))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("cache_entry_corrupt job_id=%s error=%s", job_id, exc.__class__.__name__)
            self._drop_quietly(job_id)
            return None

    def put(self, owner_id: str, view: JobStatusView) -> None:
        payload = json.dumps({"owner_id": owner_id, "view": view.model_dump()})
        try:
            self._r.set(cache_key(view.id), payload, ex=self.ttl_for(view))
        except RedisError as exc:
            logger.warning("cache_write_failed job_id=%s error=%s", view.id, exc.__class__.__name__)

    def invalidate(self, job_id: str) -> None:
        try:
            self._r.delete(cache_key(job_id))
        except RedisError as exc:
            logger.error("cache_invalidate_failed job_id=%s error=%s", job_id, exc.__class__.__name__)
            raise TransientInfrastructureError("cache", exc.__class__.__name__) from exc

    def _drop_quietly(self, job_id: str) -> None:
        try:
            self._r.delete(cache_key(job_id))
        except RedisError:
            logger.warning("cache_drop_failed job_id=%s", job_id)
