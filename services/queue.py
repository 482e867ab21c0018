# services/queue.py
"""
Redis-backed work queue with leases, retries and bounded bookkeeping.

Key layout for a queue named `translation-queue` (prefix `q:translation-queue`):

    {prefix}:wait          LIST  message ids ready for a worker (FIFO)
    {prefix}:delayed       ZSET  message id -> time it may be retried
    {prefix}:active        ZSET  message id -> lease expiry
    {prefix}:completed     ZSET  message id -> finish time
    {prefix}:failed        ZSET  message id -> finish time
    {prefix}:msg:{id}      HASH  payload, attempts, lease_token, last_error, result

A message is in at most one of wait/delayed/active/completed/failed. Moves
between the sorted sets are arbitrated by ZREM: only the caller whose ZREM
removed the member performs the follow-up move.
"""
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

from redis.exceptions import RedisError

from services.errors import TransientInfrastructureError

logger = logging.getLogger("queue")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_sec: float = 1.0

    def delay_for(self, attempts_made: int) -> float:
        # exponential: 1s, 2s, 4s, ...
        return float(self.backoff_base_sec) * (2 ** max(0, int(attempts_made) - 1))


@dataclass(frozen=True)
class RetentionPolicy:
    max_age_sec: int
    max_count: int


DEFAULT_COMPLETED_RETENTION = RetentionPolicy(max_age_sec=2 * 3600, max_count=10)
DEFAULT_FAILED_RETENTION = RetentionPolicy(max_age_sec=24 * 3600, max_count=10)


@dataclass(frozen=True)
class LeasedMessage:
    message_id: str
    payload: dict
    attempt: int
    max_attempts: int
    lease_token: str
    lease_expires_at: float


@dataclass(frozen=True)
class FailureDecision:
    will_retry: bool
    attempts: int
    delay_sec: float = 0.0
    stale_lease: bool = False


@dataclass(frozen=True)
class ReclaimedMessage:
    message_id: str
    payload: dict
    attempts: int
    exhausted: bool


@dataclass
class QueueCounts:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class WorkQueue:
    def __init__(
        self,
        redis_client,
        name: str,
        *,
        retry: RetryPolicy = RetryPolicy(),
        lease_sec: float = 120.0,
        completed_retention: RetentionPolicy = DEFAULT_COMPLETED_RETENTION,
        failed_retention: RetentionPolicy = DEFAULT_FAILED_RETENTION,
        clock: Callable[[], float] = time.time,
    ):
        self._r = redis_client
        self.name = name
        self.retry = retry
        self.lease_sec = float(lease_sec)
        self.completed_retention = completed_retention
        self.failed_retention = failed_retention
        self._clock = clock

        prefix = f"q:{name}"
        self.wait_key = f"{prefix}:wait"
        self.delayed_key = f"{prefix}:delayed"
        self.active_key = f"{prefix}:active"
        self.completed_key = f"{prefix}:completed"
        self.failed_key = f"{prefix}:failed"
        self._msg_prefix = f"{prefix}:msg:"

    def msg_key(self, message_id: str) -> str:
        return f"{self._msg_prefix}{message_id}"

    # =========================================================
    # PRODUCER
    # =========================================================
    def enqueue(self, payload: dict) -> str:
        message_id = uuid.uuid4().hex
        now = self._clock()
        try:
            pipe = self._r.pipeline(transaction=True)
            pipe.hset(
                self.msg_key(message_id),
                mapping={
                    "payload": json.dumps(payload),
                    "attempts": 0,
                    "max_attempts": int(self.retry.max_attempts),
                    "enqueued_at": now,
                },
            )
            pipe.rpush(self.wait_key, message_id)
            pipe.execute()
        except RedisError as exc:
            logger.error("queue_enqueue_failed queue=%s error=%s", self.name, exc.__class__.__name__)
            raise TransientInfrastructureError("queue", exc.__class__.__name__) from exc

        logger.info("queue_enqueued queue=%s message_id=%s job_id=%s", self.name, message_id, payload.get("job_id"))
        return message_id

    # =========================================================
    # CONSUMER
    # =========================================================
    def lease(self) -> Optional[LeasedMessage]:
        try:
            self.promote_delayed()
            message_id = self._r.lpop(self.wait_key)
            if not message_id:
                return None

            now = self._clock()
            token = uuid.uuid4().hex
            expires_at = now + self.lease_sec
            key = self.msg_key(message_id)

            pipe = self._r.pipeline(transaction=True)
            pipe.zadd(self.active_key, {message_id: expires_at})
            pipe.hincrby(key, "attempts", 1)
            pipe.hset(key, mapping={"lease_token": token, "leased_at": now})
            pipe.hgetall(key)
            _, attempts, _, data = pipe.execute()
        except RedisError as exc:
            logger.error("queue_lease_failed queue=%s error=%s", self.name, exc.__class__.__name__)
            raise TransientInfrastructureError("queue", exc.__class__.__name__) from exc

        payload = self._load_payload(data)
        if payload is None:
            # body was trimmed or never written; nothing to run
            logger.error("queue_message_orphaned queue=%s message_id=%s", self.name, message_id)
            self._r.zrem(self.active_key, message_id)
            self._r.delete(key)
            return None

        return LeasedMessage(
            message_id=message_id,
            payload=payload,
            attempt=int(attempts),
            max_attempts=int(data.get("max_attempts") or self.retry.max_attempts),
            lease_token=token,
            lease_expires_at=expires_at,
        )

    def ack(self, leased: LeasedMessage, result: Optional[dict] = None) -> bool:
        try:
            if not self._holds_lease(leased):
                logger.warning(
                    "queue_ack_stale_lease queue=%s message_id=%s attempt=%s",
                    self.name,
                    leased.message_id,
                    leased.attempt,
                )
                return False
            if not self._r.zrem(self.active_key, leased.message_id):
                return False

            now = self._clock()
            pipe = self._r.pipeline(transaction=True)
            pipe.hset(
                self.msg_key(leased.message_id),
                mapping={"result": json.dumps(result or {}), "finished_at": now},
            )
            pipe.hdel(self.msg_key(leased.message_id), "lease_token")
            pipe.zadd(self.completed_key, {leased.message_id: now})
            pipe.execute()
            self._trim(self.completed_key, self.completed_retention)
        except RedisError as exc:
            logger.error("queue_ack_failed queue=%s message_id=%s error=%s", self.name, leased.message_id, exc)
            raise TransientInfrastructureError("queue", exc.__class__.__name__) from exc
        return True

    def fail(self, leased: LeasedMessage, error: str, *, retryable: bool = True) -> FailureDecision:
        try:
            if not self._holds_lease(leased):
                logger.warning(
                    "queue_fail_stale_lease queue=%s message_id=%s attempt=%s",
                    self.name,
                    leased.message_id,
                    leased.attempt,
                )
                return FailureDecision(will_retry=False, attempts=leased.attempt, stale_lease=True)
            if not self._r.zrem(self.active_key, leased.message_id):
                return FailureDecision(will_retry=False, attempts=leased.attempt, stale_lease=True)

            now = self._clock()
            key = self.msg_key(leased.message_id)
            attempts = int(self._r.hget(key, "attempts") or leased.attempt)
            will_retry = retryable and attempts < leased.max_attempts

            pipe = self._r.pipeline(transaction=True)
            pipe.hdel(key, "lease_token")
            pipe.hset(key, mapping={"last_error": str(error or "")})
            if will_retry:
                delay = self.retry.delay_for(attempts)
                pipe.zadd(self.delayed_key, {leased.message_id: now + delay})
            else:
                delay = 0.0
                pipe.hset(key, mapping={"finished_at": now})
                pipe.zadd(self.failed_key, {leased.message_id: now})
            pipe.execute()

            if not will_retry:
                self._trim(self.failed_key, self.failed_retention)
        except RedisError as exc:
            logger.error("queue_fail_failed queue=%s message_id=%s error=%s", self.name, leased.message_id, exc)
            raise TransientInfrastructureError("queue", exc.__class__.__name__) from exc

        return FailureDecision(will_retry=will_retry, attempts=attempts, delay_sec=delay)

    # =========================================================
    # HOUSEKEEPING
    # =========================================================
    def promote_delayed(self) -> int:
        now = self._clock()
        due = self._r.zrangebyscore(self.delayed_key, "-inf", now)
        moved = 0
        for message_id in due:
            if self._r.zrem(self.delayed_key, message_id):
                self._r.rpush(self.wait_key, message_id)
                moved += 1
        return moved

    def reclaim_expired(self) -> List[ReclaimedMessage]:
        """
        Return messages whose lease ran out to the wait list.

        The expired lease counted as an attempt; messages that have used up
        their attempts go to the failed log instead and are reported with
        `exhausted=True` so the caller can settle the job they refer to.
        """
        now = self._clock()
        reclaimed: List[ReclaimedMessage] = []
        try:
            expired = self._r.zrangebyscore(self.active_key, "-inf", now)
            for message_id in expired:
                if not self._r.zrem(self.active_key, message_id):
                    continue
                key = self.msg_key(message_id)
                data = self._r.hgetall(key) or {}
                attempts = int(data.get("attempts") or 0)
                max_attempts = int(data.get("max_attempts") or self.retry.max_attempts)
                exhausted = attempts >= max_attempts

                pipe = self._r.pipeline(transaction=True)
                pipe.hdel(key, "lease_token")
                if exhausted:
                    pipe.hset(key, mapping={"last_error": "lease expired", "finished_at": now})
                    pipe.zadd(self.failed_key, {message_id: now})
                else:
                    pipe.rpush(self.wait_key, message_id)
                pipe.execute()

                logger.warning(
                    "queue_lease_expired queue=%s message_id=%s attempts=%s exhausted=%s",
                    self.name,
                    message_id,
                    attempts,
                    exhausted,
                )
                reclaimed.append(
                    ReclaimedMessage(
                        message_id=message_id,
                        payload=self._load_payload(data) or {},
                        attempts=attempts,
                        exhausted=exhausted,
                    )
                )
            if any(m.exhausted for m in reclaimed):
                self._trim(self.failed_key, self.failed_retention)
        except RedisError as exc:
            logger.error("queue_reclaim_failed queue=%s error=%s", self.name, exc.__class__.__name__)
            raise TransientInfrastructureError("queue", exc.__class__.__name__) from exc
        return reclaimed

    def counts(self) -> QueueCounts:
        pipe = self._r.pipeline(transaction=False)
        pipe.llen(self.wait_key)
        pipe.zcard(self.delayed_key)
        pipe.zcard(self.active_key)
        pipe.zcard(self.completed_key)
        pipe.zcard(self.failed_key)
        waiting, delayed, active, completed, failed = pipe.execute()
        return QueueCounts(
            waiting=int(waiting or 0),
            delayed=int(delayed or 0),
            active=int(active or 0),
            completed=int(completed or 0),
            failed=int(failed or 0),
        )

    def list_failed(self, limit: int = 50) -> List[dict]:
        ids = self._r.zrevrange(self.failed_key, 0, max(0, int(limit) - 1))
        items = []
        for message_id in ids:
            data = self._r.hgetall(self.msg_key(message_id)) or {}
            items.append(
                {
                    "message_id": message_id,
                    "payload": self._load_payload(data) or {},
                    "attempts": int(data.get("attempts") or 0),
                    "error": data.get("last_error"),
                    "finished_at": float(data["finished_at"]) if data.get("finished_at") else None,
                }
            )
        return items

    def get_message(self, message_id: str) -> dict:
        return self._r.hgetall(self.msg_key(message_id)) or {}

    # ---------------------------------------------------------
    # internals
    # ---------------------------------------------------------
    def _holds_lease(self, leased: LeasedMessage) -> bool:
        token = self._r.hget(self.msg_key(leased.message_id), "lease_token")
        return bool(token) and token == leased.lease_token

    def _trim(self, log_key: str, retention: RetentionPolicy) -> None:
        now = self._clock()
        doomed = list(self._r.zrangebyscore(log_key, "-inf", now - retention.max_age_sec))
        overflow = int(self._r.zcard(log_key) or 0) - len(doomed) - int(retention.max_count)
        if overflow > 0:
            oldest = self._r.zrange(log_key, len(doomed), len(doomed) + overflow - 1)
            doomed.extend(oldest)
        if not doomed:
            return

        pipe = self._r.pipeline(transaction=True)
        pipe.zrem(log_key, *doomed)
        pipe.delete(*[self.msg_key(m) for m in doomed])
        pipe.execute()
        logger.debug("queue_log_trimmed queue=%s log=%s removed=%s", self.name, log_key, len(doomed))

    @staticmethod
    def _load_payload(data: dict) -> Optional[dict]:
        raw = (data or {}).get("payload")
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None
