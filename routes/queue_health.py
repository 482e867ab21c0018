# User value: This route gives users clear visibility into queue load while their job waits in QUEUED state.
import logging

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError

from routes.deps import get_principal, get_queue
from schemas.responses import QueueCounts

logger = logging.getLogger("api.queue_health")

router = APIRouter()


# User value: reads queue depth safely so the queue health endpoint stays reliable under transient Redis issues.
def safe_counts(queue) -> QueueCounts:
    try:
        counts = queue.counts()
    except RedisError as exc:
        logger.warning("queue_health_counts_failed queue=%s error=%s", queue.name, exc.__class__.__name__)
        return QueueCounts(waiting=-1, delayed=-1, active=-1, completed=-1, failed=-1)
    return QueueCounts(
        waiting=counts.waiting,
        delayed=counts.delayed,
        active=counts.active,
        completed=counts.completed,
        failed=counts.failed,
    )


@router.get("/queue/health")
def queue_health(queue=Depends(get_queue), principal=Depends(get_principal)):
    return {
        "queue": queue.name,
        "counts": safe_counts(queue).model_dump(),
        "max_attempts": queue.retry.max_attempts,
        "lease_sec": queue.lease_sec,
    }
