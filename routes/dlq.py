# User value: This file lets operators see which translations ran out of retries and why.
import logging

from fastapi import APIRouter, Depends, Query
from redis.exceptions import RedisError

from routes.deps import get_operator, get_queue
from schemas.responses import FailedMessageItem, FailedMessageList
from services.errors import TransientInfrastructureError

logger = logging.getLogger("api.dlq")

router = APIRouter(prefix="/dlq", tags=["dlq"])


# User value: only operators see failed messages, since they name other users' jobs and files.
@router.get("", response_model=FailedMessageList)
def list_dead_letter_jobs(
    limit: int = Query(50, ge=1, le=200),
    queue=Depends(get_queue),
    principal=Depends(get_operator),
):
    try:
        raw = queue.list_failed(limit)
    except RedisError as exc:
        logger.error("dlq_read_failed queue=%s error=%s", queue.name, exc.__class__.__name__)
        raise TransientInfrastructureError("queue", exc.__class__.__name__) from exc

    items = [
        FailedMessageItem(
            message_id=entry["message_id"],
            job_id=entry["payload"].get("job_id"),
            attempts=entry["attempts"],
            error=entry["error"],
            finished_at=entry["finished_at"],
            payload=entry["payload"],
        )
        for entry in raw
    ]
    return FailedMessageList(queue=queue.name, items=items)
