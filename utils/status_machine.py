# User value: This file keeps translation job status moving only along valid edges.
import logging
from typing import Optional

from schemas.job_contract import (
    JOB_STATUS_PENDING,
    JOB_STATUS_QUEUED,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
)

logger = logging.getLogger("api.status_machine")

# FAILED -> PROCESSING is the queue retry re-entering the pipeline.
# FAILED -> COMPLETED lets a racing delivery that finishes last win.
_ALLOWED = {
    None: {JOB_STATUS_PENDING},
    JOB_STATUS_PENDING: {JOB_STATUS_QUEUED},
    JOB_STATUS_QUEUED: {JOB_STATUS_PROCESSING},
    JOB_STATUS_PROCESSING: {
        JOB_STATUS_PROCESSING,
        JOB_STATUS_COMPLETED,
        JOB_STATUS_FAILED,
    },
    JOB_STATUS_COMPLETED: {JOB_STATUS_COMPLETED},
    JOB_STATUS_FAILED: {
        JOB_STATUS_PROCESSING,
        JOB_STATUS_COMPLETED,
        JOB_STATUS_FAILED,
    },
}


def _norm(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    s = str(status).strip().upper()
    return s or None


def is_allowed_transition(current: Optional[str], target: Optional[str]) -> bool:
    target_n = _norm(target)
    if not target_n:
        return False
    current_n = _norm(current)
    if current_n not in _ALLOWED:
        return False
    return target_n in _ALLOWED[current_n]


def check_transition(current: Optional[str], target: str, *, context: str, job_id: str = "") -> bool:
    if not is_allowed_transition(current, target):
        logger.warning(
            "status_transition_blocked context=%s job_id=%s current=%s target=%s",
            context,
            job_id,
            _norm(current),
            _norm(target),
        )
        return False

    if _norm(current) == _norm(target):
        logger.info(
            "status_transition_idempotent context=%s job_id=%s status=%s",
            context,
            job_id,
            _norm(target),
        )
    return True
