# User value: This file keeps the authoritative record of every translation job so users never lose track of their work.
# services/job_store.py
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import DateTime, String, Text, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from schemas.job_contract import (
    ERROR_MESSAGE_MAX_CHARS,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    SOURCE_LANG_AUTO,
)
from services.db import Base
from services.errors import TransientInfrastructureError
from utils.status_machine import check_transition

logger = logging.getLogger("api.job_store")

# compare-and-set retries when another writer changes the row between read and update
_CAS_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class JobRecord(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    original_file_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    source_lang: Mapped[str] = mapped_column(String(16), nullable=False, default=SOURCE_LANG_AUTO)
    target_lang: Mapped[str] = mapped_column(String(16), nullable=False)
    model_used: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=JOB_STATUS_PENDING)
    translated_file_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<JobRecord id={self.id} user={self.user_id} status={self.status}>"


@dataclass(frozen=True)
class TransitionResult:
    applied: bool
    previous: Optional[str]
    current: Optional[str]
    record: Optional[JobRecord] = None

    @property
    def missing(self) -> bool:
        return self.previous is None and self.current is None

    @property
    def noop(self) -> bool:
        return self.applied and self.previous == self.current


class JobStore:
    """
    Durable job store backed by SQLAlchemy.

    Every status change is a compare-and-set on the status column, so the
    database alone decides between concurrent writers to the same job.
    """

    def __init__(self, session_factory: sessionmaker, *, clock: Callable[[], datetime] = _utcnow):
        self._sessions = session_factory
        self._clock = clock

    # -----------------------------------------------------------------
    # CREATE / READ
    # -----------------------------------------------------------------
    def create_job(
        self,
        *,
        user_id: str,
        original_file_key: str,
        target_lang: str,
        model_used: str,
        source_lang: str = SOURCE_LANG_AUTO,
    ) -> JobRecord:
        now = self._clock()
        record = JobRecord(
            id=_uuid(),
            user_id=user_id,
            original_file_key=original_file_key,
            source_lang=source_lang,
            target_lang=target_lang,
            model_used=model_used,
            status=JOB_STATUS_PENDING,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._sessions() as session:
                session.add(record)
                session.commit()
        except SQLAlchemyError as exc:
            logger.error("job_create_failed user=%s error=%s", user_id, exc.__class__.__name__)
            raise TransientInfrastructureError("job store", exc.__class__.__name__) from exc

        logger.info("job_created job_id=%s user=%s key=%s", record.id, user_id, original_file_key)
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        try:
            with self._sessions() as session:
                return session.get(JobRecord, job_id)
        except SQLAlchemyError as exc:
            raise TransientInfrastructureError("job store", exc.__class__.__name__) from exc

    def get_owned(self, job_id: str, user_id: str) -> Optional[JobRecord]:
        record = self.get(job_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    # -----------------------------------------------------------------
    # TRANSITIONS
    # -----------------------------------------------------------------
    def transition(
        self,
        job_id: str,
        target: str,
        *,
        owner_id: Optional[str] = None,
        result_key: Optional[str] = None,
        error_message: Optional[str] = None,
        context: str = "",
    ) -> TransitionResult:
        """
        Move a job to `target` if the edge from its current status is legal.

        Re-reads and retries when a concurrent writer wins the race; gives up
        with `applied=False` when the edge is illegal or the row is missing or
        owned by someone else.
        """
        values = self._values_for(target, result_key=result_key, error_message=error_message)

        try:
            with self._sessions() as session:
                for _ in range(_CAS_ATTEMPTS):
                    current = session.execute(
                        select(JobRecord.status, JobRecord.user_id).where(JobRecord.id == job_id)
                    ).first()
                    if current is None:
                        return TransitionResult(applied=False, previous=None, current=None)

                    status, user_id = current
                    if owner_id is not None and user_id != owner_id:
                        return TransitionResult(applied=False, previous=None, current=None)

                    if not check_transition(status, target, context=context, job_id=job_id):
                        return TransitionResult(applied=False, previous=status, current=status)

                    if status == target == JOB_STATUS_PROCESSING:
                        return TransitionResult(applied=True, previous=status, current=status)

                    result = session.execute(
                        update(JobRecord)
                        .where(JobRecord.id == job_id, JobRecord.status == status)
                        .values(**values, updated_at=self._clock())
                        .execution_options(synchronize_session=False)
                    )
                    session.commit()
                    if result.rowcount == 1:
                        logger.info(
                            "status_transition context=%s job_id=%s from=%s to=%s",
                            context,
                            job_id,
                            status,
                            target,
                        )
                        record = session.get(JobRecord, job_id, populate_existing=True)
                        return TransitionResult(applied=True, previous=status, current=target, record=record)

                    logger.info("status_transition_raced context=%s job_id=%s expected=%s", context, job_id, status)

                latest = session.execute(select(JobRecord.status).where(JobRecord.id == job_id)).scalar_one_or_none()
                return TransitionResult(applied=False, previous=latest, current=latest)
        except SQLAlchemyError as exc:
            logger.error(
                "status_transition_failed context=%s job_id=%s target=%s error=%s",
                context,
                job_id,
                target,
                exc.__class__.__name__,
            )
            raise TransientInfrastructureError("job store", exc.__class__.__name__) from exc

    @staticmethod
    def _values_for(target: str, *, result_key: Optional[str], error_message: Optional[str]) -> dict:
        # result key and error message are mutually exclusive and only set on terminal rows
        if target == JOB_STATUS_COMPLETED:
            if not result_key:
                raise ValueError("result_key is required to complete a job")
            return {"status": target, "translated_file_key": result_key, "error_message": None}
        if target == JOB_STATUS_FAILED:
            message = (error_message or "Processing failed").strip() or "Processing failed"
            return {
                "status": target,
                "translated_file_key": None,
                "error_message": message[:ERROR_MESSAGE_MAX_CHARS],
            }
        return {"status": target, "translated_file_key": None, "error_message": None}
