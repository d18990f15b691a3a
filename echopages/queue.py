"""
Chapter job queue backed by the `job` table.

Delivery is at-least-once: a job claimed by a worker that never acknowledges
it becomes claimable again after the visibility timeout.
"""

import logging
from datetime import timedelta

from sqlalchemy import and_, or_, update
from sqlmodel import select
from echopages.config import JOB_VISIBILITY_TIMEOUT
from echopages.database_con import get_session
from echopages.db_models import Job, utc_now

logger = logging.getLogger(__name__)

CLAIM_CANDIDATES = 5


def enqueue(chapter_id: int, user_id: str) -> Job:
    with get_session() as session:
        job = Job(chapter_id=chapter_id, user_id=user_id)
        session.add(job)
        session.flush()
        session.refresh(job)
        logger.info("Queued job %d for chapter %d", job.id, chapter_id)
        return Job(**job.model_dump())


def claim_next(visibility_timeout: float = JOB_VISIBILITY_TIMEOUT) -> Job | None:
    """Claim the oldest available job, or return None when the queue is empty."""
    stale_before = utc_now() - timedelta(seconds=visibility_timeout)
    available = or_(
        Job.status == "queued",
        and_(Job.status == "running", Job.claimed_at < stale_before),
    )

    with get_session() as session:
        candidates = session.exec(
            select(Job).where(available).order_by(Job.enqueued_at, Job.id).limit(CLAIM_CANDIDATES)
        ).all()

        for candidate in candidates:
            # Guarded on the state we read, so a concurrent claimer makes this a no-op
            result = session.execute(
                update(Job)
                .where(
                    Job.id == candidate.id,
                    Job.status == candidate.status,
                    Job.attempts == candidate.attempts,
                )
                .values(status="running", claimed_at=utc_now(), attempts=Job.attempts + 1)
            )
            if result.rowcount == 1:
                if candidate.status == "running":
                    logger.warning("Redelivering job %d after visibility timeout", candidate.id)
                session.flush()
                session.refresh(candidate)
                return Job(**candidate.model_dump())

    return None


def mark_done(job_id: int) -> bool:
    with get_session() as session:
        result = session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == "running")
            .values(status="done", finished_at=utc_now(), error_message=None)
        )
        return result.rowcount == 1


def touch(job_id: int) -> bool:
    """Push back a running job's visibility timeout."""
    with get_session() as session:
        result = session.execute(
            update(Job).where(Job.id == job_id, Job.status == "running").values(claimed_at=utc_now())
        )
        return result.rowcount == 1


def mark_failed(job_id: int, message: str) -> bool:
    with get_session() as session:
        result = session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == "running")
            .values(status="failed", finished_at=utc_now(), error_message=message)
        )
        return result.rowcount == 1


def pending_jobs(chapter_id: int) -> list[Job]:
    """Jobs for a chapter that have not finished yet."""
    with get_session() as session:
        jobs = session.exec(
            select(Job).where(Job.chapter_id == chapter_id, Job.status.in_(["queued", "running"]))
        ).all()
        return [Job(**job.model_dump()) for job in jobs]
