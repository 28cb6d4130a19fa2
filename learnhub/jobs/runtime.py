from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from learnhub.db import SessionLocal
from learnhub.jobs.job_lock import acquire_job_lock, release_job_lock
from learnhub.metrics import run_timed_job


logger = logging.getLogger(__name__)


def with_db(task, *, job_label: str, session_factory=SessionLocal):
    lock_token = acquire_job_lock(job_label)
    if not lock_token:
        logger.info('job_lock_skipped_concurrent job=%s', job_label)
        return None
    db: Session = session_factory()
    try:
        return task(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        release_job_lock(job_label, lock_token)


def run_job(label: str, task, *, session_factory=SessionLocal):
    return run_timed_job(label, lambda: with_db(task, job_label=label, session_factory=session_factory))
