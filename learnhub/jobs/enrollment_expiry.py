from __future__ import annotations

from learnhub.jobs.runtime import run_job
from learnhub.services.enrollment_service import expire_enrollments


def execute():
    return run_job('enrollment_expiry', lambda db: expire_enrollments(db))
