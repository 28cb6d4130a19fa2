from __future__ import annotations

from learnhub.jobs.runtime import run_job
from learnhub.services.side_effect_service import run_due_tasks


def execute():
    return run_job('side_effect_drain', lambda db: run_due_tasks(db))
