from __future__ import annotations

from learnhub.jobs.runtime import run_job
from learnhub.services.emi_service import sweep_emi_access


def execute():
    return run_job('emi_access_sweep', lambda db: sweep_emi_access(db))
