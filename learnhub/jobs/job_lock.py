from __future__ import annotations

import logging
import threading
import time
import uuid


logger = logging.getLogger(__name__)
_lock = threading.RLock()
_held: dict[str, tuple[str, float]] = {}


def acquire_job_lock(job_label: str, *, ttl_seconds: int = 900) -> str | None:
    """Process-local lock so a scheduled sweep never overlaps itself."""
    token = uuid.uuid4().hex
    now = time.monotonic()
    with _lock:
        existing = _held.get(job_label)
        if existing is not None and existing[1] > now:
            return None
        _held[job_label] = (token, now + max(1, int(ttl_seconds)))
        return token


def release_job_lock(job_label: str, token: str) -> None:
    if not token:
        return
    with _lock:
        existing = _held.get(job_label)
        if existing is not None and existing[0] == token:
            _held.pop(job_label, None)
