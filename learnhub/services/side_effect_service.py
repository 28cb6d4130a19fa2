from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from learnhub.config import settings
from learnhub.core.time_provider import TimeProvider, default_time_provider
from learnhub.errors import NotFoundError, ValidationError
from learnhub.models import SideEffectTask, TaskStatus


logger = logging.getLogger(__name__)

TASK_RECEIPT = 'receipt'
TASK_PAYMENT_EMAIL = 'payment_email'
TASK_ENROLLMENT_EMAIL = 'enrollment_email'
TASK_COMPLETION_NOTICE = 'completion_notice'
TASK_TYPES = (TASK_RECEIPT, TASK_PAYMENT_EMAIL, TASK_ENROLLMENT_EMAIL, TASK_COMPLETION_NOTICE)

TaskHandler = Callable[[Session, SideEffectTask], None]


class RetryPolicy:
    def __init__(self, base_seconds: int = 30, max_attempts: int = 5) -> None:
        self.base_seconds = base_seconds
        self.max_attempts = max_attempts

    def next_attempt(self, now: datetime, attempts: int) -> datetime:
        delay = self.base_seconds * (2 ** attempts)
        return now + timedelta(seconds=delay)

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(base_seconds=settings.side_effect_retry_base_seconds, max_attempts=settings.side_effect_max_attempts)


def default_handlers() -> dict[str, TaskHandler]:
    from learnhub.services import notification_service, receipt_service

    return {
        TASK_RECEIPT: receipt_service.handle_receipt_task,
        TASK_PAYMENT_EMAIL: notification_service.handle_payment_email,
        TASK_ENROLLMENT_EMAIL: notification_service.handle_enrollment_email,
        TASK_COMPLETION_NOTICE: notification_service.handle_completion_notice,
    }


def enqueue_task(
    db: Session,
    task_type: str,
    *,
    enrollment_id: int | None,
    payload: dict | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> SideEffectTask:
    """Stage a task in the caller's transaction; the caller commits."""
    if task_type not in TASK_TYPES:
        raise ValidationError(f'Unknown task type: {task_type}')
    row = SideEffectTask(
        task_type=task_type,
        enrollment_id=enrollment_id,
        payload_json=json.dumps(payload or {}, sort_keys=True, default=str),
        status=TaskStatus.PENDING.value,
        attempts=0,
        max_attempts=settings.side_effect_max_attempts,
        next_attempt_at=time_provider.naive_now(),
        last_error='',
    )
    db.add(row)
    return row


def _due_task_ids(db: Session, now: datetime, limit: int) -> list[int]:
    rows = (
        db.query(SideEffectTask.id)
        .filter(SideEffectTask.status == TaskStatus.PENDING.value, SideEffectTask.next_attempt_at <= now)
        .order_by(SideEffectTask.next_attempt_at.asc(), SideEffectTask.id.asc())
        .limit(limit)
        .all()
    )
    return [int(row[0]) for row in rows]


def run_due_tasks(
    db: Session,
    *,
    limit: int | None = None,
    handlers: dict[str, TaskHandler] | None = None,
    retry_policy: RetryPolicy | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Drain due tasks one at a time; a failing task never stops the batch."""
    handlers = handlers if handlers is not None else default_handlers()
    retry_policy = retry_policy or default_retry_policy()
    now = time_provider.naive_now()
    result = {'processed': 0, 'succeeded': 0, 'retried': 0, 'failed': 0}

    for task_id in _due_task_ids(db, now, int(limit or settings.side_effect_batch_size)):
        task = db.query(SideEffectTask).filter(SideEffectTask.id == task_id).first()
        if task is None or task.status != TaskStatus.PENDING.value:
            continue
        result['processed'] += 1
        handler = handlers.get(task.task_type)
        try:
            if handler is None:
                raise LookupError(f'No handler registered for {task.task_type}')
            handler(db, task)
        except Exception as exc:
            db.rollback()
            task = db.query(SideEffectTask).filter(SideEffectTask.id == task_id).one()
            task.attempts = int(task.attempts or 0) + 1
            task.last_error = f'{exc.__class__.__name__}: {exc}'[:1000]
            if retry_policy.should_retry(task.attempts) and task.attempts < int(task.max_attempts or retry_policy.max_attempts):
                task.next_attempt_at = retry_policy.next_attempt(now, task.attempts)
                result['retried'] += 1
                logger.warning('side_effect_retry task_id=%s type=%s attempts=%s error=%s', task.id, task.task_type, task.attempts, exc)
            else:
                task.status = TaskStatus.FAILED.value
                result['failed'] += 1
                logger.error('side_effect_failed task_id=%s type=%s attempts=%s error=%s', task.id, task.task_type, task.attempts, exc)
            db.commit()
            continue

        task.attempts = int(task.attempts or 0) + 1
        task.status = TaskStatus.DONE.value
        task.completed_at = time_provider.naive_now()
        task.last_error = ''
        db.commit()
        result['succeeded'] += 1
        logger.info('side_effect_done task_id=%s type=%s enrollment_id=%s', task.id, task.task_type, task.enrollment_id)

    return result


def list_tasks(db: Session, *, status: str | None = None, limit: int = 100) -> list[SideEffectTask]:
    query = db.query(SideEffectTask)
    if status:
        if status not in {item.value for item in TaskStatus}:
            raise ValidationError(f'Unknown task status: {status}')
        query = query.filter(SideEffectTask.status == status)
    return query.order_by(SideEffectTask.id.desc()).limit(max(1, min(int(limit), 500))).all()


def retry_task(db: Session, task_id: int, *, time_provider: TimeProvider = default_time_provider) -> SideEffectTask:
    task = db.query(SideEffectTask).filter(SideEffectTask.id == task_id).first()
    if not task:
        raise NotFoundError('Task not found')
    if task.status == TaskStatus.DONE.value:
        raise ValidationError('Task already completed')
    task.status = TaskStatus.PENDING.value
    task.attempts = 0
    task.next_attempt_at = time_provider.naive_now()
    db.commit()
    db.refresh(task)
    logger.info('side_effect_requeued task_id=%s type=%s', task.id, task.task_type)
    return task


def serialize_task(task: SideEffectTask) -> dict:
    return {
        'id': task.id,
        'task_type': task.task_type,
        'enrollment_id': task.enrollment_id,
        'payload': task.payload,
        'status': task.status,
        'attempts': int(task.attempts or 0),
        'max_attempts': int(task.max_attempts or 0),
        'next_attempt_at': task.next_attempt_at.isoformat() if task.next_attempt_at else None,
        'last_error': task.last_error or '',
        'completed_at': task.completed_at.isoformat() if task.completed_at else None,
        'created_at': task.created_at.isoformat() if task.created_at else None,
    }
