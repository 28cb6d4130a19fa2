from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from learnhub.core.time_provider import TimeProvider, default_time_provider
from learnhub.domain.lifecycle import EnrollmentStatus, LifecycleEvent, can_transition
from learnhub.errors import ForbiddenError, NotFoundError, ValidationError
from learnhub.models import EnrolledModule, Enrollment
from learnhub.services.course_lookup_service import CourseLookup, default_course_lookup
from learnhub.services.enrollment_service import apply_side_effects, require_enrollment


logger = logging.getLogger(__name__)

LESSON_STATUSES = ('not_started', 'in_progress', 'completed')


def _course_media_count(db: Session, enrollment: Enrollment, course_lookup: CourseLookup) -> int:
    hit = course_lookup.find(db, enrollment.course_id)
    media_count = len(hit.course.media_items) if hit else 0
    return max(media_count, len(enrollment.modules))


def _complete_if_finished(
    db: Session,
    enrollment: Enrollment,
    *,
    watched: int,
    total: int,
    time_provider: TimeProvider,
) -> bool:
    if total <= 0 or watched < total:
        return False
    status = EnrollmentStatus(enrollment.status)
    if not can_transition(status, LifecycleEvent.COMPLETE):
        return False
    result = enrollment.apply_event(LifecycleEvent.COMPLETE, at=time_provider.naive_now())
    apply_side_effects(db, enrollment, result, time_provider=time_provider)
    if result.changed:
        logger.info('enrollment_completed enrollment_id=%s student_id=%s trigger=all_modules_watched', enrollment.id, enrollment.student_id)
    return result.changed


def watch_module(
    db: Session,
    module_id: int,
    *,
    student_id: int,
    time_provider: TimeProvider = default_time_provider,
    course_lookup: CourseLookup = default_course_lookup,
) -> dict:
    """Mark a module watched and complete the enrollment once every media item is watched.

    Watching an already-watched module changes nothing.
    """
    module = db.query(EnrolledModule).filter(EnrolledModule.id == module_id).first()
    if not module:
        raise NotFoundError('Module not found')
    if module.student_id != student_id:
        raise ForbiddenError('Module belongs to another student')

    enrollment = module.enrollment
    if enrollment.status == EnrollmentStatus.CANCELLED.value:
        raise ValidationError('Enrollment is cancelled')

    now = time_provider.naive_now()
    newly_watched = not module.is_watched
    if newly_watched:
        module.is_watched = True
        module.watched_at = now
        db.flush()

    watched = sum(1 for row in enrollment.modules if row.is_watched)
    total = _course_media_count(db, enrollment, course_lookup)
    completed_now = False
    if newly_watched:
        enrollment.lessons_completed = watched
        enrollment.progress_percentage = int(round((watched / total) * 100)) if total else 0
        enrollment.last_activity_at = now
        completed_now = _complete_if_finished(db, enrollment, watched=watched, total=total, time_provider=time_provider)
    db.commit()
    db.refresh(enrollment)
    return {
        'module_id': module.id,
        'enrollment_id': enrollment.id,
        'is_watched': True,
        'watched_modules': watched,
        'total_modules': total,
        'progress_percentage': int(enrollment.progress_percentage or 0),
        'status': enrollment.status,
        'completed_on': enrollment.completed_on.isoformat() if enrollment.completed_on else None,
        'completed_now': completed_now,
    }


def update_lesson_progress(
    db: Session,
    enrollment_id: int,
    lesson_id: str,
    *,
    status: str,
    progress_percentage: int = 0,
    time_spent_seconds: int = 0,
    actor_student_id: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    enrollment = require_enrollment(db, enrollment_id)
    if actor_student_id is not None and enrollment.student_id != actor_student_id:
        raise ForbiddenError('Enrollment belongs to another student')
    if status not in LESSON_STATUSES:
        raise ValidationError(f'Unknown lesson status: {status}')
    if not 0 <= int(progress_percentage) <= 100:
        raise ValidationError('progress_percentage must be between 0 and 100')

    now = time_provider.naive_now()
    previous = enrollment.lesson_progress.get(str(lesson_id)) or {}
    entry = {
        'status': status,
        'progress_percentage': 100 if status == 'completed' else int(progress_percentage),
        'time_spent_seconds': int(previous.get('time_spent_seconds') or 0) + max(0, int(time_spent_seconds)),
        'last_accessed_at': now.isoformat(),
        'completed_at': previous.get('completed_at') or (now.isoformat() if status == 'completed' else None),
    }
    enrollment.set_lesson_progress(lesson_id, entry)
    enrollment.last_activity_at = now
    db.commit()
    logger.info('lesson_progress_updated enrollment_id=%s lesson_id=%s status=%s', enrollment.id, lesson_id, status)
    return {'enrollment_id': enrollment.id, 'lesson_id': str(lesson_id), **entry}


def list_modules(db: Session, enrollment_id: int, *, actor_student_id: int | None = None) -> list[dict]:
    enrollment = require_enrollment(db, enrollment_id)
    if actor_student_id is not None and enrollment.student_id != actor_student_id:
        raise ForbiddenError('Enrollment belongs to another student')
    return [
        {
            'id': row.id,
            'media_ref': row.media_ref,
            'position': row.position,
            'is_watched': bool(row.is_watched),
            'watched_at': row.watched_at.isoformat() if row.watched_at else None,
        }
        for row in enrollment.modules
    ]
