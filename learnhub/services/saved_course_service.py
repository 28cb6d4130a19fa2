from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from learnhub.core.time_provider import TimeProvider, default_time_provider
from learnhub.errors import ConflictError, NotFoundError
from learnhub.models import Enrollment, EnrollmentType
from learnhub.services import enrollment_service
from learnhub.services.course_lookup_service import CourseLookup, default_course_lookup


logger = logging.getLogger(__name__)


def _saved_query(db: Session, student_id: int):
    return db.query(Enrollment).filter(
        Enrollment.student_id == student_id,
        Enrollment.enrollment_type == EnrollmentType.SAVED.value,
    )


def save_course(
    db: Session,
    *,
    student_id: int,
    course_id: str,
    notes: str = '',
    time_provider: TimeProvider = default_time_provider,
    course_lookup: CourseLookup = default_course_lookup,
) -> Enrollment:
    enrollment_service.require_student(db, student_id)
    hit = course_lookup.require(db, course_id)
    active, saved = enrollment_service.find_existing_enrollment(db, student_id, course_id)
    if active is not None:
        raise ConflictError('Student is already enrolled in this course')
    if saved is not None:
        raise ConflictError('Course already saved')

    now = time_provider.naive_now()
    row = Enrollment(
        student_id=student_id,
        course_id=course_id,
        course_source=hit.source,
        course_model=hit.model,
        enrollment_type=EnrollmentType.SAVED.value,
        saved_at=now,
        enrollment_date=now,
        is_self_paced=bool(hit.course.is_self_paced),
        notes=notes or '',
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError('Course already saved') from exc
    db.refresh(row)
    logger.info('course_saved student_id=%s course_id=%s', student_id, course_id)
    return row


def list_saved_courses(db: Session, student_id: int) -> list[Enrollment]:
    return _saved_query(db, student_id).order_by(Enrollment.saved_at.desc(), Enrollment.id.desc()).all()


def remove_saved_course(db: Session, *, student_id: int, course_id: str) -> None:
    row = _saved_query(db, student_id).filter(Enrollment.course_id == course_id).first()
    if not row:
        raise NotFoundError('Saved course not found')
    db.delete(row)
    db.commit()
    logger.info('saved_course_removed student_id=%s course_id=%s', student_id, course_id)


def convert_saved_course(
    db: Session,
    *,
    student_id: int,
    course_id: str,
    time_provider: TimeProvider = default_time_provider,
    **enrollment_fields,
) -> Enrollment:
    if _saved_query(db, student_id).filter(Enrollment.course_id == course_id).first() is None:
        raise NotFoundError('Saved course not found')
    return enrollment_service.create_enrollment(
        db,
        student_id=student_id,
        course_id=course_id,
        time_provider=time_provider,
        **enrollment_fields,
    )


def serialize_saved_course(row: Enrollment) -> dict:
    return {
        'id': row.id,
        'student_id': row.student_id,
        'course_id': row.course_id,
        'course_source': row.course_source,
        'course_model': row.course_model,
        'saved_at': row.saved_at.isoformat() if row.saved_at else None,
        'notes': row.notes or '',
    }
