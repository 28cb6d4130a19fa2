from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from learnhub.db import get_db
from learnhub.domain.lifecycle import LifecycleEvent
from learnhub.errors import ForbiddenError
from learnhub.route_logging import EndpointNameRoute
from learnhub.schemas import (
    EnrollmentCreateRequest,
    EnrollmentUpdateRequest,
    LessonProgressRequest,
    MarkCompletedRequest,
    WatchModuleRequest,
)
from learnhub.routers.deps import acting_student_id, envelope, owner_scope, require_admin, require_principal
from learnhub.services import enrollment_service, progress_service
from learnhub.services.auth_service import Principal


router = APIRouter(prefix='/api/v1/enrolled', tags=['Enrollments'], route_class=EndpointNameRoute)


def creation_fields(payload) -> dict:
    return {
        'batch_id': payload.batch_id,
        'enrollment_type': payload.enrollment_type,
        'payment_type': payload.payment_type,
        'emi_config': payload.emi_config.model_dump() if payload.emi_config else None,
        'batch_size': payload.batch_size,
        'currency': payload.currency,
        'initial_payment': payload.payment.model_dump() if payload.payment else None,
    }


@router.post('', status_code=201)
def create_enrollment(
    payload: EnrollmentCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    enrollment = enrollment_service.create_enrollment(
        db,
        student_id=acting_student_id(principal, payload.student_id),
        course_id=payload.course_id,
        discount_code=payload.discount_code,
        discount_amount=payload.discount_amount,
        access_expiry_date=payload.access_expiry_date,
        is_self_paced=payload.is_self_paced,
        notes=payload.notes,
        **creation_fields(payload),
    )
    return envelope(enrollment_service.serialize_enrollment(enrollment), 'Enrollment created successfully')


@router.get('')
def list_enrollments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: str | None = None,
    enrollment_type: str | None = None,
    payment_type: str | None = None,
    access_status: str | None = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    result = enrollment_service.list_enrollments(
        db,
        page=page,
        limit=limit,
        status=status,
        enrollment_type=enrollment_type,
        payment_type=payment_type,
        access_status=access_status,
    )
    result['items'] = [enrollment_service.serialize_enrollment(row) for row in result['items']]
    return envelope(result)


@router.get('/student/{student_id}')
def student_enrollments(
    student_id: int,
    status: str | None = None,
    include_expired: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    rows = enrollment_service.list_student_enrollments(
        db,
        acting_student_id(principal, student_id),
        status=status,
        include_expired=include_expired,
    )
    return envelope([enrollment_service.serialize_enrollment(row) for row in rows])


@router.get('/student/{student_id}/counts')
def student_enrollment_counts(
    student_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return envelope(enrollment_service.student_enrollment_counts(db, acting_student_id(principal, student_id)))


@router.get('/course/{course_id}')
def course_enrollments(
    course_id: str,
    status: str | None = None,
    include_expired: bool = False,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    rows = enrollment_service.list_course_enrollments(db, course_id, status=status, include_expired=include_expired)
    return envelope(
        {
            'items': [enrollment_service.serialize_enrollment(row) for row in rows],
            'statistics': enrollment_service.course_statistics(db, course_id),
        }
    )


@router.post('/complete')
def mark_completed(
    payload: MarkCompletedRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    enrollment = enrollment_service.mark_completed(
        db,
        student_id=acting_student_id(principal, payload.student_id),
        course_id=payload.course_id,
    )
    return envelope(enrollment_service.serialize_enrollment(enrollment), 'Course marked as completed')


@router.post('/watch')
def watch_module(
    id: int = Query(..., ge=1),
    payload: WatchModuleRequest | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    student_id = acting_student_id(principal, payload.student_id if payload else None)
    return envelope(progress_service.watch_module(db, id, student_id=student_id), 'Module marked as watched')


@router.get('/{enrollment_id}')
def get_enrollment(
    enrollment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    enrollment = enrollment_service.require_enrollment(db, enrollment_id)
    scope = owner_scope(principal)
    if scope is not None and enrollment.student_id != scope:
        raise ForbiddenError('Enrollment belongs to another student')
    data = enrollment_service.serialize_enrollment(enrollment)
    data['statistics'] = enrollment_service.course_statistics(db, enrollment.course_id)
    return envelope(data)


@router.patch('/{enrollment_id}')
def update_enrollment(
    enrollment_id: int,
    payload: EnrollmentUpdateRequest,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    enrollment = enrollment_service.update_enrollment(
        db,
        enrollment_id,
        notes=payload.notes,
        access_expiry_date=payload.access_expiry_date,
        is_self_paced=payload.is_self_paced,
        event=LifecycleEvent(payload.event) if payload.event else None,
    )
    return envelope(enrollment_service.serialize_enrollment(enrollment), 'Enrollment updated successfully')


@router.delete('/{enrollment_id}')
def delete_enrollment(
    enrollment_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    enrollment_service.delete_enrollment(db, enrollment_id)
    return envelope({'id': enrollment_id}, 'Enrollment deleted successfully')


@router.get('/{enrollment_id}/modules')
def list_modules(
    enrollment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return envelope(progress_service.list_modules(db, enrollment_id, actor_student_id=owner_scope(principal)))


@router.put('/{enrollment_id}/lessons/{lesson_id}')
def update_lesson_progress(
    enrollment_id: int,
    lesson_id: str,
    payload: LessonProgressRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    result = progress_service.update_lesson_progress(
        db,
        enrollment_id,
        lesson_id,
        status=payload.status,
        progress_percentage=payload.progress_percentage,
        time_spent_seconds=payload.time_spent_seconds,
        actor_student_id=owner_scope(principal),
    )
    return envelope(result, 'Lesson progress updated')
