from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from learnhub.db import get_db
from learnhub.route_logging import EndpointNameRoute
from learnhub.routers.deps import envelope, require_principal
from learnhub.routers.enrollments import creation_fields
from learnhub.schemas import EnrollmentConvertRequest, SaveCourseRequest
from learnhub.services import enrollment_service, saved_course_service
from learnhub.services.auth_service import Principal


# Registered ahead of the enrollments router so /saved is not read as an id.
router = APIRouter(prefix='/api/v1/enrolled/saved', tags=['Saved courses'], route_class=EndpointNameRoute)


@router.post('', status_code=201)
def save_course(
    payload: SaveCourseRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    row = saved_course_service.save_course(db, student_id=principal.user_id, course_id=payload.course_id, notes=payload.notes)
    return envelope(saved_course_service.serialize_saved_course(row), 'Course saved successfully')


@router.get('')
def list_saved_courses(db: Session = Depends(get_db), principal: Principal = Depends(require_principal)):
    rows = saved_course_service.list_saved_courses(db, principal.user_id)
    return envelope([saved_course_service.serialize_saved_course(row) for row in rows])


@router.delete('/{course_id}')
def remove_saved_course(course_id: str, db: Session = Depends(get_db), principal: Principal = Depends(require_principal)):
    saved_course_service.remove_saved_course(db, student_id=principal.user_id, course_id=course_id)
    return envelope({'course_id': course_id}, 'Saved course removed')


@router.post('/{course_id}/convert', status_code=201)
def convert_saved_course(
    course_id: str,
    payload: EnrollmentConvertRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    enrollment = saved_course_service.convert_saved_course(
        db,
        student_id=principal.user_id,
        course_id=course_id,
        **creation_fields(payload),
    )
    return envelope(enrollment_service.serialize_enrollment(enrollment), 'Saved course converted to enrollment')
