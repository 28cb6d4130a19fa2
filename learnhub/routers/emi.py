from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from learnhub.db import get_db
from learnhub.errors import ForbiddenError
from learnhub.route_logging import EndpointNameRoute
from learnhub.routers.deps import envelope, owner_scope, require_admin, require_principal
from learnhub.services import emi_service, enrollment_service
from learnhub.services.auth_service import Principal


router = APIRouter(prefix='/api/v1/enrolled', tags=['EMI'], route_class=EndpointNameRoute)


@router.post('/check-emi-status')
def check_emi_status(db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    result = emi_service.sweep_emi_access(db)
    return envelope(result, f'EMI status checked for {result["total"]} enrollments')


@router.get('/emi-analytics/{course_id}')
def emi_analytics(course_id: str, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    return envelope(emi_service.emi_analytics(db, course_id))


@router.post('/{enrollment_id}/access/recompute')
def recompute_access(
    enrollment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    enrollment = enrollment_service.require_enrollment(db, enrollment_id)
    scope = owner_scope(principal)
    if scope is not None and enrollment.student_id != scope:
        raise ForbiddenError('Enrollment belongs to another student')
    return envelope(emi_service.recompute_enrollment_access(db, enrollment_id))
