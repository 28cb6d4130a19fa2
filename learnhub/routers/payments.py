from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from learnhub.db import get_db
from learnhub.errors import ForbiddenError
from learnhub.route_logging import EndpointNameRoute
from learnhub.routers.deps import envelope, owner_scope, require_principal
from learnhub.schemas import PaymentCreateRequest
from learnhub.services import enrollment_service, payment_service
from learnhub.services.auth_service import Principal


router = APIRouter(prefix='/api/v1/enrolled', tags=['Payments'], route_class=EndpointNameRoute)


@router.post('/{enrollment_id}/payments', status_code=201)
def record_payment(
    enrollment_id: int,
    payload: PaymentCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    result = payment_service.record_payment(
        db,
        enrollment_id,
        amount=payload.amount,
        currency=payload.currency,
        payment_method=payload.payment_method,
        transaction_id=payload.transaction_id,
        payment_status=payload.payment_status,
        metadata=payload.metadata,
        actor_student_id=owner_scope(principal),
    )
    message = 'Payment already recorded' if result['replayed'] else 'Payment recorded successfully'
    return envelope(result, message)


@router.get('/{enrollment_id}/payments')
def list_payments(
    enrollment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    enrollment = enrollment_service.require_enrollment(db, enrollment_id)
    scope = owner_scope(principal)
    if scope is not None and enrollment.student_id != scope:
        raise ForbiddenError('Enrollment belongs to another student')
    return envelope([enrollment_service.serialize_payment(row) for row in enrollment.payments])
