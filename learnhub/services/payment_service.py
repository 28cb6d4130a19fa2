from __future__ import annotations

import json
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from learnhub.config import settings
from learnhub.core.time_provider import TimeProvider, default_time_provider
from learnhub.domain.emi import to_money
from learnhub.domain.lifecycle import EnrollmentStatus
from learnhub.errors import ConflictError, ForbiddenError, ValidationError
from learnhub.metrics import timed_service
from learnhub.models import EnrollmentPayment, PaymentMethod, PaymentStatus, PaymentType
from learnhub.services import side_effect_service
from learnhub.services.enrollment_service import require_enrollment, serialize_payment


logger = logging.getLogger(__name__)

CLOSED_STATUSES = (EnrollmentStatus.CANCELLED.value,)


def _find_by_transaction(db: Session, transaction_id: str | None) -> EnrollmentPayment | None:
    if not transaction_id:
        return None
    return db.query(EnrollmentPayment).filter(EnrollmentPayment.transaction_id == transaction_id).first()


def _replay(enrollment_id: int, existing: EnrollmentPayment) -> dict:
    if existing.enrollment_id != enrollment_id:
        raise ConflictError('Transaction id already recorded for another enrollment')
    enrollment = existing.enrollment
    logger.info('payment_replayed enrollment_id=%s payment_id=%s transaction_id=%s', enrollment_id, existing.id, existing.transaction_id)
    return {
        'payment': serialize_payment(existing),
        'installment_number': existing.installment_number,
        'access_status': enrollment.access_status,
        'total_amount_paid': round(float(enrollment.total_amount_paid or 0), 2),
        'replayed': True,
    }


@timed_service('payment_record')
def record_payment(
    db: Session,
    enrollment_id: int,
    *,
    amount: float,
    currency: str | None = None,
    payment_method: str = PaymentMethod.OTHER.value,
    transaction_id: str | None = None,
    payment_status: str = PaymentStatus.COMPLETED.value,
    metadata: dict | None = None,
    actor_student_id: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Append a payment; a completed EMI payment settles the earliest open installment.

    A completed EMI payment must cover that installment's amount; any excess
    counts toward `total_amount_paid` only.

    `actor_student_id` restricts the call to the enrollment owner; admins pass None.
    A known `transaction_id` returns the stored payment unchanged.
    """
    enrollment = require_enrollment(db, enrollment_id)
    if actor_student_id is not None and enrollment.student_id != actor_student_id:
        raise ForbiddenError('Enrollment belongs to another student')

    existing = _find_by_transaction(db, transaction_id)
    if existing is not None:
        return _replay(enrollment.id, existing)

    if float(amount or 0) <= 0:
        raise ValidationError('Payment amount must be greater than zero')
    if payment_method not in {item.value for item in PaymentMethod}:
        raise ValidationError(f'Unknown payment method: {payment_method}')
    if payment_status not in {item.value for item in PaymentStatus}:
        raise ValidationError(f'Unknown payment status: {payment_status}')
    currency_code = (currency or (enrollment.pricing_snapshot or {}).get('currency') or settings.default_currency).upper()
    if currency_code not in settings.currency_codes:
        raise ValidationError(f'Unsupported currency: {currency_code}')
    if enrollment.status in CLOSED_STATUSES:
        raise ValidationError('Cannot record a payment on a cancelled enrollment')

    completed = payment_status == PaymentStatus.COMPLETED.value
    is_emi = enrollment.payment_type == PaymentType.EMI.value and enrollment.emi_schedule is not None
    if completed and is_emi and enrollment.emi_schedule.next_open_installment is None:
        raise ConflictError('All installments are already paid')
    if completed and is_emi:
        due = enrollment.emi_schedule.next_open_installment
        if to_money(amount) < due.amount:
            raise ValidationError(f'Payment of {to_money(amount)} does not cover installment {due.number} ({due.amount})')

    now = time_provider.naive_now()
    today = time_provider.today()
    payment = EnrollmentPayment(
        amount=float(amount),
        currency=currency_code,
        payment_method=payment_method,
        transaction_id=transaction_id or None,
        payment_status=payment_status,
        payment_date=now,
        metadata_json=json.dumps(metadata or {}, sort_keys=True),
    )
    enrollment.payments.append(payment)

    installment = None
    previous_access = enrollment.access_status
    if completed:
        enrollment.total_amount_paid = float(enrollment.total_amount_paid or 0) + float(amount)
        if is_emi:
            # Overdue marks are applied first so a late payment still records the lapse.
            enrollment.refresh_access(today)
            installment = enrollment.settle_next_installment(paid_on=today, transaction_id=transaction_id)
            payment.installment_number = installment.number

    try:
        db.flush()
        if completed:
            for task_type in (side_effect_service.TASK_RECEIPT, side_effect_service.TASK_PAYMENT_EMAIL):
                side_effect_service.enqueue_task(
                    db,
                    task_type,
                    enrollment_id=enrollment.id,
                    payload={'payment_id': payment.id},
                    time_provider=time_provider,
                )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        existing = _find_by_transaction(db, transaction_id)
        if existing is not None:
            return _replay(enrollment_id, existing)
        raise ConflictError('Duplicate payment') from exc

    db.refresh(payment)
    db.refresh(enrollment)
    logger.info(
        'payment_recorded enrollment_id=%s payment_id=%s amount=%.2f status=%s installment=%s access_previous=%s access_current=%s',
        enrollment.id,
        payment.id,
        float(amount),
        payment_status,
        installment.number if installment else None,
        previous_access,
        enrollment.access_status,
    )
    return {
        'payment': serialize_payment(payment),
        'installment_number': installment.number if installment else None,
        'access_status': enrollment.access_status,
        'total_amount_paid': round(float(enrollment.total_amount_paid or 0), 2),
        'replayed': False,
    }
