from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from learnhub.config import settings
from learnhub.core.time_provider import TimeProvider, default_time_provider
from learnhub.domain import emi as emi_domain
from learnhub.metrics import timed_service
from learnhub.models import Enrollment, EnrollmentType, PaymentType
from learnhub.services.enrollment_service import require_enrollment


logger = logging.getLogger(__name__)


def recompute_enrollment_access(
    db: Session,
    enrollment_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    enrollment = require_enrollment(db, enrollment_id)
    previous = enrollment.access_status
    decision = enrollment.refresh_access(time_provider.today())
    db.commit()
    if decision is not None and previous != enrollment.access_status:
        logger.info('emi_access_changed enrollment_id=%s previous=%s current=%s', enrollment.id, previous, enrollment.access_status)
    return {
        'enrollment_id': enrollment.id,
        'previous': previous,
        'access_status': enrollment.access_status,
        'reason': enrollment.access_restriction_reason,
        'changed': previous != enrollment.access_status,
        'newly_overdue': list(decision.newly_overdue) if decision else [],
    }


def _emi_enrollment_ids(db: Session) -> list[int]:
    rows = (
        db.query(Enrollment.id)
        .filter(
            Enrollment.payment_type == PaymentType.EMI.value,
            Enrollment.enrollment_type != EnrollmentType.SAVED.value,
            Enrollment.emi_json.is_not(None),
        )
        .order_by(Enrollment.id.asc())
        .all()
    )
    return [int(row[0]) for row in rows]


@timed_service('emi_access_sweep')
def sweep_emi_access(db: Session, *, time_provider: TimeProvider = default_time_provider) -> dict:
    """Recompute the access gate of every EMI enrollment.

    Each enrollment is read, recomputed and committed on its own; a failure is
    rolled back, reported in `errors`, and the sweep moves on.
    """
    today = time_provider.today()
    result = {'total': 0, 'updated': 0, 'restricted': 0, 'active': 0, 'changed': 0, 'errors': []}

    for enrollment_id in _emi_enrollment_ids(db):
        result['total'] += 1
        try:
            enrollment = db.query(Enrollment).filter(Enrollment.id == enrollment_id).one()
            previous = enrollment.access_status
            before = enrollment.emi_json
            decision = enrollment.refresh_access(today)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception('emi_access_recompute_failed enrollment_id=%s', enrollment_id)
            result['errors'].append({'enrollment_id': enrollment_id, 'error': str(exc)})
            continue

        if decision is None:
            continue
        if before != enrollment.emi_json or previous != enrollment.access_status:
            result['updated'] += 1
        if previous != enrollment.access_status:
            result['changed'] += 1
            logger.info('emi_access_changed enrollment_id=%s previous=%s current=%s', enrollment_id, previous, enrollment.access_status)
        if decision.access_status == emi_domain.AccessStatus.RESTRICTED:
            result['restricted'] += 1
        else:
            result['active'] += 1

    logger.info(
        'emi_access_sweep total=%s updated=%s restricted=%s active=%s errors=%s',
        result['total'],
        result['updated'],
        result['restricted'],
        result['active'],
        len(result['errors']),
    )
    return result


def emi_analytics(db: Session, course_id: str) -> dict:
    rows = (
        db.query(Enrollment)
        .filter(
            Enrollment.course_id == course_id,
            Enrollment.payment_type == PaymentType.EMI.value,
            Enrollment.enrollment_type != EnrollmentType.SAVED.value,
            Enrollment.emi_json.is_not(None),
        )
        .all()
    )
    plans = {status.value: 0 for status in emi_domain.EmiPlanStatus}
    installments = {status.value: 0 for status in emi_domain.InstallmentStatus}
    total_revenue = Decimal('0')
    collected = Decimal('0')
    installment_total = Decimal('0')
    installment_count = 0
    missed = 0
    paid_count = 0
    paid_on_time = 0

    for enrollment in rows:
        schedule = enrollment.emi_schedule
        if schedule is None:
            continue
        plans[schedule.plan_status(default_after_missed=settings.emi_default_after_missed).value] += 1
        total_revenue += schedule.financed_amount + schedule.down_payment
        collected += schedule.paid_amount + schedule.down_payment
        missed += schedule.missed_payments
        for item in schedule.installments:
            installments[item.status.value] += 1
            installment_total += item.amount
            installment_count += 1
            if item.status == emi_domain.InstallmentStatus.PAID:
                paid_count += 1
                # Grace days keep access open but do not make a payment on time.
                if item.paid_date and item.paid_date <= item.due_date:
                    paid_on_time += 1

    average = (installment_total / installment_count) if installment_count else Decimal('0')
    return {
        'course_id': course_id,
        'total_emi_enrollments': len(rows),
        'plans_by_status': plans,
        'total_revenue': float(emi_domain.to_money(total_revenue)),
        'collected_revenue': float(emi_domain.to_money(collected)),
        'pending_revenue': float(emi_domain.to_money(total_revenue - collected)),
        'installments_by_status': installments,
        'average_installment_amount': float(emi_domain.to_money(average)),
        'missed_payments': missed,
        'on_time_payment_percentage': round((paid_on_time / paid_count) * 100, 2) if paid_count else 0.0,
    }
