from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from learnhub.config import settings
from learnhub.core.time_provider import TimeProvider, default_time_provider
from learnhub.domain import emi as emi_domain
from learnhub.domain.lifecycle import EnrollmentStatus, LifecycleEvent, SideEffect, TransitionResult
from learnhub.errors import ConflictError, NotFoundError, ValidationError
from learnhub.metrics import timed_service
from learnhub.models import (
    Batch,
    BatchType,
    EnrolledModule,
    Enrollment,
    EnrollmentPayment,
    EnrollmentType,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    Student,
)
from learnhub.services import side_effect_service
from learnhub.services.course_lookup_service import CourseHit, CourseLookup, default_course_lookup
from learnhub.services.pricing_service import build_pricing_snapshot


logger = logging.getLogger(__name__)

BATCH_REQUIRED_TYPES = (EnrollmentType.BATCH.value, EnrollmentType.GROUP.value)
NO_BATCH_TYPES = (EnrollmentType.INDIVIDUAL.value, EnrollmentType.SCHOLARSHIP.value, EnrollmentType.TRIAL.value)


def require_student(db: Session, student_id: int) -> Student:
    student = db.query(Student).filter(Student.id == student_id).first()
    if not student:
        raise NotFoundError('Student not found')
    return student


def require_enrollment(db: Session, enrollment_id: int) -> Enrollment:
    enrollment = db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()
    if not enrollment or enrollment.enrollment_type == EnrollmentType.SAVED.value:
        raise NotFoundError('Enrollment not found')
    return enrollment


def _decimal(raw, field: str, default: str = '0') -> Decimal:
    try:
        return Decimal(str(raw if raw is not None else default))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'{field} must be a number') from exc


def build_emi_config(raw: dict, *, default_total: float, today: date) -> emi_domain.EmiConfig:
    """Defaults: course final price as total, no down payment, today as start."""
    if not raw:
        raise ValidationError('EMI configuration is required for EMI payment type')
    if raw.get('number_of_installments') in (None, ''):
        raise ValidationError('numberOfInstallments is required')
    start_raw = raw.get('start_date')
    if isinstance(start_raw, datetime):
        start_date = start_raw.date()
    elif isinstance(start_raw, date):
        start_date = start_raw
    elif start_raw:
        try:
            start_date = date.fromisoformat(str(start_raw)[:10])
        except ValueError as exc:
            raise ValidationError('startDate must be an ISO date') from exc
    else:
        start_date = today
    grace_raw = raw.get('grace_period_days')
    return emi_domain.EmiConfig(
        total_amount=_decimal(raw.get('total_amount'), 'totalAmount', str(default_total)),
        number_of_installments=int(raw['number_of_installments']),
        start_date=start_date,
        down_payment=_decimal(raw.get('down_payment'), 'downPayment'),
        interest_rate=_decimal(raw.get('interest_rate'), 'interestRate'),
        processing_fee=_decimal(raw.get('processing_fee'), 'processingFee'),
        grace_period_days=int(grace_raw if grace_raw is not None else settings.emi_default_grace_period_days),
    )


def _resolve_batch(
    db: Session,
    *,
    enrollment_type: str,
    batch_id: int | None,
    batch_size: int | None,
    course_id: str,
) -> tuple[Batch | None, int]:
    if enrollment_type in NO_BATCH_TYPES:
        if batch_id is not None:
            raise ValidationError('Individual enrollments cannot reference a batch')
        return None, 1

    if batch_id is None:
        if enrollment_type in BATCH_REQUIRED_TYPES:
            raise ValidationError('Batch is required for batch enrollments')
        return None, max(1, int(batch_size or 1))

    batch = db.query(Batch).filter(Batch.id == batch_id).first()
    if not batch:
        raise NotFoundError('Batch not found')
    if batch.course_id != course_id:
        raise ValidationError('Batch does not belong to this course')

    if batch.batch_type == BatchType.INDIVIDUAL.value:
        size = int(batch_size or 1)
        if size != 1:
            raise ValidationError('Individual batches must have a batch size of 1')
    else:
        size = int(batch_size or 2)
        if size < 2:
            raise ValidationError('Group batches must have a batch size of at least 2')
    if enrollment_type == EnrollmentType.GROUP.value and size < 2:
        raise ValidationError('Group enrollments must have a batch size of at least 2')
    if batch.is_full:
        raise ConflictError('Batch is full')
    return batch, size


def find_existing_enrollment(db: Session, student_id: int, course_id: str) -> tuple[Enrollment | None, Enrollment | None]:
    rows = db.query(Enrollment).filter(Enrollment.student_id == student_id, Enrollment.course_id == course_id).all()
    saved = next((row for row in rows if row.enrollment_type == EnrollmentType.SAVED.value), None)
    active = next((row for row in rows if row.enrollment_type != EnrollmentType.SAVED.value), None)
    return active, saved


def _release_batch_seat(db: Session, enrollment: Enrollment) -> None:
    if enrollment.batch_id is None:
        return
    batch = db.query(Batch).filter(Batch.id == enrollment.batch_id).first()
    if batch and int(batch.enrolled_students or 0) > 0:
        batch.enrolled_students = int(batch.enrolled_students) - 1


def apply_side_effects(
    db: Session,
    enrollment: Enrollment,
    result: TransitionResult,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> None:
    for effect in result.effects:
        if effect == SideEffect.EMIT_COMPLETION:
            side_effect_service.enqueue_task(
                db,
                side_effect_service.TASK_COMPLETION_NOTICE,
                enrollment_id=enrollment.id,
                payload={'course_id': enrollment.course_id},
                time_provider=time_provider,
            )
        elif effect == SideEffect.RELEASE_BATCH_SEAT:
            _release_batch_seat(db, enrollment)


def _create_module_records(db: Session, enrollment: Enrollment, media_items: list[str]) -> int:
    existing = {row.media_ref for row in db.query(EnrolledModule).filter(EnrolledModule.enrollment_id == enrollment.id).all()}
    created = 0
    for position, media_ref in enumerate(media_items, start=1):
        if media_ref in existing:
            continue
        db.add(
            EnrolledModule(
                enrollment_id=enrollment.id,
                student_id=enrollment.student_id,
                course_id=enrollment.course_id,
                media_ref=media_ref,
                position=position,
                is_watched=False,
            )
        )
        created += 1
    db.commit()
    return created


def _fan_out_modules(db: Session, enrollment: Enrollment, hit: CourseHit) -> None:
    media_items = hit.course.media_items
    if not media_items:
        return
    # Not transactional with the enrollment write.
    try:
        created = _create_module_records(db, enrollment, media_items)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('module_fan_out_failed enrollment_id=%s course_id=%s', enrollment.id, enrollment.course_id)
        return
    logger.info('module_fan_out enrollment_id=%s created=%s', enrollment.id, created)


def _record_initial_payment(db: Session, enrollment: Enrollment, payment: dict, *, now: datetime) -> EnrollmentPayment:
    amount = float(payment.get('amount') or 0)
    if amount <= 0:
        raise ValidationError('Payment amount must be greater than zero')
    method = payment.get('payment_method') or PaymentMethod.OTHER.value
    status = payment.get('payment_status') or PaymentStatus.COMPLETED.value
    row = EnrollmentPayment(
        amount=amount,
        currency=(payment.get('currency') or (enrollment.pricing_snapshot or {}).get('currency') or settings.default_currency).upper(),
        payment_method=method,
        transaction_id=payment.get('transaction_id') or None,
        payment_status=status,
        payment_date=now,
        installment_number=None,
    )
    enrollment.payments.append(row)
    if status == PaymentStatus.COMPLETED.value:
        enrollment.total_amount_paid = float(enrollment.total_amount_paid or 0) + amount
    return row


@timed_service('enrollment_create')
def create_enrollment(
    db: Session,
    *,
    student_id: int,
    course_id: str,
    batch_id: int | None = None,
    enrollment_type: str = EnrollmentType.INDIVIDUAL.value,
    payment_type: str = PaymentType.FULL.value,
    emi_config: dict | None = None,
    batch_size: int | None = None,
    currency: str | None = None,
    discount_code: str | None = None,
    discount_amount: float = 0.0,
    access_expiry_date: datetime | None = None,
    is_self_paced: bool | None = None,
    initial_payment: dict | None = None,
    notes: str = '',
    time_provider: TimeProvider = default_time_provider,
    course_lookup: CourseLookup = default_course_lookup,
) -> Enrollment:
    if enrollment_type == EnrollmentType.SAVED.value:
        raise ValidationError('Use the saved-courses endpoint to save a course')
    if enrollment_type not in {item.value for item in EnrollmentType}:
        raise ValidationError(f'Unknown enrollment type: {enrollment_type}')
    if payment_type not in {item.value for item in PaymentType}:
        raise ValidationError(f'Unknown payment type: {payment_type}')
    if payment_type == PaymentType.EMI.value and not emi_config:
        raise ValidationError('EMI configuration is required for EMI payment type')

    require_student(db, student_id)
    hit = course_lookup.require(db, course_id)
    active, saved = find_existing_enrollment(db, student_id, course_id)
    if active is not None:
        raise ConflictError('Student is already enrolled in this course')

    batch, size = _resolve_batch(db, enrollment_type=enrollment_type, batch_id=batch_id, batch_size=batch_size, course_id=course_id)
    snapshot = build_pricing_snapshot(
        hit.course.prices,
        enrollment_type=enrollment_type,
        batch_size=size,
        currency=currency,
        is_free_course=hit.course_type == 'free',
        discount_code=discount_code,
        discount_amount=discount_amount,
    )

    now = time_provider.naive_now()
    self_paced = bool(hit.course.is_self_paced) if is_self_paced is None else bool(is_self_paced)
    expiry = None
    if not self_paced:
        access_days = int(hit.course.access_days or settings.default_access_days)
        expiry = access_expiry_date.replace(tzinfo=None) if access_expiry_date else now + timedelta(days=access_days)

    enrollment = saved or Enrollment(student_id=student_id, course_id=course_id)
    enrollment.course_source = hit.source
    enrollment.course_model = hit.model
    enrollment.batch_id = batch.id if batch else None
    enrollment.enrollment_type = enrollment_type
    enrollment.status = EnrollmentStatus.ACTIVE.value
    enrollment.payment_type = payment_type
    enrollment.access_status = emi_domain.AccessStatus.ACTIVE.value
    enrollment.access_restriction_reason = None
    enrollment.enrollment_date = now
    enrollment.access_expiry_date = expiry
    enrollment.is_self_paced = self_paced
    enrollment.batch_size = size
    enrollment.notes = notes or enrollment.notes or ''
    enrollment.set_pricing_snapshot(snapshot)

    if payment_type == PaymentType.EMI.value:
        config = build_emi_config(emi_config or {}, default_total=snapshot['final_price'], today=time_provider.today())
        enrollment.setup_emi_schedule(config)
        enrollment.refresh_access(time_provider.today())

    if saved is None:
        db.add(enrollment)
    if batch is not None:
        batch.enrolled_students = int(batch.enrolled_students or 0) + 1

    try:
        db.flush()
        payment_row = _record_initial_payment(db, enrollment, initial_payment, now=now) if initial_payment else None
        db.flush()
        side_effect_service.enqueue_task(
            db,
            side_effect_service.TASK_ENROLLMENT_EMAIL,
            enrollment_id=enrollment.id,
            payload={'course_id': course_id},
            time_provider=time_provider,
        )
        if payment_row is not None and payment_row.payment_status == PaymentStatus.COMPLETED.value:
            for task_type in (side_effect_service.TASK_RECEIPT, side_effect_service.TASK_PAYMENT_EMAIL):
                side_effect_service.enqueue_task(
                    db,
                    task_type,
                    enrollment_id=enrollment.id,
                    payload={'payment_id': payment_row.id},
                    time_provider=time_provider,
                )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError('Duplicate enrollment or payment transaction') from exc
    db.refresh(enrollment)
    logger.info(
        'enrollment_created enrollment_id=%s student_id=%s course_id=%s type=%s payment_type=%s source=%s converted=%s',
        enrollment.id,
        student_id,
        course_id,
        enrollment_type,
        payment_type,
        hit.source,
        saved is not None,
    )

    _fan_out_modules(db, enrollment, hit)
    return enrollment


def _enrollment_query(db: Session):
    return db.query(Enrollment).filter(Enrollment.enrollment_type != EnrollmentType.SAVED.value)


def _apply_filters(query, *, status=None, enrollment_type=None, payment_type=None, access_status=None):
    if status:
        query = query.filter(Enrollment.status == status)
    if enrollment_type:
        query = query.filter(Enrollment.enrollment_type == enrollment_type)
    if payment_type:
        query = query.filter(Enrollment.payment_type == payment_type)
    if access_status:
        query = query.filter(Enrollment.access_status == access_status)
    return query


def list_enrollments(
    db: Session,
    *,
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    enrollment_type: str | None = None,
    payment_type: str | None = None,
    access_status: str | None = None,
) -> dict:
    page = max(1, int(page))
    limit = max(1, min(int(limit), 100))
    query = _apply_filters(
        _enrollment_query(db),
        status=status,
        enrollment_type=enrollment_type,
        payment_type=payment_type,
        access_status=access_status,
    )
    total = query.count()
    items = query.order_by(Enrollment.enrollment_date.desc(), Enrollment.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        'items': items,
        'total': total,
        'page': page,
        'limit': limit,
        'pages': math.ceil(total / limit) if total else 0,
    }


def course_statistics(db: Session, course_id: str) -> dict:
    rows = (
        _enrollment_query(db)
        .with_entities(Enrollment.status, func.count(Enrollment.id))
        .filter(Enrollment.course_id == course_id)
        .group_by(Enrollment.status)
        .all()
    )
    by_status = {str(status): int(count) for status, count in rows}
    total = sum(by_status.values())
    completed = by_status.get(EnrollmentStatus.COMPLETED.value, 0)
    return {
        'total': total,
        'active': by_status.get(EnrollmentStatus.ACTIVE.value, 0),
        'completed': completed,
        'completion_rate': round((completed / total) * 100, 2) if total else 0.0,
    }


def list_student_enrollments(
    db: Session,
    student_id: int,
    *,
    status: str | None = None,
    include_expired: bool = False,
) -> list[Enrollment]:
    query = _apply_filters(_enrollment_query(db).filter(Enrollment.student_id == student_id), status=status)
    if not include_expired and status != EnrollmentStatus.EXPIRED.value:
        query = query.filter(Enrollment.status != EnrollmentStatus.EXPIRED.value)
    rows = query.order_by(Enrollment.enrollment_date.desc(), Enrollment.id.desc()).all()
    if not rows:
        raise NotFoundError('No enrollments found for this student')
    return rows


def list_course_enrollments(
    db: Session,
    course_id: str,
    *,
    status: str | None = None,
    include_expired: bool = False,
) -> list[Enrollment]:
    query = _apply_filters(_enrollment_query(db).filter(Enrollment.course_id == course_id), status=status)
    if not include_expired and status != EnrollmentStatus.EXPIRED.value:
        query = query.filter(Enrollment.status != EnrollmentStatus.EXPIRED.value)
    rows = query.order_by(Enrollment.enrollment_date.desc(), Enrollment.id.desc()).all()
    if not rows:
        raise NotFoundError('No enrollments found for this course')
    return rows


def student_enrollment_counts(db: Session, student_id: int) -> dict:
    require_student(db, student_id)
    base = _enrollment_query(db).filter(Enrollment.student_id == student_id)
    by_status = {status.value: 0 for status in EnrollmentStatus}
    for status, count in base.with_entities(Enrollment.status, func.count(Enrollment.id)).group_by(Enrollment.status).all():
        by_status[str(status)] = int(count)
    by_payment_type = {payment_type.value: 0 for payment_type in PaymentType}
    for payment_type, count in base.with_entities(Enrollment.payment_type, func.count(Enrollment.id)).group_by(Enrollment.payment_type).all():
        by_payment_type[str(payment_type)] = int(count)
    saved = (
        db.query(func.count(Enrollment.id))
        .filter(Enrollment.student_id == student_id, Enrollment.enrollment_type == EnrollmentType.SAVED.value)
        .scalar()
    )
    return {
        'total': sum(by_status.values()),
        'by_status': by_status,
        'by_payment_type': by_payment_type,
        'restricted': base.filter(Enrollment.access_status == emi_domain.AccessStatus.RESTRICTED.value).count(),
        'saved': int(saved or 0),
    }


def update_enrollment(
    db: Session,
    enrollment_id: int,
    *,
    notes: str | None = None,
    access_expiry_date: datetime | None = None,
    is_self_paced: bool | None = None,
    event: LifecycleEvent | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> Enrollment:
    enrollment = require_enrollment(db, enrollment_id)
    if notes is not None:
        enrollment.notes = notes
    if is_self_paced is not None:
        enrollment.is_self_paced = bool(is_self_paced)
        if enrollment.is_self_paced:
            enrollment.access_expiry_date = None
    if access_expiry_date is not None:
        if enrollment.is_self_paced:
            raise ValidationError('Self-paced enrollments have no access expiry')
        enrollment.access_expiry_date = access_expiry_date.replace(tzinfo=None)
    if event is not None:
        previous = enrollment.status
        result = enrollment.apply_event(event, at=time_provider.naive_now())
        apply_side_effects(db, enrollment, result, time_provider=time_provider)
        if result.changed:
            logger.info('enrollment_transition enrollment_id=%s event=%s previous=%s current=%s', enrollment.id, event.value, previous, enrollment.status)
    db.commit()
    db.refresh(enrollment)
    return enrollment


def delete_enrollment(db: Session, enrollment_id: int) -> None:
    enrollment = require_enrollment(db, enrollment_id)
    if enrollment.status != EnrollmentStatus.CANCELLED.value:
        _release_batch_seat(db, enrollment)
    module_count = len(enrollment.modules)
    db.delete(enrollment)
    db.commit()
    logger.info('enrollment_deleted enrollment_id=%s modules=%s', enrollment_id, module_count)


def mark_completed(
    db: Session,
    *,
    student_id: int,
    course_id: str,
    time_provider: TimeProvider = default_time_provider,
) -> Enrollment:
    enrollment = _enrollment_query(db).filter(Enrollment.student_id == student_id, Enrollment.course_id == course_id).first()
    if not enrollment:
        raise NotFoundError('Enrollment not found')
    if enrollment.status == EnrollmentStatus.COMPLETED.value:
        raise ValidationError('Course already marked as completed')
    result = enrollment.apply_event(LifecycleEvent.COMPLETE, at=time_provider.naive_now())
    enrollment.progress_percentage = 100
    apply_side_effects(db, enrollment, result, time_provider=time_provider)
    db.commit()
    db.refresh(enrollment)
    logger.info('enrollment_completed enrollment_id=%s student_id=%s course_id=%s', enrollment.id, student_id, course_id)
    return enrollment


def expire_enrollments(db: Session, *, time_provider: TimeProvider = default_time_provider) -> dict:
    """Move lapsed, non-self-paced enrollments to expired, one record at a time."""
    now = time_provider.naive_now()
    candidate_ids = [
        int(row[0])
        for row in _enrollment_query(db)
        .with_entities(Enrollment.id)
        .filter(
            Enrollment.status.in_([EnrollmentStatus.ACTIVE.value, EnrollmentStatus.ON_HOLD.value]),
            Enrollment.is_self_paced.is_(False),
            Enrollment.access_expiry_date.is_not(None),
            Enrollment.access_expiry_date < now,
        )
        .all()
    ]
    result = {'total': len(candidate_ids), 'expired': 0, 'errors': []}
    for enrollment_id in candidate_ids:
        try:
            enrollment = db.query(Enrollment).filter(Enrollment.id == enrollment_id).one()
            outcome = enrollment.apply_event(LifecycleEvent.EXPIRE, at=now)
            apply_side_effects(db, enrollment, outcome, time_provider=time_provider)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception('enrollment_expire_failed enrollment_id=%s', enrollment_id)
            result['errors'].append({'enrollment_id': enrollment_id, 'error': str(exc)})
            continue
        if outcome.changed:
            result['expired'] += 1
    logger.info('enrollment_expiry_sweep total=%s expired=%s errors=%s', result['total'], result['expired'], len(result['errors']))
    return result


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def serialize_payment(payment: EnrollmentPayment) -> dict:
    return {
        'id': payment.id,
        'amount': round(float(payment.amount or 0), 2),
        'currency': payment.currency,
        'payment_method': payment.payment_method,
        'transaction_id': payment.transaction_id,
        'payment_status': payment.payment_status,
        'payment_date': _iso(payment.payment_date),
        'installment_number': payment.installment_number,
        'receipt_url': payment.receipt_url or None,
    }


def serialize_emi(enrollment: Enrollment) -> dict | None:
    schedule = enrollment.emi_schedule
    if schedule is None:
        return None
    data = schedule.to_dict()
    data['financed_amount'] = str(schedule.financed_amount)
    data['paid_amount'] = str(schedule.paid_amount)
    data['outstanding_amount'] = str(schedule.outstanding_amount)
    data['next_payment_date'] = _iso(schedule.next_payment_date)
    data['missed_payments'] = schedule.missed_payments
    data['status'] = schedule.plan_status(default_after_missed=settings.emi_default_after_missed).value
    return data


def serialize_enrollment(enrollment: Enrollment, *, time_provider: TimeProvider = default_time_provider) -> dict:
    now = time_provider.naive_now()
    expiry = enrollment.access_expiry_date
    remaining_days = None
    if expiry is not None and not enrollment.is_self_paced:
        remaining_days = max(0, (expiry - now).days)
    return {
        'id': enrollment.id,
        'student_id': enrollment.student_id,
        'course_id': enrollment.course_id,
        'course_source': enrollment.course_source,
        'course_model': enrollment.course_model,
        'batch_id': enrollment.batch_id,
        'enrollment_type': enrollment.enrollment_type,
        'status': enrollment.status,
        'payment_type': enrollment.payment_type,
        'access_status': enrollment.access_status,
        'access_restriction_reason': enrollment.access_restriction_reason,
        'enrollment_date': _iso(enrollment.enrollment_date),
        'access_expiry_date': _iso(expiry),
        'is_self_paced': bool(enrollment.is_self_paced),
        'batch_size': int(enrollment.batch_size or 1),
        'pricing_snapshot': enrollment.pricing_snapshot,
        'progress_percentage': int(enrollment.progress_percentage or 0),
        'lessons_completed': int(enrollment.lessons_completed or 0),
        'lesson_progress': enrollment.lesson_progress,
        'last_activity_at': _iso(enrollment.last_activity_at),
        'total_amount_paid': round(float(enrollment.total_amount_paid or 0), 2),
        'payments': [serialize_payment(payment) for payment in enrollment.payments],
        'emi': serialize_emi(enrollment),
        'is_completed': bool(enrollment.is_completed),
        'completed_on': _iso(enrollment.completed_on),
        'notes': enrollment.notes or '',
        'is_active': enrollment.status == EnrollmentStatus.ACTIVE.value and (expiry is None or expiry > now),
        'remaining_days': remaining_days,
        'is_batch_enrollment': enrollment.batch_id is not None,
        'is_individual_enrollment': enrollment.batch_id is None,
    }
