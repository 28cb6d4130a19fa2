from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from learnhub.errors import DependencyError, NotFoundError
from learnhub.integrations.client_factory import get_email_sender
from learnhub.integrations.clients import EmailSender
from learnhub.integrations.template_engine import (
    COMPLETION_EMAIL_TEMPLATE,
    ENROLLMENT_EMAIL_TEMPLATE,
    PAYMENT_EMAIL_TEMPLATE,
    template_engine,
)
from learnhub.models import Enrollment, EnrollmentPayment, SideEffectTask, Student


logger = logging.getLogger(__name__)


def _load_enrollment(db: Session, enrollment_id: int | None) -> tuple[Enrollment, Student]:
    enrollment = db.query(Enrollment).filter(Enrollment.id == enrollment_id).first() if enrollment_id else None
    if not enrollment:
        raise NotFoundError('Enrollment not found')
    student = db.query(Student).filter(Student.id == enrollment.student_id).first()
    if not student or not student.email:
        raise NotFoundError('Student email not found')
    return enrollment, student


def _deliver(sender: EmailSender | None, *, to: str, subject: str, body: str, attachments: list[dict] | None = None) -> None:
    delivered = (sender or get_email_sender()).send(to=to, subject=subject, body=body, attachments=attachments)
    if not delivered:
        raise DependencyError(f'Email delivery rejected for {to}')
    logger.info('email_sent to=%s subject=%s', to, subject)


def handle_enrollment_email(db: Session, task: SideEffectTask, *, sender: EmailSender | None = None) -> None:
    enrollment, student = _load_enrollment(db, task.enrollment_id)
    snapshot = enrollment.pricing_snapshot or {}
    schedule = enrollment.emi_schedule
    body = template_engine.render(
        ENROLLMENT_EMAIL_TEMPLATE,
        {
            'student_name': student.full_name,
            'course_id': enrollment.course_id,
            'enrollment_type': enrollment.enrollment_type,
            'final_price': float(snapshot['final_price']) if 'final_price' in snapshot else None,
            'currency': snapshot.get('currency', ''),
            'installments': schedule.number_of_installments if schedule else 0,
            'next_payment_date': schedule.next_payment_date.isoformat() if schedule and schedule.next_payment_date else None,
        },
    )
    _deliver(sender, to=student.email, subject='Enrollment confirmed', body=body)


def handle_payment_email(db: Session, task: SideEffectTask, *, sender: EmailSender | None = None) -> None:
    enrollment, student = _load_enrollment(db, task.enrollment_id)
    payment_id = task.payload.get('payment_id')
    payment = db.query(EnrollmentPayment).filter(EnrollmentPayment.id == payment_id).first() if payment_id else None
    if not payment:
        raise NotFoundError('Payment not found')
    attachments = []
    if payment.receipt_url:
        attachments.append({'filename': 'receipt.pdf', 'url': payment.receipt_url})
    body = template_engine.render(
        PAYMENT_EMAIL_TEMPLATE,
        {
            'student_name': student.full_name,
            'course_id': enrollment.course_id,
            'currency': payment.currency,
            'amount': float(payment.amount or 0),
            'installment_number': payment.installment_number,
        },
    )
    _deliver(sender, to=student.email, subject='Payment received', body=body, attachments=attachments)


def handle_completion_notice(db: Session, task: SideEffectTask, *, sender: EmailSender | None = None) -> None:
    enrollment, student = _load_enrollment(db, task.enrollment_id)
    body = template_engine.render(
        COMPLETION_EMAIL_TEMPLATE,
        {
            'student_name': student.full_name,
            'course_id': enrollment.course_id,
            'completed_on': enrollment.completed_on.strftime('%d %b %Y') if enrollment.completed_on else '',
        },
    )
    _deliver(sender, to=student.email, subject='Course completed', body=body)
