from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from learnhub.errors import NotFoundError
from learnhub.integrations.client_factory import get_file_storage, get_pdf_renderer
from learnhub.integrations.clients import FileStorage, PdfRenderer
from learnhub.integrations.template_engine import RECEIPT_TEMPLATE, template_engine
from learnhub.models import Enrollment, EnrollmentPayment, SideEffectTask, Student


logger = logging.getLogger(__name__)


def receipt_number(payment: EnrollmentPayment) -> str:
    stamp = payment.payment_date.strftime('%Y%m%d') if payment.payment_date else '00000000'
    return f'RCP-{stamp}-{int(payment.id):06d}'


def render_receipt_html(payment: EnrollmentPayment, enrollment: Enrollment, student: Student | None) -> str:
    snapshot = enrollment.pricing_snapshot or {}
    return template_engine.render(
        RECEIPT_TEMPLATE,
        {
            'receipt_number': receipt_number(payment),
            'student_name': student.full_name if student else f'#{enrollment.student_id}',
            'course_id': enrollment.course_id,
            'payment_date': payment.payment_date.strftime('%d %b %Y') if payment.payment_date else '',
            'payment_method': payment.payment_method,
            'transaction_id': payment.transaction_id,
            'currency': payment.currency,
            'amount': float(payment.amount or 0),
            'price_currency': snapshot.get('currency', payment.currency),
            'final_price': float(snapshot.get('final_price') or 0),
            'installment_number': payment.installment_number,
        },
    )


def issue_receipt(
    db: Session,
    payment_id: int,
    *,
    renderer: PdfRenderer | None = None,
    storage: FileStorage | None = None,
) -> str:
    payment = db.query(EnrollmentPayment).filter(EnrollmentPayment.id == payment_id).first()
    if not payment:
        raise NotFoundError('Payment not found')
    if payment.receipt_url:
        return payment.receipt_url

    enrollment = payment.enrollment
    student = db.query(Student).filter(Student.id == enrollment.student_id).first()
    html = render_receipt_html(payment, enrollment, student)
    pdf_bytes = (renderer or get_pdf_renderer()).render(html)
    key = f'receipts/{enrollment.id}/{receipt_number(payment)}.pdf'
    url = (storage or get_file_storage()).upload(key, pdf_bytes, 'application/pdf')
    payment.receipt_url = url
    logger.info('receipt_issued payment_id=%s enrollment_id=%s url=%s', payment.id, enrollment.id, url)
    return url


def handle_receipt_task(db: Session, task: SideEffectTask) -> None:
    payment_id = task.payload.get('payment_id')
    if not payment_id:
        raise NotFoundError('Receipt task has no payment_id')
    issue_receipt(db, int(payment_id))
