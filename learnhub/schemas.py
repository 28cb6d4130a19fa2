from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


EnrollmentTypeName = Literal['individual', 'batch', 'corporate', 'group', 'scholarship', 'trial']
PaymentMethodName = Literal[
    'credit_card', 'debit_card', 'upi', 'net_banking', 'wallet', 'bank_transfer', 'cash', 'razorpay', 'other'
]
PaymentStatusName = Literal['pending', 'completed', 'failed', 'refunded', 'partially_refunded']


class EmiConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_amount: float | None = Field(default=None, gt=0, alias='totalAmount')
    down_payment: float = Field(default=0, ge=0, alias='downPayment')
    number_of_installments: int = Field(ge=1, le=60, alias='numberOfInstallments')
    start_date: date | None = Field(default=None, alias='startDate')
    interest_rate: float = Field(default=0, ge=0, alias='interestRate')
    processing_fee: float = Field(default=0, ge=0, alias='processingFee')
    grace_period_days: int | None = Field(default=None, ge=0, le=60, alias='gracePeriodDays')


class InitialPaymentRequest(BaseModel):
    amount: float = Field(gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    payment_method: PaymentMethodName = 'other'
    transaction_id: str | None = Field(default=None, max_length=120)
    payment_status: PaymentStatusName = 'completed'


class EnrollmentCreateRequest(BaseModel):
    student_id: int | None = None
    course_id: str = Field(min_length=1, max_length=32)
    batch_id: int | None = None
    enrollment_type: EnrollmentTypeName = 'individual'
    payment_type: Literal['full', 'emi'] = 'full'
    emi_config: EmiConfigRequest | None = None
    batch_size: int | None = Field(default=None, ge=1)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    discount_code: str | None = None
    discount_amount: float = Field(default=0, ge=0)
    access_expiry_date: datetime | None = None
    is_self_paced: bool | None = None
    payment: InitialPaymentRequest | None = None
    notes: str = ''


class EnrollmentConvertRequest(BaseModel):
    batch_id: int | None = None
    enrollment_type: EnrollmentTypeName = 'individual'
    payment_type: Literal['full', 'emi'] = 'full'
    emi_config: EmiConfigRequest | None = None
    batch_size: int | None = Field(default=None, ge=1)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    payment: InitialPaymentRequest | None = None


class EnrollmentUpdateRequest(BaseModel):
    notes: str | None = None
    access_expiry_date: datetime | None = None
    is_self_paced: bool | None = None
    event: Literal['complete', 'cancel', 'hold', 'resume', 'expire'] | None = None


class MarkCompletedRequest(BaseModel):
    student_id: int | None = None
    course_id: str = Field(min_length=1)


class SaveCourseRequest(BaseModel):
    course_id: str = Field(min_length=1, max_length=32)
    notes: str = ''


class PaymentCreateRequest(BaseModel):
    amount: float = Field(gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    payment_method: PaymentMethodName = 'other'
    transaction_id: str | None = Field(default=None, max_length=120)
    payment_status: PaymentStatusName = 'completed'
    metadata: dict = Field(default_factory=dict)


class WatchModuleRequest(BaseModel):
    student_id: int | None = None


class LessonProgressRequest(BaseModel):
    status: Literal['not_started', 'in_progress', 'completed']
    progress_percentage: int = Field(default=0, ge=0, le=100)
    time_spent_seconds: int = Field(default=0, ge=0)
