import json
import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from learnhub.db import Base
from learnhub.domain import emi as emi_domain
from learnhub.domain.lifecycle import EnrollmentState, EnrollmentStatus, LifecycleEvent, TransitionResult, transition
from learnhub.errors import ConflictError


class Role(str, Enum):
    ADMIN = 'admin'
    INSTRUCTOR = 'instructor'
    STUDENT = 'student'


class EnrollmentType(str, Enum):
    INDIVIDUAL = 'individual'
    BATCH = 'batch'
    CORPORATE = 'corporate'
    GROUP = 'group'
    SCHOLARSHIP = 'scholarship'
    TRIAL = 'trial'
    SAVED = 'saved'


class PaymentType(str, Enum):
    FULL = 'full'
    EMI = 'emi'


class BatchType(str, Enum):
    INDIVIDUAL = 'individual'
    GROUP = 'group'


class PaymentMethod(str, Enum):
    CREDIT_CARD = 'credit_card'
    DEBIT_CARD = 'debit_card'
    UPI = 'upi'
    NET_BANKING = 'net_banking'
    WALLET = 'wallet'
    BANK_TRANSFER = 'bank_transfer'
    CASH = 'cash'
    RAZORPAY = 'razorpay'
    OTHER = 'other'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'
    REFUNDED = 'refunded'
    PARTIALLY_REFUNDED = 'partially_refunded'


class TaskStatus(str, Enum):
    PENDING = 'pending'
    DONE = 'done'
    FAILED = 'failed'


def _new_course_id() -> str:
    return uuid.uuid4().hex


def _load_json(raw: str | None, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


class Student(Base):
    __tablename__ = 'students'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    full_name: Mapped[str] = mapped_column(String(160))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), default=Role.STUDENT.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    enrollments: Mapped[list['Enrollment']] = relationship('Enrollment', back_populates='student')


class CourseColumns:
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_course_id)
    title: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), default='', index=True)
    status: Mapped[str] = mapped_column(String(20), default='published', index=True)
    prices_json: Mapped[str] = mapped_column(Text, default='[]')
    media_json: Mapped[str] = mapped_column(Text, default='[]')
    is_self_paced: Mapped[bool] = mapped_column(Boolean, default=False)
    access_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    @property
    def prices(self) -> list[dict]:
        return _load_json(self.prices_json, [])

    @property
    def media_items(self) -> list[str]:
        return [str(item) for item in _load_json(self.media_json, [])]


class BlendedCourse(CourseColumns, Base):
    __tablename__ = 'blended_courses'


class LiveCourse(CourseColumns, Base):
    __tablename__ = 'live_courses'


class FreeCourse(CourseColumns, Base):
    __tablename__ = 'free_courses'


class Course(CourseColumns, Base):
    """Pre-migration course collection; read as a fallback."""

    __tablename__ = 'courses'

    category_type: Mapped[str] = mapped_column(String(40), default='')


class Batch(Base):
    __tablename__ = 'batches'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    course_id: Mapped[str] = mapped_column(String(32), index=True)
    name: Mapped[str] = mapped_column(String(160))
    batch_type: Mapped[str] = mapped_column(String(20), default=BatchType.GROUP.value)
    capacity: Mapped[int] = mapped_column(Integer, default=30)
    enrolled_students: Mapped[int] = mapped_column(Integer, default=0)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    enrollments: Mapped[list['Enrollment']] = relationship('Enrollment', back_populates='batch')

    @property
    def is_full(self) -> bool:
        return int(self.enrolled_students or 0) >= int(self.capacity or 0)


class Enrollment(Base):
    __tablename__ = 'enrollments'
    __table_args__ = (
        Index('ux_enrollments_student_course', 'student_id', 'course_id', unique=True),
        Index('ix_enrollments_student_course_type', 'student_id', 'course_id', 'enrollment_type'),
        Index('ix_enrollments_payment_type_access', 'payment_type', 'access_status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    course_id: Mapped[str] = mapped_column(String(32), index=True)
    course_source: Mapped[str] = mapped_column(String(20), default='new_model')
    course_model: Mapped[str] = mapped_column(String(40), default='')
    batch_id: Mapped[int | None] = mapped_column(ForeignKey('batches.id'), nullable=True, index=True)
    enrollment_type: Mapped[str] = mapped_column(String(20), default=EnrollmentType.INDIVIDUAL.value, index=True)
    status: Mapped[str] = mapped_column(String(20), default=EnrollmentStatus.ACTIVE.value, index=True)
    payment_type: Mapped[str] = mapped_column(String(10), default=PaymentType.FULL.value)
    access_status: Mapped[str] = mapped_column(String(20), default=emi_domain.AccessStatus.ACTIVE.value)
    access_restriction_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    enrollment_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    access_expiry_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    is_self_paced: Mapped[bool] = mapped_column(Boolean, default=False)
    batch_size: Mapped[int] = mapped_column(Integer, default=1)
    pricing_snapshot_json: Mapped[str] = mapped_column(Text, default='')
    progress_percentage: Mapped[int] = mapped_column(Integer, default=0)
    lessons_completed: Mapped[int] = mapped_column(Integer, default=0)
    lesson_progress_json: Mapped[str] = mapped_column(Text, default='{}')
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_amount_paid: Mapped[float] = mapped_column(Float, default=0.0)
    emi_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    completed_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    saved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student: Mapped['Student'] = relationship('Student', back_populates='enrollments')
    batch: Mapped['Batch | None'] = relationship('Batch', back_populates='enrollments')
    payments: Mapped[list['EnrollmentPayment']] = relationship(
        'EnrollmentPayment',
        back_populates='enrollment',
        cascade='all, delete-orphan',
        order_by='EnrollmentPayment.id',
    )
    modules: Mapped[list['EnrolledModule']] = relationship(
        'EnrolledModule',
        back_populates='enrollment',
        cascade='all, delete-orphan',
        order_by='EnrolledModule.position',
    )

    # Pricing snapshot: written once when the enrollment is priced.

    @property
    def pricing_snapshot(self) -> dict | None:
        return _load_json(self.pricing_snapshot_json, None)

    def set_pricing_snapshot(self, snapshot: dict) -> None:
        if self.pricing_snapshot_json:
            raise ConflictError('Pricing snapshot is immutable once set')
        self.pricing_snapshot_json = json.dumps(snapshot, sort_keys=True)

    # EMI schedule: owned value, replaced only through the methods below.

    @property
    def emi_schedule(self) -> emi_domain.EmiSchedule | None:
        raw = _load_json(self.emi_json, None)
        return emi_domain.EmiSchedule.from_dict(raw) if raw else None

    def _store_emi_schedule(self, schedule: emi_domain.EmiSchedule) -> None:
        self.emi_json = json.dumps(schedule.to_dict())

    def setup_emi_schedule(self, config: emi_domain.EmiConfig) -> emi_domain.EmiSchedule:
        if self.emi_json:
            raise ConflictError('EMI schedule already exists for this enrollment')
        schedule = emi_domain.build_schedule(config)
        self.payment_type = PaymentType.EMI.value
        self._store_emi_schedule(schedule)
        self.access_status = schedule.access_status().value
        self.access_restriction_reason = None
        return schedule

    def refresh_access(self, today: date) -> emi_domain.AccessDecision | None:
        """Recompute the access gate; full-payment enrollments have none."""
        schedule = self.emi_schedule
        if schedule is None:
            return None
        decision = emi_domain.recompute_access(schedule, today)
        self._store_emi_schedule(decision.schedule)
        self.access_status = decision.access_status.value
        self.access_restriction_reason = decision.reason
        return decision

    def settle_next_installment(
        self,
        *,
        paid_on: date,
        transaction_id: str | None = None,
    ) -> emi_domain.Installment:
        schedule = self.emi_schedule
        if schedule is None:
            raise ConflictError('Enrollment has no EMI schedule')
        updated, installment = emi_domain.apply_payment(schedule, paid_on=paid_on, transaction_id=transaction_id)
        self._store_emi_schedule(updated)
        self.refresh_access(paid_on)
        return installment

    # Lifecycle

    @property
    def lifecycle_state(self) -> EnrollmentState:
        return EnrollmentState(status=EnrollmentStatus(self.status), completed_on=self.completed_on)

    def apply_event(self, event: LifecycleEvent, *, at: datetime) -> TransitionResult:
        result = transition(self.lifecycle_state, event, at=at)
        if result.changed:
            self.status = result.state.status.value
            self.completed_on = result.state.completed_on
            self.is_completed = result.state.status == EnrollmentStatus.COMPLETED
        return result

    @property
    def lesson_progress(self) -> dict[str, dict]:
        return _load_json(self.lesson_progress_json, {})

    def set_lesson_progress(self, lesson_id: str, entry: dict) -> None:
        progress = self.lesson_progress
        progress[str(lesson_id)] = entry
        self.lesson_progress_json = json.dumps(progress, sort_keys=True)


class EnrollmentPayment(Base):
    __tablename__ = 'enrollment_payments'
    __table_args__ = (
        UniqueConstraint('transaction_id', name='uq_enrollment_payments_transaction_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    enrollment_id: Mapped[int] = mapped_column(ForeignKey('enrollments.id'), index=True)
    amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default='INR')
    payment_method: Mapped[str] = mapped_column(String(20), default=PaymentMethod.OTHER.value)
    transaction_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value, index=True)
    payment_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    installment_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    receipt_url: Mapped[str] = mapped_column(String(500), default='')
    metadata_json: Mapped[str] = mapped_column(Text, default='{}')

    enrollment: Mapped['Enrollment'] = relationship('Enrollment', back_populates='payments')


class EnrolledModule(Base):
    __tablename__ = 'enrolled_modules'
    __table_args__ = (
        Index('ix_enrolled_modules_student_course', 'student_id', 'course_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    enrollment_id: Mapped[int] = mapped_column(ForeignKey('enrollments.id'), index=True)
    student_id: Mapped[int] = mapped_column(Integer, index=True)
    course_id: Mapped[str] = mapped_column(String(32), index=True)
    media_ref: Mapped[str] = mapped_column(String(500))
    position: Mapped[int] = mapped_column(Integer, default=0)
    is_watched: Mapped[bool] = mapped_column(Boolean, default=False)
    watched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    enrollment: Mapped['Enrollment'] = relationship('Enrollment', back_populates='modules')


class SideEffectTask(Base):
    __tablename__ = 'side_effect_tasks'
    __table_args__ = (
        Index('ix_side_effect_tasks_status_next_attempt', 'status', 'next_attempt_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    task_type: Mapped[str] = mapped_column(String(40), index=True)
    enrollment_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    payload_json: Mapped[str] = mapped_column(Text, default='{}')
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.PENDING.value, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_error: Mapped[str] = mapped_column(Text, default='')
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def payload(self) -> dict:
        return _load_json(self.payload_json, {})
