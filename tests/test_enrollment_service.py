import json
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from learnhub.core.time_provider import TimeProvider
from learnhub.db import Base
from learnhub.domain.lifecycle import LifecycleEvent
from learnhub.errors import ConflictError, NotFoundError, ValidationError
from learnhub.models import (
    Batch,
    BatchType,
    BlendedCourse,
    Course,
    EnrolledModule,
    Enrollment,
    EnrollmentPayment,
    FreeCourse,
    LiveCourse,
    SideEffectTask,
    Student,
)
from learnhub.services import enrollment_service, saved_course_service


IST = ZoneInfo('Asia/Kolkata')
PRICES = [
    {'currency': 'INR', 'individual': 12000, 'batch': 9000, 'min_batch_size': 3, 'early_bird_discount': 0, 'group_discount': 10},
    {'currency': 'USD', 'individual': 150, 'batch': 110, 'min_batch_size': 3},
]


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


class EnrollmentServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_enrollment_service.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        self.clock = FixedTimeProvider(datetime(2024, 1, 1, 10, 0, tzinfo=IST))
        self.db = self._session_factory()
        for table in (SideEffectTask, EnrolledModule, EnrollmentPayment, Enrollment, Batch, Course, FreeCourse, LiveCourse, BlendedCourse, Student):
            self.db.query(table).delete()
        self.db.commit()

        self.student = Student(full_name='Aarav Shah', email='aarav@example.com')
        self.other = Student(full_name='Diya Rao', email='diya@example.com')
        self.course = BlendedCourse(
            id='blended01',
            title='Full-Stack Foundations',
            prices_json=json.dumps(PRICES),
            media_json=json.dumps(['intro.mp4', 'http.mp4', 'sql.mp4']),
            access_days=90,
        )
        self.live = LiveCourse(id='live01', title='Live DSA', prices_json=json.dumps(PRICES))
        self.db.add_all([self.student, self.other, self.course, self.live])
        self.db.commit()
        self.group_batch = Batch(course_id='live01', name='Evening', batch_type=BatchType.GROUP.value, capacity=2)
        self.solo_batch = Batch(course_id='live01', name='Solo', batch_type=BatchType.INDIVIDUAL.value, capacity=5)
        self.db.add_all([self.group_batch, self.solo_batch])
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def _create(self, **overrides):
        values = {'student_id': self.student.id, 'course_id': 'blended01', 'time_provider': self.clock}
        values.update(overrides)
        return enrollment_service.create_enrollment(self.db, **values)

    def test_individual_full_payment_enrollment_snapshots_price_and_fans_out_modules(self):
        enrollment = self._create()

        self.assertEqual(enrollment.status, 'active')
        self.assertEqual(enrollment.access_status, 'active')
        self.assertIsNone(enrollment.batch_id)
        self.assertEqual(enrollment.batch_size, 1)
        self.assertEqual(enrollment.course_source, 'new_model')
        self.assertEqual(enrollment.course_model, 'BlendedCourse')
        self.assertEqual(enrollment.pricing_snapshot['final_price'], 12000.0)
        self.assertEqual(enrollment.pricing_snapshot['currency'], 'INR')
        self.assertEqual(enrollment.access_expiry_date, datetime(2024, 1, 1, 10, 0) + timedelta(days=90))
        self.assertIsNone(enrollment.emi_schedule)

        modules = self.db.query(EnrolledModule).filter(EnrolledModule.enrollment_id == enrollment.id).order_by(EnrolledModule.position).all()
        self.assertEqual([row.media_ref for row in modules], ['intro.mp4', 'http.mp4', 'sql.mp4'])
        tasks = self.db.query(SideEffectTask).all()
        self.assertEqual([task.task_type for task in tasks], ['enrollment_email'])

    def test_emi_enrollment_builds_schedule_from_configuration(self):
        enrollment = self._create(
            payment_type='emi',
            emi_config={'total_amount': 12000, 'number_of_installments': 6, 'start_date': '2024-01-01'},
        )

        schedule = enrollment.emi_schedule
        self.assertEqual(enrollment.payment_type, 'emi')
        self.assertEqual(len(schedule.installments), 6)
        self.assertEqual(str(schedule.installments[0].amount), '2000.00')
        self.assertEqual(schedule.installments[0].due_date.isoformat(), '2024-02-01')
        self.assertEqual(schedule.grace_period_days, 5)
        serialized = enrollment_service.serialize_enrollment(enrollment, time_provider=self.clock)
        self.assertEqual(serialized['emi']['status'], 'active')
        self.assertEqual(serialized['emi']['next_payment_date'], '2024-02-01')

    def test_backdated_emi_start_restricts_access_at_creation(self):
        march = FixedTimeProvider(datetime(2024, 3, 15, 10, 0, tzinfo=IST))

        enrollment = self._create(
            payment_type='emi',
            emi_config={'total_amount': 12000, 'number_of_installments': 6, 'start_date': '2024-01-01', 'grace_period_days': 5},
            time_provider=march,
        )

        statuses = [item.status.value for item in enrollment.emi_schedule.installments]
        self.assertEqual(statuses, ['overdue', 'overdue', 'pending', 'pending', 'pending', 'pending'])
        self.assertEqual(enrollment.access_status, 'restricted')
        self.assertIsNotNone(enrollment.access_restriction_reason)

    def test_individual_enrollments_are_unique_at_the_database_level(self):
        self.db.add_all([
            Enrollment(student_id=self.student.id, course_id='blended01', enrollment_type='individual'),
            Enrollment(student_id=self.student.id, course_id='blended01', enrollment_type='individual'),
        ])

        with self.assertRaises(IntegrityError):
            self.db.commit()
        self.db.rollback()
        self.assertEqual(self.db.query(Enrollment).count(), 0)

    def test_emi_without_configuration_is_rejected(self):
        with self.assertRaises(ValidationError):
            self._create(payment_type='emi')
        self.assertEqual(self.db.query(Enrollment).count(), 0)

    def test_second_enrollment_for_same_course_conflicts(self):
        self._create()

        with self.assertRaises(ConflictError):
            self._create()
        self.assertEqual(self.db.query(Enrollment).count(), 1)

    def test_unknown_student_or_course_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self._create(student_id=9999)
        with self.assertRaises(NotFoundError):
            self._create(course_id='missing')

    def test_legacy_course_is_found_last_and_tagged(self):
        self.db.add(Course(id='legacy01', title='Python 101', category_type='live', prices_json=json.dumps(PRICES)))
        self.db.commit()

        enrollment = self._create(course_id='legacy01')

        self.assertEqual(enrollment.course_source, 'legacy_model')
        self.assertEqual(enrollment.course_model, 'Course')

    def test_free_course_without_prices_is_priced_at_zero(self):
        self.db.add(FreeCourse(id='free01', title='Git Basics', is_self_paced=True))
        self.db.commit()

        enrollment = self._create(course_id='free01')

        self.assertEqual(enrollment.pricing_snapshot['final_price'], 0.0)
        self.assertTrue(enrollment.is_self_paced)
        self.assertIsNone(enrollment.access_expiry_date)

    def test_individual_enrollment_cannot_reference_batch(self):
        with self.assertRaises(ValidationError):
            self._create(course_id='live01', batch_id=self.group_batch.id)

    def test_group_enrollment_requires_batch_of_at_least_two(self):
        with self.assertRaises(ValidationError):
            self._create(course_id='live01', enrollment_type='group')
        with self.assertRaises(ValidationError):
            self._create(course_id='live01', enrollment_type='group', batch_id=self.group_batch.id, batch_size=1)

        enrollment = self._create(course_id='live01', enrollment_type='group', batch_id=self.group_batch.id, batch_size=4)

        self.assertEqual(enrollment.batch_size, 4)
        self.assertEqual(enrollment.pricing_snapshot['pricing_type'], 'group_discount')
        self.assertEqual(enrollment.pricing_snapshot['final_price'], 8100.0)
        self.db.refresh(self.group_batch)
        self.assertEqual(self.group_batch.enrolled_students, 1)

    def test_individual_batch_forces_size_one(self):
        with self.assertRaises(ValidationError):
            self._create(course_id='live01', enrollment_type='batch', batch_id=self.solo_batch.id, batch_size=3)

        enrollment = self._create(course_id='live01', enrollment_type='batch', batch_id=self.solo_batch.id)

        self.assertEqual(enrollment.batch_size, 1)
        self.assertEqual(enrollment.pricing_snapshot['pricing_type'], 'batch')

    def test_full_batch_rejects_new_members(self):
        self.group_batch.enrolled_students = 2
        self.db.commit()

        with self.assertRaises(ConflictError):
            self._create(course_id='live01', enrollment_type='batch', batch_id=self.group_batch.id, batch_size=2)

    def test_saved_record_is_converted_in_place(self):
        saved = saved_course_service.save_course(self.db, student_id=self.student.id, course_id='blended01', time_provider=self.clock)

        enrollment = self._create(payment_type='full')

        self.assertEqual(enrollment.id, saved.id)
        self.assertEqual(enrollment.enrollment_type, 'individual')
        self.assertEqual(self.db.query(Enrollment).count(), 1)
        self.assertEqual(saved_course_service.list_saved_courses(self.db, self.student.id), [])

    def test_initial_payment_is_recorded_and_queues_receipt(self):
        enrollment = self._create(
            initial_payment={'amount': 12000, 'payment_method': 'upi', 'transaction_id': 'txn-init', 'payment_status': 'completed'}
        )

        self.assertEqual(enrollment.total_amount_paid, 12000.0)
        self.assertEqual(len(enrollment.payments), 1)
        task_types = sorted(task.task_type for task in self.db.query(SideEffectTask).all())
        self.assertEqual(task_types, ['enrollment_email', 'payment_email', 'receipt'])

    def test_pricing_snapshot_cannot_be_rewritten(self):
        enrollment = self._create()

        with self.assertRaises(ConflictError):
            enrollment.set_pricing_snapshot({'final_price': 1})

    def test_cancel_releases_seat_and_delete_cascades(self):
        enrollment = self._create(course_id='live01', enrollment_type='batch', batch_id=self.group_batch.id, batch_size=2)
        self.db.refresh(self.group_batch)
        self.assertEqual(self.group_batch.enrolled_students, 1)

        cancelled = enrollment_service.update_enrollment(self.db, enrollment.id, event=LifecycleEvent.CANCEL, time_provider=self.clock)
        self.assertEqual(cancelled.status, 'cancelled')
        self.db.refresh(self.group_batch)
        self.assertEqual(self.group_batch.enrolled_students, 0)

        enrollment_service.delete_enrollment(self.db, enrollment.id)
        self.db.refresh(self.group_batch)
        self.assertEqual(self.group_batch.enrolled_students, 0)
        self.assertEqual(self.db.query(Enrollment).count(), 0)

    def test_delete_removes_module_records_and_payments(self):
        enrollment = self._create(initial_payment={'amount': 500, 'transaction_id': 'txn-del'})
        self.assertEqual(self.db.query(EnrolledModule).count(), 3)

        enrollment_service.delete_enrollment(self.db, enrollment.id)

        self.assertEqual(self.db.query(EnrolledModule).count(), 0)
        self.assertEqual(self.db.query(EnrollmentPayment).count(), 0)
        with self.assertRaises(NotFoundError):
            enrollment_service.require_enrollment(self.db, enrollment.id)

    def test_mark_completed_twice_is_rejected(self):
        self._create()

        completed = enrollment_service.mark_completed(self.db, student_id=self.student.id, course_id='blended01', time_provider=self.clock)
        self.assertEqual(completed.status, 'completed')
        self.assertTrue(completed.is_completed)
        self.assertEqual(completed.completed_on, datetime(2024, 1, 1, 10, 0))

        with self.assertRaises(ValidationError):
            enrollment_service.mark_completed(self.db, student_id=self.student.id, course_id='blended01', time_provider=self.clock)
        notices = self.db.query(SideEffectTask).filter(SideEffectTask.task_type == 'completion_notice').count()
        self.assertEqual(notices, 1)

    def test_expiry_sweep_moves_lapsed_enrollments_to_expired(self):
        lapsed = self._create()
        self._create(student_id=self.other.id, access_expiry_date=datetime(2030, 1, 1))

        later = FixedTimeProvider(datetime(2024, 6, 1, 9, 0, tzinfo=IST))
        result = enrollment_service.expire_enrollments(self.db, time_provider=later)

        self.assertEqual(result['total'], 1)
        self.assertEqual(result['expired'], 1)
        self.db.refresh(lapsed)
        self.assertEqual(lapsed.status, 'expired')
        with self.assertRaises(NotFoundError):
            enrollment_service.list_student_enrollments(self.db, self.student.id)
        self.assertEqual(len(enrollment_service.list_student_enrollments(self.db, self.student.id, include_expired=True)), 1)

    def test_representation_uses_the_current_clock(self):
        enrollment = self._create()

        with freeze_time('2024-01-11 04:30:00'):
            data = enrollment_service.serialize_enrollment(enrollment)

        self.assertTrue(data['is_active'])
        self.assertEqual(data['remaining_days'], 80)
        self.assertFalse(data['is_batch_enrollment'])

        with freeze_time('2024-04-01 04:30:00'):
            lapsed = enrollment_service.serialize_enrollment(enrollment)

        self.assertFalse(lapsed['is_active'])
        self.assertEqual(lapsed['remaining_days'], 0)

    def test_listing_paginates_and_reports_statistics(self):
        self._create()
        self._create(student_id=self.other.id)
        enrollment_service.mark_completed(self.db, student_id=self.other.id, course_id='blended01', time_provider=self.clock)

        page = enrollment_service.list_enrollments(self.db, page=1, limit=1)
        stats = enrollment_service.course_statistics(self.db, 'blended01')
        counts = enrollment_service.student_enrollment_counts(self.db, self.other.id)

        self.assertEqual(page['total'], 2)
        self.assertEqual(page['pages'], 2)
        self.assertEqual(len(page['items']), 1)
        self.assertEqual(stats, {'total': 2, 'active': 1, 'completed': 1, 'completion_rate': 50.0})
        self.assertEqual(counts['by_status']['completed'], 1)
        self.assertEqual(counts['by_payment_type']['full'], 1)


if __name__ == '__main__':
    unittest.main()
