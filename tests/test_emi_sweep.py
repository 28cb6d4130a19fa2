import json
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from learnhub.core.time_provider import TimeProvider
from learnhub.db import Base
from learnhub.models import BlendedCourse, EnrolledModule, Enrollment, EnrollmentPayment, SideEffectTask, Student
from learnhub.services import emi_service, enrollment_service, payment_service


IST = ZoneInfo('Asia/Kolkata')


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


def at(year, month, day):
    return FixedTimeProvider(datetime(year, month, day, 10, 0, tzinfo=IST))


class EmiSweepTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_emi_sweep.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        self.db = self._session_factory()
        for table in (SideEffectTask, EnrolledModule, EnrollmentPayment, Enrollment, BlendedCourse, Student):
            self.db.query(table).delete()
        self.db.commit()

        self.students = [Student(full_name=f'Learner {index}', email=f'learner{index}@example.com') for index in range(3)]
        self.db.add_all(self.students)
        self.db.add(BlendedCourse(id='blended01', title='Data Engineering', prices_json=json.dumps([{'currency': 'INR', 'individual': 12000}])))
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def _enroll(self, student, *, emi=True):
        values = {'student_id': student.id, 'course_id': 'blended01', 'time_provider': at(2024, 1, 1)}
        if emi:
            values['payment_type'] = 'emi'
            values['emi_config'] = {'total_amount': 12000, 'number_of_installments': 6, 'start_date': '2024-01-01'}
        return enrollment_service.create_enrollment(self.db, **values)

    def test_sweep_restricts_lapsed_plans_and_skips_full_payment(self):
        lapsed = self._enroll(self.students[0])
        current = self._enroll(self.students[1])
        self._enroll(self.students[2], emi=False)
        payment_service.record_payment(self.db, current.id, amount=2000, time_provider=at(2024, 2, 2))

        result = emi_service.sweep_emi_access(self.db, time_provider=at(2024, 2, 10))

        self.assertEqual(result['total'], 2)
        self.assertEqual(result['restricted'], 1)
        self.assertEqual(result['active'], 1)
        self.assertEqual(result['changed'], 1)
        self.assertEqual(result['errors'], [])
        self.db.refresh(lapsed)
        self.assertEqual(lapsed.access_status, 'restricted')
        self.assertEqual(lapsed.access_restriction_reason, 'Overdue installment(s): 1')

    def test_second_sweep_on_same_day_changes_nothing(self):
        self._enroll(self.students[0])
        emi_service.sweep_emi_access(self.db, time_provider=at(2024, 3, 15))

        again = emi_service.sweep_emi_access(self.db, time_provider=at(2024, 3, 15))

        self.assertEqual(again['updated'], 0)
        self.assertEqual(again['changed'], 0)
        self.assertEqual(again['restricted'], 1)

    def test_one_corrupt_schedule_does_not_stop_the_sweep(self):
        broken = self._enroll(self.students[0])
        healthy = self._enroll(self.students[1])
        broken.emi_json = '{"total_amount": "1"}'
        self.db.commit()

        result = emi_service.sweep_emi_access(self.db, time_provider=at(2024, 3, 15))

        self.assertEqual(result['total'], 2)
        self.assertEqual(len(result['errors']), 1)
        self.assertEqual(result['errors'][0]['enrollment_id'], broken.id)
        self.assertEqual(result['restricted'], 1)
        self.db.refresh(healthy)
        self.assertEqual(healthy.access_status, 'restricted')

    def test_access_restored_by_payment_then_restricted_again_after_next_lapse(self):
        enrollment = self._enroll(self.students[0])
        emi_service.sweep_emi_access(self.db, time_provider=at(2024, 2, 10))
        payment_service.record_payment(self.db, enrollment.id, amount=2000, time_provider=at(2024, 2, 12))

        self.db.refresh(enrollment)
        self.assertEqual(enrollment.access_status, 'active')

        recomputed = emi_service.recompute_enrollment_access(self.db, enrollment.id, time_provider=at(2024, 3, 7))

        self.assertEqual(recomputed['previous'], 'active')
        self.assertEqual(recomputed['access_status'], 'restricted')
        self.assertTrue(recomputed['changed'])
        self.assertEqual(recomputed['newly_overdue'], [2])

    def test_full_payment_enrollment_recompute_is_a_no_op(self):
        enrollment = self._enroll(self.students[0], emi=False)

        recomputed = emi_service.recompute_enrollment_access(self.db, enrollment.id, time_provider=at(2030, 1, 1))

        self.assertEqual(recomputed['access_status'], 'active')
        self.assertFalse(recomputed['changed'])
        self.assertEqual(recomputed['newly_overdue'], [])

    def test_analytics_summarise_plans_revenue_and_punctuality(self):
        on_time = self._enroll(self.students[0])
        late = self._enroll(self.students[1])
        payment_service.record_payment(self.db, on_time.id, amount=2000, time_provider=at(2024, 2, 1))
        payment_service.record_payment(self.db, late.id, amount=2000, time_provider=at(2024, 2, 20))

        stats = emi_service.emi_analytics(self.db, 'blended01')

        self.assertEqual(stats['total_emi_enrollments'], 2)
        self.assertEqual(stats['plans_by_status'], {'active': 2, 'completed': 0, 'defaulted': 0})
        self.assertEqual(stats['total_revenue'], 24000.0)
        self.assertEqual(stats['collected_revenue'], 4000.0)
        self.assertEqual(stats['pending_revenue'], 20000.0)
        self.assertEqual(stats['installments_by_status'], {'pending': 10, 'overdue': 0, 'paid': 2})
        self.assertEqual(stats['average_installment_amount'], 2000.0)
        self.assertEqual(stats['missed_payments'], 1)
        self.assertEqual(stats['on_time_payment_percentage'], 50.0)

    def test_payment_inside_grace_window_is_not_counted_on_time(self):
        enrollment = self._enroll(self.students[0])
        payment_service.record_payment(self.db, enrollment.id, amount=2000, time_provider=at(2024, 2, 3))

        stats = emi_service.emi_analytics(self.db, 'blended01')

        self.assertEqual(stats['missed_payments'], 0)
        self.assertEqual(stats['on_time_payment_percentage'], 0.0)

    def test_analytics_for_course_without_emi_plans(self):
        self._enroll(self.students[0], emi=False)

        stats = emi_service.emi_analytics(self.db, 'blended01')

        self.assertEqual(stats['total_emi_enrollments'], 0)
        self.assertEqual(stats['on_time_payment_percentage'], 0.0)
        self.assertEqual(stats['average_installment_amount'], 0.0)


if __name__ == '__main__':
    unittest.main()
