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
from learnhub.domain.lifecycle import LifecycleEvent
from learnhub.errors import ForbiddenError, NotFoundError, ValidationError
from learnhub.models import BlendedCourse, EnrolledModule, Enrollment, EnrollmentPayment, SideEffectTask, Student
from learnhub.services import enrollment_service, progress_service


IST = ZoneInfo('Asia/Kolkata')


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


class ProgressServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_progress_service.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        self.clock = FixedTimeProvider(datetime(2024, 4, 2, 18, 30, tzinfo=IST))
        self.db = self._session_factory()
        for table in (SideEffectTask, EnrolledModule, EnrollmentPayment, Enrollment, BlendedCourse, Student):
            self.db.query(table).delete()
        self.db.commit()

        self.student = Student(full_name='Aarav Shah', email='aarav@example.com')
        self.other = Student(full_name='Diya Rao', email='diya@example.com')
        self.db.add_all([
            self.student,
            self.other,
            BlendedCourse(
                id='blended01',
                title='Applied Statistics',
                prices_json=json.dumps([{'currency': 'INR', 'individual': 4000}]),
                media_json=json.dumps(['m1.mp4', 'm2.mp4']),
            ),
        ])
        self.db.commit()
        self.enrollment = enrollment_service.create_enrollment(
            self.db, student_id=self.student.id, course_id='blended01', time_provider=self.clock
        )
        self.modules = progress_service.list_modules(self.db, self.enrollment.id)

    def tearDown(self):
        self.db.close()

    def test_watching_every_module_completes_the_enrollment_once(self):
        first = progress_service.watch_module(self.db, self.modules[0]['id'], student_id=self.student.id, time_provider=self.clock)
        self.assertEqual(first['progress_percentage'], 50)
        self.assertEqual(first['status'], 'active')
        self.assertFalse(first['completed_now'])

        second = progress_service.watch_module(self.db, self.modules[1]['id'], student_id=self.student.id, time_provider=self.clock)
        self.assertEqual(second['watched_modules'], 2)
        self.assertEqual(second['progress_percentage'], 100)
        self.assertEqual(second['status'], 'completed')
        self.assertTrue(second['completed_now'])
        self.assertEqual(second['completed_on'], '2024-04-02T18:30:00')

        again = progress_service.watch_module(self.db, self.modules[1]['id'], student_id=self.student.id, time_provider=self.clock)
        self.assertFalse(again['completed_now'])
        notices = self.db.query(SideEffectTask).filter(SideEffectTask.task_type == 'completion_notice').count()
        self.assertEqual(notices, 1)

    def test_modules_of_other_students_are_forbidden(self):
        with self.assertRaises(ForbiddenError):
            progress_service.watch_module(self.db, self.modules[0]['id'], student_id=self.other.id, time_provider=self.clock)
        with self.assertRaises(NotFoundError):
            progress_service.watch_module(self.db, 999999, student_id=self.student.id, time_provider=self.clock)
        with self.assertRaises(ForbiddenError):
            progress_service.list_modules(self.db, self.enrollment.id, actor_student_id=self.other.id)

    def test_cancelled_enrollment_rejects_watch(self):
        enrollment_service.update_enrollment(self.db, self.enrollment.id, event=LifecycleEvent.CANCEL, time_provider=self.clock)

        with self.assertRaises(ValidationError):
            progress_service.watch_module(self.db, self.modules[0]['id'], student_id=self.student.id, time_provider=self.clock)

    def test_lesson_progress_accumulates_time_spent(self):
        progress_service.update_lesson_progress(
            self.db, self.enrollment.id, 'lesson-1', status='in_progress', progress_percentage=40, time_spent_seconds=300, time_provider=self.clock
        )
        entry = progress_service.update_lesson_progress(
            self.db, self.enrollment.id, 'lesson-1', status='completed', time_spent_seconds=120, time_provider=self.clock
        )

        self.assertEqual(entry['time_spent_seconds'], 420)
        self.assertEqual(entry['progress_percentage'], 100)
        self.assertEqual(entry['completed_at'], '2024-04-02T18:30:00')
        self.db.refresh(self.enrollment)
        self.assertEqual(self.enrollment.lesson_progress['lesson-1']['status'], 'completed')

    def test_lesson_progress_rejects_bad_input(self):
        with self.assertRaises(ValidationError):
            progress_service.update_lesson_progress(self.db, self.enrollment.id, 'lesson-1', status='skipped', time_provider=self.clock)
        with self.assertRaises(ValidationError):
            progress_service.update_lesson_progress(
                self.db, self.enrollment.id, 'lesson-1', status='in_progress', progress_percentage=140, time_provider=self.clock
            )


if __name__ == '__main__':
    unittest.main()
