import json
import tempfile
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from learnhub.db import Base
from learnhub.errors import NotFoundError
from learnhub.models import BlendedCourse, Course, FreeCourse, LiveCourse
from learnhub.services.course_lookup_service import (
    BlendedCourseRepo,
    CourseLookup,
    LegacyCourseRepo,
    default_course_lookup,
    serialize_course_hit,
)


class CourseLookupTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_course_lookup.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        db = cls._session_factory()
        try:
            db.add_all([
                BlendedCourse(id='shared01', title='Blended copy', prices_json=json.dumps([{'currency': 'INR', 'individual': 500}])),
                Course(id='shared01', title='Legacy copy', category_type='live'),
                LiveCourse(id='live01', title='Live Physics'),
                FreeCourse(id='free01', title='Free Chemistry', media_json=json.dumps(['a.mp4'])),
                Course(id='legacy-live', title='Old Live', category_type='Live'),
                Course(id='legacy-free', title='Old Free', prices_json=json.dumps([{'currency': 'INR', 'individual': 0}])),
                Course(id='legacy-paid', title='Old Paid', prices_json=json.dumps([{'currency': 'INR', 'individual': 900}])),
            ])
            db.commit()
        finally:
            db.close()

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        self.db = self._session_factory()

    def tearDown(self):
        self.db.close()

    def test_typed_collections_are_probed_before_legacy(self):
        hit = default_course_lookup.require(self.db, 'shared01')

        self.assertEqual(hit.course.title, 'Blended copy')
        self.assertEqual(hit.course_type, 'blended')
        self.assertEqual(hit.source, 'new_model')
        self.assertEqual(hit.model, 'BlendedCourse')

    def test_each_typed_collection_reports_its_type(self):
        self.assertEqual(default_course_lookup.require(self.db, 'live01').course_type, 'live')
        self.assertEqual(default_course_lookup.require(self.db, 'free01').course_type, 'free')

    def test_legacy_type_comes_from_category_then_prices(self):
        live = default_course_lookup.require(self.db, 'legacy-live')
        free = default_course_lookup.require(self.db, 'legacy-free')
        paid = default_course_lookup.require(self.db, 'legacy-paid')

        self.assertEqual((live.course_type, live.source, live.model), ('live', 'legacy_model', 'Course'))
        self.assertEqual(free.course_type, 'free')
        self.assertEqual(paid.course_type, 'blended')

    def test_unknown_course_is_not_found(self):
        self.assertIsNone(default_course_lookup.find(self.db, 'nope'))
        self.assertIsNone(default_course_lookup.find(self.db, ''))
        with self.assertRaises(NotFoundError):
            default_course_lookup.require(self.db, 'nope')

    def test_custom_repository_order(self):
        lookup = CourseLookup((LegacyCourseRepo(), BlendedCourseRepo()))

        self.assertEqual(lookup.require(self.db, 'shared01').course.title, 'Legacy copy')

    def test_serialized_hit_carries_source_tags(self):
        data = serialize_course_hit(default_course_lookup.require(self.db, 'free01'))

        self.assertEqual(data['_source'], 'new_model')
        self.assertEqual(data['_model'], 'FreeCourse')
        self.assertEqual(data['media_count'], 1)


if __name__ == '__main__':
    unittest.main()
