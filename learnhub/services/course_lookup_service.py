from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from learnhub.errors import NotFoundError
from learnhub.models import BlendedCourse, Course, CourseColumns, FreeCourse, LiveCourse


NEW_MODEL_SOURCE = 'new_model'
LEGACY_MODEL_SOURCE = 'legacy_model'
KNOWN_COURSE_TYPES = ('blended', 'live', 'free')


@dataclass(frozen=True)
class CourseHit:
    course: CourseColumns
    course_type: str
    source: str
    model: str

    @property
    def course_id(self) -> str:
        return self.course.id


class CourseRepository:
    model: type = CourseColumns
    course_type: str = ''
    source: str = NEW_MODEL_SOURCE

    def get(self, db: Session, course_id: str) -> CourseColumns | None:
        return db.query(self.model).filter(self.model.id == course_id).first()

    def detect_type(self, course: CourseColumns) -> str:
        return self.course_type

    def find(self, db: Session, course_id: str) -> CourseHit | None:
        course = self.get(db, course_id)
        if course is None:
            return None
        return CourseHit(course=course, course_type=self.detect_type(course), source=self.source, model=self.model.__name__)


class BlendedCourseRepo(CourseRepository):
    model = BlendedCourse
    course_type = 'blended'


class LiveCourseRepo(CourseRepository):
    model = LiveCourse
    course_type = 'live'


class FreeCourseRepo(CourseRepository):
    model = FreeCourse
    course_type = 'free'


class LegacyCourseRepo(CourseRepository):
    model = Course
    source = LEGACY_MODEL_SOURCE

    def detect_type(self, course: CourseColumns) -> str:
        category = (getattr(course, 'category_type', '') or '').strip().lower()
        if category in KNOWN_COURSE_TYPES:
            return category
        prices = course.prices
        if not prices or all(float(row.get('individual') or 0) <= 0 for row in prices):
            return 'free'
        return 'blended'


class CourseLookup:
    """Probes typed repositories in priority order; the legacy collection comes last."""

    def __init__(self, repositories: tuple[CourseRepository, ...] | None = None) -> None:
        self.repositories = repositories or (BlendedCourseRepo(), LiveCourseRepo(), FreeCourseRepo(), LegacyCourseRepo())

    def find(self, db: Session, course_id: str) -> CourseHit | None:
        if not course_id:
            return None
        for repository in self.repositories:
            hit = repository.find(db, course_id)
            if hit is not None:
                return hit
        return None

    def require(self, db: Session, course_id: str) -> CourseHit:
        hit = self.find(db, course_id)
        if hit is None:
            raise NotFoundError('Course not found')
        return hit


default_course_lookup = CourseLookup()


def serialize_course_hit(hit: CourseHit) -> dict:
    course = hit.course
    return {
        'id': course.id,
        'title': course.title,
        'slug': course.slug,
        'status': course.status,
        'course_type': hit.course_type,
        'prices': course.prices,
        'media_count': len(course.media_items),
        'is_self_paced': bool(course.is_self_paced),
        '_source': hit.source,
        '_model': hit.model,
    }
