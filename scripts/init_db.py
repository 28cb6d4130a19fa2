import json
from datetime import timedelta
from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from learnhub.core.time_provider import default_time_provider
from learnhub.db import Base, SessionLocal, engine
from learnhub.models import Batch, BatchType, BlendedCourse, Course, FreeCourse, LiveCourse, Role, Student


Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    if not db.query(Student).first():
        db.add_all(
            [
                Student(full_name='Platform Admin', email='admin@learnhub.local', role=Role.ADMIN.value),
                Student(full_name='Aarav Shah', email='aarav@learnhub.local'),
                Student(full_name='Diya Rao', email='diya@learnhub.local'),
            ]
        )
        db.commit()

    if not db.query(BlendedCourse).first():
        prices = [
            {'currency': 'INR', 'individual': 12000, 'batch': 9000, 'min_batch_size': 3, 'max_batch_size': 10, 'early_bird_discount': 10, 'group_discount': 15},
            {'currency': 'USD', 'individual': 150, 'batch': 110, 'min_batch_size': 3, 'max_batch_size': 10, 'early_bird_discount': 0, 'group_discount': 10},
        ]
        blended = BlendedCourse(
            title='Full-Stack Foundations',
            slug='full-stack-foundations',
            prices_json=json.dumps(prices),
            media_json=json.dumps(['intro.mp4', 'http-basics.mp4', 'databases.mp4']),
            access_days=365,
        )
        live = LiveCourse(title='Live Data Structures', slug='live-data-structures', prices_json=json.dumps(prices[:1]))
        free = FreeCourse(title='Git Basics', slug='git-basics', media_json=json.dumps(['git-intro.mp4']), is_self_paced=True)
        legacy = Course(title='Legacy Python 101', slug='python-101', category_type='blended', prices_json=json.dumps(prices[:1]))
        db.add_all([blended, live, free, legacy])
        db.commit()

        today = default_time_provider.today()
        db.add_all(
            [
                Batch(course_id=live.id, name='Evening cohort', batch_type=BatchType.GROUP.value, capacity=20, start_date=today + timedelta(days=7)),
                Batch(course_id=live.id, name='One-on-one', batch_type=BatchType.INDIVIDUAL.value, capacity=5, start_date=today + timedelta(days=3)),
            ]
        )
        db.commit()
finally:
    db.close()

print('DB initialized with sample data.')
