"""one enrollment row per student and course

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 00:02:00
"""

from alembic import op
from sqlalchemy import inspect


revision = '20261018_0002'
down_revision = '20261018_0001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)

    # batch_id is NULL for individual enrollments, so the old triple never matched them.
    constraints = {item['name'] for item in inspector.get_unique_constraints('enrollments')}
    if 'uq_enrollments_student_course_batch' in constraints:
        with op.batch_alter_table('enrollments') as batch_op:
            batch_op.drop_constraint('uq_enrollments_student_course_batch', type_='unique')

    indexes = {idx['name'] for idx in inspector.get_indexes('enrollments')}
    if 'ux_enrollments_student_course' not in indexes:
        op.create_index('ux_enrollments_student_course', 'enrollments', ['student_id', 'course_id'], unique=True)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)

    indexes = {idx['name'] for idx in inspector.get_indexes('enrollments')}
    if 'ux_enrollments_student_course' in indexes:
        op.drop_index('ux_enrollments_student_course', table_name='enrollments')

    constraints = {item['name'] for item in inspector.get_unique_constraints('enrollments')}
    if 'uq_enrollments_student_course_batch' not in constraints:
        with op.batch_alter_table('enrollments') as batch_op:
            batch_op.create_unique_constraint('uq_enrollments_student_course_batch', ['student_id', 'course_id', 'batch_id'])
