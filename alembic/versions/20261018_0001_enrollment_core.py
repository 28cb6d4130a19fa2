"""enrollment core tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261018_0001'
down_revision = None
branch_labels = None
depends_on = None


def _course_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='published'),
        sa.Column('prices_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('media_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('is_self_paced', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('access_days', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'students',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('full_name', sa.String(length=160), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='student'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_students_id', 'students', ['id'])
    op.create_index('ix_students_email', 'students', ['email'], unique=True)

    for table in ('blended_courses', 'live_courses', 'free_courses'):
        op.create_table(table, *_course_columns())
        op.create_index(f'ix_{table}_slug', table, ['slug'])
        op.create_index(f'ix_{table}_status', table, ['status'])

    op.create_table(
        'courses',
        *_course_columns(),
        sa.Column('category_type', sa.String(length=40), nullable=False, server_default=''),
    )
    op.create_index('ix_courses_slug', 'courses', ['slug'])
    op.create_index('ix_courses_status', 'courses', ['status'])

    op.create_table(
        'batches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('course_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('batch_type', sa.String(length=20), nullable=False, server_default='group'),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('enrolled_students', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_batches_id', 'batches', ['id'])
    op.create_index('ix_batches_course_id', 'batches', ['course_id'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('course_id', sa.String(length=32), nullable=False),
        sa.Column('course_source', sa.String(length=20), nullable=False, server_default='new_model'),
        sa.Column('course_model', sa.String(length=40), nullable=False, server_default=''),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('batches.id'), nullable=True),
        sa.Column('enrollment_type', sa.String(length=20), nullable=False, server_default='individual'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('payment_type', sa.String(length=10), nullable=False, server_default='full'),
        sa.Column('access_status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('access_restriction_reason', sa.String(length=255), nullable=True),
        sa.Column('enrollment_date', sa.DateTime(), nullable=False),
        sa.Column('access_expiry_date', sa.DateTime(), nullable=True),
        sa.Column('is_self_paced', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('batch_size', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('pricing_snapshot_json', sa.Text(), nullable=False, server_default=''),
        sa.Column('progress_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lessons_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lesson_progress_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('last_activity_at', sa.DateTime(), nullable=True),
        sa.Column('total_amount_paid', sa.Float(), nullable=False, server_default='0'),
        sa.Column('emi_json', sa.Text(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('completed_on', sa.DateTime(), nullable=True),
        sa.Column('saved_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('student_id', 'course_id', 'batch_id', name='uq_enrollments_student_course_batch'),
    )
    op.create_index('ix_enrollments_id', 'enrollments', ['id'])
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])
    op.create_index('ix_enrollments_course_id', 'enrollments', ['course_id'])
    op.create_index('ix_enrollments_batch_id', 'enrollments', ['batch_id'])
    op.create_index('ix_enrollments_enrollment_type', 'enrollments', ['enrollment_type'])
    op.create_index('ix_enrollments_status', 'enrollments', ['status'])
    op.create_index('ix_enrollments_enrollment_date', 'enrollments', ['enrollment_date'])
    op.create_index('ix_enrollments_access_expiry_date', 'enrollments', ['access_expiry_date'])
    op.create_index('ix_enrollments_is_completed', 'enrollments', ['is_completed'])
    op.create_index('ix_enrollments_student_course_type', 'enrollments', ['student_id', 'course_id', 'enrollment_type'])
    op.create_index('ix_enrollments_payment_type_access', 'enrollments', ['payment_type', 'access_status'])

    op.create_table(
        'enrollment_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('enrollment_id', sa.Integer(), sa.ForeignKey('enrollments.id'), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('payment_method', sa.String(length=20), nullable=False, server_default='other'),
        sa.Column('transaction_id', sa.String(length=120), nullable=True),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('payment_date', sa.DateTime(), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=True),
        sa.Column('receipt_url', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('metadata_json', sa.Text(), nullable=False, server_default='{}'),
        sa.UniqueConstraint('transaction_id', name='uq_enrollment_payments_transaction_id'),
    )
    op.create_index('ix_enrollment_payments_id', 'enrollment_payments', ['id'])
    op.create_index('ix_enrollment_payments_enrollment_id', 'enrollment_payments', ['enrollment_id'])
    op.create_index('ix_enrollment_payments_payment_status', 'enrollment_payments', ['payment_status'])
    op.create_index('ix_enrollment_payments_payment_date', 'enrollment_payments', ['payment_date'])

    op.create_table(
        'enrolled_modules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('enrollment_id', sa.Integer(), sa.ForeignKey('enrollments.id'), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.String(length=32), nullable=False),
        sa.Column('media_ref', sa.String(length=500), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_watched', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('watched_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_enrolled_modules_id', 'enrolled_modules', ['id'])
    op.create_index('ix_enrolled_modules_enrollment_id', 'enrolled_modules', ['enrollment_id'])
    op.create_index('ix_enrolled_modules_student_id', 'enrolled_modules', ['student_id'])
    op.create_index('ix_enrolled_modules_course_id', 'enrolled_modules', ['course_id'])
    op.create_index('ix_enrolled_modules_student_course', 'enrolled_modules', ['student_id', 'course_id'])

    op.create_table(
        'side_effect_tasks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('task_type', sa.String(length=40), nullable=False),
        sa.Column('enrollment_id', sa.Integer(), nullable=True),
        sa.Column('payload_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=False, server_default=''),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_side_effect_tasks_id', 'side_effect_tasks', ['id'])
    op.create_index('ix_side_effect_tasks_task_type', 'side_effect_tasks', ['task_type'])
    op.create_index('ix_side_effect_tasks_enrollment_id', 'side_effect_tasks', ['enrollment_id'])
    op.create_index('ix_side_effect_tasks_status', 'side_effect_tasks', ['status'])
    op.create_index('ix_side_effect_tasks_status_next_attempt', 'side_effect_tasks', ['status', 'next_attempt_at'])


def downgrade() -> None:
    op.drop_table('side_effect_tasks')
    op.drop_table('enrolled_modules')
    op.drop_table('enrollment_payments')
    op.drop_table('enrollments')
    op.drop_table('batches')
    for table in ('courses', 'free_courses', 'live_courses', 'blended_courses'):
        op.drop_table(table)
    op.drop_table('students')
