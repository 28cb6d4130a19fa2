from datetime import datetime

import pytest

from learnhub.domain.lifecycle import (
    EnrollmentState,
    EnrollmentStatus,
    LifecycleEvent,
    SideEffect,
    can_transition,
    transition,
)
from learnhub.errors import ValidationError


AT = datetime(2024, 5, 1, 9, 30)


def test_completing_active_enrollment_stamps_date_and_emits_completion() -> None:
    result = transition(EnrollmentState(EnrollmentStatus.ACTIVE), LifecycleEvent.COMPLETE, at=AT)

    assert result.changed is True
    assert result.state.status == EnrollmentStatus.COMPLETED
    assert result.state.completed_on == AT
    assert result.effects == (SideEffect.EMIT_COMPLETION,)


def test_completing_twice_is_a_no_op() -> None:
    done = EnrollmentState(EnrollmentStatus.COMPLETED, completed_on=AT)

    result = transition(done, LifecycleEvent.COMPLETE, at=datetime(2024, 6, 1))

    assert result.changed is False
    assert result.state == done
    assert result.effects == ()


def test_cancel_releases_batch_seat() -> None:
    result = transition(EnrollmentState(EnrollmentStatus.ON_HOLD), LifecycleEvent.CANCEL, at=AT)

    assert result.state.status == EnrollmentStatus.CANCELLED
    assert result.effects == (SideEffect.RELEASE_BATCH_SEAT,)


def test_hold_and_resume_round_trip() -> None:
    held = transition(EnrollmentState(EnrollmentStatus.ACTIVE), LifecycleEvent.HOLD, at=AT)
    resumed = transition(held.state, LifecycleEvent.RESUME, at=AT)

    assert held.state.status == EnrollmentStatus.ON_HOLD
    assert resumed.state.status == EnrollmentStatus.ACTIVE
    assert resumed.effects == ()


@pytest.mark.parametrize(
    ('status', 'event'),
    [
        (EnrollmentStatus.CANCELLED, LifecycleEvent.COMPLETE),
        (EnrollmentStatus.COMPLETED, LifecycleEvent.CANCEL),
        (EnrollmentStatus.EXPIRED, LifecycleEvent.RESUME),
        (EnrollmentStatus.COMPLETED, LifecycleEvent.EXPIRE),
    ],
)
def test_terminal_states_reject_further_events(status, event) -> None:
    assert can_transition(status, event) is False
    with pytest.raises(ValidationError):
        transition(EnrollmentState(status), event, at=AT)


def test_expire_keeps_existing_completion_date_untouched() -> None:
    result = transition(EnrollmentState(EnrollmentStatus.ACTIVE), LifecycleEvent.EXPIRE, at=AT)

    assert result.state.status == EnrollmentStatus.EXPIRED
    assert result.state.completed_on is None
