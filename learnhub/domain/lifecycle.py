from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from learnhub.errors import ValidationError


class EnrollmentStatus(str, Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    ON_HOLD = 'on_hold'
    EXPIRED = 'expired'


class LifecycleEvent(str, Enum):
    COMPLETE = 'complete'
    CANCEL = 'cancel'
    HOLD = 'hold'
    RESUME = 'resume'
    EXPIRE = 'expire'


class SideEffect(str, Enum):
    EMIT_COMPLETION = 'emit_completion'
    RELEASE_BATCH_SEAT = 'release_batch_seat'


@dataclass(frozen=True)
class EnrollmentState:
    status: EnrollmentStatus
    completed_on: datetime | None = None


@dataclass(frozen=True)
class TransitionResult:
    state: EnrollmentState
    effects: tuple[SideEffect, ...] = ()
    changed: bool = False


_TRANSITIONS: dict[tuple[EnrollmentStatus, LifecycleEvent], tuple[EnrollmentStatus, tuple[SideEffect, ...]]] = {
    (EnrollmentStatus.ACTIVE, LifecycleEvent.COMPLETE): (EnrollmentStatus.COMPLETED, (SideEffect.EMIT_COMPLETION,)),
    (EnrollmentStatus.ON_HOLD, LifecycleEvent.COMPLETE): (EnrollmentStatus.COMPLETED, (SideEffect.EMIT_COMPLETION,)),
    (EnrollmentStatus.ACTIVE, LifecycleEvent.CANCEL): (EnrollmentStatus.CANCELLED, (SideEffect.RELEASE_BATCH_SEAT,)),
    (EnrollmentStatus.ON_HOLD, LifecycleEvent.CANCEL): (EnrollmentStatus.CANCELLED, (SideEffect.RELEASE_BATCH_SEAT,)),
    (EnrollmentStatus.ACTIVE, LifecycleEvent.HOLD): (EnrollmentStatus.ON_HOLD, ()),
    (EnrollmentStatus.ON_HOLD, LifecycleEvent.RESUME): (EnrollmentStatus.ACTIVE, ()),
    (EnrollmentStatus.ACTIVE, LifecycleEvent.EXPIRE): (EnrollmentStatus.EXPIRED, ()),
    (EnrollmentStatus.ON_HOLD, LifecycleEvent.EXPIRE): (EnrollmentStatus.EXPIRED, ()),
}

# Re-applying an event to the state it produces is a no-op, not an error.
_IDEMPOTENT: frozenset[tuple[EnrollmentStatus, LifecycleEvent]] = frozenset(
    {
        (EnrollmentStatus.COMPLETED, LifecycleEvent.COMPLETE),
        (EnrollmentStatus.CANCELLED, LifecycleEvent.CANCEL),
        (EnrollmentStatus.ON_HOLD, LifecycleEvent.HOLD),
        (EnrollmentStatus.ACTIVE, LifecycleEvent.RESUME),
        (EnrollmentStatus.EXPIRED, LifecycleEvent.EXPIRE),
    }
)


def can_transition(status: EnrollmentStatus, event: LifecycleEvent) -> bool:
    return (status, event) in _TRANSITIONS


def transition(state: EnrollmentState, event: LifecycleEvent, *, at: datetime) -> TransitionResult:
    key = (state.status, event)
    if key in _IDEMPOTENT:
        return TransitionResult(state=state)
    target = _TRANSITIONS.get(key)
    if target is None:
        raise ValidationError(f'Cannot {event.value} an enrollment that is {state.status.value}')
    status, effects = target
    completed_on = at if status == EnrollmentStatus.COMPLETED else state.completed_on
    return TransitionResult(state=EnrollmentState(status=status, completed_on=completed_on), effects=effects, changed=True)
