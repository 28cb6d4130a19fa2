"""EMI (installment) schedule value objects.

A schedule is immutable: every operation returns a new `EmiSchedule`.
Installment status only moves forward (pending -> overdue -> paid, or
pending -> paid); a paid installment never changes again. The owning
enrollment persists the schedule as JSON and is the only writer.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from enum import Enum

from learnhub.errors import ConflictError, ValidationError


CENT = Decimal('0.01')


class InstallmentStatus(str, Enum):
    PENDING = 'pending'
    OVERDUE = 'overdue'
    PAID = 'paid'


class EmiPlanStatus(str, Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    DEFAULTED = 'defaulted'


class AccessStatus(str, Enum):
    ACTIVE = 'active'
    RESTRICTED = 'restricted'


_FORWARD_TRANSITIONS = {
    InstallmentStatus.PENDING: frozenset({InstallmentStatus.OVERDUE, InstallmentStatus.PAID}),
    InstallmentStatus.OVERDUE: frozenset({InstallmentStatus.PAID}),
    InstallmentStatus.PAID: frozenset(),
}


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(day: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the end of shorter months."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


@dataclass(frozen=True)
class EmiConfig:
    total_amount: Decimal
    number_of_installments: int
    start_date: date
    down_payment: Decimal = Decimal('0')
    interest_rate: Decimal = Decimal('0')
    processing_fee: Decimal = Decimal('0')
    grace_period_days: int = 5


@dataclass(frozen=True)
class Installment:
    number: int
    due_date: date
    amount: Decimal
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_date: date | None = None
    transaction_id: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status != InstallmentStatus.PAID

    def advance(self, status: InstallmentStatus, **changes) -> Installment:
        if status not in _FORWARD_TRANSITIONS[self.status]:
            raise ConflictError(f'Installment {self.number} cannot move from {self.status.value} to {status.value}')
        return replace(self, status=status, **changes)

    def overdue_on(self, today: date, grace_period_days: int) -> bool:
        return self.due_date + timedelta(days=grace_period_days) < today

    def to_dict(self) -> dict:
        return {
            'number': self.number,
            'due_date': self.due_date.isoformat(),
            'amount': str(self.amount),
            'status': self.status.value,
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'transaction_id': self.transaction_id,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> Installment:
        paid_raw = raw.get('paid_date')
        return cls(
            number=int(raw['number']),
            due_date=date.fromisoformat(raw['due_date']),
            amount=Decimal(str(raw['amount'])),
            status=InstallmentStatus(raw.get('status') or InstallmentStatus.PENDING.value),
            paid_date=date.fromisoformat(paid_raw) if paid_raw else None,
            transaction_id=raw.get('transaction_id'),
        )


@dataclass(frozen=True)
class EmiSchedule:
    total_amount: Decimal
    down_payment: Decimal
    number_of_installments: int
    interest_rate: Decimal
    processing_fee: Decimal
    grace_period_days: int
    start_date: date
    installments: tuple[Installment, ...]

    @property
    def financed_amount(self) -> Decimal:
        return sum((item.amount for item in self.installments), Decimal('0'))

    @property
    def paid_amount(self) -> Decimal:
        return sum((item.amount for item in self.installments if not item.is_open), Decimal('0'))

    @property
    def outstanding_amount(self) -> Decimal:
        return self.financed_amount - self.paid_amount

    @property
    def overdue_installments(self) -> tuple[Installment, ...]:
        return tuple(item for item in self.installments if item.status == InstallmentStatus.OVERDUE)

    @property
    def next_open_installment(self) -> Installment | None:
        for item in self.installments:
            if item.is_open:
                return item
        return None

    @property
    def next_payment_date(self) -> date | None:
        upcoming = self.next_open_installment
        return upcoming.due_date if upcoming else None

    @property
    def missed_payments(self) -> int:
        missed = 0
        for item in self.installments:
            if item.status == InstallmentStatus.OVERDUE:
                missed += 1
            elif item.paid_date and item.overdue_on(item.paid_date, self.grace_period_days):
                missed += 1
        return missed

    def plan_status(self, *, default_after_missed: int) -> EmiPlanStatus:
        if self.next_open_installment is None:
            return EmiPlanStatus.COMPLETED
        if default_after_missed > 0 and len(self.overdue_installments) >= default_after_missed:
            return EmiPlanStatus.DEFAULTED
        return EmiPlanStatus.ACTIVE

    def access_status(self) -> AccessStatus:
        # Overdue is only assigned once the grace window has elapsed.
        if self.overdue_installments:
            return AccessStatus.RESTRICTED
        return AccessStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            'total_amount': str(self.total_amount),
            'down_payment': str(self.down_payment),
            'number_of_installments': self.number_of_installments,
            'interest_rate': str(self.interest_rate),
            'processing_fee': str(self.processing_fee),
            'grace_period_days': self.grace_period_days,
            'start_date': self.start_date.isoformat(),
            'installments': [item.to_dict() for item in self.installments],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> EmiSchedule:
        return cls(
            total_amount=Decimal(str(raw['total_amount'])),
            down_payment=Decimal(str(raw.get('down_payment') or '0')),
            number_of_installments=int(raw['number_of_installments']),
            interest_rate=Decimal(str(raw.get('interest_rate') or '0')),
            processing_fee=Decimal(str(raw.get('processing_fee') or '0')),
            grace_period_days=int(raw.get('grace_period_days') or 0),
            start_date=date.fromisoformat(raw['start_date']),
            installments=tuple(Installment.from_dict(item) for item in raw.get('installments') or []),
        )


@dataclass(frozen=True)
class AccessDecision:
    schedule: EmiSchedule
    access_status: AccessStatus
    reason: str | None
    newly_overdue: tuple[int, ...]


def _validate_config(config: EmiConfig) -> None:
    if config.number_of_installments < 1:
        raise ValidationError('numberOfInstallments must be at least 1')
    if config.total_amount <= 0:
        raise ValidationError('totalAmount must be greater than zero')
    if config.down_payment < 0 or config.down_payment > config.total_amount:
        raise ValidationError('downPayment must be between 0 and totalAmount')
    if config.interest_rate < 0:
        raise ValidationError('interestRate cannot be negative')
    if config.processing_fee < 0:
        raise ValidationError('processingFee cannot be negative')
    if config.grace_period_days < 0:
        raise ValidationError('gracePeriodDays cannot be negative')


def build_schedule(config: EmiConfig) -> EmiSchedule:
    """Split the financed amount into monthly installments.

    financed = (total - down payment + processing fee) * (1 + interest rate).
    Each installment is financed / n truncated to the cent; the final
    installment absorbs the leftover cents so the amounts sum exactly and
    none is negative.
    """
    _validate_config(config)
    total = to_money(config.total_amount)
    down_payment = to_money(config.down_payment)
    processing_fee = to_money(config.processing_fee)
    interest_rate = Decimal(str(config.interest_rate))
    count = int(config.number_of_installments)

    financed = to_money((total - down_payment + processing_fee) * (Decimal('1') + interest_rate))
    base_amount = (financed / count).quantize(CENT, rounding=ROUND_DOWN)
    if base_amount < CENT:
        raise ValidationError('financed amount must be at least 0.01 per installment')
    final_amount = financed - base_amount * (count - 1)

    installments = tuple(
        Installment(
            number=index,
            due_date=add_months(config.start_date, index),
            amount=final_amount if index == count else base_amount,
        )
        for index in range(1, count + 1)
    )
    return EmiSchedule(
        total_amount=total,
        down_payment=down_payment,
        number_of_installments=count,
        interest_rate=interest_rate,
        processing_fee=processing_fee,
        grace_period_days=int(config.grace_period_days),
        start_date=config.start_date,
        installments=installments,
    )


def mark_overdue(schedule: EmiSchedule, today: date) -> EmiSchedule:
    updated = tuple(
        item.advance(InstallmentStatus.OVERDUE)
        if item.status == InstallmentStatus.PENDING and item.overdue_on(today, schedule.grace_period_days)
        else item
        for item in schedule.installments
    )
    return replace(schedule, installments=updated)


def recompute_access(schedule: EmiSchedule, today: date) -> AccessDecision:
    refreshed = mark_overdue(schedule, today)
    newly_overdue = tuple(
        after.number
        for before, after in zip(schedule.installments, refreshed.installments)
        if before.status != after.status
    )
    status = refreshed.access_status()
    reason = None
    if status == AccessStatus.RESTRICTED:
        numbers = ', '.join(str(item.number) for item in refreshed.overdue_installments)
        reason = f'Overdue installment(s): {numbers}'
    return AccessDecision(schedule=refreshed, access_status=status, reason=reason, newly_overdue=newly_overdue)


def apply_payment(
    schedule: EmiSchedule,
    *,
    paid_on: date,
    transaction_id: str | None = None,
) -> tuple[EmiSchedule, Installment]:
    """Settle the earliest pending or overdue installment."""
    target = schedule.next_open_installment
    if target is None:
        raise ConflictError('All installments are already paid')
    settled = target.advance(InstallmentStatus.PAID, paid_date=paid_on, transaction_id=transaction_id)
    installments = tuple(settled if item.number == target.number else item for item in schedule.installments)
    return replace(schedule, installments=installments), settled
