from __future__ import annotations

from dataclasses import dataclass

from learnhub.config import settings
from learnhub.errors import ValidationError
from learnhub.models import EnrollmentType


BATCH_PRICED_TYPES = (EnrollmentType.BATCH.value, EnrollmentType.GROUP.value, EnrollmentType.CORPORATE.value)
SPONSORED_TYPES = (EnrollmentType.SCHOLARSHIP.value, EnrollmentType.TRIAL.value)


@dataclass(frozen=True)
class PriceRow:
    currency: str
    individual: float
    batch: float
    min_batch_size: int = 2
    max_batch_size: int = 10
    early_bird_discount: float = 0.0
    group_discount: float = 0.0

    @classmethod
    def from_dict(cls, raw: dict) -> PriceRow:
        individual = float(raw.get('individual') or 0)
        return cls(
            currency=str(raw.get('currency') or settings.default_currency).upper(),
            individual=individual,
            batch=float(raw.get('batch') if raw.get('batch') is not None else individual),
            min_batch_size=int(raw.get('min_batch_size') or 2),
            max_batch_size=int(raw.get('max_batch_size') or 10),
            early_bird_discount=float(raw.get('early_bird_discount') or 0),
            group_discount=float(raw.get('group_discount') or 0),
        )


def _round(value: float) -> float:
    return round(float(value), 2)


def select_price_row(prices: list[dict], currency: str | None = None) -> PriceRow | None:
    rows = [PriceRow.from_dict(row) for row in prices or []]
    if not rows:
        return None
    wanted = (currency or '').strip().upper()
    for row in rows:
        if wanted and row.currency == wanted:
            return row
    return rows[0]


def build_pricing_snapshot(
    prices: list[dict],
    *,
    enrollment_type: str,
    batch_size: int = 1,
    currency: str | None = None,
    is_free_course: bool = False,
    discount_code: str | None = None,
    discount_amount: float = 0.0,
) -> dict:
    """Freeze the price a student pays at enrollment time.

    Individual enrollments use the individual tier (early-bird when the
    course offers it); batch, group and corporate enrollments use the batch
    tier with the group discount once `batch_size` reaches the minimum.
    Scholarship and trial enrollments record the list price with a full
    discount.
    """
    row = select_price_row(prices, currency)
    if row is None:
        if not is_free_course:
            raise ValidationError('No pricing available for this course')
        row = PriceRow(currency=(currency or settings.default_currency).upper(), individual=0.0, batch=0.0)

    if enrollment_type in BATCH_PRICED_TYPES:
        original_price = row.batch
        final_price = row.batch
        pricing_type = 'batch'
        if batch_size >= row.min_batch_size and row.group_discount > 0:
            final_price = row.batch - (row.batch * row.group_discount / 100.0)
            pricing_type = 'group_discount'
    else:
        original_price = row.individual
        final_price = row.individual
        pricing_type = 'individual'
        if enrollment_type == EnrollmentType.INDIVIDUAL.value and row.early_bird_discount > 0:
            final_price = row.individual - (row.individual * row.early_bird_discount / 100.0)
            pricing_type = 'early_bird'

    discount_applied = 0.0
    if enrollment_type in SPONSORED_TYPES:
        discount_applied = final_price
        final_price = 0.0
    elif discount_code and discount_amount > 0:
        discount_applied = min(float(discount_amount), final_price)
        final_price = max(0.0, final_price - discount_applied)

    return {
        'original_price': _round(original_price),
        'final_price': _round(final_price),
        'currency': row.currency,
        'pricing_type': pricing_type,
        'discount_applied': _round(discount_applied),
        'discount_code': discount_code or None,
    }
