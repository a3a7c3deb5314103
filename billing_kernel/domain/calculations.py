"""
Pure invoice and credit arithmetic.

All amounts are integer minor units.  Percentages are Decimals so that
rounding happens exactly once, half-up, at the minor-unit boundary.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from billing_kernel.domain.dtos import CancellationEligibility

_ONE_HOUR = timedelta(hours=1)
_HUNDRED = Decimal(100)


def to_rate(value: Decimal | int | str | float | None) -> Decimal:
    """Normalise a percentage; floats go through str() to avoid binary noise."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_tax(subtotal_minor: int, vat_rate: Decimal | int | str | float | None) -> int:
    """
    Tax on a subtotal: ``round_half_up(subtotal * rate / 100)``.

    >>> calculate_tax(3333, 20)
    667
    """
    rate = to_rate(vat_rate)
    if rate == 0 or subtotal_minor == 0:
        return 0
    raw = Decimal(subtotal_minor) * rate / _HUNDRED
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_total(subtotal_minor: int, tax_minor: int, credit_offset_minor: int) -> int:
    """Invoice total, clamped at zero."""
    return max(0, subtotal_minor + tax_minor - credit_offset_minor)


def hours_notice(lesson_start_at: datetime, cancelled_at: datetime) -> int:
    """Whole hours between cancellation and lesson start, truncated toward zero."""
    delta = lesson_start_at - cancelled_at
    if delta >= timedelta(0):
        return delta // _ONE_HOUR
    return -((-delta) // _ONE_HOUR)


def check_cancellation_eligibility(
    lesson_start_at: datetime,
    cancelled_at: datetime,
    required_notice_hours: int,
) -> CancellationEligibility:
    """
    Whether a cancellation earns a make-up credit.

    Exactly the required notice is eligible.  A cancellation made at or
    after the lesson start never is, whatever the requirement.
    """
    notice = hours_notice(lesson_start_at, cancelled_at)
    eligible = cancelled_at < lesson_start_at and notice >= required_notice_hours
    return CancellationEligibility(
        eligible=eligible,
        hours_notice=notice,
        required_hours=required_notice_hours,
    )
