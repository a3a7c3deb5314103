"""
Lesson rate resolution.

A rate resolver maps a lesson duration in minutes to a per-lesson price in
minor units.  The billing run accepts any ``RateResolver`` callable; the
default is RateCardResolver over the organisation's rate cards.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from billing_kernel.exceptions import RateResolutionError

RateResolver = Callable[[int], int]


@dataclass(frozen=True)
class RateCardInfo:
    duration_mins: int
    rate_amount_minor: int
    is_default: bool = False


class RateCardResolver:
    """
    Resolve a price from rate cards.

    Order: exact duration match, then the org's default card, then the
    caller's fallback rate.  With none of those available the duration
    cannot be priced and RateResolutionError is raised.
    """

    def __init__(
        self,
        cards: Iterable[RateCardInfo],
        fallback_rate_minor: int | None = None,
    ):
        self._by_duration: dict[int, int] = {}
        self._default: int | None = None
        for card in cards:
            self._by_duration.setdefault(card.duration_mins, card.rate_amount_minor)
            if card.is_default and self._default is None:
                self._default = card.rate_amount_minor
        self._fallback = fallback_rate_minor

    def __call__(self, duration_minutes: int) -> int:
        rate = self._by_duration.get(duration_minutes)
        if rate is not None:
            return rate
        if self._default is not None:
            return self._default
        if self._fallback is not None:
            return self._fallback
        raise RateResolutionError(duration_minutes)
