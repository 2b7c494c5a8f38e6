from __future__ import annotations

from typing import Iterable

from rescheduler.dates import calculate_threshold_date
from rescheduler.domain import AvailabilityDecision


def choose_date(
    dates: Iterable[str],
    *,
    current_booked_date: str,
    min_improvement_days: int,
    min_date: str | None = None,
) -> AvailabilityDecision:
    """Pick the earliest open date that beats the current booking.

    A date qualifies when it is strictly before ``current_booked_date`` minus
    ``min_improvement_days`` and, if ``min_date`` is given, not before it.
    All dates must already be normalized to ``YYYY-MM-DD``.

    An empty input means the portal returned nothing at all, which the
    caller treats as a failure (``should_long_sleep=True``). Dates that were
    returned but filtered out are an ordinary outcome.
    """
    ordered = sorted(dates)
    if not ordered:
        return AvailabilityDecision(date=None, should_long_sleep=True)

    threshold = calculate_threshold_date(current_booked_date, min_improvement_days)
    candidates = tuple(
        d for d in ordered if d < threshold and (min_date is None or d >= min_date)
    )

    return AvailabilityDecision(
        date=candidates[0] if candidates else None,
        should_long_sleep=False,
        earliest_date=ordered[0],
        threshold_date=threshold,
        candidates=candidates,
    )
