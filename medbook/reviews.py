"""Lookups over review records.

Review content is not validated on load. Ratings that are not a number
between 1 and 5 are skipped by the aggregates instead.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from medbook.models import Appointment, Review


@dataclass(frozen=True)
class RatingSummary:
    """Aggregate shown at the top of a doctor's reviews."""
    average: float
    count: int
    distribution: Dict[int, int]


def usable_rating(review: Review) -> Optional[float]:
    """The rating as a number in 1..5, or None."""
    rating = review.rating
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return None
    if not 1 <= rating <= 5:
        return None
    return float(rating)


def review_for(appointment: Appointment, reviews: Sequence[Review]) -> Optional[Review]:
    """First review recorded for the appointment, if any."""
    return next((r for r in reviews if r.appointment_id == appointment.id), None)


def average_rating(reviews: Sequence[Review]) -> float:
    """Mean of usable ratings rounded to one decimal; 0.0 without any."""
    ratings = [r for r in map(usable_rating, reviews) if r is not None]
    if not ratings:
        return 0.0
    return round(sum(ratings) / len(ratings), 1)


def rating_distribution(reviews: Sequence[Review]) -> Dict[int, int]:
    # Whole stars only; 4.5 is averaged but not bucketed
    counts = {stars: 0 for stars in range(1, 6)}
    for rating in map(usable_rating, reviews):
        if rating is not None and rating.is_integer():
            counts[int(rating)] += 1
    return counts


def summarize(reviews: Sequence[Review]) -> RatingSummary:
    return RatingSummary(
        average=average_rating(reviews),
        count=sum(1 for r in reviews if usable_rating(r) is not None),
        distribution=rating_distribution(reviews),
    )
