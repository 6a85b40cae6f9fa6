from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple


MIN_RATING = 1
MAX_RATING = 5

_TWO_PLACES = Decimal("0.01")


def is_valid_rating(value) -> bool:
    """Ratings are whole stars from 1 to 5"""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return MIN_RATING <= value <= MAX_RATING


def recompute_rating(ratings: Iterable[int]) -> Tuple[float, int]:
    """Mean of all ratings rounded half-up to 2 decimals, and the rating count.

    Summing integers and dividing once keeps the result exact before rounding,
    so repeated recomputes never drift.
    """
    values = list(ratings)
    if not values:
        raise ValueError("Cannot compute a rating aggregate without ratings")

    mean = Decimal(sum(values)) / Decimal(len(values))
    return float(mean.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)), len(values)
