"""Score arithmetic shared by the scorers"""

import math
from datetime import datetime


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive scores (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    """Clamp to the 0-100 score range."""
    return int(max(low, min(high, value)))


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from `earlier` to `later`."""
    return (later - earlier).total_seconds() / 86400.0
