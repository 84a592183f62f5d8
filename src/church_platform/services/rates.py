"""Percentage helpers shared by the monitoring engine and analytics.

Every rate in the platform goes through `percent`, so a zero denominator
always yields 0 rather than an error or NaN.
"""

import math


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3, not 2)."""
    return int(math.floor(value + 0.5))


def percent(part: float, whole: float) -> int:
    """Whole-number percentage of part over whole; 0 when whole is 0."""
    if not whole:
        return 0
    return round_half_up(100 * part / whole)


def safe_ratio(part: float, whole: float) -> float:
    """Unrounded part / whole; 0.0 when whole is 0."""
    if not whole:
        return 0.0
    return part / whole
