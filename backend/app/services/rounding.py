"""Half-up rounding shared by every arithmetic step of the load pipeline.

Python's round() is banker's rounding; loads are rounded half-up so that the
same drawing yields the same figures in every consumer of the report.
"""
import math


def round_half_up(value: float, digits: int = 2) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def round2(value: float) -> float:
    """Round to 2 decimal places (VA loads, m² areas)."""
    return round_half_up(value, 2)
