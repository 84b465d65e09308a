"""
Time comparisons with an absolute precision threshold.

Interval boundaries, rho-sampling times and node times are computed by
different routes (change times, tree heights, offsets), so two times meant to
be identical rarely compare equal as floats. All boundary decisions go through
these helpers.
"""

DEFAULT_PRECISION = 1e-10


def equal_with_precision(a: float, b: float, threshold: float = DEFAULT_PRECISION) -> bool:
    """Return True if ``a`` and ``b`` differ by at most ``threshold``."""
    return abs(a - b) <= threshold


def greater_than_with_precision(a: float, b: float, threshold: float = DEFAULT_PRECISION) -> bool:
    """Return True if ``a`` exceeds ``b`` by more than ``threshold``."""
    return a - b > threshold


def less_than_with_precision(a: float, b: float, threshold: float = DEFAULT_PRECISION) -> bool:
    """Return True if ``a`` is below ``b`` by more than ``threshold``."""
    return b - a > threshold
