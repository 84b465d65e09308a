"""
Underflow-safe real numbers.

The density of the observed tree picks up one factor per sampled tip, so on
trees with a few hundred tips it drops far below the smallest positive double.
:class:`SmallNumber` stores a value as ``mantissa * 2**exponent`` with the
mantissa kept in ``[0.5, 1)`` (in absolute value) and an unbounded integer
exponent, so products of many small densities keep their relative precision.
"""

import math
from typing import Union

_LN2 = math.log(2.0)

# Exponent gap past which the smaller addend no longer changes a 53-bit mantissa
_ADD_EXPONENT_GAP = 60

# math.ldexp raises instead of returning inf above this exponent
_MAX_FLOAT_EXPONENT = 1024


class SmallNumber:
    """
    Real number represented as ``mantissa * 2**exponent``.

    Instances are treated as immutable: every operation returns a new
    normalized number.

    Parameters
    ----------
    value : float, default=0.0
        Finite value to represent.
    exponent : int, default=0
        Additional binary exponent; the represented number is
        ``value * 2**exponent``.

    Examples
    --------
    >>> a = SmallNumber(1e-300)
    >>> b = a * a * a                    # 1e-900, far below float range
    >>> round(b.log() / math.log(10))
    -900
    >>> float(b)
    0.0
    """

    __slots__ = ("mantissa", "exponent")

    def __init__(self, value: float = 0.0, exponent: int = 0):
        if not math.isfinite(value):
            raise ValueError(f"SmallNumber requires a finite value, got {value}")

        mantissa, value_exponent = math.frexp(value)
        self.mantissa = mantissa
        self.exponent = value_exponent + exponent if mantissa != 0.0 else 0

    @property
    def is_zero(self) -> bool:
        """True if the number is exactly zero."""
        return self.mantissa == 0.0

    def multiply(self, other: "SmallNumber") -> "SmallNumber":
        """Product of two small numbers."""
        return SmallNumber(self.mantissa * other.mantissa, self.exponent + other.exponent)

    def scalar_multiply(self, k: float) -> "SmallNumber":
        """
        Product with a plain non-negative float.

        Raises
        ------
        ValueError
            If ``k`` is negative or not finite.
        """
        if not k >= 0.0 or not math.isfinite(k):
            raise ValueError(f"Scalar factor must be finite and non-negative, got {k}")

        k_mantissa, k_exponent = math.frexp(k)
        return SmallNumber(self.mantissa * k_mantissa, self.exponent + k_exponent)

    def add(self, other: "SmallNumber") -> "SmallNumber":
        """
        Sum of two small numbers.

        The addend with the smaller exponent is shifted onto the larger one's
        exponent, which makes the operation exactly commutative.
        """
        if other.is_zero:
            return self
        if self.is_zero:
            return other

        if self.exponent >= other.exponent:
            big, small = self, other
        else:
            big, small = other, self

        gap = big.exponent - small.exponent
        if gap > _ADD_EXPONENT_GAP:
            return big

        return SmallNumber(big.mantissa + math.ldexp(small.mantissa, -gap), big.exponent)

    def log(self) -> float:
        """
        Natural logarithm.

        Returns ``-inf`` for zero.

        Raises
        ------
        ValueError
            If the number is negative.
        """
        if self.mantissa == 0.0:
            return -math.inf
        if self.mantissa < 0.0:
            raise ValueError("log of a negative SmallNumber")
        return math.log(self.mantissa) + self.exponent * _LN2

    def revert(self) -> float:
        """Convert to a plain float (may underflow to 0 or overflow to inf)."""
        if self.exponent > _MAX_FLOAT_EXPONENT:
            return math.copysign(math.inf, self.mantissa)
        return math.ldexp(self.mantissa, self.exponent)

    def __float__(self) -> float:
        return self.revert()

    def __mul__(self, other: Union["SmallNumber", float]) -> "SmallNumber":
        if isinstance(other, SmallNumber):
            return self.multiply(other)
        return self.scalar_multiply(float(other))

    __rmul__ = __mul__

    def __add__(self, other: "SmallNumber") -> "SmallNumber":
        if not isinstance(other, SmallNumber):
            return NotImplemented
        return self.add(other)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SmallNumber):
            return NotImplemented
        return self.mantissa == other.mantissa and self.exponent == other.exponent

    def __hash__(self) -> int:
        return hash((self.mantissa, self.exponent))

    def __str__(self) -> str:
        if self.mantissa == 0.0:
            return "0.0"

        # Decimal scientific notation computed in log space
        log10 = math.log10(abs(self.mantissa)) + self.exponent * math.log10(2.0)
        decimal_exponent = math.floor(log10)
        decimal_mantissa = 10.0 ** (log10 - decimal_exponent)
        sign = "-" if self.mantissa < 0 else ""
        return f"{sign}{decimal_mantissa:.6f}e{decimal_exponent:+d}"

    def __repr__(self) -> str:
        return f"SmallNumber({self.mantissa!r} * 2**{self.exponent})"
