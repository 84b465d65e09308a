"""
ODE state containers.

A :class:`P0GeState` holds, for one point on an edge, the extinction
probabilities ``p0`` (plain floats) and the lineage densities ``ge``
(:class:`SmallNumber`). The numerical solver only understands float vectors,
so before each integration segment the state is converted to a
:class:`ScaledState`: the ``ge`` half multiplied by a common power of two so
the values sit comfortably inside double range. The ``ge`` equations are
linear in ``ge``, so integrating the scaled values and undoing the scaling
afterwards gives the same result.
"""

import math

import numpy as np

from .small_number import SmallNumber

# Upper bound on the binary exponent of the largest scaled ge component
_MAX_SCALED_EXPONENT = 400


class ScaledState:
    """
    Float representation of a :class:`P0GeState` for the ODE solver.

    Attributes
    ----------
    values : np.ndarray, shape (2 * n_types,)
        ``[p0_0, ..., p0_{n-1}, ge_0 * 2**-exponent, ..., ge_{n-1} * 2**-exponent]``
    exponent : int
        Binary exponent shared by the scaled ``ge`` entries.
    """

    __slots__ = ("values", "exponent")

    def __init__(self, values: np.ndarray, exponent: int):
        self.values = values
        self.exponent = exponent

    @property
    def n_types(self) -> int:
        return len(self.values) // 2

    def to_state(self) -> "P0GeState":
        """Undo the scaling."""
        return P0GeState.from_scaled(self)

    def rescaled(self) -> "ScaledState":
        """Re-derive the scaling exponent from the current values."""
        return self.to_state().to_scaled()

    def __repr__(self) -> str:
        return f"ScaledState(values={self.values!r}, exponent={self.exponent})"


class P0GeState:
    """
    Extinction probability and lineage density per type.

    Parameters
    ----------
    n_types : int
        Number of types; ``p0`` starts at zero and every ``ge`` at
        ``SmallNumber(0)``.
    """

    def __init__(self, n_types: int):
        self.p0 = np.zeros(n_types)
        self.ge = [SmallNumber() for _ in range(n_types)]

    @property
    def n_types(self) -> int:
        return len(self.p0)

    def to_scaled(self) -> ScaledState:
        """
        Convert to a :class:`ScaledState`.

        The common exponent puts the non-zero ``ge`` magnitudes in the middle
        of double range, capping the largest one at ``2**400`` so the solver
        has head room for growth. Components more than ~1400 binary orders of
        magnitude below the largest are flushed to zero.
        """
        n = self.n_types
        values = np.empty(2 * n)
        values[:n] = self.p0

        exponents = [g.exponent for g in self.ge if not g.is_zero]
        if not exponents:
            values[n:] = 0.0
            return ScaledState(values, 0)

        max_exponent = max(exponents)
        min_exponent = min(exponents)
        shift = max(max_exponent - _MAX_SCALED_EXPONENT, (max_exponent + min_exponent) // 2)

        for i, g in enumerate(self.ge):
            values[n + i] = math.ldexp(g.mantissa, g.exponent - shift)

        return ScaledState(values, shift)

    @classmethod
    def from_scaled(cls, scaled: ScaledState) -> "P0GeState":
        """Build a state from solver output and its scaling exponent."""
        n = scaled.n_types
        state = cls(n)
        state.p0 = np.array(scaled.values[:n], dtype=float)
        state.ge = [SmallNumber(float(v), scaled.exponent) for v in scaled.values[n:]]
        return state

    def copy(self) -> "P0GeState":
        new = P0GeState(self.n_types)
        new.p0 = self.p0.copy()
        new.ge = list(self.ge)
        return new

    def __repr__(self) -> str:
        p0 = ", ".join(f"{p:.6g}" for p in self.p0)
        ge = ", ".join(str(g) for g in self.ge)
        return f"P0GeState(p0=[{p0}], ge=[{ge}])"
