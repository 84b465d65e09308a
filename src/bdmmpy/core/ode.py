"""
Extinction and lineage-density ODE systems.

Both systems are written in forward process time and integrated backwards,
from a node towards its parent. The derivative functions are pure: they take
the rates of the active interval (or locate it from the time) and never keep
state between calls. The solver wrappers (:class:`P0System`,
:class:`P0GeSystem`) hold only an evaluation counter, so every parallel task
creates its own instance.
"""

import logging
from typing import TYPE_CHECKING, Optional

import numpy as np
from scipy.integrate import solve_ivp

from ..errors import IntegrationError
from .precision import DEFAULT_PRECISION, equal_with_precision
from .states import ScaledState

if TYPE_CHECKING:
    from ..models.schedule import IntervalRates, RateSchedule

logger = logging.getLogger(__name__)

# Halving depth after which safe_integrate gives up
MAX_SPLIT_DEPTH = 30

# Densities below this (relative to the scaling exponent) are about to underflow
_UNDERFLOW_THRESHOLD = 2.0 ** -1000


def p0_derivatives(t: float, p0: np.ndarray, rates: "IntervalRates") -> np.ndarray:
    """
    Time derivative of the extinction probabilities.

    Parameters
    ----------
    t : float
        Process time (unused; rates are constant within an interval).
    p0 : np.ndarray, shape (n_types,)
        Extinction probability per type.
    rates : IntervalRates
        Rates of the interval containing ``t``.

    Returns
    -------
    np.ndarray
        ``dp0/dt`` per type.
    """
    b = rates.birth
    return (
        rates.total * p0
        - b * p0 * p0
        - rates.death
        + rates.cross_birth_out * p0
        - p0 * (rates.cross_birth @ p0)
        + rates.migration_out * p0
        - rates.migration @ p0
    )


def p0ge_derivatives(t: float, y: np.ndarray, schedule: "RateSchedule",
                     interval: Optional[int] = None) -> np.ndarray:
    """
    Time derivative of the joint ``[p0, ge]`` state.

    The ``ge`` equations are linear in ``ge``, so ``y`` may hold ``ge``
    multiplied by any common scale factor.

    Parameters
    ----------
    t : float
        Process time.
    y : np.ndarray, shape (2 * n_types,)
        ``p0`` followed by (possibly scaled) ``ge``.
    schedule : RateSchedule
        Rate provider.
    interval : int, optional
        Interval cursor. When omitted, the interval containing ``t`` is
        looked up on the schedule.

    Returns
    -------
    np.ndarray
        ``d[p0, ge]/dt``.
    """
    if interval is None:
        interval = schedule.interval_index(t)
    rates = schedule.rates(interval)

    n = schedule.n_types
    p0 = y[:n]
    ge = y[n:]

    dge = (
        (rates.total - 2.0 * rates.birth * p0) * ge
        + rates.cross_birth_out * ge
        - p0 * (rates.cross_birth @ ge)
        - ge * (rates.cross_birth @ p0)
        + rates.migration_out * ge
        - rates.migration @ ge
    )
    return np.concatenate((p0_derivatives(t, p0, rates), dge))


class P0System:
    """
    Solver wrapper for the extinction probabilities.

    Parameters
    ----------
    schedule : RateSchedule
        Rate provider, read-only.
    relative_tolerance, absolute_tolerance : float
        Passed to :func:`scipy.integrate.solve_ivp`.
    method : str, default="RK45"
        Explicit Runge-Kutta method understood by ``solve_ivp``.
    max_evaluations : int, optional
        Upper bound on derivative evaluations per integration call.
    precision : float
        Time comparisons threshold.
    """

    def __init__(
        self,
        schedule: "RateSchedule",
        relative_tolerance: float = 1e-7,
        absolute_tolerance: float = 1e-100,
        method: str = "RK45",
        max_evaluations: Optional[int] = None,
        precision: float = DEFAULT_PRECISION,
    ):
        self.schedule = schedule
        self.relative_tolerance = relative_tolerance
        self.absolute_tolerance = absolute_tolerance
        self.method = method
        self.max_evaluations = max_evaluations
        self.precision = precision
        self.n_evaluations = 0

    def derivatives(self, t: float, y: np.ndarray, interval: int) -> np.ndarray:
        return p0_derivatives(t, y, self.schedule.rates(interval))

    def integrate(self, y: np.ndarray, t_start: float, t_end: float, interval: int) -> np.ndarray:
        """
        Integrate ``y`` from ``t_start`` to ``t_end`` inside one interval.

        Returns
        -------
        np.ndarray
            State at ``t_end``.

        Raises
        ------
        IntegrationError
            If the solver fails or the evaluation budget is exceeded.
        """
        if t_start == t_end:
            return np.array(y, dtype=float)

        self.n_evaluations = 0

        def rhs(t, state):
            self.n_evaluations += 1
            if self.max_evaluations is not None and self.n_evaluations > self.max_evaluations:
                raise IntegrationError(
                    f"Exceeded {self.max_evaluations} derivative evaluations "
                    f"integrating from t={t_start} to t={t_end}"
                )
            return self.derivatives(t, state, interval)

        sol = solve_ivp(
            rhs,
            (t_start, t_end),
            np.asarray(y, dtype=float),
            method=self.method,
            rtol=self.relative_tolerance,
            atol=self.absolute_tolerance,
        )
        if not sol.success:
            raise IntegrationError(
                f"ODE integration from t={t_start} to t={t_end} failed: {sol.message}"
            )

        return sol.y[:, -1]


class P0GeSystem(P0System):
    """Solver wrapper for the joint extinction probability / density state."""

    def derivatives(self, t: float, y: np.ndarray, interval: int) -> np.ndarray:
        return p0ge_derivatives(t, y, self.schedule, interval)

    def safe_integrate(self, state: ScaledState, t_start: float, t_end: float,
                       interval: int, depth: int = 0) -> ScaledState:
        """
        Integrate a scaled state, splitting the segment when ``ge`` degenerates.

        If the result is not finite, or the ``ge`` components collapse
        towards underflow while they started non-zero, the segment is halved
        and the halves integrated one after the other with a rescale in
        between.

        Raises
        ------
        IntegrationError
            If the segment still degenerates after ``MAX_SPLIT_DEPTH`` splits.
        """
        if equal_with_precision(t_start, t_end, self.precision):
            return state

        n = state.n_types
        y = self.integrate(state.values, t_start, t_end, interval)

        started_nonzero = np.any(state.values[n:] != 0.0)
        collapsed = started_nonzero and np.max(np.abs(y[n:])) < _UNDERFLOW_THRESHOLD
        if np.all(np.isfinite(y)) and not collapsed:
            return ScaledState(y, state.exponent)

        if depth >= MAX_SPLIT_DEPTH:
            raise IntegrationError(
                f"Could not integrate ge from t={t_start} to t={t_end} "
                f"without overflow or underflow after {depth} splits"
            )

        t_mid = 0.5 * (t_start + t_end)
        logger.debug("Splitting integration segment [%g, %g] at %g (depth %d)",
                     t_end, t_start, t_mid, depth + 1)
        half = self.safe_integrate(state, t_start, t_mid, interval, depth + 1)
        return self.safe_integrate(half.rescaled(), t_mid, t_end, interval, depth + 1)
