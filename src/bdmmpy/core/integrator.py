"""
Integration of P0 and P0Ge states across rate intervals.

An edge of the tree may span several rate intervals. The integrator walks
from the bottom of the edge (later time) up to its top (earlier time), one
interval at a time, and applies the rho-sampling discount ``(1 - rho)`` at
every interval boundary crossed strictly inside the edge. A boundary that
coincides with the bottom or the top of the edge belongs to the node sitting
there and is handled by the likelihood engine.
"""

import logging
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from .ode import P0GeSystem, P0System
from .precision import (
    equal_with_precision,
    greater_than_with_precision,
    less_than_with_precision,
)
from .states import P0GeState

if TYPE_CHECKING:
    from ..config import LikelihoodConfig
    from ..models.schedule import RateSchedule

logger = logging.getLogger(__name__)


class IntervalIntegrator:
    """
    Drives the ODE solvers across interval boundaries.

    Parameters
    ----------
    schedule : RateSchedule
        Rate provider, read-only.
    config : LikelihoodConfig, optional
        Solver tolerances, method, evaluation budget and precision threshold.
        Defaults to :class:`~bdmmpy.config.LikelihoodConfig` defaults.

    Examples
    --------
    >>> integrator = IntervalIntegrator(schedule)
    >>> p0 = integrator.initial_conditions([2.0, 2.0, 1.5])
    >>> p0.shape
    (4, 1)
    """

    def __init__(self, schedule: "RateSchedule", config: Optional["LikelihoodConfig"] = None):
        if config is None:
            from ..config import LikelihoodConfig
            config = LikelihoodConfig()

        self.schedule = schedule
        self.config = config
        self.precision = config.precision_threshold

    def _system_kwargs(self) -> dict:
        return dict(
            relative_tolerance=self.config.relative_tolerance,
            absolute_tolerance=self.config.absolute_tolerance,
            method=self.config.integration_method,
            max_evaluations=self.config.max_evaluations,
            precision=self.precision,
        )

    def new_p0_system(self) -> P0System:
        return P0System(self.schedule, **self._system_kwargs())

    def new_p0ge_system(self) -> P0GeSystem:
        """Fresh solver wrapper; one per thread of evaluation."""
        return P0GeSystem(self.schedule, **self._system_kwargs())

    def _discount(self, interval: int) -> Optional[np.ndarray]:
        """``1 - rho`` at the end of ``interval``, or None when there is no rho sampling."""
        rho = self.schedule.rho_values[interval]
        if not np.any(rho > 0.0):
            return None
        return 1.0 - rho

    def integrate_p0ge(self, state: P0GeState, t_bottom: float, t_top: float,
                       system: P0GeSystem) -> P0GeState:
        """
        Integrate a P0Ge state from ``t_bottom`` up to ``t_top``.

        Parameters
        ----------
        state : P0GeState
            State at ``t_bottom``; not modified.
        t_bottom : float
            Time at the bottom of the edge (the later time).
        t_top : float
            Time at the top of the edge (``t_top <= t_bottom``).
        system : P0GeSystem
            Solver wrapper owned by the caller.

        Returns
        -------
        P0GeState
            State at ``t_top``.
        """
        schedule = self.schedule
        precision = self.precision
        end_times = schedule.interval_end_times

        this_time = t_bottom
        this_interval = schedule.interval_index(t_bottom, precision)
        end_interval = schedule.interval_index(t_top, precision)

        scaled = state.to_scaled()

        while this_interval > end_interval:
            next_time = end_times[this_interval - 1]

            if less_than_with_precision(next_time, this_time, precision):
                scaled = system.safe_integrate(scaled, this_time, next_time, this_interval)

            if greater_than_with_precision(next_time, t_top, precision):
                discount = self._discount(this_interval - 1)
                if discount is not None:
                    crossed = scaled.to_state()
                    crossed.p0 = crossed.p0 * discount
                    crossed.ge = [g.scalar_multiply(k) for g, k in zip(crossed.ge, discount)]
                    scaled = crossed.to_scaled()
                else:
                    scaled = scaled.rescaled()

            this_time = next_time
            this_interval -= 1

        if greater_than_with_precision(this_time, t_top, precision):
            scaled = system.safe_integrate(scaled, this_time, t_top, this_interval)

        return scaled.to_state()

    def integrate_p0(self, p0: np.ndarray, t_bottom: float, t_top: float,
                     system: P0System) -> np.ndarray:
        """
        Integrate extinction probabilities from ``t_bottom`` up to ``t_top``.

        Same boundary handling as :meth:`integrate_p0ge`, without scaling.
        """
        schedule = self.schedule
        precision = self.precision
        end_times = schedule.interval_end_times

        this_time = t_bottom
        this_interval = schedule.interval_index(t_bottom, precision)
        end_interval = schedule.interval_index(t_top, precision)

        p0 = np.array(p0, dtype=float)

        while this_interval > end_interval:
            next_time = end_times[this_interval - 1]

            if less_than_with_precision(next_time, this_time, precision):
                p0 = system.integrate(p0, this_time, next_time, this_interval)

            if greater_than_with_precision(next_time, t_top, precision):
                discount = self._discount(this_interval - 1)
                if discount is not None:
                    p0 = p0 * discount

            this_time = next_time
            this_interval -= 1

        if greater_than_with_precision(this_time, t_top, precision):
            p0 = system.integrate(p0, this_time, t_top, this_interval)

        return p0

    def initial_conditions(self, leaf_times: Sequence[float]) -> np.ndarray:
        """
        Extinction probabilities at every leaf time and at time 0.

        One backward sweep from the present over the leaf times sorted
        latest first; leaves sharing a time reuse the same value. The value
        stored for a leaf is taken *before* any rho sampling at its own time
        (the engine applies that discount at the leaf); the discount is
        applied when the sweep moves on past that time.

        Parameters
        ----------
        leaf_times : sequence of float
            Process time of each leaf.

        Returns
        -------
        np.ndarray, shape (n_leaves + 1, n_types)
            Row ``i`` is ``p0`` at ``leaf_times[i]``; the last row is ``p0``
            at time 0.
        """
        schedule = self.schedule
        precision = self.precision
        times = np.asarray(leaf_times, dtype=float)
        system = self.new_p0_system()

        result = np.empty((len(times) + 1, schedule.n_types))
        order = list(np.argsort(-times, kind="stable")) + [len(times)]

        p0 = np.ones(schedule.n_types)
        t_prev = schedule.origin

        for index in order:
            t = times[index] if index < len(times) else 0.0

            if greater_than_with_precision(t_prev, t, precision):
                prev_interval = schedule.interval_index(t_prev, precision)
                if equal_with_precision(t_prev, schedule.interval_end_times[prev_interval], precision):
                    discount = self._discount(prev_interval)
                    if discount is not None:
                        p0 = p0 * discount
                p0 = self.integrate_p0(p0, t_prev, t, system)
                t_prev = t

            result[index] = p0

        logger.debug("Computed leaf initial conditions for %d leaves; p0(0) = %s",
                     len(times), result[-1])
        return result
