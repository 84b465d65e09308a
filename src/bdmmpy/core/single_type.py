"""
Analytic likelihood for single-type models.

With one type the extinction probability and the edge density have closed
forms inside every rate interval (Stadler et al. 2013, PNAS 110:228). Within
interval ``i``, which ends at ``t_i``::

    A_i = sqrt((l - m - s)^2 + 4 l s)
    B_i = ((1 - 2 P_i) l + m + s) / A_i
    p_i(t) = (l + m + s - A_i (v - (1 - B_i)) / (v + (1 - B_i))) / (2 l),
             v = exp(A_i (t_i - t)) (1 + B_i)
    q_i(t) = 4 w / (w (1 + B_i) + (1 - B_i))^2,   w = exp(A_i (t_i - t))

where ``P_i = (1 - rho_i) p_{i+1}(t_i)`` is the extinction probability just
before the end of the interval (``p_n = 1``). ``q_i`` is normalized to 1 at
``t_i``, so an edge density is the product of ``q`` ratios and boundary
factors ``(1 - rho_i) q_{i+1}(t_i)``.
"""

import logging
import math
from typing import TYPE_CHECKING

import numpy as np

from .precision import (
    DEFAULT_PRECISION,
    equal_with_precision,
    greater_than_with_precision,
    less_than_with_precision,
)

if TYPE_CHECKING:
    from ..io.trees import Tree, TreeNode
    from ..models.schedule import RateSchedule

logger = logging.getLogger(__name__)

_LOG4 = math.log(4.0)


def _log(x: float) -> float:
    return math.log(x) if x > 0.0 else -math.inf


class SingleTypeSolution:
    """
    Closed-form ``p`` and ``q`` functions for a one-type schedule.

    Parameters
    ----------
    schedule : RateSchedule
        Schedule with ``n_types == 1``.
    precision : float
        Threshold for time comparisons.

    Attributes
    ----------
    A, B : np.ndarray, shape (n_intervals,)
        Interval constants.
    p_end : np.ndarray, shape (n_intervals,)
        Extinction probability just before each interval end, rho included.
    """

    def __init__(self, schedule: "RateSchedule", precision: float = DEFAULT_PRECISION):
        if schedule.n_types != 1:
            raise ValueError(f"Single-type solution needs one type, got {schedule.n_types}")

        self.schedule = schedule
        self.precision = precision
        self.end_times = schedule.interval_end_times
        self.birth = schedule.birth_rates[:, 0]
        self.death = schedule.death_rates[:, 0]
        self.sampling = schedule.sampling_rates[:, 0]
        self.removal = schedule.removal_probs[:, 0]
        self.rho = schedule.rho_values[:, 0]

        n = schedule.n_intervals
        self.A = np.zeros(n)
        self.B = np.zeros(n)
        self.p_end = np.zeros(n)

        for i in range(n - 1, -1, -1):
            p_prev = self.p(i + 1, self.end_times[i])
            self.p_end[i] = (1.0 - self.rho[i]) * p_prev

            lam, mu, psi = self.birth[i], self.death[i], self.sampling[i]
            self.A[i] = math.sqrt((lam - mu - psi) ** 2 + 4.0 * lam * psi)
            if self.A[i] > 0.0:
                self.B[i] = ((1.0 - 2.0 * self.p_end[i]) * lam + mu + psi) / self.A[i]

    @property
    def is_degenerate(self) -> bool:
        """True if some interval has ``A_i == 0`` and the closed form does not apply."""
        return bool(np.any(self.A == 0.0))

    def p(self, i: int, t: float) -> float:
        """Extinction probability at time ``t`` in interval ``i``."""
        if i >= self.schedule.n_intervals:
            return 1.0

        lam, mu, psi = self.birth[i], self.death[i], self.sampling[i]
        dt = self.end_times[i] - t

        if lam == 0.0:
            # Linear equation dp/dt = (mu + psi) p - mu
            total = mu + psi
            if total == 0.0:
                return self.p_end[i]
            k = mu / total
            return k + (self.p_end[i] - k) * math.exp(-total * dt)

        A, B = self.A[i], self.B[i]
        # Same ratio as (v - (1 - B)) / (v + (1 - B)), without overflowing exp
        w = math.exp(-A * dt)
        ratio = ((1.0 + B) - (1.0 - B) * w) / ((1.0 + B) + (1.0 - B) * w)
        return (lam + mu + psi - A * ratio) / (2.0 * lam)

    def log_q(self, i: int, t: float) -> float:
        """Log edge density ratio ``log q_i(t)``; zero past the last interval."""
        if i >= self.schedule.n_intervals:
            return 0.0

        A, B = self.A[i], self.B[i]
        dt = self.end_times[i] - t
        w = math.exp(-A * dt)
        return _LOG4 - A * dt - 2.0 * math.log((1.0 + B) + (1.0 - B) * w)

    def start_extinction_probability(self) -> float:
        """Extinction probability at time 0."""
        return self.p(self.schedule.interval_index(0.0, self.precision), 0.0)

    def log_likelihood(self, tree: "Tree", final_sample_offset: float = 0.0,
                       condition_on_survival: bool = True,
                       condition_on_root: bool = False) -> float:
        """
        Log probability density of the labelled tree.

        Parameters
        ----------
        tree : Tree
            Timed tree (root time assumed non-negative).
        final_sample_offset : float
            Time from the most recent sample to the present.
        condition_on_survival : bool
            Divide by the probability of sampling at least one lineage.
        condition_on_root : bool
            The process starts at the root (time 0) instead of the origin.

        Returns
        -------
        float
        """
        schedule = self.schedule
        precision = self.precision

        if condition_on_root:
            t_root = schedule.node_time(tree.root.height, final_sample_offset)
            log_p = math.log(2.0)
            for child in tree.root.children:
                log_p += self._subtree_log_likelihood(child, t_root, final_sample_offset)
            i_root = schedule.interval_index(t_root, precision)
            log_p += 2.0 * self.log_q(i_root, 0.0)
        else:
            log_p = self._subtree_log_likelihood(tree.root, 0.0, final_sample_offset)
            log_p += self.log_q(schedule.interval_index(0.0, precision), 0.0)

        if condition_on_survival:
            log_p -= _log(1.0 - self.start_extinction_probability())

        # Account for possible label permutations
        log_p -= math.lgamma(tree.n_leaves + 1)
        return log_p

    def _subtree_log_likelihood(self, node: "TreeNode", t_top: float,
                                final_sample_offset: float) -> float:
        # Every node contributes its event and the edge above it independently
        log_p = 0.0
        for current in node.postorder():
            if current.is_direct_ancestor:
                continue
            if current is node:
                top = t_top
            else:
                top = self.schedule.node_time(current.parent.height, final_sample_offset)
            log_p += self._node_log_likelihood(current, top, final_sample_offset)
        return log_p

    def _node_log_likelihood(self, node: "TreeNode", t_top: float,
                             final_sample_offset: float) -> float:
        schedule = self.schedule
        precision = self.precision

        t_node = schedule.node_time(node.height, final_sample_offset)
        i = schedule.interval_index(t_node, precision)
        t_i = self.end_times[i]
        lam, psi = self.birth[i], self.sampling[i]
        rho, r = self.rho[i], self.removal[i]

        if node.is_leaf:
            if schedule.is_rho_sampling_time(t_node, precision):
                p_after = self.p(i + 1, t_node)
                log_p = _log(rho * (r + (1.0 - r) * p_after))
            else:
                log_p = (_log(psi)
                         + _log(r + (1.0 - r) * self.p(i, t_node))
                         - self.log_q(i, t_node))

        elif node.is_sampled_ancestor:
            if schedule.is_rho_sampling_time(t_node, precision):
                log_p = _log(rho * (1.0 - r))
            else:
                log_p = _log(psi * (1.0 - r))
            # The child edge ends in the next interval when the node sits on a boundary
            if equal_with_precision(t_i, t_node, precision):
                log_p += self.log_q(i + 1, t_node)

        else:
            log_p = _log(2.0 * lam) - self.log_q(i, t_node)

            if equal_with_precision(t_i, t_node, precision):
                log_p += 2.0 * (_log(1.0 - rho) + self.log_q(i + 1, t_node))
            else:
                log_p += 2.0 * self.log_q(i, t_node)

        # Boundaries crossed by the edge above the node
        while i >= 0 and greater_than_with_precision(self.end_times[i], t_top, precision):
            if less_than_with_precision(self.end_times[i], t_node, precision):
                log_p += _log(1.0 - self.rho[i]) + self.log_q(i + 1, self.end_times[i])
            i -= 1

        return log_p
