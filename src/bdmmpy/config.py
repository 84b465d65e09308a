"""
Options recognized by the likelihood calculation.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .errors import ConfigurationError

# Explicit Runge-Kutta methods accepted by scipy.integrate.solve_ivp
INTEGRATION_METHODS = ("RK45", "RK23", "DOP853")


@dataclass
class LikelihoodConfig:
    """
    Numerical and conditioning options for a likelihood evaluation.

    Attributes
    ----------
    relative_tolerance : float
        Relative tolerance of the ODE solver.
    absolute_tolerance : float
        Absolute tolerance of the ODE solver. Kept tiny because ``ge`` values
        are only meaningful relative to each other.
    precision_threshold : float
        Two times closer than this are treated as equal (interval boundaries,
        rho sampling times).
    parallelize : bool
        Evaluate large sibling subtrees on a thread pool.
    parallelization_factor : float
        A subtree is dispatched to the pool only if both siblings carry more
        than this fraction of the total branch length.
    use_single_type_solution : bool
        Use the analytic solution when the model has one type.
    condition_on_survival : bool
        Condition on at least one sample being observed.
    condition_on_root : bool
        Start the process at the root instead of the origin.
    final_sample_offset : float
        Time between the most recent sample and the present.
    integration_method : str
        ``solve_ivp`` method: "RK45", "RK23" or "DOP853".
    max_evaluations : int, optional
        Derivative evaluations allowed per integration segment.
    """

    relative_tolerance: float = 1e-7
    absolute_tolerance: float = 1e-100
    precision_threshold: float = 1e-10
    parallelize: bool = True
    parallelization_factor: float = 0.1
    use_single_type_solution: bool = True
    condition_on_survival: bool = True
    condition_on_root: bool = False
    final_sample_offset: float = 0.0
    integration_method: str = "RK45"
    max_evaluations: Optional[int] = None

    def __post_init__(self):
        for name in ("relative_tolerance", "absolute_tolerance", "precision_threshold"):
            value = getattr(self, name)
            if not (value > 0.0 and math.isfinite(value)):
                raise ConfigurationError(f"{name} must be positive and finite, got {value}")

        if not 0.0 < self.parallelization_factor <= 1.0:
            raise ConfigurationError(
                f"parallelization_factor must lie in (0, 1], got {self.parallelization_factor}"
            )

        if not (self.final_sample_offset >= 0.0 and math.isfinite(self.final_sample_offset)):
            raise ConfigurationError(
                f"final_sample_offset must be non-negative, got {self.final_sample_offset}"
            )

        if self.integration_method not in INTEGRATION_METHODS:
            raise ConfigurationError(
                f"Unknown integration method '{self.integration_method}'. "
                f"Choose from: {', '.join(INTEGRATION_METHODS)}"
            )

        if self.max_evaluations is not None and self.max_evaluations < 1:
            raise ConfigurationError(
                f"max_evaluations must be at least 1, got {self.max_evaluations}"
            )

    @property
    def max_workers(self) -> int:
        """Worker threads needed so that nested dispatches never starve the pool."""
        return math.ceil(1.0 / self.parallelization_factor)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
