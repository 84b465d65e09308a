"""
Numerical core of the birth-death-migration likelihood.

This module provides the low-level building blocks:

- **SmallNumber**: mantissa/exponent numbers that do not underflow
- **ODE systems**: extinction probability and lineage density equations
- **IntervalIntegrator**: integration across rate intervals and rho sampling events
- **SingleTypeSolution**: closed-form likelihood for one-type models

The tree traversal lives in :mod:`bdmmpy.core.likelihood`; the high-level
API (:mod:`bdmmpy.api`) provides easier access.
"""

from bdmmpy.core.integrator import IntervalIntegrator
from bdmmpy.core.ode import P0GeSystem, P0System, p0_derivatives, p0ge_derivatives
from bdmmpy.core.single_type import SingleTypeSolution
from bdmmpy.core.small_number import SmallNumber
from bdmmpy.core.states import P0GeState, ScaledState

__all__ = [
    "IntervalIntegrator",
    "P0GeState",
    "P0GeSystem",
    "P0System",
    "ScaledState",
    "SingleTypeSolution",
    "SmallNumber",
    "p0_derivatives",
    "p0ge_derivatives",
]
