"""
bdmmpy: Multi-type birth-death-migration tree likelihoods.

Computes the probability density of a timed phylogenetic tree under a
multi-type birth-death process with migration, cross-type births, sampled
ancestors, rho sampling and piecewise-constant rates.

Quick Start
-----------
Score a single-type tree:

>>> from bdmmpy import RateSchedule, tree_log_likelihood
>>> schedule = RateSchedule.constant(origin=2.5, birth_rate=2.0,
...                                  death_rate=1.0, sampling_rate=0.5)
>>> result = tree_log_likelihood("((A:1.0,B:1.0):0.5,C:1.5);", schedule)
>>> print(result.summary())

Two types with migration, leaf types read from Newick metadata:

>>> schedule = RateSchedule.constant(
...     origin=2.0, birth_rate=[2.0, 1.5], death_rate=1.0, sampling_rate=0.5,
...     migration_rate=[[0.0, 0.2], [0.3, 0.0]], type_names=["A", "B"])
>>> result = tree_log_likelihood(
...     "((x[&type=A]:1.0,y[&type=B]:1.0):0.5,z[&type=A]:1.5);",
...     schedule, type_label="type")
>>> result.root_type_probabilities

Examples
--------
>>> # Repeated evaluations share one worker pool
>>> from bdmmpy import BirthDeathMigrationLikelihood, LikelihoodConfig, Tree
>>> tree = Tree.from_file("tree.nwk")
>>> with BirthDeathMigrationLikelihood(tree, schedule, type_label="type") as likelihood:
...     for candidate in schedules:
...         print(likelihood.evaluate(schedule=candidate).log_likelihood)
"""

__version__ = "0.1.0"

# High-level API (simple interface)
from .api import load_parameters, tree_log_likelihood
from .results import LikelihoodResult

# Model input
from .config import LikelihoodConfig
from .models.schedule import RateSchedule, RhoSampling, Skyline, epi_to_canonical
from .io.trees import Tree
from .io.traits import read_type_traits

# Likelihood engine (expert use)
from .core.likelihood import BirthDeathMigrationLikelihood
from .core.small_number import SmallNumber

from .errors import (
    ConfigurationError,
    IntegrationError,
    LikelihoodEvaluationError,
    NumericalBreakdownError,
    ParallelEvaluationError,
)

__all__ = [
    # Simple API - Start here!
    "tree_log_likelihood",
    "load_parameters",
    "LikelihoodResult",

    # Model input
    "LikelihoodConfig",
    "RateSchedule",
    "RhoSampling",
    "Skyline",
    "epi_to_canonical",
    "Tree",
    "read_type_traits",

    # Expert use
    "BirthDeathMigrationLikelihood",
    "SmallNumber",

    # Errors
    "ConfigurationError",
    "IntegrationError",
    "LikelihoodEvaluationError",
    "NumericalBreakdownError",
    "ParallelEvaluationError",
]
