"""
High-level API for bdmmpy tree likelihoods.

This module provides a one-call interface: trees and parameters may be given
as objects, strings or file paths, and results come back as a
:class:`~bdmmpy.results.LikelihoodResult`.
"""

import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from .config import LikelihoodConfig
from .core.likelihood import BirthDeathMigrationLikelihood
from .errors import ConfigurationError
from .io.traits import load_type_traits
from .io.trees import Tree
from .models.schedule import RateSchedule
from .results import LikelihoodResult


def _load_tree(tree: Union[str, Path, Tree]) -> Tree:
    """
    Load tree from a Newick/NEXUS file or a Newick string.

    Parameters
    ----------
    tree : str, Path, or Tree
        Path to tree file, Newick string, or Tree object

    Returns
    -------
    Tree
        Loaded tree object

    Raises
    ------
    ValueError
        If tree parsing fails
    """
    if isinstance(tree, Tree):
        return tree

    path_or_str = str(tree)
    if '(' not in path_or_str and Path(path_or_str).exists():
        try:
            return Tree.from_file(path_or_str)
        except ValueError as e:
            raise ValueError(f"Failed to parse tree file {path_or_str}: {e}") from e

    try:
        return Tree.from_newick(path_or_str)
    except ValueError as e:
        raise ValueError(f"Failed to parse tree: {e}") from e


def load_parameters(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a JSON parameter file.

    Besides the schedule entries understood by
    :meth:`RateSchedule.from_dict`, the file may contain ``frequencies``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Parameter file not found: {path}")
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in parameter file {path}: {e}") from e


def _load_schedule(schedule: Union[RateSchedule, Mapping[str, Any], str, Path]) -> RateSchedule:
    if isinstance(schedule, RateSchedule):
        return schedule
    if isinstance(schedule, Mapping):
        return RateSchedule.from_dict(dict(schedule))
    return RateSchedule.from_dict(load_parameters(schedule))


def tree_log_likelihood(
    tree: Union[str, Path, Tree],
    schedule: Union[RateSchedule, Mapping[str, Any], str, Path],
    frequencies: Optional[Sequence[float]] = None,
    leaf_types: Optional[Union[Mapping[str, Union[str, int]], str, Path]] = None,
    type_label: Optional[str] = None,
    config: Optional[LikelihoodConfig] = None,
    **options,
) -> LikelihoodResult:
    """
    Log-likelihood of a timed tree under the birth-death-migration model.

    Parameters
    ----------
    tree : str, Path, or Tree
        Newick string, path to a Newick/NEXUS file, or Tree object.
    schedule : RateSchedule, dict, str or Path
        Rates, as an object, a parameter dictionary or a JSON file.
    frequencies : sequence of float, optional
        Type probabilities at the start of the process (uniform by default;
        read from the parameter dictionary when it has ``frequencies``).
    leaf_types : mapping, str or Path, optional
        Leaf name to type label, a trait file, or a trait string such as
        ``"a=A,b=B"``.
    type_label : str, optional
        Metadata key holding leaf types, e.g. ``"type"``.
    config : LikelihoodConfig, optional
        Numerical and conditioning options.
    **options
        Overrides for individual :class:`LikelihoodConfig` fields, e.g.
        ``condition_on_root=True`` or ``parallelize=False``.

    Returns
    -------
    LikelihoodResult

    Examples
    --------
    >>> from bdmmpy import RateSchedule, tree_log_likelihood
    >>> schedule = RateSchedule.constant(origin=2.5, birth_rate=2.0,
    ...                                  death_rate=1.0, sampling_rate=0.5)
    >>> result = tree_log_likelihood("((A:1,B:1):0.5,C:1.5);", schedule)
    >>> print(result.summary())
    """
    if isinstance(schedule, (str, Path)):
        schedule = load_parameters(schedule)
    if isinstance(schedule, Mapping) and frequencies is None:
        frequencies = schedule.get("frequencies")

    parsed_tree = _load_tree(tree)
    parsed_schedule = _load_schedule(schedule)

    if isinstance(leaf_types, (str, Path)):
        leaf_types = load_type_traits(leaf_types)

    if config is None:
        config = LikelihoodConfig()
    if options:
        unknown = set(options) - set(config.to_dict())
        if unknown:
            raise ConfigurationError(f"Unknown options: {', '.join(sorted(unknown))}")
        config = replace(config, **options)

    with BirthDeathMigrationLikelihood(
        parsed_tree,
        parsed_schedule,
        frequencies=frequencies,
        leaf_types=leaf_types,
        type_label=type_label,
        config=config,
    ) as likelihood:
        return likelihood.evaluate()
