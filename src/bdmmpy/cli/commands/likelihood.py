"""Likelihood command implementation."""

import sys
import logging
from pathlib import Path
from typing import Optional

from bdmmpy import LikelihoodConfig, RateSchedule, Tree, tree_log_likelihood
from bdmmpy.api import load_parameters
from bdmmpy.errors import ConfigurationError, LikelihoodEvaluationError
from bdmmpy.io.traits import parse_trait_string, read_type_traits


def run_likelihood(
    tree: Path,
    params: Path,
    types: Optional[Path],
    type_traits: Optional[str],
    type_label: Optional[str],
    final_sample_offset: float,
    parallelize: bool,
    condition_on_survival: bool,
    condition_on_root: bool,
    use_single_type_solution: bool,
    rtol: float,
    atol: float,
    method: str,
    output: Optional[Path],
    format: str,
    verbose: bool,
    quiet: bool,
):
    """Evaluate one tree under one parameter set."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # Load data
    try:
        tree_obj = Tree.from_file(tree)
    except Exception as e:
        print(f"Error: Could not load tree from {tree}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        parameters = load_parameters(params)
        schedule = RateSchedule.from_dict(parameters)
        if types is not None and type_traits is not None:
            raise ValueError("Give leaf types either with --types or with --type-traits")
        leaf_types = None
        if types is not None:
            leaf_types = read_type_traits(types)
        elif type_traits is not None:
            leaf_types = parse_trait_string(type_traits)
        config = LikelihoodConfig(
            relative_tolerance=rtol,
            absolute_tolerance=atol,
            parallelize=parallelize,
            condition_on_survival=condition_on_survival,
            condition_on_root=condition_on_root,
            use_single_type_solution=use_single_type_solution,
            final_sample_offset=final_sample_offset,
            integration_method=method,
        )
    except (ValueError, KeyError, TypeError) as e:
        print(f"Error: Invalid parameters in {params}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    if not quiet:
        print("Birth-death-migration likelihood", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Tree:       {tree} ({tree_obj.n_leaves} leaves)", file=sys.stderr)
        print(f"Parameters: {params} ({schedule.n_types} types, "
              f"{schedule.n_intervals} intervals)", file=sys.stderr)
        print(file=sys.stderr)

    try:
        result = tree_log_likelihood(
            tree_obj,
            schedule,
            frequencies=parameters.get("frequencies"),
            leaf_types=leaf_types,
            type_label=type_label,
            config=config,
        )
    except ConfigurationError as e:
        print("Error: Invalid model input", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)
    except LikelihoodEvaluationError as e:
        print("Error: Likelihood evaluation failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    # Format output
    if format == "json":
        output_text = result.to_json()
    else:  # text
        output_text = result.summary()

    # Write output
    if output:
        with open(output, 'w') as f:
            f.write(output_text)
        if not quiet:
            print(f"\nResults written to {output}", file=sys.stderr)
    else:
        print(output_text)
