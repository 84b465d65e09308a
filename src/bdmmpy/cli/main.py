"""Main CLI application for bdmmpy."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

app = typer.Typer(
    name="bdmmpy",
    help="Multi-type birth-death-migration tree likelihoods",
    no_args_is_help=True,
)


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"


class Method(str, Enum):
    """ODE integration method."""
    RK45 = "RK45"
    RK23 = "RK23"
    DOP853 = "DOP853"


@app.command()
def likelihood(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Timed tree file (Newick or NEXUS)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    params: Path = typer.Option(
        ...,
        "--params", "-p",
        help="JSON parameter file (rates, origin, type names, frequencies)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    types: Optional[Path] = typer.Option(
        None,
        "--types",
        help="Leaf type file: one '<leaf> <type>' pair per line",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    type_traits: Optional[str] = typer.Option(
        None,
        "--type-traits",
        help="Leaf types as a trait string, e.g. 'a=deme0,b=deme1'",
    ),
    type_label: Optional[str] = typer.Option(
        None,
        "--type-label",
        help="Tree metadata key holding leaf types (e.g. 'type')",
    ),
    final_sample_offset: float = typer.Option(
        0.0,
        "--final-sample-offset",
        help="Time between the most recent sample and the present",
        min=0.0,
    ),
    no_parallel: bool = typer.Option(
        False,
        "--no-parallel",
        help="Evaluate subtrees on the calling thread only",
    ),
    no_survival: bool = typer.Option(
        False,
        "--no-survival",
        help="Do not condition on observing at least one sample",
    ),
    condition_on_root: bool = typer.Option(
        False,
        "--condition-on-root",
        help="Start the process at the root instead of the origin",
    ),
    no_analytic: bool = typer.Option(
        False,
        "--no-analytic",
        help="Integrate ODEs even for single-type models",
    ),
    rtol: float = typer.Option(
        1e-7,
        "--rtol",
        help="Relative tolerance of the ODE solver",
    ),
    atol: float = typer.Option(
        1e-100,
        "--atol",
        help="Absolute tolerance of the ODE solver",
    ),
    method: Method = typer.Option(
        Method.RK45,
        "--method",
        help="ODE integration method",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Output file (default: stdout)",
        file_okay=True,
        dir_okay=False,
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Log setup and evaluation details",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Compute the log-likelihood of a timed tree.

    Example:
        bdmmpy likelihood -t tree.nwk -p params.json --type-label type
        bdmmpy likelihood -t tree.nex -p params.json --types types.txt --format json
        bdmmpy likelihood -t tree.nwk -p params.json --type-traits "a=north,b=south"
    """
    from .commands.likelihood import run_likelihood

    run_likelihood(
        tree=tree,
        params=params,
        types=types,
        type_traits=type_traits,
        type_label=type_label,
        final_sample_offset=final_sample_offset,
        parallelize=not no_parallel,
        condition_on_survival=not no_survival,
        condition_on_root=condition_on_root,
        use_single_type_solution=not no_analytic,
        rtol=rtol,
        atol=atol,
        method=method.value,
        output=output,
        format=format.value,
        verbose=verbose,
        quiet=quiet,
    )


@app.command()
def intervals(
    params: Path = typer.Option(
        ...,
        "--params", "-p",
        help="JSON parameter file",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
):
    """
    Show the rate intervals a parameter file resolves to.

    Example:
        bdmmpy intervals -p params.json
    """
    from .commands.intervals import run_intervals

    run_intervals(params=params)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
