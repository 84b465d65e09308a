"""Intervals command implementation."""

import sys
from pathlib import Path

from bdmmpy import RateSchedule
from bdmmpy.api import load_parameters


def _format_row(values) -> str:
    return " ".join(f"{v:>10.4g}" for v in values)


def run_intervals(params: Path):
    """Print the merged interval grid of a parameter file."""
    try:
        schedule = RateSchedule.from_dict(load_parameters(params))
    except (ValueError, KeyError, TypeError) as e:
        print(f"Error: Invalid parameters in {params}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Origin: {schedule.origin:g}")
    print(f"Types:  {', '.join(schedule.type_names)}")
    if schedule.rho_sampling_times:
        times = ", ".join(f"{t:g}" for t in schedule.rho_sampling_times)
        print(f"Rho sampling times: {times}")
    print("")

    starts = schedule.interval_start_times
    for i in range(schedule.n_intervals):
        print(f"Interval {i}: ({starts[i]:g}, {schedule.interval_end_times[i]:g}]")
        print(f"  birth     {_format_row(schedule.birth_rates[i])}")
        print(f"  death     {_format_row(schedule.death_rates[i])}")
        print(f"  sampling  {_format_row(schedule.sampling_rates[i])}")
        print(f"  removal   {_format_row(schedule.removal_probs[i])}")
        if schedule.n_types > 1:
            for row, name in zip(schedule.migration_rates[i], schedule.type_names):
                print(f"  migration from {name}: {_format_row(row)}")
            for row, name in zip(schedule.cross_birth_rates[i], schedule.type_names):
                print(f"  cross-birth from {name}: {_format_row(row)}")
        if schedule.rho_values[i].any():
            print(f"  rho       {_format_row(schedule.rho_values[i])}")
