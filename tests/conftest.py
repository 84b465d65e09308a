"""
Pytest configuration and shared fixtures.
"""

import json

import pytest
from typer.testing import CliRunner

from bdmmpy import LikelihoodConfig, RateSchedule, Tree


# Three leaves sampled through time, root 1.5 before the most recent sample
SIMPLE_NEWICK = "((A:1.0,B:1.0):0.5,C:1.5);"

# Four leaves with BEAST type annotations
TYPED_NEWICK = (
    "((a[&type=A]:1.0,b[&type=B]:0.8):0.5,"
    "(c[&type=A]:0.7,d[&type=B]:1.2):0.3);"
)


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def accurate_config():
    """Tight solver tolerances for comparisons against the analytic solution."""
    return LikelihoodConfig(relative_tolerance=1e-10, parallelize=False)


@pytest.fixture
def simple_tree():
    """Three-leaf serially sampled tree."""
    return Tree.from_newick(SIMPLE_NEWICK)


@pytest.fixture
def typed_tree():
    """Four-leaf tree whose leaves carry a ``type`` annotation."""
    return Tree.from_newick(TYPED_NEWICK)


@pytest.fixture
def single_type_schedule():
    """One type, one interval, origin 1.0 above the root of ``simple_tree``."""
    return RateSchedule.constant(origin=2.5, birth_rate=2.0, death_rate=1.0, sampling_rate=0.5)


@pytest.fixture
def two_type_schedule():
    """Two types with asymmetric migration and cross-type birth."""
    return RateSchedule.constant(
        origin=2.5,
        birth_rate=[2.0, 1.5],
        death_rate=[1.0, 0.8],
        sampling_rate=[0.5, 0.3],
        migration_rate=[[0.0, 0.2], [0.4, 0.0]],
        cross_birth_rate=[[0.0, 0.3], [0.1, 0.0]],
        type_names=["A", "B"],
    )


@pytest.fixture
def params_dict():
    """Two-type parameter dictionary as found in a JSON parameter file."""
    return {
        "origin": 2.5,
        "type_names": ["A", "B"],
        "frequencies": [0.6, 0.4],
        "birth_rate": [2.0, 1.5],
        "death_rate": {"values": [[1.0, 0.8], [0.6, 0.5]], "change_times": [1.2]},
        "sampling_rate": [0.5, 0.3],
        "migration_rate": [[0.0, 0.2], [0.4, 0.0]],
    }


@pytest.fixture
def params_file(tmp_path, params_dict):
    """JSON parameter file for the two-type model."""
    path = tmp_path / "params.json"
    path.write_text(json.dumps(params_dict))
    return path


@pytest.fixture
def single_type_params_file(tmp_path):
    """JSON parameter file for a single-type model."""
    path = tmp_path / "single.json"
    path.write_text(json.dumps({
        "origin": 2.5,
        "birth_rate": 2.0,
        "death_rate": 1.0,
        "sampling_rate": 0.5,
    }))
    return path


@pytest.fixture
def tree_file(tmp_path):
    """Newick file holding ``TYPED_NEWICK``."""
    path = tmp_path / "tree.nwk"
    path.write_text(TYPED_NEWICK + "\n")
    return path


@pytest.fixture
def simple_tree_file(tmp_path):
    """Newick file holding ``SIMPLE_NEWICK``."""
    path = tmp_path / "simple.nwk"
    path.write_text(SIMPLE_NEWICK + "\n")
    return path


@pytest.fixture
def types_file(tmp_path):
    """Trait file giving the types of ``TYPED_NEWICK`` leaves."""
    path = tmp_path / "types.txt"
    path.write_text("taxon\ttype\na\tA\nb\tB\nc\tA\nd\tB\n")
    return path
