"""
Tests for high-level API (tree_log_likelihood and LikelihoodResult).
"""

import json
import math

import pytest

from bdmmpy import (
    ConfigurationError,
    LikelihoodConfig,
    LikelihoodResult,
    RateSchedule,
    load_parameters,
    tree_log_likelihood,
)

SIMPLE_NEWICK = "((A:1.0,B:1.0):0.5,C:1.5);"
TYPED_NEWICK = "((a[&type=A]:1.0,b[&type=B]:0.8):0.5,(c[&type=A]:0.7,d[&type=B]:1.2):0.3);"


class TestTreeLogLikelihood:
    """Test tree_log_likelihood() function."""

    def test_newick_string_and_schedule(self, single_type_schedule):
        result = tree_log_likelihood(SIMPLE_NEWICK, single_type_schedule)

        assert isinstance(result, LikelihoodResult)
        assert math.isfinite(result.log_likelihood)
        assert result.n_leaves == 3
        assert result.used_single_type_solution
        assert result.root_type_probabilities == [1.0]

    def test_file_paths(self, tree_file, params_file, types_file):
        result = tree_log_likelihood(tree_file, params_file, leaf_types=types_file,
                                     parallelize=False)

        assert math.isfinite(result.log_likelihood)
        assert result.type_names == ["A", "B"]
        assert sum(result.root_type_probabilities) == pytest.approx(1.0)

    def test_trait_string(self, params_dict):
        from_string = tree_log_likelihood(TYPED_NEWICK, params_dict, leaf_types="a=A,b=B,c=A,d=B",
                                          parallelize=False)
        from_metadata = tree_log_likelihood(TYPED_NEWICK, params_dict, type_label="type",
                                            parallelize=False)
        assert from_string.log_likelihood == from_metadata.log_likelihood

    def test_path_given_as_string(self, tree_file, params_file):
        result = tree_log_likelihood(str(tree_file), str(params_file), type_label="type",
                                     parallelize=False)
        assert math.isfinite(result.log_likelihood)

    def test_frequencies_read_from_parameters(self, params_dict):
        from_file = tree_log_likelihood(TYPED_NEWICK, params_dict, type_label="type",
                                        parallelize=False)
        explicit = tree_log_likelihood(TYPED_NEWICK, params_dict, type_label="type",
                                       frequencies=[0.6, 0.4], parallelize=False)
        uniform = tree_log_likelihood(TYPED_NEWICK, params_dict, type_label="type",
                                      frequencies=[0.5, 0.5], parallelize=False)

        assert from_file.log_likelihood == explicit.log_likelihood
        assert from_file.log_likelihood != uniform.log_likelihood

    def test_option_overrides(self, single_type_schedule):
        base = LikelihoodConfig(relative_tolerance=1e-10)
        analytic = tree_log_likelihood(SIMPLE_NEWICK, single_type_schedule, config=base)
        numeric = tree_log_likelihood(SIMPLE_NEWICK, single_type_schedule, config=base,
                                      use_single_type_solution=False, parallelize=False)

        assert not numeric.used_single_type_solution
        assert numeric.settings["relative_tolerance"] == 1e-10
        assert numeric.log_likelihood == pytest.approx(analytic.log_likelihood, abs=1e-6)

    def test_unknown_option(self, single_type_schedule):
        with pytest.raises(ConfigurationError, match="Unknown options: tolerance"):
            tree_log_likelihood(SIMPLE_NEWICK, single_type_schedule, tolerance=1e-3)

    def test_invalid_option_value(self, single_type_schedule):
        with pytest.raises(ConfigurationError, match="integration method"):
            tree_log_likelihood(SIMPLE_NEWICK, single_type_schedule, integration_method="Euler")

    def test_invalid_newick(self, single_type_schedule):
        with pytest.raises(ValueError, match="Failed to parse tree"):
            tree_log_likelihood("((A:1,B:1);", single_type_schedule)

    def test_rejected_result(self):
        schedule = RateSchedule.constant(origin=1.0, birth_rate=2.0, sampling_rate=0.5)
        result = tree_log_likelihood(SIMPLE_NEWICK, schedule)
        assert result.is_rejected
        assert result.root_type_probabilities == [0.0]


class TestLoadParameters:
    """Test JSON parameter files."""

    def test_load(self, params_file, params_dict):
        assert load_parameters(params_file) == params_dict

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_parameters(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{origin: 2.5")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_parameters(path)


class TestLikelihoodResult:
    """Test result export."""

    @pytest.fixture
    def result(self):
        return LikelihoodResult(
            log_likelihood=-12.345678,
            root_type_probabilities=[0.25, 0.75],
            type_names=["A", "B"],
            n_leaves=4,
            n_sampled_ancestors=1,
            settings={"parallelize": False},
        )

    def test_summary(self, result):
        summary = result.summary()
        assert "BIRTH-DEATH-MIGRATION TREE LIKELIHOOD" in summary
        assert "-12.345678" in summary
        assert "ROOT TYPE PROBABILITIES" in summary
        assert "0.750000" in summary
        assert str(result) == summary

    def test_to_dict(self, result):
        data = result.to_dict()
        assert data["log_likelihood"] == -12.345678
        assert data["root_type_probabilities"] == {"A": 0.25, "B": 0.75}
        assert data["n_sampled_ancestors"] == 1
        assert data["reason"] is None

    def test_to_json_file(self, result, tmp_path):
        path = tmp_path / "result.json"
        text = result.to_json(str(path))
        assert json.loads(path.read_text()) == json.loads(text)
        assert json.loads(text)["settings"] == {"parallelize": False}

    def test_rejected(self):
        result = LikelihoodResult.rejected("root time -1 lies before the start",
                                           type_names=["A", "B"], n_leaves=3)
        assert result.is_rejected
        assert result.root_type_probabilities == [0.0, 0.0]
        assert "Rejected" in result.summary()
        assert "ROOT TYPE PROBABILITIES" not in result.summary()

    def test_repr(self, result):
        assert repr(result) == "LikelihoodResult(log_likelihood=-12.3457, n_leaves=4)"
