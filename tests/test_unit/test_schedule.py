"""
Tests for rate schedules.
"""

import numpy as np
import pytest

from bdmmpy import ConfigurationError, RateSchedule, RhoSampling, Skyline, epi_to_canonical


class TestRateSchedule:
    """Test construction and validation."""

    def test_constant_single_type(self, single_type_schedule):
        s = single_type_schedule
        assert s.n_types == 1
        assert s.n_intervals == 1
        assert s.type_names == ("0",)
        np.testing.assert_array_equal(s.removal_probs, [[1.0]])
        assert s.rho_sampling_times == ()

    def test_constant_two_types(self, two_type_schedule):
        s = two_type_schedule
        assert s.n_types == 2
        assert s.type_names == ("A", "B")
        assert s.birth_rates.shape == (1, 2)
        assert s.migration_rates.shape == (1, 2, 2)

    def test_constant_rho_at_present(self):
        s = RateSchedule.constant(origin=2.0, birth_rate=1.0, rho=0.5)
        assert s.rho_sampling_times == (2.0,)
        assert s.is_rho_sampling_time(2.0)
        assert s.is_rho_sampling_time(2.0 - 1e-12)
        assert not s.is_rho_sampling_time(1.9)

    def test_diagonal_ignored(self):
        s = RateSchedule.constant(origin=1.0, birth_rate=[1.0, 1.0],
                                  migration_rate=[[5.0, 0.1], [0.2, 5.0]])
        np.testing.assert_array_equal(s.migration_rates[0], [[0.0, 0.1], [0.2, 0.0]])
        np.testing.assert_array_equal(s.rates(0).migration_out, [0.1, 0.2])

    def test_interval_rates(self, two_type_schedule):
        rates = two_type_schedule.rates(0)
        np.testing.assert_allclose(rates.total, [3.5, 2.6])
        np.testing.assert_allclose(rates.cross_birth_out, [0.3, 0.1])

    def test_interval_start_times(self):
        s = RateSchedule(origin=3.0, interval_end_times=[1.0, 2.0, 3.0], birth_rates=[1.0])
        np.testing.assert_array_equal(s.interval_start_times, [0.0, 1.0, 2.0])

    def test_node_time(self, single_type_schedule):
        assert single_type_schedule.node_time(1.5) == 1.0
        assert single_type_schedule.node_time(1.5, 0.25) == 0.75

    def test_type_index(self, two_type_schedule):
        assert two_type_schedule.type_index("B") == 1
        with pytest.raises(ConfigurationError, match="Unknown type"):
            two_type_schedule.type_index("C")


class TestIntervalIndex:
    """Test interval lookup with the precision threshold."""

    @pytest.fixture
    def schedule(self):
        return RateSchedule(origin=3.0, interval_end_times=[1.0, 2.0, 3.0], birth_rates=[1.0])

    @pytest.mark.parametrize("time,expected", [
        (0.0, 0),
        (0.5, 0),
        (1.0, 0),
        (1.0 + 1e-12, 0),
        (1.0 - 1e-12, 0),
        (1.5, 1),
        (2.0, 1),
        (3.0, 2),
        (-1.0, 0),
        (5.0, 2),
    ])
    def test_lookup(self, schedule, time, expected):
        assert schedule.interval_index(time) == expected


class TestValidation:
    """Test rejection of invalid schedules."""

    def test_non_positive_origin(self):
        with pytest.raises(ConfigurationError, match="origin"):
            RateSchedule.constant(origin=0.0, birth_rate=1.0)

    def test_last_end_must_be_origin(self):
        with pytest.raises(ConfigurationError, match="origin"):
            RateSchedule(origin=3.0, interval_end_times=[1.0, 2.0], birth_rates=[1.0])

    def test_end_times_increasing(self):
        with pytest.raises(ConfigurationError, match="increasing"):
            RateSchedule(origin=3.0, interval_end_times=[2.0, 1.0, 3.0], birth_rates=[1.0])

    def test_negative_rate(self):
        with pytest.raises(ConfigurationError, match="death_rates"):
            RateSchedule.constant(origin=1.0, birth_rate=1.0, death_rate=-0.1)

    def test_removal_probability_range(self):
        with pytest.raises(ConfigurationError, match="removal_probs"):
            RateSchedule.constant(origin=1.0, birth_rate=1.0, removal_prob=1.5)

    def test_wrong_shape(self):
        with pytest.raises(ConfigurationError, match="shape"):
            RateSchedule(origin=2.0, interval_end_times=[1.0, 2.0], birth_rates=[[1.0, 2.0]] * 3)

    def test_type_name_count(self):
        with pytest.raises(ConfigurationError, match="type names"):
            RateSchedule(origin=1.0, interval_end_times=[1.0], birth_rates=[1.0, 1.0],
                         type_names=["A"])

    def test_duplicate_type_names(self):
        with pytest.raises(ConfigurationError, match="unique"):
            RateSchedule.constant(origin=1.0, birth_rate=[1.0, 1.0], type_names=["A", "A"])

    def test_rho_outside_sampling_times(self):
        with pytest.raises(ConfigurationError, match="rho"):
            RateSchedule(origin=2.0, interval_end_times=[1.0, 2.0], birth_rates=[1.0],
                         rho_values=[[0.5], [0.0]], rho_sampling_times=[2.0])

    def test_rho_time_off_grid(self):
        with pytest.raises(ConfigurationError, match="coincide"):
            RateSchedule(origin=2.0, interval_end_times=[1.0, 2.0], birth_rates=[1.0],
                         rho_sampling_times=[1.5])


class TestSkylines:
    """Test merging of per-parameter skylines."""

    def test_union_of_change_times(self):
        s = RateSchedule.from_skylines(
            origin=3.0,
            birth=Skyline(values=[1.0, 2.0], change_times=[1.0]),
            death=Skyline(values=[0.5, 0.25], change_times=[1.5]),
            sampling=Skyline(values=[0.1]),
        )
        np.testing.assert_allclose(s.interval_end_times, [1.0, 1.5, 3.0])
        np.testing.assert_allclose(s.birth_rates[:, 0], [1.0, 2.0, 2.0])
        np.testing.assert_allclose(s.death_rates[:, 0], [0.5, 0.5, 0.25])
        np.testing.assert_allclose(s.sampling_rates[:, 0], [0.1, 0.1, 0.1])
        np.testing.assert_allclose(s.removal_probs[:, 0], [1.0, 1.0, 1.0])

    def test_close_change_times_merged(self):
        s = RateSchedule.from_skylines(
            origin=3.0,
            birth=Skyline(values=[1.0, 2.0], change_times=[1.0]),
            death=Skyline(values=[0.5, 0.25], change_times=[1.0 + 1e-12]),
        )
        assert s.n_intervals == 2

    def test_times_as_ages(self):
        s = RateSchedule.from_skylines(
            origin=3.0,
            birth=Skyline(values=[2.0, 1.0], change_times=[0.5], times_are_ages=True),
        )
        np.testing.assert_allclose(s.interval_end_times, [2.5, 3.0])
        # Values are listed from the present backwards
        np.testing.assert_allclose(s.birth_rates[:, 0], [1.0, 2.0])

    def test_per_type_values(self):
        s = RateSchedule.from_skylines(
            origin=2.0,
            birth=Skyline(values=[[1.0, 2.0], [3.0, 4.0]], change_times=[1.0]),
            migration=Skyline(values=[[[0.0, 0.1], [0.2, 0.0]]]),
            type_names=["x", "y"],
        )
        assert s.n_types == 2
        np.testing.assert_allclose(s.birth_rates, [[1.0, 2.0], [3.0, 4.0]])
        np.testing.assert_allclose(s.migration_rates[1], [[0.0, 0.1], [0.2, 0.0]])

    def test_rho_sampling_adds_boundaries(self):
        s = RateSchedule.from_skylines(
            origin=3.0,
            birth=Skyline(values=[1.0]),
            rho_sampling=RhoSampling(times=[1.0, 3.0], values=[0.2, 0.5]),
        )
        np.testing.assert_allclose(s.interval_end_times, [1.0, 3.0])
        np.testing.assert_allclose(s.rho_values[:, 0], [0.2, 0.5])
        assert s.rho_sampling_times == (1.0, 3.0)

    def test_rho_sampling_ages(self):
        s = RateSchedule.from_skylines(
            origin=3.0,
            birth=Skyline(values=[1.0]),
            rho_sampling=RhoSampling(times=[0.0], values=[0.4], times_are_ages=True),
        )
        assert s.n_intervals == 1
        np.testing.assert_allclose(s.rho_values, [[0.4]])

    def test_rho_outside_process(self):
        with pytest.raises(ConfigurationError, match="outside"):
            RateSchedule.from_skylines(
                origin=3.0,
                birth=Skyline(values=[1.0]),
                rho_sampling=RhoSampling(times=[4.0], values=[0.2]),
            )

    def test_value_count(self):
        with pytest.raises(ConfigurationError, match="needs 2 values"):
            Skyline(values=[1.0], change_times=[1.0])

    def test_rho_value_count(self):
        with pytest.raises(ConfigurationError):
            RhoSampling(times=[1.0, 2.0], values=[0.1])


class TestFromDict:
    """Test schedules read from parameter dictionaries."""

    def test_two_type_dict(self, params_dict):
        s = RateSchedule.from_dict(params_dict)
        assert s.type_names == ("A", "B")
        np.testing.assert_allclose(s.interval_end_times, [1.2, 2.5])
        np.testing.assert_allclose(s.death_rates, [[1.0, 0.8], [0.6, 0.5]])
        np.testing.assert_allclose(s.migration_rates[0], [[0.0, 0.2], [0.4, 0.0]])

    def test_scalar_rates(self):
        s = RateSchedule.from_dict({"origin": 1.0, "birth_rate": 2.0, "removal_prob": 0.5})
        assert s.n_types == 1
        np.testing.assert_allclose(s.removal_probs, [[0.5]])

    def test_rho_entry(self):
        s = RateSchedule.from_dict({
            "origin": 2.0,
            "birth_rate": 2.0,
            "rho_sampling": {"times": [0.0], "values": [0.3], "times_are_ages": True},
        })
        assert s.is_rho_sampling_time(2.0)

    @pytest.mark.parametrize("missing", ["origin", "birth_rate"])
    def test_required_keys(self, params_dict, missing):
        del params_dict[missing]
        with pytest.raises(ConfigurationError, match=missing):
            RateSchedule.from_dict(params_dict)

    def test_mapping_without_values(self):
        with pytest.raises(ConfigurationError, match="values"):
            RateSchedule.from_dict({"origin": 1.0, "birth_rate": {"change_times": [0.5]}})


class TestEpiParameterization:
    """Test conversion from epidemiological parameters."""

    def test_full_removal(self):
        rates = epi_to_canonical(reproductive_number=2.0, become_uninfectious_rate=1.0,
                                 sampling_proportion=0.5)
        assert rates["birth_rate"] == pytest.approx(2.0)
        assert rates["sampling_rate"] == pytest.approx(0.5)
        assert rates["death_rate"] == pytest.approx(0.5)

    def test_partial_removal(self):
        rates = epi_to_canonical(reproductive_number=1.5, become_uninfectious_rate=1.0,
                                 sampling_proportion=0.5, removal_prob=0.5)
        assert rates["sampling_rate"] == pytest.approx(2.0 / 3.0)
        assert rates["death_rate"] == pytest.approx(2.0 / 3.0)

    def test_cross_type_reproductive_numbers(self):
        rates = epi_to_canonical(
            reproductive_number=[1.2, 0.8],
            become_uninfectious_rate=[1.0, 2.0],
            sampling_proportion=[0.3, 0.3],
            reproductive_number_among_types=[[0.0, 1.5], [0.5, 0.0]],
        )
        np.testing.assert_allclose(rates["birth_rate"], [1.2, 1.6])
        np.testing.assert_allclose(rates["cross_birth_rate"], [[0.0, 1.5], [1.0, 0.0]])

    def test_schedule_from_converted_rates(self):
        rates = epi_to_canonical(reproductive_number=2.0, become_uninfectious_rate=1.0,
                                 sampling_proportion=0.5)
        s = RateSchedule.constant(origin=2.0, **rates)
        assert s.birth_rates[0, 0] == pytest.approx(2.0)

    def test_invalid_proportion(self):
        with pytest.raises(ConfigurationError):
            epi_to_canonical(reproductive_number=2.0, become_uninfectious_rate=1.0,
                             sampling_proportion=1.5)
