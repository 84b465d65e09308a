"""
Tests for ODE state containers and scaling.
"""

import numpy as np

from bdmmpy.core.small_number import SmallNumber
from bdmmpy.core.states import P0GeState, ScaledState


def make_state(p0, ge):
    state = P0GeState(len(p0))
    state.p0 = np.array(p0, dtype=float)
    state.ge = list(ge)
    return state


class TestScaling:
    """Test conversion between P0GeState and ScaledState."""

    def test_round_trip_wide_range(self):
        """Values spanning 300 decimal orders survive scaling exactly."""
        ge = [SmallNumber(1e-300), SmallNumber(1.0), SmallNumber(1e5)]
        state = make_state([0.1, 0.2, 0.3], ge)

        back = state.to_scaled().to_state()

        np.testing.assert_array_equal(back.p0, state.p0)
        for original, restored in zip(ge, back.ge):
            assert restored == original

    def test_round_trip_below_float_range(self):
        ge = [SmallNumber(1.0, -3000), SmallNumber(1.0, -3500)]
        state = make_state([0.5, 0.5], ge)

        scaled = state.to_scaled()
        assert np.all(scaled.values[2:] > 0.0)
        assert np.all(np.isfinite(scaled.values))

        back = scaled.to_state()
        assert back.ge[0] == ge[0]
        assert back.ge[1] == ge[1]

    def test_largest_component_capped(self):
        state = make_state([0.0, 0.0], [SmallNumber(1.0, 2000), SmallNumber(1.0, 1990)])
        scaled = state.to_scaled()
        assert np.max(scaled.values[2:]) <= 2.0 ** 400

    def test_all_zero(self):
        state = P0GeState(2)
        scaled = state.to_scaled()
        assert scaled.exponent == 0
        np.testing.assert_array_equal(scaled.values, np.zeros(4))

    def test_zero_components_stay_zero(self):
        state = make_state([0.1, 0.2], [SmallNumber(), SmallNumber(1.0, -2000)])
        back = state.to_scaled().to_state()
        assert back.ge[0].is_zero
        assert back.ge[1] == SmallNumber(1.0, -2000)

    def test_rescaled(self):
        scaled = ScaledState(np.array([0.3, 2.0 ** -900]), -100)
        rescaled = scaled.rescaled()
        assert rescaled.values[0] == 0.3
        # A single non-zero component lands on its own mantissa
        assert rescaled.values[1] == 0.5
        assert rescaled.exponent == -999
        assert rescaled.to_state().ge[0] == scaled.to_state().ge[0]


class TestP0GeState:
    """Test state helpers."""

    def test_new_state_is_zero(self):
        state = P0GeState(3)
        assert state.n_types == 3
        assert all(g.is_zero for g in state.ge)
        np.testing.assert_array_equal(state.p0, np.zeros(3))

    def test_copy_is_independent(self):
        state = make_state([0.1, 0.2], [SmallNumber(1.0), SmallNumber(2.0)])
        copy = state.copy()
        copy.p0[0] = 0.9
        copy.ge[1] = SmallNumber(5.0)
        assert state.p0[0] == 0.1
        assert float(state.ge[1]) == 2.0

    def test_repr(self):
        assert "P0GeState" in repr(make_state([0.5], [SmallNumber(0.25)]))
