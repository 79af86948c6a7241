import numpy as np
import pytest

from longmpc.errors import NumericalOverflowError
from longmpc.integrator import integrate_interval, integrate_with_sensitivities


def _exact(state, jerk, T):
    x, v, a = state
    return np.array(
        [
            x + v * T + a * T**2 / 2.0 + jerk * T**3 / 6.0,
            v + a * T + jerk * T**2 / 2.0,
            a + jerk * T,
        ]
    )


def test_state_derivative(dynamics):
    np.testing.assert_allclose(
        dynamics.state_derivative(np.array([1.0, 2.0, 3.0]), np.array([4.0])), [2.0, 3.0, 4.0]
    )


@pytest.mark.parametrize("substeps", [1, 3, 7])
def test_rk4_is_exact_for_constant_jerk(dynamics, substeps):
    state = np.array([3.0, 12.0, -0.5])
    result = integrate_interval(dynamics, state, np.array([0.8]), 0.6, substeps)
    np.testing.assert_allclose(result, _exact(state, 0.8, 0.6), rtol=1e-12, atol=1e-12)


@pytest.mark.parametrize("substeps", [1, 3])
def test_sensitivities_match_closed_form(dynamics, substeps):
    T = 0.6
    state = np.array([0.0, 5.0, 1.0])
    x_end, A_d, B_d = integrate_with_sensitivities(
        dynamics, state, np.array([-0.3]), T, substeps
    )
    np.testing.assert_allclose(x_end, _exact(state, -0.3, T), atol=1e-12)
    np.testing.assert_allclose(
        A_d, [[1.0, T, T**2 / 2.0], [0.0, 1.0, T], [0.0, 0.0, 1.0]], atol=1e-12
    )
    np.testing.assert_allclose(B_d[:, 0], [T**3 / 6.0, T**2 / 2.0, T], atol=1e-12)


def test_non_finite_integration_raises(dynamics):
    with pytest.raises(NumericalOverflowError):
        integrate_interval(dynamics, np.array([1e308, 1e308, 0.0]), np.array([0.0]), 10.0)
