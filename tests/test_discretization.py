import numpy as np
import pytest

from longmpc.discretization import Horizon, non_uniform_horizon
from longmpc.layout import ShootingLayout


def test_default_grid_is_five_short_then_fifteen_long(horizon):
    assert horizon.num_intervals == 20
    assert horizon.num_nodes == 21
    np.testing.assert_allclose(horizon.durations[:5], 0.2)
    np.testing.assert_allclose(horizon.durations[5:], 0.6)
    assert list(horizon.substeps) == [1] * 5 + [3] * 15
    assert horizon.total_substeps == 5 + 45


@pytest.mark.parametrize("short_substeps,long_substeps", [(1, 1), (1, 3), (2, 5), (4, 7)])
def test_horizon_length_independent_of_substeps(short_substeps, long_substeps):
    grid = non_uniform_horizon(short_substeps=short_substeps, long_substeps=long_substeps)
    assert grid.time_grid[0] == 0.0
    assert grid.time_grid[-1] == 10.0
    assert np.all(np.diff(grid.time_grid) > 0.0)
    np.testing.assert_allclose(grid.durations[5:], 0.6)


def test_grid_arrays_are_read_only(horizon):
    with pytest.raises(ValueError):
        horizon.durations[0] = 1.0
    with pytest.raises(ValueError):
        horizon.substeps[0] = 2


def test_durations_must_sum_to_total():
    with pytest.raises(ValueError):
        Horizon(durations=[0.5, 0.5], substeps=[1, 1], total_duration=2.0)


@pytest.mark.parametrize(
    "durations,substeps",
    [([], []), ([1.0, -1.0], [1, 1]), ([1.0, 1.0], [1, 0]), ([1.0, 1.0], [1])],
)
def test_malformed_grids_rejected(durations, substeps):
    with pytest.raises(ValueError):
        Horizon(durations=durations, substeps=substeps, total_duration=float(sum(durations)))


def test_short_intervals_cannot_exceed_horizon():
    with pytest.raises(ValueError):
        non_uniform_horizon(total_duration=1.0, num_intervals=10, num_short=5, short_duration=0.2)


def test_all_short_grid():
    grid = non_uniform_horizon(total_duration=1.0, num_intervals=5, num_short=5, short_duration=0.2)
    assert grid.time_grid[-1] == 1.0
    np.testing.assert_allclose(grid.durations, 0.2)


def test_layout_sizes():
    layout = ShootingLayout(state_dim=3, control_dim=1, num_intervals=20)
    assert layout.num_nodes == 21
    assert layout.control_block == 20
    assert layout.condensed_dim == 20
