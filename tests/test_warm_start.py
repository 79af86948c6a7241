import numpy as np
import pytest

from longmpc.trajectory import OnlineParameters, Trajectory
from longmpc.warm_start import WarmStartCache


def _multipliers(values):
    multipliers = np.zeros(21)
    for index, value in values.items():
        multipliers[index] = value
    return multipliers


@pytest.fixture
def stored_trajectory(horizon):
    grid = horizon.time_grid
    states = np.column_stack([10.0 * grid, np.full(grid.size, 10.0), np.zeros(grid.size)])
    controls = np.arange(horizon.num_intervals, dtype=float)[:, None]
    return Trajectory(
        time_grid=grid, states=states, controls=controls, lead_positions=30.0 + 10.0 * grid
    )


@pytest.fixture
def cache(dynamics):
    return WarmStartCache(dynamics)


def test_empty_cache_gives_no_seed(cache, horizon):
    assert cache.is_empty
    assert cache.seed(np.zeros(3), horizon) is None


def test_store_copies_trajectory(cache, stored_trajectory):
    cache.store(stored_trajectory, np.zeros(21), (2,))
    stored_trajectory.states[:] = -1.0
    assert not cache.is_empty
    assert cache.entry.trajectory.states[0, 1] == 10.0
    cache.reset()
    assert cache.is_empty


def test_seed_shifts_by_one_node(cache, horizon, stored_trajectory):
    cache.store(stored_trajectory, _multipliers({2: 0.5}), (2,))
    x0 = np.array([2.5, 9.5, 0.1])
    seed = cache.seed(x0, horizon)

    expected_controls = [1, 2, 3, 4, 5, 5] + list(range(6, 20))
    np.testing.assert_allclose(seed.controls[:, 0], expected_controls)
    np.testing.assert_allclose(seed.states[0], x0)
    np.testing.assert_allclose(seed.states[1:-1, 0], 10.0 * (horizon.time_grid[1:-1] + 0.2))
    # last node lies beyond the stored horizon and is propagated
    last_jerk = 19.0
    np.testing.assert_allclose(
        seed.states[-1],
        [100.0 + 10.0 * 0.2 + last_jerk * 0.2**3 / 6.0, 10.0 + last_jerk * 0.2**2 / 2.0, last_jerk * 0.2],
    )
    assert seed.active_set == (1,)


def test_zero_shift_reproduces_cache(cache, horizon, stored_trajectory):
    cache.store(stored_trajectory, _multipliers({3: 1.0, 7: 2.0}), (3, 7))
    seed = cache.seed(stored_trajectory.states[0], horizon, shift=0.0)
    np.testing.assert_allclose(seed.states, stored_trajectory.states)
    np.testing.assert_allclose(seed.controls, stored_trajectory.controls)
    assert seed.active_set == (3, 7)


def test_hot_start_keeps_only_binding_constraints(cache, horizon, stored_trajectory):
    cache.store(stored_trajectory, _multipliers({3: 0.8, 7: 0.0}), (3, 7))
    seed = cache.seed(stored_trajectory.states[0], horizon, shift=0.0)
    assert seed.active_set == (3,)


def test_negative_shift_rejected(cache, horizon, stored_trajectory):
    cache.store(stored_trajectory, np.zeros(21), ())
    with pytest.raises(ValueError):
        cache.seed(np.zeros(3), horizon, shift=-0.1)


def test_trajectory_accessors(stored_trajectory):
    assert stored_trajectory.gaps[0] == 30.0
    np.testing.assert_allclose(stored_trajectory.sample(0.1), [1.0, 10.0, 0.0])
    np.testing.assert_allclose(stored_trajectory.first_control, [0.0])
    assert stored_trajectory.commanded_acceleration == 0.0


def test_virtual_lead_is_far_and_faster():
    params = OnlineParameters.virtual_lead(np.array([5.0, 12.0, 0.0]), time_gap=1.2)
    assert params.lead_position == 55.0
    assert params.lead_velocity == 22.0
    np.testing.assert_allclose(params.lead_positions([0.0, 1.0]), [55.0, 77.0])
