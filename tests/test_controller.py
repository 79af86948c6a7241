import numpy as np
import pytest

from longmpc import (
    ControllerState,
    FailureKind,
    InputInvalidError,
    LongitudinalMPC,
    LongitudinalMPCConfig,
    OnlineParameters,
    SolverOptions,
)


def test_fresh_controller_is_idle(controller):
    assert controller.state == ControllerState.IDLE
    assert controller.last_output is None
    assert controller.warm_start.is_empty


def test_follow_scenario_closes_in_on_lead(controller, cruise_state, cruise_params):
    desired = controller.cost_model.desired_gap(20.0, 20.0, 1.5)
    assert desired == pytest.approx(34.0, abs=0.01)

    output = controller.step(cruise_state, cruise_params)

    assert output.status == ControllerState.CONVERGED
    assert output.converged
    assert output.failure is None
    assert controller.state == ControllerState.CONVERGED
    gaps = output.trajectory.gaps
    assert gaps[0] == pytest.approx(40.0)
    assert 30.0 < gaps[-1] < 40.0
    assert abs(output.trajectory.jerks[-1]) < 0.25
    assert np.max(np.abs(output.trajectory.accelerations)) < 1.0
    assert output.acceleration == output.trajectory.commanded_acceleration
    assert not controller.warm_start.is_empty


def test_identical_resolve_is_nearly_free(controller, cruise_state, cruise_params):
    first = controller.step(cruise_state, cruise_params)
    assert first.converged
    second = controller.step(cruise_state, cruise_params, elapsed=0.0)
    assert second.converged
    assert second.iterations <= 2
    assert second.jerk == pytest.approx(first.jerk, abs=1e-4)


def test_consecutive_ticks_use_warm_start(controller, cruise_state, cruise_params):
    first = controller.step(cruise_state, cruise_params)
    x1 = first.trajectory.states[1]
    params = OnlineParameters(lead_position=44.0, lead_velocity=20.0, time_gap=1.5)
    second = controller.step(x1, params, elapsed=0.2)
    assert second.converged
    np.testing.assert_allclose(second.trajectory.states[0], x1)
    assert second.trajectory.gaps[0] == pytest.approx(first.trajectory.gaps[1])


def test_negative_velocity_falls_back_as_infeasible(controller, cruise_state, cruise_params):
    controller.step(cruise_state, cruise_params)
    output = controller.step(np.array([0.0, -1.0, 0.0]), cruise_params)

    assert output.status == ControllerState.FALLBACK
    assert output.failure == FailureKind.INFEASIBLE
    assert output.trajectory is not None
    assert output.trajectory.states[0, 1] == -1.0
    assert output.jerk == 0.0
    # infeasibility keeps the cache
    assert not controller.warm_start.is_empty


@pytest.mark.parametrize(
    "ego_state",
    [np.array([0.0, 20.0]), np.array([0.0, np.nan, 0.0]), "fast", np.array([0.0, np.inf, 0.0])],
)
def test_invalid_state_before_any_solve(controller, cruise_params, ego_state):
    output = controller.step(ego_state, cruise_params)
    assert output.status == ControllerState.FALLBACK
    assert output.failure == FailureKind.INPUT_INVALID
    assert output.trajectory is None
    assert output.jerk == 0.0
    assert output.acceleration == controller.config.fallback_deceleration


def test_invalid_input_holds_previous_command(controller, cruise_state, cruise_params):
    good = controller.step(cruise_state, cruise_params)
    bad = controller.step(
        cruise_state, OnlineParameters(lead_position=40.0, lead_velocity=20.0, time_gap=-1.0)
    )
    assert bad.failure == FailureKind.INPUT_INVALID
    assert bad.jerk == good.jerk
    assert bad.acceleration == good.acceleration
    assert controller.last_output is good
    assert not controller.warm_start.is_empty


def test_non_finite_lead_and_elapsed_rejected(controller, cruise_state):
    output = controller.step(cruise_state, OnlineParameters(float("nan"), 20.0))
    assert output.failure == FailureKind.INPUT_INVALID
    output = controller.step(cruise_state, OnlineParameters(40.0, 20.0), elapsed=-0.2)
    assert output.failure == FailureKind.INPUT_INVALID
    output = controller.step(cruise_state, (40.0, 20.0, 1.5))
    assert output.failure == FailureKind.INPUT_INVALID


def test_overflow_resets_warm_start(controller, cruise_state, cruise_params):
    controller.step(cruise_state, cruise_params)
    assert not controller.warm_start.is_empty

    output = controller.step(np.array([0.0, 1e200, 0.0]), cruise_params)

    assert output.status == ControllerState.FALLBACK
    assert output.failure == FailureKind.NUMERICAL_OVERFLOW
    assert controller.warm_start.is_empty
    assert output.jerk == -2.0


def test_iteration_budget_uses_best_iterate(cruise_state, cruise_params):
    config = LongitudinalMPCConfig(solver=SolverOptions(max_sqp_iterations=1, time_budget_s=None))
    controller = LongitudinalMPC(config)
    output = controller.step(cruise_state, cruise_params)

    assert output.status == ControllerState.FALLBACK
    assert output.failure == FailureKind.BUDGET_EXCEEDED
    assert output.iterations == 1
    assert output.trajectory is not None
    assert controller.warm_start.is_empty


def test_divergence_falls_back(cruise_state, cruise_params):
    config = LongitudinalMPCConfig(
        solver=SolverOptions(divergence_factor=1e-12, time_budget_s=None)
    )
    output = LongitudinalMPC(config).step(cruise_state, cruise_params)
    assert output.status == ControllerState.FALLBACK
    assert output.failure == FailureKind.DIVERGED


def test_fallback_trajectory_ramps_to_deceleration(controller, cruise_params):
    ocp = controller.assembler.assemble(np.array([0.0, 10.0, 0.0]), cruise_params)
    trajectory = controller.fallback_trajectory(ocp, ocp.initial_state)

    assert trajectory.jerks[0] == pytest.approx(-2.0)
    assert np.all(np.abs(trajectory.jerks) <= controller.config.fallback_max_jerk + 1e-12)
    assert np.all(trajectory.accelerations >= controller.config.fallback_deceleration - 1e-9)
    assert trajectory.accelerations[3] == pytest.approx(-1.0)


def test_fallback_trajectory_at_standstill(controller, cruise_params):
    ocp = controller.assembler.assemble(np.zeros(3), cruise_params)
    trajectory = controller.fallback_trajectory(ocp, ocp.initial_state)
    np.testing.assert_allclose(trajectory.jerks, 0.0)
    np.testing.assert_allclose(trajectory.states, 0.0)


def test_time_gap_setter(controller, cruise_state):
    controller.set_time_gap(2.5)
    assert controller.time_gap == 2.5
    with pytest.raises(InputInvalidError):
        controller.set_time_gap(-0.5)
    with pytest.raises(ValueError):
        controller.set_time_gap(float("inf"))

    output = controller.step(cruise_state, OnlineParameters(lead_position=60.0, lead_velocity=20.0))
    assert output.converged


def test_reset_returns_to_idle(controller, cruise_state, cruise_params):
    controller.step(cruise_state, cruise_params)
    controller.reset()
    assert controller.state == ControllerState.IDLE
    assert controller.warm_start.is_empty
    assert controller.last_output is None


def test_instances_are_independent(config, cruise_state, cruise_params):
    a = LongitudinalMPC(config)
    b = LongitudinalMPC(config)
    a.step(cruise_state, cruise_params)
    assert not a.warm_start.is_empty
    assert b.warm_start.is_empty
    assert b.state == ControllerState.IDLE


@pytest.mark.parametrize(
    "kwargs",
    [{"time_gap": -1.0}, {"fallback_deceleration": 0.5}, {"fallback_max_jerk": 0.0}],
)
def test_invalid_config_rejected(kwargs):
    with pytest.raises(ValueError):
        LongitudinalMPCConfig(**kwargs)


def test_invalid_solver_options_rejected():
    with pytest.raises(ValueError):
        SolverOptions(max_sqp_iterations=0)
    with pytest.raises(ValueError):
        SolverOptions(time_budget_s=0.0)


@pytest.mark.parametrize(
    "ego_state,lead",
    [
        (np.array([0.0, 10.0, 0.0]), OnlineParameters(lead_position=40.0, lead_velocity=0.0)),
        (np.array([0.0, 20.0, 0.0]), OnlineParameters(lead_position=15.0, lead_velocity=10.0)),
    ],
    ids=["stopped-lead", "slower-lead"],
)
def test_slower_lead_converges_and_brakes(controller, ego_state, lead):
    output = controller.step(ego_state, lead)
    assert output.status == ControllerState.CONVERGED
    assert output.jerk < 0.0
    assert output.acceleration < 0.0
    assert np.all(output.trajectory.velocities >= -1e-6)


def test_closed_loop_brakes_for_stopped_lead(controller):
    ego = np.array([0.0, 10.0, 0.0])
    lead = OnlineParameters(lead_position=40.0, lead_velocity=0.0)
    for tick in range(8):
        output = controller.step(ego, lead, elapsed=0.2 if tick else None)
        assert output.converged
        ego = output.trajectory.sample(0.2)
    assert ego[1] < 10.0
    assert ego[2] < 0.0


def test_first_qp_failure_uses_fixed_fallback(cruise_state, cruise_params):
    config = LongitudinalMPCConfig(solver=SolverOptions(max_qp_iterations=1, time_budget_s=None))
    output = LongitudinalMPC(config).step(cruise_state, cruise_params)
    assert output.status == ControllerState.FALLBACK
    assert output.failure == FailureKind.BUDGET_EXCEEDED
    # ramps towards the fallback deceleration instead of holding speed
    assert output.jerk == -2.0
    assert output.acceleration < 0.0


def test_exhausted_time_budget_uses_fixed_fallback(cruise_state, cruise_params):
    config = LongitudinalMPCConfig(solver=SolverOptions(time_budget_s=1e-9))
    output = LongitudinalMPC(config).step(cruise_state, cruise_params)
    assert output.status == ControllerState.FALLBACK
    assert output.failure == FailureKind.BUDGET_EXCEEDED
    assert output.iterations == 1
    assert output.jerk == -2.0


def test_no_lead_follows_virtual_lead(controller, cruise_state):
    output = controller.step(cruise_state)
    assert output.converged
    assert output.trajectory.lead_positions[0] == 50.0
    assert output.trajectory.lead_positions[-1] == pytest.approx(50.0 + 30.0 * 10.0)
