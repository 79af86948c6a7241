import numpy as np
import pytest

from longmpc import (
    FollowCostModel,
    LongitudinalDynamics,
    LongitudinalMPC,
    LongitudinalMPCConfig,
    OCPAssembler,
    OnlineParameters,
    SolverOptions,
    non_uniform_horizon,
)


@pytest.fixture
def dynamics():
    return LongitudinalDynamics()


@pytest.fixture
def horizon():
    return non_uniform_horizon()


@pytest.fixture
def cost_model():
    return FollowCostModel()


@pytest.fixture
def solver_options():
    # no wall-clock budget so results do not depend on the machine
    return SolverOptions(time_budget_s=None)


@pytest.fixture
def config(solver_options):
    return LongitudinalMPCConfig(solver=solver_options)


@pytest.fixture
def controller(config):
    return LongitudinalMPC(config)


@pytest.fixture
def assembler(dynamics, cost_model, horizon):
    return OCPAssembler(dynamics, cost_model, horizon)


@pytest.fixture
def cruise_state():
    return np.array([0.0, 20.0, 0.0])


@pytest.fixture
def cruise_params():
    """Lead 40 m ahead at the ego speed, 1.5 s following time."""
    return OnlineParameters(lead_position=40.0, lead_velocity=20.0, time_gap=1.5)
