"""
Multiple-shooting transcription of the follow problem.

Node states ``x_0..x_N`` and interval jerks ``u_0..u_{N-1}`` are the decision
variables.  They are linked by the defects ``F_k(x_k, u_k) - x_{k+1}``, the
initial node is pinned to the measured state, and the velocity must stay
non-negative on every node.  The lead observation is fixed for the whole
solve and predicted at constant velocity along the grid.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .config import CostWeights
from .cost import NUM_PARAMETERS, FollowCostModel
from .discretization import Horizon
from .dynamics import POSITION, VELOCITY, LongitudinalDynamics
from .errors import NumericalOverflowError
from .integrator import integrate_with_sensitivities
from .layout import ShootingLayout
from .trajectory import OnlineParameters, Trajectory


@dataclass
class OCPEvaluation:
    """
    Everything the Gauss-Newton step needs at one iterate.

    ``A[k]`` and ``B[k]`` are the sensitivities of the end state of interval
    ``k`` with respect to ``states[k]`` and ``controls[k]``.
    """

    states: np.ndarray
    controls: np.ndarray
    end_states: np.ndarray
    defects: np.ndarray
    initial_defect: np.ndarray
    A: np.ndarray
    B: np.ndarray
    stage_residuals: np.ndarray
    stage_jac_x: np.ndarray
    stage_jac_u: np.ndarray
    terminal_residual: np.ndarray
    terminal_jac_x: np.ndarray
    cost: float

    @property
    def max_defect(self) -> float:
        return float(
            max(np.max(np.abs(self.defects)), np.max(np.abs(self.initial_defect)))
        )


class LongitudinalOCP:
    """Nonlinear program of one tick: fixed initial state and lead snapshot."""

    velocity_lower_bound = 0.0

    def __init__(
        self,
        dynamics: LongitudinalDynamics,
        cost_model: FollowCostModel,
        horizon: Horizon,
        initial_state: np.ndarray,
        params: OnlineParameters,
        stage_weights: np.ndarray,
        terminal_weights: np.ndarray,
    ):
        if params.time_gap is None:
            raise ValueError("the online parameters need a resolved time_gap")
        self.dynamics = dynamics
        self.cost_model = cost_model
        self.horizon = horizon
        self.initial_state = np.asarray(initial_state, dtype=float).copy()
        self.params = params
        self.stage_weights = stage_weights
        self.terminal_weights = terminal_weights
        self.layout = ShootingLayout(
            state_dim=dynamics.state_dim,
            control_dim=dynamics.control_dim,
            num_intervals=horizon.num_intervals,
        )
        self.time_grid = horizon.time_grid
        self.lead_positions = params.lead_positions(self.time_grid)
        self.node_params = np.zeros((horizon.num_nodes, NUM_PARAMETERS))
        self.node_params[:, 0] = self.lead_positions
        self.node_params[:, 1] = params.lead_velocity
        self.node_params[:, 2] = params.time_gap

    def initial_guess(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Straight-line extrapolation: constant velocity from the measured
        state, zero acceleration on the later nodes and zero jerk.
        """
        x0 = self.initial_state
        velocity = max(x0[VELOCITY], 0.0)
        states = np.zeros((self.layout.num_nodes, self.layout.state_dim))
        states[:, POSITION] = x0[POSITION] + velocity * self.time_grid
        states[:, VELOCITY] = velocity
        states[0] = x0
        controls = np.zeros((self.layout.num_intervals, self.layout.control_dim))
        return states, controls

    def evaluate(self, states: np.ndarray, controls: np.ndarray) -> OCPEvaluation:
        """
        Integrates every interval, evaluates all residuals and their
        Jacobians at ``(states, controls)``.

        Raises
        ------
        NumericalOverflowError
            If any integrated state, residual or the cost is not finite.
        """
        layout = self.layout
        n = layout.num_intervals
        nx = layout.state_dim
        nu = layout.control_dim
        if not (np.all(np.isfinite(states)) and np.all(np.isfinite(controls))):
            raise NumericalOverflowError("non-finite iterate")

        end_states = np.zeros((n, nx))
        A = np.zeros((n, nx, nx))
        B = np.zeros((n, nx, nu))
        for k in range(n):
            end_states[k], A[k], B[k] = integrate_with_sensitivities(
                self.dynamics,
                states[k],
                controls[k],
                self.horizon.durations[k],
                int(self.horizon.substeps[k]),
            )

        stage_r, stage_jx, stage_ju = self.cost_model.stage_terms(
            states[:-1], controls, self.node_params[:-1]
        )
        term_r, term_jx = self.cost_model.terminal_terms(states[-1], self.node_params[-1])

        cost = 0.5 * (
            float(np.sum(self.stage_weights * stage_r**2))
            + float(np.sum(self.terminal_weights * term_r**2))
        )
        for array in (stage_r, stage_jx, stage_ju, term_r, term_jx):
            if not np.all(np.isfinite(array)):
                raise NumericalOverflowError("non-finite value in cost evaluation")
        if not np.isfinite(cost):
            raise NumericalOverflowError("cost overflow")

        return OCPEvaluation(
            states=states.copy(),
            controls=controls.copy(),
            end_states=end_states,
            defects=end_states - states[1:],
            initial_defect=self.initial_state - states[0],
            A=A,
            B=B,
            stage_residuals=stage_r,
            stage_jac_x=stage_jx,
            stage_jac_u=stage_ju,
            terminal_residual=term_r,
            terminal_jac_x=term_jx,
            cost=cost,
        )

    def trajectory(self, states: np.ndarray, controls: np.ndarray) -> Trajectory:
        return Trajectory(
            time_grid=self.time_grid.copy(),
            states=states.copy(),
            controls=controls.copy(),
            lead_positions=self.lead_positions.copy(),
        )

    def velocity_margin(self, states: np.ndarray) -> float:
        """Smallest node velocity above the lower bound (negative if violated)."""
        return float(np.min(states[:, VELOCITY]) - self.velocity_lower_bound)


class OCPAssembler:
    """
    Combines dynamics, cost and grid into a :class:`LongitudinalOCP` per tick.

    The per-interval weight diagonals are computed once here since the grid
    and the weights are fixed for the lifetime of the assembler.
    """

    def __init__(
        self,
        dynamics: LongitudinalDynamics,
        cost_model: FollowCostModel,
        horizon: Horizon,
        weights: Optional[CostWeights] = None,
    ):
        self.dynamics = dynamics
        self.cost_model = cost_model
        self.horizon = horizon
        self.weights = weights if weights is not None else CostWeights()

        if self.weights.scale_weights_by_interval:
            scale = horizon.durations / horizon.durations[0]
            terminal_scale = scale[-1]
        else:
            scale = np.ones(horizon.num_intervals)
            terminal_scale = 1.0
        self.stage_weights = scale[:, None] * self.weights.stage_diag[None, :]
        self.terminal_weights = terminal_scale * self.weights.terminal_diag

    def assemble(self, initial_state: np.ndarray, params: OnlineParameters) -> LongitudinalOCP:
        return LongitudinalOCP(
            dynamics=self.dynamics,
            cost_model=self.cost_model,
            horizon=self.horizon,
            initial_state=initial_state,
            params=params,
            stage_weights=self.stage_weights,
            terminal_weights=self.terminal_weights,
        )
