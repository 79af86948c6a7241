"""
Per-tick orchestration of the follow controller.

One call to :meth:`LongitudinalMPC.step` is one control tick::

    IDLE -> SOLVING -> CONVERGED | FALLBACK

Every tick produces an output.  Failures degrade to a conservative command
and are reported through the status and failure kind, never raised.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from .config import LongitudinalMPCConfig
from .cost import FollowCostModel
from .discretization import non_uniform_horizon
from .dynamics import ACCELERATION, VELOCITY, LongitudinalDynamics
from .errors import FailureKind, InputInvalidError, NumericalOverflowError
from .integrator import integrate_interval
from .ocp import LongitudinalOCP, OCPAssembler
from .sqp import SQPResult, SQPSolver, SQPStatus
from .trajectory import OnlineParameters, Trajectory
from .warm_start import WarmStartCache


logger = logging.getLogger(__name__)


class ControllerState(Enum):
    IDLE = "idle"
    SOLVING = "solving"
    CONVERGED = "converged"
    FALLBACK = "fallback"


@dataclass
class ControllerOutput:
    """
    Result of one tick.

    Attributes
    ----------
    status : ControllerState
        ``CONVERGED`` or ``FALLBACK``.
    jerk : float
        Jerk to apply over the first interval.
    acceleration : float
        Acceleration commanded at the end of the first interval.
    trajectory : Trajectory, optional
        Predicted motion, ``None`` when the inputs could not be used at all.
    failure : FailureKind, optional
        Why the tick fell back, ``None`` on success.
    """

    status: ControllerState
    jerk: float
    acceleration: float
    trajectory: Optional[Trajectory]
    failure: Optional[FailureKind] = None
    iterations: int = 0
    cost: float = float("nan")
    defect: float = float("nan")
    solve_time_s: float = 0.0
    message: str = ""

    @property
    def converged(self) -> bool:
        return self.status == ControllerState.CONVERGED


class LongitudinalMPC:
    """
    Follow controller owning its grid, cost model, solver and warm start.

    Instances share nothing, so several vehicles can each run their own.
    """

    def __init__(self, config: Optional[LongitudinalMPCConfig] = None):
        self.config = config if config is not None else LongitudinalMPCConfig()
        cfg = self.config
        self.horizon = non_uniform_horizon(
            total_duration=cfg.horizon_sec,
            num_intervals=cfg.num_intervals,
            num_short=cfg.num_short_intervals,
            short_duration=cfg.short_interval_sec,
            short_substeps=cfg.short_substeps,
            long_substeps=cfg.long_substeps,
        )
        self.dynamics = LongitudinalDynamics()
        self.cost_model = FollowCostModel(cfg.gap)
        self.assembler = OCPAssembler(self.dynamics, self.cost_model, self.horizon, cfg.weights)
        self.solver = SQPSolver(cfg.solver)
        self.warm_start = WarmStartCache(self.dynamics)
        self.state = ControllerState.IDLE
        self.time_gap = cfg.time_gap
        self._last_output: Optional[ControllerOutput] = None

    @property
    def last_output(self) -> Optional[ControllerOutput]:
        return self._last_output

    def set_time_gap(self, time_gap: float) -> None:
        if not math.isfinite(time_gap) or time_gap < 0.0:
            raise InputInvalidError(f"time gap must be finite and non-negative, got {time_gap}")
        self.time_gap = float(time_gap)

    def reset(self) -> None:
        self.warm_start.reset()
        self._last_output = None
        self.state = ControllerState.IDLE

    def step(
        self,
        ego_state: np.ndarray,
        params: Optional[OnlineParameters] = None,
        elapsed: Optional[float] = None,
    ) -> ControllerOutput:
        """
        Runs one control tick.

        Parameters
        ----------
        ego_state : np.ndarray
            ``[position, velocity, acceleration]`` of the ego vehicle.
        params : OnlineParameters, optional
            Lead observation.  A ``None`` time gap uses :attr:`time_gap`;
            ``None`` parameters mean no lead is tracked and a far, faster
            virtual lead is followed.
        elapsed : float, optional
            Time since the previous tick; shifts the warm start.  ``None``
            shifts by one node, ``0`` re-solves the same instant.
        """
        self.state = ControllerState.SOLVING
        start = time.perf_counter()
        try:
            x0, resolved = self._validate(ego_state, params)
            if elapsed is not None and (not math.isfinite(elapsed) or elapsed < 0.0):
                raise InputInvalidError(f"elapsed must be finite and non-negative, got {elapsed}")
        except InputInvalidError as exc:
            output = self._hold_previous(str(exc))
            return self._finish(output, start)

        ocp = self.assembler.assemble(x0, resolved)
        deadline = None
        if self.config.solver.time_budget_s is not None:
            deadline = start + self.config.solver.time_budget_s

        try:
            seed = self.warm_start.seed(x0, self.horizon, shift=elapsed)
        except NumericalOverflowError:
            logger.warning("[MPC] warm start could not be shifted, dropping it")
            self.warm_start.reset()
            seed = None

        if seed is None:
            result = self.solver.solve(ocp, deadline=deadline)
        else:
            result = self.solver.solve(
                ocp,
                initial_states=seed.states,
                initial_controls=seed.controls,
                hot_start=seed.active_set,
                deadline=deadline,
            )

        output = self._handle_result(ocp, x0, result)
        return self._finish(output, start)

    # ------------------------------------------------------------------
    def _validate(self, ego_state, params: Optional[OnlineParameters]):
        try:
            x0 = np.asarray(ego_state, dtype=float)
        except (TypeError, ValueError) as exc:
            raise InputInvalidError(f"ego state is not numeric: {exc}") from exc
        if x0.shape != (self.dynamics.state_dim,):
            raise InputInvalidError(
                f"ego state must have shape ({self.dynamics.state_dim},), got {x0.shape}"
            )
        if not np.all(np.isfinite(x0)):
            raise InputInvalidError("ego state contains non-finite values")
        if params is None:
            params = OnlineParameters.virtual_lead(x0)
        if not isinstance(params, OnlineParameters):
            raise InputInvalidError(f"expected OnlineParameters, got {type(params).__name__}")

        time_gap = self.time_gap if params.time_gap is None else params.time_gap
        try:
            values = [float(params.lead_position), float(params.lead_velocity), float(time_gap)]
        except (TypeError, ValueError) as exc:
            raise InputInvalidError(f"online parameters are not numeric: {exc}") from exc
        if not all(math.isfinite(value) for value in values):
            raise InputInvalidError("online parameters contain non-finite values")
        if values[2] < 0.0:
            raise InputInvalidError(f"time gap must be non-negative, got {values[2]}")
        return x0, OnlineParameters(*values)

    def _handle_result(
        self, ocp: LongitudinalOCP, x0: np.ndarray, result: SQPResult
    ) -> ControllerOutput:
        diagnostics = dict(
            iterations=result.iterations,
            cost=result.cost,
            defect=result.defect,
            message=result.message,
        )

        if result.status == SQPStatus.CONVERGED:
            trajectory = ocp.trajectory(result.states, result.controls)
            self.warm_start.store(trajectory, result.multipliers, result.active_set)
            return ControllerOutput(
                status=ControllerState.CONVERGED,
                jerk=float(trajectory.first_control[0]),
                acceleration=trajectory.commanded_acceleration,
                trajectory=trajectory,
                **diagnostics,
            )

        if result.status == SQPStatus.NUMERICAL_OVERFLOW:
            self.warm_start.reset()
            return self._fixed_fallback(ocp, x0, FailureKind.NUMERICAL_OVERFLOW, diagnostics)

        if result.status == SQPStatus.INFEASIBLE:
            return self._fixed_fallback(ocp, x0, FailureKind.INFEASIBLE, diagnostics)

        if result.status == SQPStatus.DIVERGED:
            return self._fixed_fallback(ocp, x0, FailureKind.DIVERGED, diagnostics)

        # iteration, wall-clock or QP budget exhausted
        if (
            result.best_states is not None
            and result.best_defect <= self.config.fallback_defect_threshold
            and ocp.velocity_margin(result.best_states) >= -self.config.fallback_defect_threshold
        ):
            trajectory = ocp.trajectory(result.best_states, result.best_controls)
            return ControllerOutput(
                status=ControllerState.FALLBACK,
                jerk=float(trajectory.first_control[0]),
                acceleration=trajectory.commanded_acceleration,
                trajectory=trajectory,
                failure=FailureKind.BUDGET_EXCEEDED,
                **diagnostics,
            )
        return self._fixed_fallback(ocp, x0, FailureKind.BUDGET_EXCEEDED, diagnostics)

    def _fixed_fallback(
        self,
        ocp: LongitudinalOCP,
        x0: np.ndarray,
        failure: FailureKind,
        diagnostics: dict,
    ) -> ControllerOutput:
        try:
            trajectory = self.fallback_trajectory(ocp, x0)
        except NumericalOverflowError:
            return ControllerOutput(
                status=ControllerState.FALLBACK,
                jerk=0.0,
                acceleration=self.config.fallback_deceleration,
                trajectory=None,
                failure=failure,
                **diagnostics,
            )
        return ControllerOutput(
            status=ControllerState.FALLBACK,
            jerk=float(trajectory.first_control[0]),
            acceleration=trajectory.commanded_acceleration,
            trajectory=trajectory,
            failure=failure,
            **diagnostics,
        )

    def fallback_trajectory(self, ocp: LongitudinalOCP, x0: np.ndarray) -> Trajectory:
        """
        Ramps the acceleration towards ``fallback_deceleration`` with bounded
        jerk, and back to zero once the vehicle has stopped.
        """
        cfg = self.config
        n = self.horizon.num_intervals
        states = np.zeros((n + 1, self.dynamics.state_dim))
        controls = np.zeros((n, self.dynamics.control_dim))
        states[0] = x0
        for k in range(n):
            duration = self.horizon.durations[k]
            x = states[k]
            if x[VELOCITY] > 0.0:
                target = max(cfg.fallback_deceleration, -x[VELOCITY] / duration)
            else:
                target = 0.0
            jerk = np.clip(
                (target - x[ACCELERATION]) / duration, -cfg.fallback_max_jerk, cfg.fallback_max_jerk
            )
            controls[k, 0] = jerk
            states[k + 1] = integrate_interval(
                self.dynamics, x, controls[k], duration, int(self.horizon.substeps[k])
            )
        return ocp.trajectory(states, controls)

    def _hold_previous(self, message: str) -> ControllerOutput:
        previous = self._last_output
        if previous is not None:
            jerk, acceleration = previous.jerk, previous.acceleration
        else:
            jerk, acceleration = 0.0, self.config.fallback_deceleration
        return ControllerOutput(
            status=ControllerState.FALLBACK,
            jerk=jerk,
            acceleration=acceleration,
            trajectory=None,
            failure=FailureKind.INPUT_INVALID,
            message=message,
        )

    def _finish(self, output: ControllerOutput, start: float) -> ControllerOutput:
        output.solve_time_s = time.perf_counter() - start
        self.state = output.status
        if output.status == ControllerState.FALLBACK:
            logger.warning(
                "[MPC] fallback (%s) after %d iterations: %s",
                output.failure.value if output.failure else "unknown",
                output.iterations,
                output.message,
            )
        else:
            logger.debug(
                "[MPC] converged in %d iterations, cost %.6g, %.1f ms",
                output.iterations,
                output.cost,
                1e3 * output.solve_time_s,
            )
        if output.failure != FailureKind.INPUT_INVALID:
            self._last_output = output
        return output
